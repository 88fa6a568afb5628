"""Regression coverage for development encryption key handling."""

from __future__ import annotations

import importlib
import json
import sys

import pytest
from cryptography.fernet import Fernet


def _reload_base_settings():
    for module in [
        "attendance_verification.settings.base",
        "attendance_verification.settings",
    ]:
        sys.modules.pop(module, None)
    return importlib.import_module("attendance_verification.settings.base")


@pytest.fixture(autouse=True)
def _reset_environment(monkeypatch):
    """Ensure encryption-specific environment variables do not leak between tests."""

    for env_var in ["FACE_DATA_ENCRYPTION_KEY", "DJANGO_DEBUG"]:
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("DJANGO_DEBUG", "1")
    yield


def test_dev_key_is_persisted_and_reusable(tmp_path, monkeypatch):
    cache_path = tmp_path / "dev_keys.json"
    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(cache_path))
    monkeypatch.setenv("LOCAL_ENV_PATH", str(tmp_path / ".env"))

    settings_base = _reload_base_settings()

    first_face_key = settings_base.FACE_DATA_ENCRYPTION_KEY
    face_payload = Fernet(first_face_key).encrypt(b"descriptor-bytes")

    assert cache_path.exists()
    cache = json.loads(cache_path.read_text())
    assert cache["FACE_DATA_ENCRYPTION_KEY"] == first_face_key.decode()

    settings_base = _reload_base_settings()

    assert settings_base.FACE_DATA_ENCRYPTION_KEY == first_face_key
    assert Fernet(settings_base.FACE_DATA_ENCRYPTION_KEY).decrypt(face_payload) == b"descriptor-bytes"


def test_dotenv_values_are_respected(tmp_path, monkeypatch):
    cache_path = tmp_path / "dev_keys.json"
    dotenv_path = tmp_path / ".env"
    face_key = Fernet.generate_key()
    dotenv_path.write_text(f"FACE_DATA_ENCRYPTION_KEY='{face_key.decode()}'\n")

    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(cache_path))
    monkeypatch.setenv("LOCAL_ENV_PATH", str(dotenv_path))

    settings_base = _reload_base_settings()

    assert settings_base.FACE_DATA_ENCRYPTION_KEY == face_key
    assert not cache_path.exists()


def test_invalid_cached_key_is_regenerated(tmp_path, monkeypatch):
    cache_path = tmp_path / "dev_keys.json"
    cache_path.write_text(json.dumps({"FACE_DATA_ENCRYPTION_KEY": "not-a-key"}))
    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(cache_path))
    monkeypatch.setenv("LOCAL_ENV_PATH", str(tmp_path / ".env"))

    with pytest.warns(UserWarning):
        settings_base = _reload_base_settings()

    Fernet(settings_base.FACE_DATA_ENCRYPTION_KEY)
    assert json.loads(cache_path.read_text())["FACE_DATA_ENCRYPTION_KEY"] != "not-a-key"
