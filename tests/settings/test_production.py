"""Smoke tests for the production settings module."""

from __future__ import annotations

import importlib
import sys

import pytest
from django.core.exceptions import ImproperlyConfigured


def _reload_production_settings():
    """Force a reload of the production settings module for isolation."""

    for module in [
        "attendance_verification.settings.production",
        "attendance_verification.settings.base",
        "attendance_verification.settings",
    ]:
        sys.modules.pop(module, None)
    return importlib.import_module("attendance_verification.settings.production")


@pytest.fixture
def production_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(tmp_path / "dev_keys.json"))
    monkeypatch.setenv("LOCAL_ENV_PATH", str(tmp_path / ".env"))
    monkeypatch.setenv("DJANGO_ALLOWED_HOSTS", "verify.example.com, api.example.com")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    for name in ["DJANGO_SECURE_SSL_REDIRECT", "DJANGO_SESSION_COOKIE_SECURE"]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_production_database_configuration(production_env):
    production_env.setenv("DB_NAME", "ci_db")
    production_env.setenv("DB_USER", "ci_user")
    production_env.setenv("DB_PASSWORD", "ci_password")
    production_env.setenv("DB_HOST", "postgres")
    production_env.setenv("DB_PORT", "6543")
    production_env.setenv("DB_CONN_MAX_AGE", "120")

    settings = _reload_production_settings()

    database = settings.DATABASES["default"]
    assert database["ENGINE"] == "django.db.backends.postgresql"
    assert database["NAME"] == "ci_db"
    assert database["USER"] == "ci_user"
    assert database["PASSWORD"] == "ci_password"
    assert database["HOST"] == "postgres"
    assert database["PORT"] == "6543"
    assert database["CONN_MAX_AGE"] == 120


def test_production_enforces_secure_transport(production_env):
    settings = _reload_production_settings()

    assert settings.DEBUG is False
    assert settings.ALLOWED_HOSTS == ["verify.example.com", "api.example.com"]
    assert settings.SECURE_SSL_REDIRECT is True
    assert settings.SESSION_COOKIE_SECURE is True


def test_biometric_threshold_bounds_are_enforced(production_env):
    production_env.setenv("BIOMETRICS_MATCH_THRESHOLD", "1.5")

    with pytest.raises(ImproperlyConfigured):
        _reload_production_settings()
