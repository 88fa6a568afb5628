"""
Django settings for the attendance verification service.

Sensitive values and biometric tuning are read from environment variables so
the same module serves development, tests and production (via ``production``).
"""

import json
import os
import sys
import warnings
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from django.core.exceptions import ImproperlyConfigured

import dj_database_url
from cryptography.fernet import Fernet

BASE_DIR = Path(__file__).resolve().parent.parent.parent
LOCAL_ENV_PATH = Path(os.environ.get("LOCAL_ENV_PATH", BASE_DIR / ".env"))
DEV_KEY_CACHE_PATH = Path(
    os.environ.get("DEV_ENCRYPTION_KEY_FILE", BASE_DIR / ".dev_encryption_keys.json")
)


# --- Environment helpers ---


def _get_bool_env(var_name: str, default: bool = False) -> bool:
    """Return a boolean from an environment variable."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default
    return raw_value.lower() in {"1", "true", "yes", "on"}


def _parse_int_env(var_name: str, default: int, *, minimum: int | None = None) -> int:
    """Return an integer from the environment, enforcing an optional minimum."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default

    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ImproperlyConfigured(f"{var_name} must be an integer if provided.") from exc

    if minimum is not None and value < minimum:
        raise ImproperlyConfigured(f"{var_name} must be >= {minimum} if provided.")

    return value


def _get_float_env(
    var_name: str,
    default: float,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    """Return a float from the environment with optional bound enforcement."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default

    try:
        value = float(raw_value)
    except ValueError as exc:
        raise ImproperlyConfigured(f"{var_name} must be a float if provided.") from exc

    if minimum is not None and value < minimum:
        raise ImproperlyConfigured(f"{var_name} must be >= {minimum} if provided.")
    if maximum is not None and value > maximum:
        raise ImproperlyConfigured(f"{var_name} must be <= {maximum} if provided.")

    return value


# Detect if we're running tests
TESTING = "test" in sys.argv or (len(sys.argv) > 0 and "pytest" in sys.argv[0])

DEFAULT_SECRET_KEY = "a-secure-default-key-for-development-only"

# Debug defaults on for tests and local runs; production.py forces it off.
DEBUG = _get_bool_env("DJANGO_DEBUG", default=not TESTING)

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", DEFAULT_SECRET_KEY)
if SECRET_KEY == DEFAULT_SECRET_KEY and not DEBUG and not TESTING:
    raise ImproperlyConfigured(
        "DJANGO_SECRET_KEY must be set to a secure value when DJANGO_DEBUG is not enabled."
    )


# --- Face data encryption ---


def _validate_fernet_key(key: str | bytes, setting_name: str) -> bytes:
    """Ensure the provided key material is a valid Fernet key."""

    key_bytes = key.encode() if isinstance(key, str) else key
    try:
        Fernet(key_bytes)
    except (ValueError, TypeError) as exc:
        raise ImproperlyConfigured(
            f"{setting_name} must be a valid 32-byte base64-encoded Fernet key."
        ) from exc
    return key_bytes


def _read_local_env_value(var_name: str) -> str | None:
    """Return a value from a local ``.env`` file if present."""

    if not LOCAL_ENV_PATH.exists():
        return None
    try:
        for raw_line in LOCAL_ENV_PATH.read_text().splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            if key.strip() == var_name:
                return value.strip().strip("\"").strip("'")
    except OSError as exc:
        warnings.warn(f"Unable to read {LOCAL_ENV_PATH}: {exc}")
    return None


def _deterministic_dev_key(var_name: str) -> bytes:
    """Return a stable key for DEBUG/TESTING sessions, persisting when generated."""

    cache: dict[str, str] = {}
    if DEV_KEY_CACHE_PATH.exists():
        try:
            cache = json.loads(DEV_KEY_CACHE_PATH.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            warnings.warn(f"Ignoring invalid dev key cache file: {exc}")
            cache = {}

    cached_value = cache.get(var_name)
    if cached_value:
        try:
            return _validate_fernet_key(cached_value, var_name)
        except ImproperlyConfigured:
            warnings.warn(f"Ignoring invalid cached {var_name}; regenerating.")

    key_bytes = Fernet.generate_key()
    cache[var_name] = key_bytes.decode()
    try:
        DEV_KEY_CACHE_PATH.write_text(json.dumps(cache, indent=2))
    except OSError as exc:
        warnings.warn(f"Unable to persist dev encryption key cache: {exc}")
    return key_bytes


def _load_face_data_encryption_key() -> bytes:
    """Load the Fernet key used to encrypt stored reference descriptors."""

    key = os.environ.get("FACE_DATA_ENCRYPTION_KEY")
    if not key and (DEBUG or TESTING):
        key = _read_local_env_value("FACE_DATA_ENCRYPTION_KEY")
    if key:
        return _validate_fernet_key(key, "FACE_DATA_ENCRYPTION_KEY")
    if DEBUG or TESTING:
        return _deterministic_dev_key("FACE_DATA_ENCRYPTION_KEY")
    raise ImproperlyConfigured(
        "FACE_DATA_ENCRYPTION_KEY environment variable must be set in production environments."
    )


FACE_DATA_ENCRYPTION_KEY = _load_face_data_encryption_key()


# --- Hosts & transport security ---

LOCALHOST_ALIASES: tuple[str, ...] = ("localhost", "127.0.0.1", "[::1]", "testserver")


def _resolve_allowed_hosts(
    *,
    default_allowed_hosts: Sequence[str],
    require_explicit_hosts: bool,
) -> list[str]:
    """Return the allowed host list based on deployment defaults."""

    allowed_hosts_env = os.environ.get("DJANGO_ALLOWED_HOSTS")
    if allowed_hosts_env:
        return [host.strip() for host in allowed_hosts_env.split(",") if host.strip()]

    if require_explicit_hosts:
        raise ImproperlyConfigured(
            "DJANGO_ALLOWED_HOSTS must be provided (comma separated) when secure defaults are enforced."
        )
    return list(default_allowed_hosts)


def configure_environment(
    *,
    secure_defaults: bool,
    default_allowed_hosts: Sequence[str],
    require_allowed_hosts: bool,
) -> None:
    """Populate security-sensitive settings for the active environment."""

    global ALLOWED_HOSTS
    global SECURE_SSL_REDIRECT
    global SECURE_HSTS_SECONDS
    global SESSION_COOKIE_SECURE
    global CSRF_COOKIE_SECURE

    ALLOWED_HOSTS = _resolve_allowed_hosts(
        default_allowed_hosts=default_allowed_hosts,
        require_explicit_hosts=require_allowed_hosts,
    )
    SECURE_SSL_REDIRECT = _get_bool_env("DJANGO_SECURE_SSL_REDIRECT", default=secure_defaults)
    SECURE_HSTS_SECONDS = _parse_int_env(
        "DJANGO_SECURE_HSTS_SECONDS",
        default=3600 if secure_defaults else 0,
        minimum=0,
    )
    SESSION_COOKIE_SECURE = _get_bool_env("DJANGO_SESSION_COOKIE_SECURE", default=secure_defaults)
    CSRF_COOKIE_SECURE = _get_bool_env("DJANGO_CSRF_COOKIE_SECURE", default=secure_defaults)


# --- Application Configuration ---

INSTALLED_APPS = [
    "biometrics.apps.BiometricsConfig",
    # Third-party packages
    "rest_framework",
    # Core Django applications
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "attendance_verification.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "attendance_verification.wsgi.application"
ASGI_APPLICATION = "attendance_verification.asgi.application"


# --- Database Configuration ---

default_db_url = os.environ.get("DATABASE_URL", f"sqlite:///{(BASE_DIR / 'db.sqlite3').as_posix()}")
conn_max_age = _parse_int_env("DATABASE_CONN_MAX_AGE", 0, minimum=0)
DATABASES = {
    "default": dj_database_url.parse(default_db_url, conn_max_age=conn_max_age),
}


def build_postgres_database_config() -> dict[str, Any]:
    """Return a PostgreSQL configuration derived from discrete environment variables."""

    return {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("DB_NAME", "attendance"),
        "USER": os.environ.get("DB_USER", "attendance"),
        "PASSWORD": os.environ.get("DB_PASSWORD", "attendance"),
        "HOST": os.environ.get("DB_HOST", "localhost"),
        "PORT": os.environ.get("DB_PORT", "5432"),
        "CONN_MAX_AGE": _parse_int_env("DB_CONN_MAX_AGE", 600, minimum=0),
    }


configure_environment(
    secure_defaults=not DEBUG and not TESTING,
    default_allowed_hosts=LOCALHOST_ALIASES,
    require_allowed_hosts=not DEBUG and not TESTING,
)


AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "UTC")
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = Path(os.environ.get("DJANGO_STATIC_ROOT", BASE_DIR / "staticfiles"))

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# --- REST framework ---

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_THROTTLE_CLASSES": [
        "rest_framework.throttling.UserRateThrottle",
    ],
    "DEFAULT_THROTTLE_RATES": {
        "user": os.environ.get("BIOMETRICS_API_RATE_LIMIT", "30/min"),
    },
}


# --- Logging ---

LOG_LEVEL = os.environ.get("DJANGO_LOG_LEVEL", "INFO").upper()
BIOMETRICS_LOG_LEVEL = os.environ.get("BIOMETRICS_LOG_LEVEL", LOG_LEVEL).upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "biometrics": {
            "handlers": ["console"],
            "level": BIOMETRICS_LOG_LEVEL,
            "propagate": False,
        },
    },
}


# --- Biometric verification ---

# Similarity at or above this value verifies the claimed identity. 0.55 is a
# permissive operating point; raise it to trade usability for security.
BIOMETRICS_MATCH_THRESHOLD = _get_float_env(
    "BIOMETRICS_MATCH_THRESHOLD", default=0.55, minimum=0.0, maximum=1.0
)
# Frames scoring below this composite quality are rejected before extraction.
BIOMETRICS_MIN_CAPTURE_QUALITY = _get_float_env(
    "BIOMETRICS_MIN_CAPTURE_QUALITY", default=0.55, minimum=0.0, maximum=1.0
)
BIOMETRICS_MAX_FRAME_ATTEMPTS = _parse_int_env("BIOMETRICS_MAX_FRAME_ATTEMPTS", 10, minimum=1)
BIOMETRICS_FRAME_RETRY_INTERVAL = _get_float_env(
    "BIOMETRICS_FRAME_RETRY_INTERVAL", default=0.2, minimum=0.0
)
BIOMETRICS_FRAME_TIMEOUT = _get_float_env("BIOMETRICS_FRAME_TIMEOUT", default=2.0, minimum=0.0)
BIOMETRICS_DETECT_TIMEOUT = _get_float_env("BIOMETRICS_DETECT_TIMEOUT", default=2.0, minimum=0.0)
BIOMETRICS_EXTRACT_TIMEOUT = _get_float_env("BIOMETRICS_EXTRACT_TIMEOUT", default=5.0, minimum=0.0)
BIOMETRICS_REFERENCE_TIMEOUT = _get_float_env(
    "BIOMETRICS_REFERENCE_TIMEOUT", default=2.0, minimum=0.0
)
BIOMETRICS_LIVENESS_WINDOW = _parse_int_env("BIOMETRICS_LIVENESS_WINDOW", 5, minimum=2)
BIOMETRICS_LIVENESS_MIN_FRAMES = _parse_int_env("BIOMETRICS_LIVENESS_MIN_FRAMES", 2, minimum=1)
BIOMETRICS_MULTI_FACE_MIN_SIZE = _parse_int_env("BIOMETRICS_MULTI_FACE_MIN_SIZE", 40, minimum=0)
BIOMETRICS_AUTO_CAPTURE_INTERVAL = _get_float_env(
    "BIOMETRICS_AUTO_CAPTURE_INTERVAL", default=0.5, minimum=0.0
)
BIOMETRICS_AUTO_CAPTURE_REQUIRED_DETECTIONS = _parse_int_env(
    "BIOMETRICS_AUTO_CAPTURE_REQUIRED_DETECTIONS", 2, minimum=1
)

BIOMETRICS_CAMERA_SOURCE = _parse_int_env("BIOMETRICS_CAMERA_SOURCE", 0, minimum=0)
BIOMETRICS_CAMERA_WARMUP = _get_float_env("BIOMETRICS_CAMERA_WARMUP", default=2.0, minimum=0.0)

BIOMETRICS_CAMERA_START_ALERT_SECONDS = _get_float_env(
    "BIOMETRICS_CAMERA_START_ALERT_SECONDS", default=3.0, minimum=0.0
)
BIOMETRICS_EXTRACTION_ALERT_SECONDS = _get_float_env(
    "BIOMETRICS_EXTRACTION_ALERT_SECONDS", default=1.5, minimum=0.0
)
BIOMETRICS_VERIFICATION_ALERT_SECONDS = _get_float_env(
    "BIOMETRICS_VERIFICATION_ALERT_SECONDS", default=5.0, minimum=0.0
)
BIOMETRICS_HEALTH_ALERT_HISTORY = _parse_int_env(
    "BIOMETRICS_HEALTH_ALERT_HISTORY", 50, minimum=1
)
