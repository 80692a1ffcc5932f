"""
Django settings for the face-verified attendance service.

This file contains the configuration for the Django project, including database settings,
installed applications, middleware, and the face verification, attendance and lockout
parameters. Sensitive values are read from environment variables.
"""

import datetime
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

# Define the project's base directory.
# `BASE_DIR` points to the repository root.
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


def _get_bool_env_with_aliases(
    var_name: str,
    *aliases: str,
    default: bool,
) -> bool:
    """Return a boolean from a canonical environment variable or its aliases."""

    for candidate in (var_name, *aliases):
        raw_value = os.environ.get(candidate)
        if raw_value is not None:
            return raw_value.lower() in {"1", "true", "yes", "on"}
    return default


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


def _get_time_env(var_name: str, default: str) -> datetime.time:
    """Return a wall-clock time parsed from an ``HH:MM`` environment variable."""

    raw_value = os.environ.get(var_name, default).strip()
    try:
        return datetime.datetime.strptime(raw_value, "%H:%M").time()
    except ValueError as exc:
        raise ImproperlyConfigured(f"{var_name} must use the HH:MM format.") from exc


# Detect if we're running tests
TESTING = "test" in sys.argv or (len(sys.argv) > 0 and "pytest" in sys.argv[0])

DEFAULT_SECRET_KEY = "a-secure-default-key-for-development-only"

# DEBUG must never be enabled in production. Tests run with DEBUG off but keep
# the relaxed development defaults for hosts, cookies and keys.
DEBUG = _get_bool_env("DJANGO_DEBUG", default=False)
RELAXED_DEFAULTS = DEBUG or TESTING

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", DEFAULT_SECRET_KEY)
if SECRET_KEY == DEFAULT_SECRET_KEY and not RELAXED_DEFAULTS:
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
            if key.strip() != var_name:
                continue
            return value.strip().strip('"').strip("'")
    except OSError as exc:  # pragma: no cover - defensive programming
        warnings.warn(f"Unable to read {LOCAL_ENV_PATH}: {exc}")

    return None


def _load_cached_dev_key(var_name: str) -> bytes | None:
    """Load a previously generated development key from disk."""

    if not DEV_KEY_CACHE_PATH.exists():
        return None

    try:
        cache = json.loads(DEV_KEY_CACHE_PATH.read_text())
    except (OSError, json.JSONDecodeError) as exc:  # pragma: no cover - defensive programming
        warnings.warn(f"Ignoring invalid dev key cache file: {exc}")
        return None

    cached_value = cache.get(var_name)
    if not cached_value:
        return None

    try:
        return _validate_fernet_key(cached_value, var_name)
    except ImproperlyConfigured:
        warnings.warn(f"Ignoring invalid cached {var_name}; regenerating.")
        return None


def _persist_dev_key(var_name: str, key: bytes) -> None:
    """Persist generated development keys so encrypted embeddings survive restarts."""

    try:
        existing = (
            json.loads(DEV_KEY_CACHE_PATH.read_text()) if DEV_KEY_CACHE_PATH.exists() else {}
        )
    except (OSError, json.JSONDecodeError):  # pragma: no cover - defensive programming
        existing = {}

    existing[var_name] = key.decode()

    try:
        DEV_KEY_CACHE_PATH.write_text(json.dumps(existing, indent=2))
    except OSError as exc:  # pragma: no cover - defensive programming
        warnings.warn(f"Unable to persist dev encryption key cache: {exc}")


def _load_face_data_encryption_key() -> bytes:
    """Load the Fernet key used to encrypt enrolled face embeddings."""

    key = os.environ.get("FACE_DATA_ENCRYPTION_KEY")
    if not key and RELAXED_DEFAULTS:
        key = _read_local_env_value("FACE_DATA_ENCRYPTION_KEY")
    if key:
        return _validate_fernet_key(key, "FACE_DATA_ENCRYPTION_KEY")

    if TESTING:
        return Fernet.generate_key()

    if DEBUG:
        cached_key = _load_cached_dev_key("FACE_DATA_ENCRYPTION_KEY")
        if cached_key:
            return cached_key
        generated = Fernet.generate_key()
        _persist_dev_key("FACE_DATA_ENCRYPTION_KEY", generated)
        return generated

    raise ImproperlyConfigured(
        "FACE_DATA_ENCRYPTION_KEY environment variable must be set in production environments."
    )


FACE_DATA_ENCRYPTION_KEY = _load_face_data_encryption_key()


# --- Celery ---

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_TASK_ALWAYS_EAGER = _get_bool_env("CELERY_TASK_ALWAYS_EAGER", default=TESTING)
CELERY_TASK_EAGER_PROPAGATES = False
CELERY_TASK_ROUTES = {
    "recognition.tasks.relay_attendance_notification": {"queue": "notifications"},
}

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
    global SECURE_HSTS_INCLUDE_SUBDOMAINS
    global SESSION_COOKIE_SECURE
    global CSRF_COOKIE_SECURE

    ALLOWED_HOSTS = _resolve_allowed_hosts(
        default_allowed_hosts=default_allowed_hosts,
        require_explicit_hosts=require_allowed_hosts,
    )

    SECURE_SSL_REDIRECT = _get_bool_env_with_aliases(
        "DJANGO_SECURE_SSL_REDIRECT",
        "SECURE_SSL_REDIRECT",
        default=secure_defaults,
    )
    SECURE_HSTS_SECONDS = _parse_int_env(
        "DJANGO_SECURE_HSTS_SECONDS",
        3600 if secure_defaults else 0,
        minimum=0,
    )
    SECURE_HSTS_INCLUDE_SUBDOMAINS = _get_bool_env_with_aliases(
        "DJANGO_SECURE_HSTS_INCLUDE_SUBDOMAINS",
        "SECURE_HSTS_INCLUDE_SUBDOMAINS",
        default=secure_defaults,
    )
    SESSION_COOKIE_SECURE = _get_bool_env_with_aliases(
        "DJANGO_SESSION_COOKIE_SECURE",
        "SESSION_COOKIE_SECURE",
        default=secure_defaults,
    )
    CSRF_COOKIE_SECURE = _get_bool_env_with_aliases(
        "DJANGO_CSRF_COOKIE_SECURE",
        "CSRF_COOKIE_SECURE",
        default=secure_defaults,
    )

    require_database_ssl = _get_bool_env_with_aliases(
        "DATABASE_SSL_REQUIRE",
        "DB_SSL_REQUIRE",
        default=secure_defaults,
    )
    db_options = DATABASES["default"].setdefault("OPTIONS", {})
    if require_database_ssl:
        db_options["sslmode"] = os.environ.get("DATABASE_SSLMODE", "require")
    else:
        db_options.pop("sslmode", None)


# --- Application Configuration ---

INSTALLED_APPS = [
    # Custom applications for this project
    "users.apps.UsersConfig",
    "recognition.apps.RecognitionConfig",
    # Third-party packages
    "django_ratelimit",
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

ROOT_URLCONF = "face_attendance.urls"

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

WSGI_APPLICATION = "face_attendance.wsgi.application"


# --- Database Configuration ---

default_db_url = os.environ.get("DATABASE_URL", f"sqlite:///{(BASE_DIR / 'db.sqlite3').as_posix()}")

DATABASES = {
    "default": dj_database_url.parse(
        default_db_url,
        conn_max_age=_parse_int_env("DATABASE_CONN_MAX_AGE", 0, minimum=0),
    ),
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
    secure_defaults=not RELAXED_DEFAULTS,
    default_allowed_hosts=LOCALHOST_ALIASES,
    require_allowed_hosts=not RELAXED_DEFAULTS,
)


# --- Cache Configuration ---
# Lockout counters and django-ratelimit buckets live in the default cache.
# LocMemCache is per-process; multi-instance deployments must point
# DJANGO_CACHE_URL at Redis so every worker sees the same counters.
_cache_url = os.environ.get("DJANGO_CACHE_URL")
if _cache_url:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.redis.RedisCache",
            "LOCATION": _cache_url,
        }
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "face-attendance",
        }
    }


# --- Password Validation ---

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]


# --- Internationalization ---
# Attendance days are local calendar days in TIME_ZONE.

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "Asia/Kolkata")
USE_I18N = True
USE_TZ = True


# --- Static Files ---

STATIC_URL = "/static/"
STATIC_ROOT = Path(os.environ.get("DJANGO_STATIC_ROOT", BASE_DIR / "staticfiles"))

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# --- REST API ---

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "EXCEPTION_HANDLER": "recognition.api.exceptions.attendance_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": datetime.timedelta(
        minutes=_parse_int_env("JWT_ACCESS_TOKEN_MINUTES", 60, minimum=1)
    ),
    "REFRESH_TOKEN_LIFETIME": datetime.timedelta(
        days=_parse_int_env("JWT_REFRESH_TOKEN_DAYS", 7, minimum=1)
    ),
    "UPDATE_LAST_LOGIN": True,
}


# --- Logging ---

LOG_LEVEL = os.environ.get("DJANGO_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "recognition": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "users": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}


# --- System Check Silencing ---
# LocMemCache works for single-process deployments and CI/testing.
SILENCED_SYSTEM_CHECKS = [
    "django_ratelimit.E003",  # LocMemCache not a shared cache
    "django_ratelimit.W001",  # LocMemCache not officially supported
]


# --- Face verification ---

# Minimum ``1 - distance`` confidence for a probe to match an enrolled embedding.
FACE_VERIFICATION_THRESHOLD = _get_float_env(
    "FACE_VERIFICATION_THRESHOLD",
    default=0.6,
    minimum=0.0,
    maximum=1.0,
)

FACE_ENROLLMENT_MIN_SAMPLES = _parse_int_env("FACE_ENROLLMENT_MIN_SAMPLES", 3, minimum=1)
FACE_ENROLLMENT_MIN_FACE_AREA = _get_float_env(
    "FACE_ENROLLMENT_MIN_FACE_AREA",
    default=10000.0,
    minimum=0.0,
)
FACE_ENROLLMENT_MIN_EYE_DISTANCE = _get_float_env(
    "FACE_ENROLLMENT_MIN_EYE_DISTANCE",
    default=50.0,
    minimum=0.0,
)

FACE_EXTRACTOR_CLASS = os.environ.get(
    "FACE_EXTRACTOR_CLASS", "recognition.extractor.DeepFaceExtractor"
)
FACE_EXTRACTOR_TIMEOUT_SECONDS = _get_float_env(
    "FACE_EXTRACTOR_TIMEOUT_SECONDS",
    default=10.0,
    minimum=0.1,
)
FACE_EXTRACTOR_WORKERS = _parse_int_env("FACE_EXTRACTOR_WORKERS", 2, minimum=1)

# Maximum accepted size of a decoded face image upload.
FACE_IMAGE_MAX_BYTES = _parse_int_env("FACE_IMAGE_MAX_BYTES", 5 * 1024 * 1024, minimum=1024)


def _build_deepface_optimizations() -> dict[str, object]:
    """Return DeepFace tuning parameters with environment overrides."""

    defaults: dict[str, object] = {
        "model": "Facenet",
        "detector_backend": "ssd",
        "align": True,
    }

    model = os.environ.get("RECOGNITION_DEEPFACE_MODEL")
    if model:
        defaults["model"] = model

    detector_backend = os.environ.get("RECOGNITION_DEEPFACE_DETECTOR")
    if detector_backend:
        defaults["detector_backend"] = detector_backend

    defaults["align"] = _get_bool_env("RECOGNITION_DEEPFACE_ALIGN", default=True)
    return defaults


DEEPFACE_OPTIMIZATIONS = _build_deepface_optimizations()


# --- Liveness ---

LIVENESS_THRESHOLD = _get_float_env("LIVENESS_THRESHOLD", default=0.3, minimum=0.0, maximum=1.0)
LIVENESS_NOISE_FLOOR = _get_float_env(
    "LIVENESS_NOISE_FLOOR",
    default=0.1,
    minimum=0.0,
    maximum=1.0,
)
ATTENDANCE_REQUIRE_LIVENESS = _get_bool_env("ATTENDANCE_REQUIRE_LIVENESS", default=False)


# --- Attendance policy ---

ATTENDANCE_WORK_START_TIME = _get_time_env("ATTENDANCE_WORK_START_TIME", "09:00")
ATTENDANCE_WORK_END_TIME = _get_time_env("ATTENDANCE_WORK_END_TIME", "17:00")
if ATTENDANCE_WORK_END_TIME <= ATTENDANCE_WORK_START_TIME:
    raise ImproperlyConfigured("ATTENDANCE_WORK_END_TIME must be later than the start time.")

ATTENDANCE_HISTORY_LIMIT = _parse_int_env("ATTENDANCE_HISTORY_LIMIT", 100, minimum=1)

# Dotted path to a callable receiving the committed-attendance payload.
ATTENDANCE_NOTIFICATION_HANDLER = os.environ.get("ATTENDANCE_NOTIFICATION_HANDLER", "")

# Rate limiting for the attendance marking endpoint (django-ratelimit).
RATELIMIT_USE_CACHE = "default"
DEFAULT_ATTENDANCE_RATE_LIMIT = "5/m"
RECOGNITION_ATTENDANCE_RATE_LIMIT = os.environ.get(
    "RECOGNITION_ATTENDANCE_RATE_LIMIT", DEFAULT_ATTENDANCE_RATE_LIMIT
)


# --- Login lockout ---

LOGIN_LOCKOUT_THRESHOLD = _parse_int_env("LOGIN_LOCKOUT_THRESHOLD", 5, minimum=1)
LOGIN_LOCKOUT_DURATION_SECONDS = _parse_int_env(
    "LOGIN_LOCKOUT_DURATION_SECONDS",
    2 * 60 * 60,
    minimum=1,
)
LOGIN_IP_RATE_LIMIT_ATTEMPTS = _parse_int_env("LOGIN_IP_RATE_LIMIT_ATTEMPTS", 5, minimum=1)
LOGIN_IP_RATE_LIMIT_WINDOW_SECONDS = _parse_int_env(
    "LOGIN_IP_RATE_LIMIT_WINDOW_SECONDS",
    15 * 60,
    minimum=1,
)
LOGIN_LOCKOUT_STORE = os.environ.get("LOGIN_LOCKOUT_STORE", "users.lockout.CacheLockoutStore")
