"""Production settings overriding the defaults with hardened options."""

from __future__ import annotations

from django.core.exceptions import ImproperlyConfigured

from . import base as _base
from .base import *  # noqa: F401,F403
from .base import CACHES, DATABASES, build_postgres_database_config, configure_environment
from .sentry import initialize_sentry

DEBUG = False


if DATABASES["default"].get("ENGINE") == "django.db.backends.sqlite3":
    DATABASES["default"] = build_postgres_database_config()

if DATABASES["default"].get("ENGINE") == "django.db.backends.sqlite3":
    raise ImproperlyConfigured(
        "Production deployments must configure a PostgreSQL database via DATABASE_URL or DB_* environment variables."
    )

# Lockout counters must be shared across workers.
if CACHES["default"]["BACKEND"].endswith("LocMemCache"):
    raise ImproperlyConfigured(
        "Production deployments must set DJANGO_CACHE_URL so lockout state is shared."
    )


configure_environment(
    secure_defaults=True,
    default_allowed_hosts=(),
    require_allowed_hosts=True,
)

# configure_environment rebinds these on the base module.
ALLOWED_HOSTS = _base.ALLOWED_HOSTS
SECURE_SSL_REDIRECT = _base.SECURE_SSL_REDIRECT
SECURE_HSTS_SECONDS = _base.SECURE_HSTS_SECONDS
SECURE_HSTS_INCLUDE_SUBDOMAINS = _base.SECURE_HSTS_INCLUDE_SUBDOMAINS
SESSION_COOKIE_SECURE = _base.SESSION_COOKIE_SECURE
CSRF_COOKIE_SECURE = _base.CSRF_COOKIE_SECURE


initialize_sentry()
