"""Smoke tests for the production settings module."""

from __future__ import annotations

import importlib
import sys

from django.core.exceptions import ImproperlyConfigured

import pytest

from face_attendance.settings.sentry import scrub_event

SETTINGS_MODULES = (
    "face_attendance.settings.production",
    "face_attendance.settings.sentry",
    "face_attendance.settings.base",
    "face_attendance.settings",
)


@pytest.fixture
def production_env(monkeypatch):
    for module in SETTINGS_MODULES:
        monkeypatch.delitem(sys.modules, module, raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    monkeypatch.setenv("DJANGO_SECRET_KEY", "production-secret-key-for-tests")
    monkeypatch.setenv("DJANGO_ALLOWED_HOSTS", "attendance.example.com")
    monkeypatch.setenv("DJANGO_CACHE_URL", "redis://cache:6379/1")
    monkeypatch.setenv("DB_NAME", "ci_db")
    monkeypatch.setenv("DB_USER", "ci_user")
    monkeypatch.setenv("DB_PASSWORD", "ci_password")
    monkeypatch.setenv("DB_HOST", "postgres")
    monkeypatch.setenv("DB_PORT", "6543")
    monkeypatch.setenv("DB_CONN_MAX_AGE", "120")
    return monkeypatch


def _load_production_settings():
    return importlib.import_module("face_attendance.settings.production")


def test_production_database_configuration(production_env):
    settings = _load_production_settings()

    database = settings.DATABASES["default"]
    assert database["ENGINE"] == "django.db.backends.postgresql"
    assert database["NAME"] == "ci_db"
    assert database["USER"] == "ci_user"
    assert database["HOST"] == "postgres"
    assert database["PORT"] == "6543"
    assert database["CONN_MAX_AGE"] == 120
    assert database["OPTIONS"]["sslmode"] == "require"


def test_production_hardens_hosts_and_cookies(production_env):
    settings = _load_production_settings()

    assert settings.DEBUG is False
    assert settings.ALLOWED_HOSTS == ["attendance.example.com"]
    assert settings.SESSION_COOKIE_SECURE is True
    assert settings.CSRF_COOKIE_SECURE is True
    assert settings.SECURE_HSTS_SECONDS == 3600
    assert settings.CACHES["default"]["BACKEND"].endswith("RedisCache")


def test_production_requires_a_shared_cache(production_env):
    production_env.delenv("DJANGO_CACHE_URL")

    with pytest.raises(ImproperlyConfigured, match="DJANGO_CACHE_URL"):
        _load_production_settings()


def test_sentry_events_drop_face_samples_and_credentials():
    event = {
        "request": {
            "headers": {"Authorization": "Bearer abc", "Accept": "application/json"},
            "data": {"image": "iVBORw0KGgo=", "type": "check-in", "password": "hunter2"},
        },
        "user": {"id": 7},
    }

    scrubbed = scrub_event(event, send_default_pii=False)

    assert scrubbed["request"]["headers"] == {"Authorization": "[Filtered]", "Accept": "application/json"}
    assert scrubbed["request"]["data"] == {
        "image": "[Filtered]",
        "type": "check-in",
        "password": "[Filtered]",
    }
    assert "user" not in scrubbed
