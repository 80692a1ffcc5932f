"""Regression coverage for face data encryption key handling."""

from __future__ import annotations

import importlib
import sys

from django.core.exceptions import ImproperlyConfigured

import pytest
from cryptography.fernet import Fernet


@pytest.fixture(autouse=True)
def _reset_environment(monkeypatch, tmp_path):
    """Ensure encryption-specific environment variables do not leak between tests."""

    for module in ("face_attendance.settings.base", "face_attendance.settings"):
        monkeypatch.delitem(sys.modules, module, raising=False)
    monkeypatch.delenv("FACE_DATA_ENCRYPTION_KEY", raising=False)
    monkeypatch.setenv("DJANGO_DEBUG", "1")
    monkeypatch.setenv("DEV_ENCRYPTION_KEY_FILE", str(tmp_path / "dev_keys.json"))
    monkeypatch.setenv("LOCAL_ENV_PATH", str(tmp_path / ".env"))


def _load_base_settings():
    return importlib.import_module("face_attendance.settings.base")


def test_dotenv_values_are_respected(tmp_path):
    face_key = Fernet.generate_key()
    (tmp_path / ".env").write_text(f"# local overrides\nFACE_DATA_ENCRYPTION_KEY='{face_key.decode()}'\n")

    settings_base = _load_base_settings()

    assert settings_base.FACE_DATA_ENCRYPTION_KEY == face_key
    assert not (tmp_path / "dev_keys.json").exists()


def test_environment_key_wins_over_dotenv(tmp_path, monkeypatch):
    env_key = Fernet.generate_key()
    (tmp_path / ".env").write_text(f"FACE_DATA_ENCRYPTION_KEY={Fernet.generate_key().decode()}\n")
    monkeypatch.setenv("FACE_DATA_ENCRYPTION_KEY", env_key.decode())

    assert _load_base_settings().FACE_DATA_ENCRYPTION_KEY == env_key


def test_invalid_key_is_rejected(monkeypatch):
    monkeypatch.setenv("FACE_DATA_ENCRYPTION_KEY", "not-a-fernet-key")

    with pytest.raises(ImproperlyConfigured, match="FACE_DATA_ENCRYPTION_KEY"):
        _load_base_settings()


def test_generated_test_key_encrypts_embeddings():
    key = _load_base_settings().FACE_DATA_ENCRYPTION_KEY

    token = Fernet(key).encrypt(b"embedding-bytes")

    assert Fernet(key).decrypt(token) == b"embedding-bytes"
