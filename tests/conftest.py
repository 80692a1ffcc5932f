"""Shared fixtures: a scripted face extractor, a frozen clock and enrolled users."""

from django.core.cache import cache

import pytest
from rest_framework.test import APIClient

from recognition import extractor as extractor_module

from .support import FakeExtractor, FrozenClock, enroll, local_datetime, reference_vector


@pytest.fixture(autouse=True)
def clear_cache():
    """Rate limit buckets and lockout state live in the default cache."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def fake_extractor(monkeypatch):
    """Replace the process-wide extractor so no model is ever loaded."""
    fake = FakeExtractor()
    monkeypatch.setattr(extractor_module, "_extractor", fake)
    return fake


@pytest.fixture
def clock():
    return FrozenClock(local_datetime(2024, 3, 4, 8, 55))


@pytest.fixture
def user(django_user_model):
    return django_user_model.objects.create_user(username="alice", password="s3cret-pass!")


@pytest.fixture
def other_user(django_user_model):
    return django_user_model.objects.create_user(username="victor", password="s3cret-pass!")


@pytest.fixture
def staff_user(django_user_model):
    return django_user_model.objects.create_user(
        username="manager", password="s3cret-pass!", is_staff=True
    )


@pytest.fixture
def enrolled_user(user):
    enroll(user, reference_vector(0), reference_vector(0) * 0.98)
    return user


@pytest.fixture
def api_client():
    return APIClient()
