import pytest
from django.urls import reverse

pytestmark = pytest.mark.django_db

PASSWORD = "s3cret-pass!"


def login(client, username, password, address="203.0.113.10"):
    return client.post(
        reverse("token_obtain_pair"),
        {"username": username, "password": password},
        format="json",
        REMOTE_ADDR=address,
    )


def test_valid_credentials_issue_tokens(api_client, user):
    response = login(api_client, user.username, PASSWORD)

    assert response.status_code == 200
    assert {"access", "refresh"} <= set(response.json())


def test_wrong_password_is_rejected(api_client, user):
    response = login(api_client, user.username, "wrong")

    assert response.status_code == 401
    assert response.json()["error"] == "authentication_failed"


def test_account_locks_after_repeated_failures(api_client, user):
    for attempt in range(5):
        assert login(api_client, user.username, "wrong", f"198.51.100.{attempt}").status_code == 401

    response = login(api_client, user.username, PASSWORD, "198.51.100.99")

    assert response.status_code == 423
    body = response.json()
    assert body["error"] == "account_locked"
    assert body["details"]["retry_after"] == 2 * 60 * 60
    assert response["Retry-After"] == str(2 * 60 * 60)


def test_successful_login_resets_the_failure_count(api_client, user):
    for attempt in range(4):
        login(api_client, user.username, "wrong", f"198.51.100.{attempt}")
    assert login(api_client, user.username, PASSWORD, "198.51.100.50").status_code == 200

    for attempt in range(4):
        login(api_client, user.username, "wrong", f"198.51.100.{attempt + 10}")

    assert login(api_client, user.username, PASSWORD, "198.51.100.60").status_code == 200


def test_address_is_throttled_after_five_attempts(api_client, user):
    for _ in range(5):
        login(api_client, "nobody", "wrong")

    response = login(api_client, user.username, PASSWORD)

    assert response.status_code == 429
    assert response.json()["error"] == "rate_limited"
    assert int(response["Retry-After"]) > 0
    assert login(api_client, user.username, PASSWORD, "203.0.113.11").status_code == 200


def test_unknown_users_do_not_create_lock_state(api_client):
    response = login(api_client, "ghost", "wrong")

    assert response.status_code == 401
