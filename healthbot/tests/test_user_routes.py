"""Tests for the staff-only user and session endpoints."""

from __future__ import annotations

import pytest

API = "/chatbot/v1"


@pytest.fixture()
def admin(make_user):
    return make_user(name="Admin", mobile="+15559990000", email="admin@example.org", role="admin")


def test_user_list_requires_token(client):
    response = client.get(f"{API}/users")
    assert response.status_code == 401
    assert response.json() == {"statusMessage": "UnAuthorized", "userId": 0, "IsSuccess": False, "statusCode": 401}


def test_user_list_forbidden_for_plain_users(client, make_user, bearer):
    user = make_user()
    response = client.get(f"{API}/users", headers=bearer(user))
    assert response.status_code == 403
    payload = response.json()
    assert payload["success"] is False
    assert payload["error_code"] == "FORBIDDEN"
    assert payload["message"] == "Insufficient privileges"


def test_missing_principal_answers_with_envelope(client, monkeypatch):
    from healthbot import config

    monkeypatch.setattr(config, "AUTH_EXEMPT_PATHS", frozenset({f"{API}/users"}))

    response = client.get(f"{API}/users")

    assert response.status_code == 401
    payload = response.json()
    assert payload["success"] is False
    assert payload["error_code"] == "AUTHENTICATION_REQUIRED"


def test_unknown_route_answers_with_envelope(client):
    response = client.get(f"{API}/nowhere")

    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_user_list_is_paginated_and_masked(client, admin, make_user, bearer):
    for index in range(3):
        make_user(name=f"User {index}", mobile=f"+1555000000{index}", email=f"u{index}@example.org")

    response = client.get(f"{API}/users", params={"page": 2, "page_size": 2}, headers=bearer(admin))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 4
    assert data["page"] == 2
    assert [item["name"] for item in data["items"]] == ["User 1", "User 2"]
    assert all("****" in item["mobile"] for item in data["items"])


@pytest.mark.parametrize("params", [{"page": 0}, {"page_size": 0}, {"page_size": 101}])
def test_user_list_rejects_bad_paging(client, admin, bearer, params):
    assert client.get(f"{API}/users", params=params, headers=bearer(admin)).status_code == 422


def test_get_user_by_id(client, admin, make_user, bearer):
    user = make_user(is_premium=True)

    response = client.get(f"{API}/users/{user.id}", headers=bearer(admin))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == user.id
    assert data["is_premium"] is True
    assert data["mobile"] == "+1****34"


def test_get_missing_user(client, admin, bearer):
    response = client.get(f"{API}/users/9999", headers=bearer(admin))
    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_get_user_with_invalid_id(client, admin, bearer):
    response = client.get(f"{API}/users/0", headers=bearer(admin))
    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_ID"


def test_active_sessions_include_recent_callers(client, make_user, bearer):
    supervisor = make_user(name="Sup", mobile="+15558880000", email="sup@example.org", role="supervisor")
    headers = bearer(supervisor)
    client.get(f"{API}/users", headers=headers)

    response = client.get(f"{API}/sessions/active", headers=headers)

    assert response.status_code == 200
    sessions = response.json()["data"]
    assert [session["session_key"] for session in sessions] == [f"user-{supervisor.id}"]
    assert sessions[0]["user_id"] == supervisor.id
