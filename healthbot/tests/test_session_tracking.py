"""Tests for per-request activity tracking."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from healthbot.auth.config import JWT_ALGORITHM
from healthbot.auth.crypto import fingerprint_client
from healthbot.auth.tokens import TokenCodec
from healthbot.auth.tracking import SessionTrackingMiddleware, build_session_key, user_id_from_claims


class _RecordingStore:
    def __init__(self):
        self.calls = []

    def update_session(self, user_id, session_key, ip_address, user_agent):
        self.calls.append((user_id, session_key, ip_address, user_agent))


class _FailingStore:
    def update_session(self, *args):
        raise RuntimeError("database unavailable")


class _HangingStore:
    def __init__(self):
        self.release = threading.Event()

    def update_session(self, *args):
        self.release.wait(5)


def _tracked_app(codec, store, timeout_seconds: float = 2.0) -> FastAPI:
    app = FastAPI()
    app.add_middleware(
        SessionTrackingMiddleware,
        codec_provider=lambda: codec,
        store_provider=lambda: store,
        timeout_seconds=timeout_seconds,
    )

    @app.get("/ping")
    def ping():
        return {"pong": True}

    return app


@pytest.mark.parametrize(
    "claims, expected",
    [
        ({"UserId": "12", "sub": "99"}, 12),
        ({"nameid": 5}, 5),
        ({"sub": "7"}, 7),
        ({"sub": "abc"}, None),
        ({"UserId": "", "sub": "3"}, 3),
        ({}, None),
    ],
)
def test_user_id_from_claims(claims, expected):
    assert user_id_from_claims(claims) == expected


def test_session_keys_for_known_and_anonymous_callers():
    assert build_session_key(7, "10.0.0.1", "curl") == "user-7"
    anonymous = build_session_key(None, "10.0.0.1", "curl")
    assert anonymous == f"anon-{fingerprint_client('10.0.0.1', 'curl')}"
    assert anonymous == build_session_key(None, "10.0.0.1", "curl")
    assert anonymous != build_session_key(None, "10.0.0.2", "curl")


def test_authenticated_request_records_user_session(codec, make_user):
    user = make_user()
    store = _RecordingStore()
    client = TestClient(_tracked_app(codec, store))

    response = client.get(
        "/ping",
        headers={"Authorization": f"Bearer {codec.generate_access_token(user)}", "User-Agent": "pytest-agent"},
    )

    assert response.status_code == 200
    assert store.calls == [(user.id, f"user-{user.id}", "testclient", "pytest-agent")]


def test_token_without_user_id_records_anonymous_session(codec, jwt_settings):
    store = _RecordingStore()
    client = TestClient(_tracked_app(codec, store))
    token = jwt.encode({"exp": 4102444800, "name": "guest"}, jwt_settings.key, algorithm=JWT_ALGORITHM)

    client.get("/ping", headers={"Authorization": f"Bearer {token}", "User-Agent": "kiosk"})

    assert len(store.calls) == 1
    user_id, session_key, _, _ = store.calls[0]
    assert user_id is None
    assert session_key == f"anon-{fingerprint_client('testclient', 'kiosk')}"


@pytest.mark.parametrize("authorization", [None, "Basic dXNlcjpwYXNz", "Bearer not-a-jwt"])
def test_requests_without_readable_bearer_are_not_tracked(codec, authorization):
    store = _RecordingStore()
    client = TestClient(_tracked_app(codec, store))
    headers = {"Authorization": authorization} if authorization else {}

    assert client.get("/ping", headers=headers).status_code == 200
    assert store.calls == []


def test_expired_token_is_not_tracked(codec, jwt_settings, make_user):
    store = _RecordingStore()
    expired = TokenCodec(replace(jwt_settings, expiration_in_minutes=-1)).generate_access_token(make_user())
    client = TestClient(_tracked_app(codec, store))

    client.get("/ping", headers={"Authorization": f"Bearer {expired}"})

    assert store.calls == []


def test_unverified_signature_is_still_tracked(codec, make_user):
    store = _RecordingStore()
    user = make_user()
    header, payload, signature = codec.generate_access_token(user).split(".")
    forged = ".".join([header, payload, ("A" if signature[0] != "A" else "B") + signature[1:]])
    client = TestClient(_tracked_app(codec, store))

    client.get("/ping", headers={"Authorization": f"Bearer {forged}"})

    assert [call[0] for call in store.calls] == [user.id]


def test_store_failure_does_not_fail_request(codec, make_user, caplog):
    client = TestClient(_tracked_app(codec, _FailingStore()))

    with caplog.at_level("WARNING", logger="healthbot.auth.tracking"):
        response = client.get(
            "/ping", headers={"Authorization": f"Bearer {codec.generate_access_token(make_user())}"}
        )

    assert response.status_code == 200
    assert "database unavailable" in caplog.text


def test_slow_store_is_abandoned_after_timeout(codec, make_user, caplog):
    store = _HangingStore()
    client = TestClient(_tracked_app(codec, store, timeout_seconds=0.05))

    try:
        with caplog.at_level("WARNING", logger="healthbot.auth.tracking"):
            response = client.get(
                "/ping", headers={"Authorization": f"Bearer {codec.generate_access_token(make_user())}"}
            )
    finally:
        store.release.set()

    assert response.status_code == 200
    assert "timed out" in caplog.text


def test_repository_upsert_keeps_one_row_per_key(repository, make_user):
    user = make_user()

    repository.update_session(user.id, f"user-{user.id}", "10.0.0.1", "first")
    repository.update_session(user.id, f"user-{user.id}", "10.0.0.2", "second")

    sessions = repository.get_active_sessions(timedelta(minutes=10))
    assert len(sessions) == 1
    assert sessions[0].ip_address == "10.0.0.2"
    assert sessions[0].user_agent == "second"


def test_app_pipeline_tracks_rejected_requests_too(client, repository, jwt_settings):
    token = jwt.encode({"sub": "41", "exp": 4102444800}, "some-other-key", algorithm=JWT_ALGORITHM)

    response = client.get("/chatbot/v1/users", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    keys = [session.session_key for session in repository.get_active_sessions(timedelta(minutes=10))]
    assert keys == ["user-41"]


def test_user_id_claim_keys_the_session(codec, jwt_settings):
    store = _RecordingStore()
    client = TestClient(_tracked_app(codec, store))
    token = jwt.encode({"UserId": "42", "exp": 4102444800}, jwt_settings.key, algorithm=JWT_ALGORITHM)

    client.get("/ping", headers={"Authorization": f"Bearer {token}"})

    assert [call[:2] for call in store.calls] == [(42, "user-42")]
