"""Tests for backend health probing utilities and endpoints."""

from __future__ import annotations

from sqlalchemy.exc import OperationalError

from healthbot.health import HealthResult, check_database_health


class _UnreachableEngine:
    class dialect:
        name = "postgresql"

    def __init__(self):
        self.calls = 0

    def connect(self):
        self.calls += 1
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def test_database_check_runs_against_engine(db_engine):
    result = check_database_health(target=db_engine)

    assert result.ok
    assert result.attempts == 1
    assert result.to_dict()["dialect"] == "sqlite"


def test_database_check_retries_then_reports_error():
    down = _UnreachableEngine()
    naps = []

    result = check_database_health(target=down, attempts=3, delay_seconds=0.25, sleep=naps.append)

    assert result.status == "error"
    assert result.detail == "connection refused"
    assert result.attempts == 3
    assert down.calls == 3
    assert naps == [0.25, 0.25]


def test_health_endpoint_is_public(monkeypatch, client):
    fake_result = HealthResult(service="database", status="ok", attempts=1, elapsed_seconds=0.01)
    monkeypatch.setattr("healthbot.routes.check_database_health", lambda: fake_result)

    response = client.get("/chatbot/v1/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["data"]["service"] == "database"


def test_health_endpoint_reports_unavailable_database(monkeypatch, client):
    fake_result = HealthResult(
        service="database", status="error", attempts=5, elapsed_seconds=4.0, detail="connection refused"
    )
    monkeypatch.setattr("healthbot.routes.check_database_health", lambda: fake_result)

    response = client.get("/chatbot/v1/health")

    assert response.status_code == 503
    payload = response.json()
    assert payload["success"] is False
    assert payload["error_code"] == "SERVICE_UNAVAILABLE"
    assert payload["data"]["detail"] == "connection refused"
