"""Database readiness probe backing ``GET /health``."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .db import engine

DATABASE_PROBE_ATTEMPTS = 3
DATABASE_PROBE_DELAY_SECONDS = 0.5


@dataclass
class HealthResult:
    service: str
    status: str
    attempts: int
    elapsed_seconds: float
    detail: Optional[str] = None
    dialect: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "service": self.service,
            "status": self.status,
            "attempts": self.attempts,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
        }
        if self.dialect:
            payload["dialect"] = self.dialect
        if self.detail:
            payload["detail"] = self.detail
        return payload


def check_database_health(
    *,
    target: Optional[Engine] = None,
    attempts: int = DATABASE_PROBE_ATTEMPTS,
    delay_seconds: float = DATABASE_PROBE_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> HealthResult:
    """Run ``SELECT 1``, retrying a few times before reporting the database as down."""
    bound = target if target is not None else engine
    started = time.perf_counter()
    last_error = "Unhealthy"

    for attempt in range(1, max(1, attempts) + 1):
        try:
            with bound.connect() as connection:
                connection.execute(text("SELECT 1")).scalar_one()
        except SQLAlchemyError as exc:
            last_error = str(getattr(exc, "orig", None) or exc)
            if attempt < attempts:
                sleep(delay_seconds)
            continue
        return HealthResult(
            service="database",
            status="ok",
            attempts=attempt,
            elapsed_seconds=time.perf_counter() - started,
            dialect=bound.dialect.name,
        )

    return HealthResult(
        service="database",
        status="error",
        attempts=max(1, attempts),
        elapsed_seconds=time.perf_counter() - started,
        detail=last_error,
    )
