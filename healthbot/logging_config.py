"""Logging configuration helpers for the Healthbot API."""

from __future__ import annotations

import logging
import os
import re
from logging.config import dictConfig

# Compact JWS serialisations and bearer credentials.
_JWT_PATTERN = re.compile(r"\beyJ[\w-]+\.[\w-]+\.[\w-]*")
_BEARER_PATTERN = re.compile(r"(?i)\bbearer\s+[\w.~+/=-]+")
REDACTED = "[redacted]"


def redact_secrets(text: str) -> str:
    text = _BEARER_PATTERN.sub(f"Bearer {REDACTED}", text)
    return _JWT_PATTERN.sub(REDACTED, text)


class RedactSecretsFilter(logging.Filter):
    """Mask access tokens that end up in log messages or exception text."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact_secrets(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def configure_logging() -> None:
    """Route application, uvicorn and SQLAlchemy logs through one console handler."""
    log_level = os.getenv("HEALTHBOT_LOG_LEVEL", "INFO").upper()
    access_level = os.getenv("UVICORN_ACCESS_LOG_LEVEL", "INFO").upper()
    sql_level = os.getenv("HEALTHBOT_SQL_LOG_LEVEL", "WARNING").upper()

    def _uvicorn_logger(level: str) -> dict:
        return {"handlers": ["console"], "level": level, "propagate": False}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"redact": {"()": RedactSecretsFilter}},
            "formatters": {
                "standard": {
                    "format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "filters": ["redact"],
                    "level": log_level,
                },
            },
            "root": {"handlers": ["console"], "level": log_level},
            "loggers": {
                "uvicorn": _uvicorn_logger(log_level),
                "uvicorn.error": _uvicorn_logger(log_level),
                "uvicorn.access": _uvicorn_logger(access_level),
                "sqlalchemy.engine": {"level": sql_level},
            },
        }
    )

    logging.getLogger(__name__).debug("Logging configured at %s level (SQL at %s)", log_level, sql_level)
