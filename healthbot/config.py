"""Configuration helpers for the Healthbot API backend."""

from __future__ import annotations

import os
from typing import List

from dotenv import load_dotenv

# Load environment variables from a .env file if present.
load_dotenv()


def _split_csv(value: str) -> List[str]:
    """Convert a comma-separated string into a clean list.

    Args:
        value (str): One or many entries separated by commas.
    Returns:
        List[str]: Normalized values with whitespace removed.
    """
    return [item.strip() for item in value.split(",") if item.strip()]


def _bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


DEFAULT_ALLOWED_ORIGINS = "http://localhost:4200"
DEFAULT_EXEMPT_PATHS = "/docs,/redoc,/openapi.json,/docs/oauth2-redirect"

API_HOST = os.getenv("HEALTHBOT_API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("HEALTHBOT_API_PORT", "8080"))
API_ALLOWED_ORIGINS = _split_csv(os.getenv("HEALTHBOT_API_ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS))
API_PREFIX = "/chatbot/v1"

# Paths the authorization gate never inspects (interactive docs and schema).
AUTH_EXEMPT_PATHS = frozenset(_split_csv(os.getenv("AUTH_EXEMPT_PATHS", DEFAULT_EXEMPT_PATHS)))
AUTH_SILENT_REFRESH = _bool_env("AUTH_SILENT_REFRESH", default=False)

MOBILE_OTP_VERIFICATION_MINUTES = int(os.getenv("MOBILE_OTP_VERIFICATION_MINUTES", "10"))
MOBILE_OTP_MAX_ATTEMPTS = int(os.getenv("MOBILE_OTP_MAX_ATTEMPTS", "5"))
SESSION_TRACKING_TIMEOUT_SECONDS = float(os.getenv("SESSION_TRACKING_TIMEOUT_SECONDS", "2.0"))
ACTIVE_SESSION_WINDOW_MINUTES = int(os.getenv("ACTIVE_SESSION_WINDOW_MINUTES", "10"))

FIELD_ENCRYPTION_KEY = os.getenv("FIELD_ENCRYPTION_KEY", "")
