"""Configuration helpers for the authentication subsystem."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

DEFAULT_ACCESS_TTL_MINUTES = 60
DEFAULT_REFRESH_TTL_DAYS = 7
JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class JwtSettings:
    """Signing material and lifetimes for access and refresh tokens."""

    key: str
    issuer: str
    audience: str
    expiration_in_minutes: int = DEFAULT_ACCESS_TTL_MINUTES
    refresh_token_expiration_in_days: int = DEFAULT_REFRESH_TTL_DAYS

    @classmethod
    def from_env(cls) -> "JwtSettings":
        return cls(
            key=os.getenv("JWT_KEY", ""),
            issuer=os.getenv("JWT_ISSUER", ""),
            audience=os.getenv("JWT_AUDIENCE", ""),
            expiration_in_minutes=int(os.getenv("JWT_EXPIRATION_MINUTES", str(DEFAULT_ACCESS_TTL_MINUTES))),
            refresh_token_expiration_in_days=int(
                os.getenv("REFRESH_TOKEN_EXPIRATION_DAYS", str(DEFAULT_REFRESH_TTL_DAYS))
            ),
        )

    def missing_fields(self) -> list[str]:
        return [name for name in ("key", "issuer", "audience") if not getattr(self, name)]


_JWT_SETTINGS: JwtSettings | None = None


def get_jwt_settings() -> JwtSettings:
    """Read JWT settings once per process."""
    global _JWT_SETTINGS
    if _JWT_SETTINGS is None:
        _JWT_SETTINGS = JwtSettings.from_env()
    return _JWT_SETTINGS
