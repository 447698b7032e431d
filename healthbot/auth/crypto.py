"""Cryptographic helpers for the authentication subsystem."""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

_OTP_HASHER = PasswordHasher()

REFRESH_TOKEN_BYTES = 64
OTP_LENGTH = 6


def generate_refresh_token() -> str:
    """Return 512 bits of randomness as a URL-safe base64 string."""

    return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)


def generate_otp(length: int = OTP_LENGTH) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def hash_otp(otp: str) -> str:
    """Hash a one-time passcode using Argon2."""

    return _OTP_HASHER.hash(otp)


def verify_otp(otp: str, otp_hash: str) -> bool:
    try:
        return _OTP_HASHER.verify(otp_hash, otp)
    except (VerificationError, InvalidHashError):
        return False


def fingerprint_client(ip_address: Optional[str], user_agent: Optional[str]) -> str:
    """Stable fingerprint for callers whose identity is unknown."""

    raw = f"ip-{ip_address or 'unknown'}-agent-{user_agent or ''}"
    digest = hashlib.sha256(raw.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
