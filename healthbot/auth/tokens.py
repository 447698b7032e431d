"""Access-token codec: issue, verify and inspect signed JWTs."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt
from jose.exceptions import JWKError, JWTError

from .config import JWT_ALGORITHM, JwtSettings, get_jwt_settings
from .crypto import generate_refresh_token
from .exceptions import TokenConfigurationError

LOGGER = logging.getLogger(__name__)

# Returned by get_token_expiration when the token cannot be parsed.
EXPIRATION_SENTINEL = datetime.min.replace(tzinfo=timezone.utc)


class TokenCodec:
    """Stateless producer and validator of access tokens.

    Verified reads (``validate_access_token``, ``read_verified_claims``) check the
    signature, issuer, audience and expiry with no clock skew. Unverified reads
    (``read_unverified_claims``, ``get_user_id_from_token``, ``get_token_expiration``)
    only decode the payload and must never be used to grant access.
    """

    def __init__(self, settings: JwtSettings) -> None:
        self._settings = settings

    @property
    def settings(self) -> JwtSettings:
        return self._settings

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _ensure_configured(self) -> None:
        missing = self._settings.missing_fields()
        if missing:
            raise TokenConfigurationError(f"JWT settings missing: {', '.join(missing)}")

    def generate_access_token(self, user: Any) -> str:
        """Sign a token carrying the user's identity and role claims."""
        try:
            self._ensure_configured()
            issued_at = self._now()
            expires_at = issued_at + timedelta(minutes=self._settings.expiration_in_minutes)
            claims = {
                "sub": str(user.id),
                "email": user.email or "",
                "mobile": user.mobile or "",
                "name": user.name or "",
                "role": user.role or "user",
                "isPremium": bool(user.is_premium),
                "jti": str(uuid.uuid4()),
                "iat": int(issued_at.timestamp()),
                "exp": int(expires_at.timestamp()),
                "iss": self._settings.issuer,
                "aud": self._settings.audience,
            }
            return jwt.encode(claims, self._settings.key, algorithm=JWT_ALGORITHM)
        except TokenConfigurationError:
            LOGGER.exception("Cannot sign access token for user %s", getattr(user, "id", None))
            raise
        except (JWKError, JWTError) as exc:
            LOGGER.exception("Cannot sign access token for user %s", getattr(user, "id", None))
            raise TokenConfigurationError("JWT signing key is not usable") from exc

    def read_verified_claims(self, token: str) -> Optional[Dict[str, Any]]:
        """Return the claims of a fully verified token, or None."""
        if not token:
            return None
        if self._settings.missing_fields():
            LOGGER.error("Token validation attempted without JWT settings; rejecting token")
            return None
        try:
            return jwt.decode(
                token,
                self._settings.key,
                algorithms=[JWT_ALGORITHM],
                audience=self._settings.audience,
                issuer=self._settings.issuer,
                options={"leeway": 0},
            )
        except (JWTError, JWKError) as exc:
            LOGGER.warning("Token validation failed: %s", exc)
            return None

    def validate_access_token(self, token: str) -> bool:
        return self.read_verified_claims(token) is not None

    def read_unverified_claims(self, token: str) -> Optional[Dict[str, Any]]:
        """Decode the payload without checking the signature. Low trust only."""
        try:
            return jwt.get_unverified_claims(token)
        except (JWTError, AttributeError, TypeError) as exc:
            LOGGER.warning("Could not read token claims: %s", exc)
            return None

    def get_user_id_from_token(self, token: str) -> Optional[int]:
        claims = self.read_unverified_claims(token)
        if not claims:
            return None
        try:
            return int(claims.get("sub"))
        except (TypeError, ValueError):
            return None

    def get_token_expiration(self, token: str) -> datetime:
        claims = self.read_unverified_claims(token)
        if not claims:
            return EXPIRATION_SENTINEL
        try:
            return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
            LOGGER.warning("Error extracting token expiration: %s", exc)
            return EXPIRATION_SENTINEL

    @staticmethod
    def generate_refresh_token() -> str:
        return generate_refresh_token()


_TOKEN_CODEC: Optional[TokenCodec] = None


def get_token_codec() -> TokenCodec:
    global _TOKEN_CODEC
    if _TOKEN_CODEC is None:
        _TOKEN_CODEC = TokenCodec(get_jwt_settings())
    return _TOKEN_CODEC
