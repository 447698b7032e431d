"""Authentication service: access-token issuance and refresh-token lifecycle."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .repository import RefreshToken, UserRepository, get_user_repository
from .tokens import EXPIRATION_SENTINEL, TokenCodec, get_token_codec

LOGGER = logging.getLogger(__name__)

MESSAGE_ENTER_CREDENTIAL = "Enter Credential"
MESSAGE_INVALID_CREDENTIAL = "Invalid Credential"
MESSAGE_TOKEN_NOT_ACTIVE = "Token Not Active."
MESSAGE_TOKEN_NO_MATCH = "Token did not match any users."


@dataclass
class AuthenticationResult:
    """Outcome of a login or refresh attempt."""

    is_authenticated: bool = False
    message: str = ""
    user_name: Optional[str] = None
    email: Optional[str] = None
    token: Optional[str] = None
    refresh_token: Optional[str] = None
    refresh_token_expiration: datetime = EXPIRATION_SENTINEL

    @classmethod
    def failure(cls, message: str) -> "AuthenticationResult":
        return cls(is_authenticated=False, message=message)


class AuthService:
    """Central authority for login and refresh-token rotation.

    Persistence errors are not handled here; they propagate to the caller, which
    must answer with a server error.

    Known limitation: two concurrent logins for a user without an active refresh
    token can both observe "no active token" and each persist a new one. Both rows
    remain valid until they expire; nothing in this flow serialises the logins.
    """

    def __init__(self, repository: UserRepository, codec: TokenCodec) -> None:
        self._repository = repository
        self._codec = codec
        self._refresh_ttl = timedelta(days=codec.settings.refresh_token_expiration_in_days)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _mint_refresh_token(self, user_id: int, jwt_token: str) -> RefreshToken:
        now = self._now()
        return RefreshToken(
            user_id=user_id,
            token=self._codec.generate_refresh_token(),
            jwt_token=jwt_token,
            expires=now + self._refresh_ttl,
            created=now,
        )

    def authenticate(self, user_id: int) -> AuthenticationResult:
        """Issue an access token for a user whose identity was already verified."""
        if user_id is None or user_id <= 0:
            return AuthenticationResult.failure(MESSAGE_ENTER_CREDENTIAL)

        user = self._repository.get_user_by_id(user_id)
        if user is None:
            LOGGER.warning("Authentication requested for unknown user %s", user_id)
            return AuthenticationResult.failure(MESSAGE_INVALID_CREDENTIAL)

        access_token = self._codec.generate_access_token(user)

        existing = self._repository.get_refresh_tokens_by_user_id(user.id)
        active = next((token for token in existing if token.is_active), None)
        if active is not None:
            chosen = active
            LOGGER.debug("Reusing active refresh token %s for user %s", active.id, user.id)
        else:
            chosen = self._mint_refresh_token(user.id, access_token)
            self._repository.save_refresh_token(chosen)
            LOGGER.info("Issued new refresh token %s for user %s", chosen.id, user.id)

        # Keep the paired JWT current on every login, including the reuse branch.
        chosen.jwt_token = access_token
        self._repository.update_refresh_token(chosen)

        return AuthenticationResult(
            is_authenticated=True,
            user_name=user.name,
            email=user.email,
            token=access_token,
            refresh_token=chosen.token,
            refresh_token_expiration=chosen.expires,
        )

    def refresh(self, refresh_token: str, access_token: Optional[str] = None) -> AuthenticationResult:
        """Rotate a refresh token and issue a new access token.

        When ``access_token`` is supplied it must be the token the refresh token
        was last paired with.
        """
        if not refresh_token:
            return AuthenticationResult.failure(MESSAGE_ENTER_CREDENTIAL)

        stored = self._repository.get_refresh_token_by_token(refresh_token)
        if stored is None:
            return AuthenticationResult.failure(MESSAGE_TOKEN_NO_MATCH)
        if not stored.is_active:
            LOGGER.warning("Refresh attempted with inactive token %s for user %s", stored.id, stored.user_id)
            return AuthenticationResult.failure(MESSAGE_TOKEN_NOT_ACTIVE)
        if access_token is not None and not hmac.compare_digest(stored.jwt_token or "", access_token):
            LOGGER.warning("Refresh token %s presented with a foreign access token", stored.id)
            return AuthenticationResult.failure(MESSAGE_TOKEN_NO_MATCH)

        user = self._repository.get_user_by_id(stored.user_id)
        if user is None:
            return AuthenticationResult.failure(MESSAGE_TOKEN_NO_MATCH)

        new_access_token = self._codec.generate_access_token(user)
        replacement = self._mint_refresh_token(user.id, new_access_token)
        self._repository.save_refresh_token(replacement)

        stored.revoked = self._now()
        self._repository.update_refresh_token(stored)
        LOGGER.info("Rotated refresh token %s -> %s for user %s", stored.id, replacement.id, user.id)

        return AuthenticationResult(
            is_authenticated=True,
            user_name=user.name,
            email=user.email,
            token=new_access_token,
            refresh_token=replacement.token,
            refresh_token_expiration=replacement.expires,
        )

    def revoke(self, refresh_token: str) -> bool:
        stored = self._repository.get_refresh_token_by_token(refresh_token)
        if stored is None or stored.revoked is not None:
            return False
        stored.revoked = self._now()
        return self._repository.update_refresh_token(stored)


_AUTH_SERVICE: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    global _AUTH_SERVICE
    if _AUTH_SERVICE is None:
        _AUTH_SERVICE = AuthService(get_user_repository(), get_token_codec())
    return _AUTH_SERVICE
