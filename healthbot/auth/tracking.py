"""Best-effort "who is active right now" tracking for authenticated callers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol

import anyio
import anyio.to_thread
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from .. import config
from .crypto import fingerprint_client
from .gate import extract_bearer_token
from .repository import get_user_repository
from .tokens import TokenCodec, get_token_codec

LOGGER = logging.getLogger(__name__)

# Claims that may carry the numeric user id, in lookup order.
USER_ID_CLAIMS = ("UserId", "nameid", "sub")


class SessionStore(Protocol):
    def update_session(
        self,
        user_id: Optional[int],
        session_key: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        ...


def user_id_from_claims(claims: Dict[str, Any]) -> Optional[int]:
    for name in USER_ID_CLAIMS:
        value = claims.get(name)
        if value in (None, ""):
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    return None


def build_session_key(user_id: Optional[int], ip_address: Optional[str], user_agent: Optional[str]) -> str:
    if user_id is not None:
        return f"user-{user_id}"
    return f"anon-{fingerprint_client(ip_address, user_agent)}"


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class SessionTrackingMiddleware(BaseHTTPMiddleware):
    """Upsert an activity record for callers presenting an unexpired bearer token.

    Tokens are parsed without signature verification: a forged token can only
    skew activity statistics. Nothing here can fail or delay the request beyond
    the configured timeout.
    """

    def __init__(
        self,
        app,
        codec_provider: Callable[[], TokenCodec] = get_token_codec,
        store_provider: Callable[[], SessionStore] = get_user_repository,
        timeout_seconds: float = config.SESSION_TRACKING_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(app)
        self._codec_provider = codec_provider
        self._store_provider = store_provider
        self._timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        await self._track(request)
        return await call_next(request)

    async def _track(self, request: Request) -> None:
        authorization = request.headers.get("authorization") or ""
        if not authorization.lower().startswith("bearer "):
            return
        token = extract_bearer_token(authorization)
        if token is None:
            return

        codec = self._codec_provider()
        claims = codec.read_unverified_claims(token)
        if claims is None:
            return
        if codec.get_token_expiration(token) <= datetime.now(timezone.utc):
            return

        ip_address = client_ip(request)
        user_agent = request.headers.get("user-agent")
        user_id = user_id_from_claims(claims)
        session_key = build_session_key(user_id, ip_address, user_agent)

        try:
            with anyio.fail_after(self._timeout_seconds):
                # The worker thread is abandoned on timeout; the upsert may still land later.
                await anyio.to_thread.run_sync(
                    self._store_provider().update_session,
                    user_id,
                    session_key,
                    ip_address,
                    user_agent,
                    abandon_on_cancel=True,
                )
        except TimeoutError:
            LOGGER.warning("Session tracking timed out for %s", session_key)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Session tracking failed for %s: %s", session_key, exc)
