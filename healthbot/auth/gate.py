"""Request-pipeline authorization gate.

Every inbound request is either exempt (the endpoint is marked with
:func:`allow_anonymous`, the path is configured as public, or the request is a
CORS preflight) or must carry a valid ``Authorization: Bearer <token>`` header.
The gate always ends in an explicit allow or deny.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Type

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.routing import Match

from .. import config
from .service import (
    MESSAGE_TOKEN_NO_MATCH,
    MESSAGE_TOKEN_NOT_ACTIVE,
    AuthenticationResult,
    AuthService,
    get_auth_service,
)
from .tokens import TokenCodec, get_token_codec

LOGGER = logging.getLogger(__name__)

ANONYMOUS_MARKER = "__allow_anonymous__"
NEW_ACCESS_TOKEN_HEADER = "X-New-Access-Token"
NEW_REFRESH_TOKEN_HEADER = "X-New-Refresh-Token"
REFRESH_TOKEN_HEADER = "x-refresh-token"

_TERMINAL_REFRESH_MESSAGES = frozenset({MESSAGE_TOKEN_NOT_ACTIVE, MESSAGE_TOKEN_NO_MATCH})


def allow_anonymous(endpoint: Callable[..., Any]) -> Callable[..., Any]:
    """Mark a route endpoint as reachable without credentials."""
    setattr(endpoint, ANONYMOUS_MARKER, True)
    return endpoint


def is_anonymous_endpoint(endpoint: Optional[Callable[..., Any]]) -> bool:
    return bool(endpoint is not None and getattr(endpoint, ANONYMOUS_MARKER, False))


@dataclass(frozen=True)
class TokenPrincipal:
    """Identity established from a verified access token."""

    user_id: Optional[int]
    role: str
    claims: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "TokenPrincipal":
        try:
            user_id: Optional[int] = int(claims.get("sub"))
        except (TypeError, ValueError):
            user_id = None
        return cls(user_id=user_id, role=str(claims.get("role") or "user"), claims=dict(claims))


@dataclass(frozen=True)
class RefreshedCredentials:
    """Tokens issued by a silent refresh, surfaced to the client on the response."""

    access_token: str
    refresh_token: str


@dataclass
class GateDecision:
    allowed: bool
    status_code: int = status.HTTP_200_OK
    body: Optional[Dict[str, Any]] = None
    principal: Optional[TokenPrincipal] = None
    refreshed: Optional[RefreshedCredentials] = None

    @classmethod
    def allow(
        cls,
        principal: Optional[TokenPrincipal] = None,
        refreshed: Optional[RefreshedCredentials] = None,
    ) -> "GateDecision":
        return cls(allowed=True, principal=principal, refreshed=refreshed)

    @classmethod
    def unauthorized(cls, body: Dict[str, Any]) -> "GateDecision":
        return cls(allowed=False, status_code=status.HTTP_401_UNAUTHORIZED, body=body)

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.body or {})


def _unauthorized_body(message: str = "UnAuthorized", path: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    if path is not None:
        body["path"] = path
    body.update(
        {
            "statusMessage": message,
            "userId": 0,
            "IsSuccess": False,
            "statusCode": status.HTTP_401_UNAUTHORIZED,
        }
    )
    return body


def extract_bearer_token(authorization: str) -> Optional[str]:
    """Return the credential part of ``<scheme> <token>``, or None when malformed."""
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2:
        return None
    token = parts[1].strip()
    return token or None


class SilentRefresher(Protocol):
    """Extension point: try to re-authenticate a caller whose access token failed validation."""

    def refresh(self, request: Request, rejected_token: str) -> AuthenticationResult:
        ...


class PlaceholderRefresher:
    """Never re-authenticates; rejected tokens end in a plain 401."""

    def refresh(self, request: Request, rejected_token: str) -> AuthenticationResult:
        return AuthenticationResult.failure("")


class HeaderRefresher:
    """Rotates the refresh token sent in ``X-Refresh-Token`` alongside the rejected access token."""

    def __init__(self, service_provider: Callable[[], AuthService] = get_auth_service) -> None:
        self._service_provider = service_provider

    def refresh(self, request: Request, rejected_token: str) -> AuthenticationResult:
        refresh_token = request.headers.get(REFRESH_TOKEN_HEADER)
        if not refresh_token:
            return AuthenticationResult.failure("")
        return self._service_provider().refresh(refresh_token, access_token=rejected_token)


class AuthorizationGate:
    def __init__(self, codec: TokenCodec, refresher: Optional[SilentRefresher] = None) -> None:
        self._codec = codec
        self._refresher = refresher or PlaceholderRefresher()

    async def evaluate(self, *, exempt: bool, authorization: Optional[str], request: Request) -> GateDecision:
        if exempt:
            return GateDecision.allow()

        if not authorization:
            return GateDecision.unauthorized(_unauthorized_body())

        token = extract_bearer_token(authorization)
        if token is None:
            LOGGER.warning("Malformed Authorization header on %s", request.url.path)
            return GateDecision.unauthorized(_unauthorized_body())

        claims = self._codec.read_verified_claims(token)
        if claims is not None:
            return GateDecision.allow(principal=TokenPrincipal.from_claims(claims))

        result = await run_in_threadpool(self._refresher.refresh, request, token)
        if result.is_authenticated and result.token and result.refresh_token:
            refreshed_claims = self._codec.read_verified_claims(result.token)
            principal = TokenPrincipal.from_claims(refreshed_claims) if refreshed_claims else None
            LOGGER.info("Silently refreshed credentials on %s", request.url.path)
            return GateDecision.allow(
                principal=principal,
                refreshed=RefreshedCredentials(access_token=result.token, refresh_token=result.refresh_token),
            )
        if result.message in _TERMINAL_REFRESH_MESSAGES:
            return GateDecision.unauthorized(
                _unauthorized_body(
                    "Token Not Active Or Token did not match any users.",
                    path=request.url.path,
                )
            )
        return GateDecision.unauthorized(_unauthorized_body())


class RouteTable:
    """Routes known to the gate, recorded as they are created.

    Routers opt in through :meth:`route_class`, so the gate never has to walk
    the application's router tree to find out which endpoint a path reaches.
    """

    def __init__(self) -> None:
        self._routes: List[APIRoute] = []

    def register(self, route: APIRoute) -> None:
        self._routes.append(route)

    def route_class(self) -> Type[APIRoute]:
        table = self

        class GatedRoute(APIRoute):
            def __init__(self, path: str, endpoint: Callable[..., Any], **kwargs: Any) -> None:
                super().__init__(path, endpoint, **kwargs)
                table.register(self)

        return GatedRoute

    def lookup(self, scope: Dict[str, Any]) -> Tuple[bool, bool]:
        """Return ``(matched, anonymous)`` for the route serving ``scope``.

        A full match wins over a path match with the wrong method.
        """
        partial: Optional[APIRoute] = None
        for route in self._routes:
            match, _ = route.matches(scope)
            if match == Match.FULL:
                return True, is_anonymous_endpoint(route.endpoint)
            if match == Match.PARTIAL and partial is None:
                partial = route
        if partial is not None:
            return True, is_anonymous_endpoint(partial.endpoint)
        return False, False


GATED_ROUTES = RouteTable()
GatedRoute = GATED_ROUTES.route_class()


def is_exempt(request: Request, routes: RouteTable = GATED_ROUTES) -> bool:
    if request.method == "OPTIONS":
        return True
    if request.url.path in config.AUTH_EXEMPT_PATHS:
        return True
    matched, anonymous = routes.lookup(request.scope)
    if not matched:
        # Unknown paths fall through to the router's 404.
        return True
    return anonymous


_AUTHORIZATION_GATE: Optional[AuthorizationGate] = None


def get_authorization_gate() -> AuthorizationGate:
    global _AUTHORIZATION_GATE
    if _AUTHORIZATION_GATE is None:
        refresher: SilentRefresher = HeaderRefresher() if config.AUTH_SILENT_REFRESH else PlaceholderRefresher()
        _AUTHORIZATION_GATE = AuthorizationGate(get_token_codec(), refresher)
    return _AUTHORIZATION_GATE


class AuthorizationGateMiddleware(BaseHTTPMiddleware):
    """Apply the gate before dispatch and surface refreshed credentials afterwards."""

    def __init__(
        self,
        app,
        gate_provider: Callable[[], AuthorizationGate] = get_authorization_gate,
        routes: RouteTable = GATED_ROUTES,
    ) -> None:
        super().__init__(app)
        self._gate_provider = gate_provider
        self._routes = routes

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        decision = await self._gate_provider().evaluate(
            exempt=is_exempt(request, self._routes),
            authorization=request.headers.get("authorization"),
            request=request,
        )
        if not decision.allowed:
            LOGGER.info("Rejected %s %s with %s", request.method, request.url.path, decision.status_code)
            return decision.to_response()

        request.state.principal = decision.principal
        request.state.refreshed_credentials = decision.refreshed
        response = await call_next(request)
        if decision.refreshed is not None:
            response.headers[NEW_ACCESS_TOKEN_HEADER] = decision.refreshed.access_token
            response.headers[NEW_REFRESH_TOKEN_HEADER] = decision.refreshed.refresh_token
        return response
