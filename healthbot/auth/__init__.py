"""Authentication package for the Healthbot API backend."""

from .gate import AuthorizationGate, AuthorizationGateMiddleware, TokenPrincipal, allow_anonymous
from .service import AuthenticationResult, AuthService, get_auth_service
from .tokens import TokenCodec, get_token_codec
from .tracking import SessionTrackingMiddleware

__all__ = [
    "AuthService",
    "AuthenticationResult",
    "AuthorizationGate",
    "AuthorizationGateMiddleware",
    "SessionTrackingMiddleware",
    "TokenCodec",
    "TokenPrincipal",
    "allow_anonymous",
    "get_auth_service",
    "get_token_codec",
]
