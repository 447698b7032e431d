"""FastAPI routes exposing login, passcode verification and token rotation."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .. import config
from ..responses import envelope, failure, internal_error, user_to_public
from ..security import FieldEncryptionError
from .deps import get_current_principal
from .exceptions import AuthError
from .gate import GatedRoute, TokenPrincipal, allow_anonymous, extract_bearer_token
from .otp import OtpService, get_otp_service
from .repository import User, UserRepository, get_user_repository
from .schemas import (
    LoginResponse,
    OtpChallengeResponse,
    OtpSendRequest,
    OtpVerifyRequest,
    RefreshResponse,
    RefreshTokenRequest,
    RevokeTokenRequest,
    SignUpRequest,
    TokenValidationResponse,
)
from .service import AuthService, get_auth_service
from .tokens import TokenCodec, get_token_codec

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix=f"{config.API_PREFIX}/auth", tags=["auth"], route_class=GatedRoute)

_MOBILE_PATTERN = re.compile(r"^\+?\d{10,15}$")
_FATAL_ERRORS = (SQLAlchemyError, AuthError, FieldEncryptionError)


def _login_payload(user: User, auth_service: AuthService) -> JSONResponse:
    result = auth_service.authenticate(user.id)
    if not result.is_authenticated:
        return failure(status.HTTP_401_UNAUTHORIZED, result.message, "AUTHENTICATION_FAILED")
    payload = LoginResponse(
        user=user_to_public(user),
        access_token=result.token,
        refresh_token=result.refresh_token,
        token_expiration=result.refresh_token_expiration,
    )
    return envelope(success=True, data=payload, message="Login successful. Tokens issued.")


@router.post("/signup")
@allow_anonymous
def signup(
    payload: SignUpRequest,
    repository: UserRepository = Depends(get_user_repository),
    auth_service: AuthService = Depends(get_auth_service),
    otp_service: OtpService = Depends(get_otp_service),
) -> JSONResponse:
    """Create the user owning a new mobile number and issue tokens.

    A number that already has an account only gets a passcode; tokens follow
    once the owner completes ``/auth/otp/verify``.
    """
    mobile = payload.mobile.strip()
    if not _MOBILE_PATTERN.match(mobile):
        return failure(status.HTTP_400_BAD_REQUEST, "Invalid mobile number format", "INVALID_MOBILE_FORMAT")
    try:
        user = repository.get_user_by_mobile(mobile)
        if user is not None:
            otp_service.issue(user)
            LOGGER.info("Signup for existing user %s requires OTP verification", user.id)
            return envelope(
                success=True,
                data=OtpChallengeResponse(user_id=user.id),
                message="Account exists. OTP sent for verification.",
            )
        user = repository.create_user(name=payload.name.strip(), mobile=mobile, email=payload.email)
        return _login_payload(user, auth_service)
    except _FATAL_ERRORS:
        LOGGER.exception("Signup failed")
        return internal_error("An error occurred during signup")


@router.post("/otp/send")
@allow_anonymous
def send_otp(
    payload: OtpSendRequest,
    repository: UserRepository = Depends(get_user_repository),
    otp_service: OtpService = Depends(get_otp_service),
) -> JSONResponse:
    if payload.user_id <= 0:
        return failure(status.HTTP_400_BAD_REQUEST, "Valid user ID is required", "INVALID_USER_ID")
    try:
        user = repository.get_user_by_id(payload.user_id)
        if user is None:
            return failure(status.HTTP_404_NOT_FOUND, "User not found", "NOT_FOUND")
        otp_service.issue(user)
    except _FATAL_ERRORS:
        LOGGER.exception("Issuing OTP failed for user %s", payload.user_id)
        return internal_error("An error occurred while sending OTP")
    return envelope(success=True, message="OTP sent successfully")


@router.post("/otp/verify")
@allow_anonymous
def verify_otp(
    payload: OtpVerifyRequest,
    repository: UserRepository = Depends(get_user_repository),
    otp_service: OtpService = Depends(get_otp_service),
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Check the latest passcode for a user and, when it matches, log the user in."""
    if payload.user_id <= 0:
        return failure(status.HTTP_400_BAD_REQUEST, "Valid user ID is required", "INVALID_USER_ID")
    if not payload.otp.strip():
        return failure(status.HTTP_400_BAD_REQUEST, "OTP number is required", "INVALID_OTP")
    try:
        check = otp_service.verify(payload.user_id, payload.otp)
        if not check.ok:
            return failure(status.HTTP_400_BAD_REQUEST, check.message, check.error_code or "INVALID_OTP")
        user = repository.get_user_by_id(payload.user_id)
        if user is None:
            return failure(status.HTTP_401_UNAUTHORIZED, "Invalid Credential", "AUTHENTICATION_FAILED")
        return _login_payload(user, auth_service)
    except _FATAL_ERRORS:
        LOGGER.exception("OTP verification failed for user %s", payload.user_id)
        return internal_error("An error occurred during OTP verification")


@router.post("/refresh")
@allow_anonymous
def refresh(
    payload: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    if not payload.refresh_token.strip():
        return failure(status.HTTP_400_BAD_REQUEST, "Refresh token is required", "INVALID_INPUT")
    try:
        result = auth_service.refresh(payload.refresh_token.strip(), access_token=payload.access_token)
    except _FATAL_ERRORS:
        LOGGER.exception("Token refresh failed")
        return internal_error("An error occurred during token refresh")
    if not result.is_authenticated:
        return failure(status.HTTP_401_UNAUTHORIZED, result.message, "INVALID_TOKEN")
    data = RefreshResponse(
        access_token=result.token,
        refresh_token=result.refresh_token,
        token_expiration=result.refresh_token_expiration,
    )
    return envelope(success=True, data=data, message="Tokens refreshed successfully")


@router.post("/revoke")
def revoke(
    payload: RevokeTokenRequest,
    _: TokenPrincipal = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    try:
        revoked = auth_service.revoke(payload.refresh_token.strip())
    except _FATAL_ERRORS:
        LOGGER.exception("Token revocation failed")
        return internal_error("An error occurred during token revocation")
    if not revoked:
        return failure(status.HTTP_404_NOT_FOUND, "Refresh token not found or already revoked", "NOT_FOUND")
    return envelope(success=True, message="Refresh token revoked")


@router.post("/validate-token")
def validate_token(
    authorization: str = Header(default=""),
    principal: TokenPrincipal = Depends(get_current_principal),
    codec: TokenCodec = Depends(get_token_codec),
) -> JSONResponse:
    """Report what the caller's bearer token says about itself."""
    token = extract_bearer_token(authorization) or ""
    data = TokenValidationResponse(
        user_id=codec.get_user_id_from_token(token),
        expires_at=codec.get_token_expiration(token),
        is_valid=codec.validate_access_token(token),
        validated_at=datetime.now(timezone.utc),
    )
    LOGGER.info("Token validation for user %s", principal.user_id)
    return envelope(success=True, data=data, message="Token is valid")
