"""Helpers producing the uniform response envelope."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .auth.repository import User, UserSession
from .models import ActiveSession, ApiResponse, UserPublic
from .security import mask_mobile


def envelope(
    *,
    success: bool,
    data: Any = None,
    message: Optional[str] = None,
    error_code: Optional[str] = None,
    status_code: int = status.HTTP_200_OK,
) -> JSONResponse:
    payload = ApiResponse(success=success, data=data, message=message, error_code=error_code)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def failure(status_code: int, message: str, error_code: str) -> JSONResponse:
    return envelope(success=False, message=message, error_code=error_code, status_code=status_code)


def internal_error(message: str = "An internal error occurred") -> JSONResponse:
    return failure(status.HTTP_500_INTERNAL_SERVER_ERROR, message, "INTERNAL_ERROR")


def user_to_public(user: User) -> UserPublic:
    return UserPublic(
        id=user.id,
        name=user.name,
        email=user.email,
        mobile=mask_mobile(user.mobile),
        role=user.role,
        is_premium=user.is_premium,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def session_to_public(session: UserSession) -> ActiveSession:
    return ActiveSession(
        id=session.id,
        user_id=session.user_id,
        session_key=session.session_key,
        last_active_at=session.last_active_at,
        ip_address=session.ip_address,
        user_agent=session.user_agent,
    )
