"""Pydantic schemas for authentication routes."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

from ..models import UserPublic


class SignUpRequest(BaseModel):
    mobile: str = Field(..., description="Mobile number, digits with optional leading +")
    name: str = Field(default="")
    email: Optional[EmailStr] = None


class OtpSendRequest(BaseModel):
    user_id: int


class OtpVerifyRequest(BaseModel):
    user_id: int
    otp: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str
    access_token: Optional[str] = Field(
        default=None, description="Access token the refresh token was last paired with"
    )


class RevokeTokenRequest(BaseModel):
    refresh_token: str


class LoginResponse(BaseModel):
    user: UserPublic
    access_token: str
    refresh_token: str
    token_expiration: datetime = Field(..., description="Refresh token expiry")
    token_type: Literal["Bearer"] = "Bearer"


class RefreshResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_expiration: datetime
    token_type: Literal["Bearer"] = "Bearer"


class TokenValidationResponse(BaseModel):
    user_id: Optional[int]
    expires_at: datetime
    is_valid: bool
    validated_at: datetime


class OtpChallengeResponse(BaseModel):
    """Returned when a mobile number already has an account and must prove ownership first."""

    user_id: int
    otp_required: Literal[True] = True
