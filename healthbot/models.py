"""Pydantic models for the Healthbot API backend."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiResponse(BaseModel):
    """Uniform envelope wrapping every controller response.

    Attributes:
        success: Whether the operation succeeded.
        data: Operation payload, if any.
        message: Human-readable outcome.
        error_code: Stable machine-readable code for failures.
        timestamp: UTC time the envelope was produced.
    """

    success: bool = Field(..., description="Whether the operation succeeded")
    data: Optional[Any] = Field(default=None, description="Operation payload")
    message: Optional[str] = Field(default=None, description="Human-readable outcome")
    error_code: Optional[str] = Field(default=None, description="Machine-readable failure code")
    timestamp: datetime = Field(default_factory=_utcnow, description="UTC time of the response")


class UserPublic(BaseModel):
    """User details safe to return to clients; the mobile number is masked."""

    id: int = Field(..., description="Numeric user identifier")
    name: str = Field(default="", description="Display name")
    email: Optional[str] = Field(default=None, description="Email address, if known")
    mobile: Optional[str] = Field(default=None, description="Masked mobile number")
    role: str = Field(default="user", description="One of user, admin or supervisor")
    is_premium: bool = Field(default=False, description="Premium subscription flag")
    created_at: Optional[datetime] = Field(default=None, description="Creation timestamp")
    updated_at: Optional[datetime] = Field(default=None, description="Last update timestamp")


class UserPage(BaseModel):
    items: list[UserPublic]
    page: int
    page_size: int
    total: int


class ActiveSession(BaseModel):
    """Activity record for a caller seen recently."""

    id: int
    user_id: Optional[int] = None
    session_key: str
    last_active_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
