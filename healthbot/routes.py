"""API routes for user administration, session activity and readiness."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from . import config
from .auth.deps import require_roles
from .auth.gate import GatedRoute, TokenPrincipal, allow_anonymous
from .auth.repository import UserRepository, get_user_repository
from .health import check_database_health
from .models import UserPage
from .responses import envelope, failure, internal_error, session_to_public, user_to_public
from .security import FieldEncryptionError

LOGGER = logging.getLogger(__name__)
router = APIRouter(prefix=config.API_PREFIX, route_class=GatedRoute)

STAFF_ROLES = ("admin", "supervisor")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def resolve_user_repository() -> UserRepository:
    """Wrapper to allow overriding of the shared repository dependency."""
    return get_user_repository()


@router.get("/health", tags=["health"])
@allow_anonymous
def healthcheck() -> JSONResponse:
    """Report readiness along with the database probe outcome."""
    result = check_database_health()
    if not result.ok:
        LOGGER.warning("Database health probe failed: %s", result.detail)
        return envelope(
            success=False,
            data=result.to_dict(),
            message="Database unavailable",
            error_code="SERVICE_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return envelope(success=True, data=result.to_dict(), message="ok")


@router.get("/users", tags=["users"])
def list_users(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _: TokenPrincipal = Depends(require_roles(*STAFF_ROLES)),
    repository: UserRepository = Depends(resolve_user_repository),
) -> JSONResponse:
    try:
        users = repository.get_user_list()
    except (SQLAlchemyError, FieldEncryptionError):
        LOGGER.exception("Listing users failed")
        return internal_error("An error occurred while retrieving users")
    start = (page - 1) * page_size
    items = [user_to_public(user) for user in users[start : start + page_size]]
    data = UserPage(items=items, page=page, page_size=page_size, total=len(users))
    return envelope(success=True, data=data, message=f"Retrieved {len(items)} users")


@router.get("/users/{user_id}", tags=["users"])
def get_user(
    user_id: int,
    _: TokenPrincipal = Depends(require_roles(*STAFF_ROLES)),
    repository: UserRepository = Depends(resolve_user_repository),
) -> JSONResponse:
    if user_id <= 0:
        return failure(status.HTTP_400_BAD_REQUEST, "Valid user ID is required", "INVALID_ID")
    try:
        user = repository.get_user_by_id(user_id)
    except (SQLAlchemyError, FieldEncryptionError):
        LOGGER.exception("Fetching user %s failed", user_id)
        return internal_error("An error occurred while retrieving the user")
    if user is None:
        return failure(status.HTTP_404_NOT_FOUND, f"User with ID {user_id} not found", "NOT_FOUND")
    return envelope(success=True, data=user_to_public(user), message="User retrieved successfully")


@router.get("/sessions/active", tags=["sessions"])
def active_sessions(
    minutes: int = Query(default=config.ACTIVE_SESSION_WINDOW_MINUTES, ge=1, le=24 * 60),
    _: TokenPrincipal = Depends(require_roles(*STAFF_ROLES)),
    repository: UserRepository = Depends(resolve_user_repository),
) -> JSONResponse:
    """Return callers seen within the trailing activity window."""
    try:
        sessions = repository.get_active_sessions(timedelta(minutes=minutes))
    except SQLAlchemyError:
        LOGGER.exception("Listing active sessions failed")
        return internal_error("An error occurred while retrieving sessions")
    data = [session_to_public(session) for session in sessions]
    return envelope(success=True, data=data, message=f"{len(data)} active sessions")
