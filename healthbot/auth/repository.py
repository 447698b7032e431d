"""Persistence gateway for users, refresh tokens, passcodes and activity sessions."""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..db import session_scope
from ..db_models import UserRecord
from ..security import get_field_cipher, normalize_mobile
from .models import OtpRecord, RefreshTokenRecord, UserSessionRecord

LOGGER = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_dt(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class User:
    id: int
    name: str
    email: Optional[str] = None
    mobile: Optional[str] = None
    role: str = "user"
    is_premium: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class RefreshToken:
    user_id: int
    token: str
    expires: datetime
    created: datetime
    jwt_token: Optional[str] = None
    revoked: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def is_expired(self) -> bool:
        return _utcnow() >= _normalize_dt(self.expires)

    @property
    def is_active(self) -> bool:
        return self.revoked is None and not self.is_expired


@dataclass
class UserSession:
    id: int
    user_id: Optional[int]
    session_key: str
    last_active_at: datetime
    ip_address: Optional[str]
    user_agent: Optional[str]


@dataclass
class OneTimePasscode:
    id: int
    user_id: int
    otp_hash: str
    created_at: datetime
    consumed_at: Optional[datetime] = None
    failed_attempts: int = 0


def _to_user(record: UserRecord) -> User:
    return User(
        id=record.id,
        name=record.name or "",
        email=record.email,
        mobile=record.mobile,
        role=record.role or "user",
        is_premium=bool(record.is_premium),
        created_at=_normalize_dt(record.created_at),
        updated_at=_normalize_dt(record.updated_at),
    )


def _to_refresh_token(record: RefreshTokenRecord) -> RefreshToken:
    return RefreshToken(
        id=record.id,
        user_id=record.user_id,
        token=record.token,
        jwt_token=record.jwt_token,
        expires=_normalize_dt(record.expires),
        created=_normalize_dt(record.created),
        revoked=_normalize_dt(record.revoked),
    )


def _to_session(record: UserSessionRecord) -> UserSession:
    return UserSession(
        id=record.id,
        user_id=record.user_id,
        session_key=record.session_key,
        last_active_at=_normalize_dt(record.last_active_at),
        ip_address=record.ip_address,
        user_agent=record.user_agent,
    )


def _to_otp(record: OtpRecord) -> OneTimePasscode:
    return OneTimePasscode(
        id=record.id,
        user_id=record.user_id,
        otp_hash=record.otp_hash,
        created_at=_normalize_dt(record.created_at),
        consumed_at=_normalize_dt(record.consumed_at),
        failed_attempts=record.failed_attempts or 0,
    )


class UserRepository:
    """SQLAlchemy-backed store used by the authentication core.

    Every method opens its own transactional scope; errors propagate to the caller.
    """

    def __init__(self, session_factory: SessionFactory = session_scope) -> None:
        self._session_scope = session_factory

    # Users -----------------------------------------------------------------

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        with self._session_scope() as db:
            record = db.get(UserRecord, user_id)
            return _to_user(record) if record is not None else None

    def get_user_list(self) -> List[User]:
        with self._session_scope() as db:
            records = db.execute(select(UserRecord).order_by(UserRecord.id)).scalars().all()
            return [_to_user(record) for record in records]

    def get_user_by_mobile(self, mobile: str) -> Optional[User]:
        digest = get_field_cipher().digest(normalize_mobile(mobile))
        with self._session_scope() as db:
            record = db.execute(
                select(UserRecord).where(UserRecord.mobile_digest == digest)
            ).scalar_one_or_none()
            return _to_user(record) if record is not None else None

    def create_user(
        self,
        *,
        name: str,
        mobile: Optional[str] = None,
        email: Optional[str] = None,
        role: str = "user",
        is_premium: bool = False,
    ) -> User:
        record = UserRecord(name=name, email=email, role=role, is_premium=is_premium)
        if mobile:
            normalized = normalize_mobile(mobile)
            record.mobile = normalized
            record.mobile_digest = get_field_cipher().digest(normalized)
        with self._session_scope() as db:
            db.add(record)
            db.flush()
            db.refresh(record)
            user = _to_user(record)
        LOGGER.info("Created user %s with role %s", user.id, role)
        return user

    # Refresh tokens --------------------------------------------------------

    def get_refresh_tokens_by_user_id(self, user_id: int) -> List[RefreshToken]:
        with self._session_scope() as db:
            records = (
                db.execute(
                    select(RefreshTokenRecord)
                    .where(RefreshTokenRecord.user_id == user_id)
                    .order_by(RefreshTokenRecord.id)
                )
                .scalars()
                .all()
            )
            return [_to_refresh_token(record) for record in records]

    def get_refresh_token_by_token(self, token: str) -> Optional[RefreshToken]:
        with self._session_scope() as db:
            record = db.execute(
                select(RefreshTokenRecord).where(RefreshTokenRecord.token == token)
            ).scalar_one_or_none()
            return _to_refresh_token(record) if record is not None else None

    def save_refresh_token(self, refresh_token: RefreshToken) -> int:
        record = RefreshTokenRecord(
            user_id=refresh_token.user_id,
            token=refresh_token.token,
            jwt_token=refresh_token.jwt_token,
            expires=refresh_token.expires,
            created=refresh_token.created,
            revoked=refresh_token.revoked,
        )
        with self._session_scope() as db:
            db.add(record)
            db.flush()
            token_id = record.id
        refresh_token.id = token_id
        return token_id

    def update_refresh_token(self, refresh_token: RefreshToken) -> bool:
        """Overwrite the paired JWT, expiry and revocation of the row holding this token string."""
        with self._session_scope() as db:
            record = db.execute(
                select(RefreshTokenRecord).where(RefreshTokenRecord.token == refresh_token.token)
            ).scalar_one_or_none()
            if record is None:
                return False
            record.jwt_token = refresh_token.jwt_token
            record.expires = refresh_token.expires
            record.revoked = refresh_token.revoked
            db.add(record)
            return True

    # One-time passcodes ----------------------------------------------------

    def save_otp(self, user_id: int, otp_hash: str) -> int:
        record = OtpRecord(user_id=user_id, otp_hash=otp_hash, created_at=_utcnow())
        with self._session_scope() as db:
            db.add(record)
            db.flush()
            return record.id

    def get_latest_otp(self, user_id: int) -> Optional[OneTimePasscode]:
        with self._session_scope() as db:
            record = db.execute(
                select(OtpRecord)
                .where(OtpRecord.user_id == user_id, OtpRecord.consumed_at.is_(None))
                .order_by(OtpRecord.created_at.desc(), OtpRecord.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _to_otp(record) if record is not None else None

    def record_failed_otp_attempt(self, otp_id: int) -> int:
        """Count a wrong guess against a passcode and return the new total."""
        with self._session_scope() as db:
            db.execute(
                update(OtpRecord)
                .where(OtpRecord.id == otp_id)
                .values(failed_attempts=OtpRecord.failed_attempts + 1)
            )
            attempts = db.execute(
                select(OtpRecord.failed_attempts).where(OtpRecord.id == otp_id)
            ).scalar_one_or_none()
            return attempts or 0

    def consume_otp(self, otp_id: int) -> bool:
        with self._session_scope() as db:
            record = db.get(OtpRecord, otp_id)
            if record is None or record.consumed_at is not None:
                return False
            record.consumed_at = _utcnow()
            db.add(record)
            return True

    # Activity sessions -----------------------------------------------------

    def update_session(
        self,
        user_id: Optional[int],
        session_key: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        """Upsert the activity row for ``session_key``."""
        now = _utcnow()
        with self._session_scope() as db:
            record = db.execute(
                select(UserSessionRecord).where(UserSessionRecord.session_key == session_key)
            ).scalar_one_or_none()
            if record is None:
                record = UserSessionRecord(user_id=user_id, session_key=session_key)
            record.last_active_at = now
            record.ip_address = ip_address
            record.user_agent = user_agent
            db.add(record)

    def get_active_sessions(self, window: timedelta) -> List[UserSession]:
        cutoff = _utcnow() - window
        with self._session_scope() as db:
            records = (
                db.execute(
                    select(UserSessionRecord)
                    .where(UserSessionRecord.last_active_at >= cutoff)
                    .order_by(UserSessionRecord.last_active_at.desc())
                )
                .scalars()
                .all()
            )
            return [_to_session(record) for record in records]


_USER_REPOSITORY: Optional[UserRepository] = None


def get_user_repository() -> UserRepository:
    global _USER_REPOSITORY
    if _USER_REPOSITORY is None:
        _USER_REPOSITORY = UserRepository()
    return _USER_REPOSITORY
