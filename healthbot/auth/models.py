"""SQLAlchemy models for the authentication subsystem."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import relationship

from ..db import Base
from ..db_models import UserRecord


class RefreshTokenRecord(Base):
    """Refresh token issued to a user, paired with the access token it was minted for."""

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(128), nullable=False, unique=True)
    jwt_token = Column(Text, nullable=True)
    expires = Column(DateTime(timezone=True), nullable=False)
    created = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    revoked = Column(DateTime(timezone=True), nullable=True)

    user = relationship(UserRecord)


class UserSessionRecord(Base):
    """Last-seen activity for a caller, keyed by user or anonymous fingerprint."""

    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True, index=True)
    session_key = Column(String(128), nullable=False, unique=True)
    last_active_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)


class OtpRecord(Base):
    """One-time passcode issued for mobile verification; only the hash is stored."""

    __tablename__ = "user_otps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    otp_hash = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    failed_attempts = Column(Integer, nullable=False, default=0, server_default="0")


Index("ix_refresh_tokens_expiry", RefreshTokenRecord.expires)
Index("ix_user_sessions_last_active", UserSessionRecord.last_active_at)
