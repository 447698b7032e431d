"""SQLAlchemy ORM models for the Healthbot API."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, false, func
from sqlalchemy.types import TypeDecorator

from .db import Base
from .security import get_field_cipher


class TimestampMixin:
    """Mixin that adds created_at/updated_at audit fields."""

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class EncryptedString(TypeDecorator):
    """Text column transparently encrypted with the configured field cipher.

    Declaring the type on the column is what marks a field as protected; the
    mapper encrypts on bind and decrypts on load.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Optional[str], dialect: Any) -> Optional[str]:
        if value is None:
            return None
        return get_field_cipher().encrypt(value)

    def process_result_value(self, value: Optional[str], dialect: Any) -> Optional[str]:
        if value is None:
            return None
        return get_field_cipher().decrypt(value)


class UserRecord(TimestampMixin, Base):
    """Chatbot end user or administrator."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, default="")
    email = Column(String(320), nullable=True, index=True)
    mobile = Column(EncryptedString(), nullable=True)
    # Keyed digest of the normalized mobile; the encrypted column itself is not searchable.
    mobile_digest = Column(String(64), nullable=True, unique=True, index=True)
    role = Column(String(32), nullable=False, server_default="user")
    is_premium = Column(Boolean, nullable=False, default=False, server_default=false())
