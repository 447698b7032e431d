"""Shared fixtures: an isolated in-memory database and wired auth components."""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import List, Tuple

# Keep the module-level engine off the filesystem before anything imports it.
os.environ.setdefault("HEALTHBOT_SQLITE_PATH", ":memory:")

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from healthbot import config as app_config
from healthbot.auth import models as auth_models  # noqa: F401
from healthbot.auth.config import JwtSettings
from healthbot.auth.repository import User, UserRepository
from healthbot.auth.service import AuthService
from healthbot.auth.tokens import TokenCodec
from healthbot.db import Base
from healthbot import db_models  # noqa: F401

TEST_JWT_SETTINGS = JwtSettings(
    key="unit-test-signing-key-0123456789abcdef",
    issuer="healthbot-tests",
    audience="healthbot-clients",
    expiration_in_minutes=60,
    refresh_token_expiration_in_days=7,
)


@pytest.fixture(autouse=True)
def field_encryption_key(monkeypatch) -> str:
    key = Fernet.generate_key().decode("ascii")
    monkeypatch.setattr(app_config, "FIELD_ENCRYPTION_KEY", key)
    return key


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    SessionLocal = sessionmaker(bind=db_engine, expire_on_commit=False, future=True)

    @contextmanager
    def _session_scope():
        session = SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _session_scope


@pytest.fixture()
def repository(session_factory) -> UserRepository:
    return UserRepository(session_factory)


@pytest.fixture()
def jwt_settings() -> JwtSettings:
    return TEST_JWT_SETTINGS


@pytest.fixture()
def codec(jwt_settings) -> TokenCodec:
    return TokenCodec(jwt_settings)


@pytest.fixture()
def auth_service(repository, codec) -> AuthService:
    return AuthService(repository, codec)


@pytest.fixture()
def make_user(repository):
    def _make_user(
        name: str = "Asha Rao",
        mobile: str = "+15550001234",
        email: str = "asha@example.org",
        role: str = "user",
        is_premium: bool = False,
    ) -> User:
        return repository.create_user(name=name, mobile=mobile, email=email, role=role, is_premium=is_premium)

    return _make_user


@pytest.fixture()
def sent_otps() -> List[Tuple[int, str]]:
    return []


@pytest.fixture()
def wired_app(monkeypatch, repository, codec, auth_service, sent_otps):
    """The FastAPI app with every process-wide singleton pointed at the test database."""
    from healthbot.auth import gate as gate_module
    from healthbot.auth import otp as otp_module
    from healthbot.auth import repository as repository_module
    from healthbot.auth import service as service_module
    from healthbot.auth import tokens as tokens_module
    from healthbot.app import app

    def _capture(user: User, otp: str) -> None:
        sent_otps.append((user.id, otp))

    monkeypatch.setattr(repository_module, "_USER_REPOSITORY", repository)
    monkeypatch.setattr(tokens_module, "_TOKEN_CODEC", codec)
    monkeypatch.setattr(service_module, "_AUTH_SERVICE", auth_service)
    monkeypatch.setattr(otp_module, "_OTP_SERVICE", otp_module.OtpService(repository, sender=_capture))
    monkeypatch.setattr(gate_module, "_AUTHORIZATION_GATE", gate_module.AuthorizationGate(codec))
    return app


@pytest.fixture()
def client(wired_app):
    from fastapi.testclient import TestClient

    return TestClient(wired_app, raise_server_exceptions=False)


@pytest.fixture()
def bearer(codec):
    def _bearer(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {codec.generate_access_token(user)}"}

    return _bearer
