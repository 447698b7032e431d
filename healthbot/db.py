"""Database engine and session management for the Healthbot API."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from dotenv import load_dotenv

load_dotenv()

LOGGER = logging.getLogger(__name__)

MEMORY_SQLITE_URL = "sqlite:///:memory:"
DEFAULT_SQLITE_PATH = "data/healthbot.db"


class Base(DeclarativeBase):
    """Base declarative class used by all ORM models."""


def _sqlite_file_path() -> Optional[str]:
    """Absolute path of the SQLite file, or None for an in-memory database."""
    configured = os.getenv("HEALTHBOT_SQLITE_PATH", DEFAULT_SQLITE_PATH)
    if configured == ":memory:":
        return None
    path = os.path.expanduser(configured)
    if not os.path.isabs(path):
        project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
        path = os.path.normpath(os.path.join(project_root, path))
    return path


def _build_database_url() -> str:
    """Resolve HEALTHBOT_DB_URL, falling back to a local SQLite file."""
    url = os.getenv("HEALTHBOT_DB_URL", "").strip()
    if url:
        return url
    path = _sqlite_file_path()
    if path is None:
        return MEMORY_SQLITE_URL
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return f"sqlite:///{path}"


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # Requests are served from a worker threadpool.
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_size"] = int(os.getenv("HEALTHBOT_DB_POOL_SIZE", "5"))
        options["max_overflow"] = int(os.getenv("HEALTHBOT_DB_MAX_OVERFLOW", "10"))
    return options


DATABASE_URL = _build_database_url()
engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False,
    future=True,
)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _configure_sqlite(target: Engine) -> None:
    with target.begin() as conn:
        # Refresh tokens and passcodes cascade from users.
        conn.execute(text("PRAGMA foreign_keys=ON"))
        if target.url.database not in (None, "", ":memory:"):
            conn.execute(text("PRAGMA journal_mode=WAL"))
            conn.execute(text("PRAGMA synchronous=NORMAL"))


def init_database(target: Optional[Engine] = None) -> None:
    """Ensure all ORM tables exist in the configured database."""
    from . import db_models  # noqa: F401  # pylint: disable=unused-import
    from .auth import models as auth_models  # noqa: F401  # pylint: disable=unused-import

    target = target or engine
    if target.dialect.name == "sqlite":
        _configure_sqlite(target)
    Base.metadata.create_all(bind=target)
    LOGGER.info("Database schema ensured at %s", target.url.render_as_string(hide_password=True))
