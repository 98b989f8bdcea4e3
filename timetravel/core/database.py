"""
Database connection management and initialization.

Supports both SQLite (local dev) and PostgreSQL (production) via DATABASE_URL.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlmodel import Session, SQLModel, create_engine

from timetravel.core.config import get_settings


# Global engine instance
_engine: Engine | None = None
_DB_PATH: Path | None = None


def _is_postgres() -> bool:
    """Check if using PostgreSQL database."""
    return get_database_url().startswith("postgresql")


def get_database_url() -> str:
    """Get database URL from settings or default to SQLite.

    Handles Railway's postgres:// URL format by converting to postgresql://.
    A path set through set_db_path() always wins.
    """
    database_url = get_settings().database_url

    if database_url and _DB_PATH is None:
        # Railway uses postgres:// but SQLAlchemy requires postgresql://
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)
        return database_url

    return f"sqlite:///{get_db_path()}"


def get_db_path() -> Path:
    """Get the SQLite database file path (used when DATABASE_URL not set)."""
    global _DB_PATH
    if _DB_PATH is None:
        data_dir = Path(get_settings().data_dir)
        data_dir.mkdir(exist_ok=True)
        return data_dir / "timetravel.db"
    return _DB_PATH


def set_db_path(path: Path | str) -> None:
    """Set a custom database path (useful for testing)."""
    global _DB_PATH, _engine
    _DB_PATH = Path(path)
    _engine = None  # Reset engine when path changes


def get_engine() -> Engine:
    """Get SQLAlchemy engine for database operations."""
    global _engine
    if _engine is None:
        database_url = get_database_url()

        # SQLite-specific connection args
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        _engine = create_engine(database_url, echo=False, connect_args=connect_args)
    return _engine


def reset_engine() -> None:
    """Reset the engine (useful for testing or reconfiguration)."""
    global _engine
    _engine = None


@contextmanager
def get_db() -> Generator[Connection, None, None]:
    """Get a database connection.

    Usage:
        with get_db() as conn:
            rows = conn.execute(compile_query(query)).fetchall()
    """
    engine = get_engine()
    with engine.connect() as conn:
        # Enable foreign keys for SQLite
        if not _is_postgres():
            conn.execute(text("PRAGMA foreign_keys = ON"))
        yield conn


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get an ORM session whose instances stay readable after commit."""
    with Session(get_engine(), expire_on_commit=False) as session:
        yield session


def init_db() -> None:
    """Initialize database schema.

    Creates all tables if they don't exist. Safe to call multiple times.
    """
    # Table classes register themselves on import
    from timetravel.core import models  # noqa: F401

    SQLModel.metadata.create_all(get_engine())


def reset_db() -> None:
    """Drop and recreate every table."""
    from timetravel.core import models  # noqa: F401

    SQLModel.metadata.drop_all(get_engine())
    SQLModel.metadata.create_all(get_engine())


@contextmanager
def use_connection(conn: Connection | None = None) -> Generator[Connection, None, None]:
    """Reuse ``conn`` when given, otherwise open a connection for the block."""
    if conn is not None:
        yield conn
        return
    with get_db() as new_conn:
        yield new_conn
