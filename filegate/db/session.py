"""
FileGate Database Session Management.

init_db() builds the engine and session factory once; services receive the
factory and open short-lived sessions through session_scope().
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from filegate.db.base import Base

logger = logging.getLogger("filegate.db.session")

SessionFactory = Callable[[], Session]

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_db_engine(
    db_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> Engine:
    """
    Build an engine for *db_url*.

    SQLite URLs (tests, local dev) get a StaticPool so an in-memory database
    is shared by every session; other backends get a sized QueuePool.
    """
    if db_url.startswith("sqlite"):
        return create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
    )


def init_db(
    db_url: str,
    create_tables: bool = False,
    **pool_options: Any,
) -> sessionmaker:
    """
    Single entry point for database initialisation.

    1. Creates the engine (see create_db_engine).
    2. Optionally runs Base.metadata.create_all() — dev / tests only.
    3. Stores a module-level sessionmaker with expire_on_commit=False so
       records returned by services stay readable after their session closes.

    Returns:
        The sessionmaker; pass it to the services as their session factory.
    """
    global _engine, _session_factory

    # Importing the models registers every table on Base.metadata
    import filegate.db.models  # noqa: F401

    _engine = create_db_engine(db_url, **pool_options)
    if create_tables:
        Base.metadata.create_all(_engine)

    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info("Database initialised (%s)", _engine.url.render_as_string(hide_password=True))
    return _session_factory


def init_db_from_config(config: Any, create_tables: bool = False) -> sessionmaker:
    """Initialise the database from a FileGateConfig."""
    db = config.database
    options: Dict[str, Any] = {
        "pool_size": db.pool_size,
        "max_overflow": db.max_overflow,
        "pool_timeout": db.pool_timeout,
        "pool_recycle": db.pool_recycle,
        "pool_pre_ping": db.pool_pre_ping,
    }
    return init_db(db.url, create_tables=create_tables, **options)


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@contextmanager
def session_scope(factory: Optional[SessionFactory] = None) -> Generator[Session, None, None]:
    """
    Context manager for DB sessions with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            file = session.get(StoredFile, file_id)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_db() -> None:
    """Dispose the engine (close connection pool). Used during shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
