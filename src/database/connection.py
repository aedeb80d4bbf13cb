"""
Database Connection Module

Provides synchronous engine and session management for the role-assignment
and business-rule stores.

Usage:
    engine = create_sync_engine(settings)
    factory = create_session_factory(engine)

    with session_scope(factory) as session:
        session.add(record)
"""

import logging
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, QueuePool

from config.database import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def create_sync_engine(settings: Optional[DatabaseSettings] = None, **overrides) -> Engine:
    """
    Create a synchronous SQLAlchemy engine.

    Args:
        settings: Database settings. If None, loads from environment.
        **overrides: Passed straight to `create_engine` (e.g. poolclass for tests).

    Returns:
        Engine: Synchronous SQLAlchemy engine.
    """
    settings = settings or get_database_settings()

    logger.info(
        "Creating sync database engine",
        extra={"extra_data": {
            "driver": settings.driver,
            "database": str(settings.sqlite_path) if settings.is_sqlite else settings.name,
        }},
    )

    # Pool configuration differs for SQLite vs PostgreSQL
    if settings.is_sqlite:
        kwargs = {"poolclass": NullPool}
    else:
        kwargs = {
            "poolclass": QueuePool,
            "pool_size": settings.pool_size,
            "max_overflow": settings.max_overflow,
            "pool_pre_ping": settings.pool_pre_ping,
        }
    kwargs.update(overrides)

    return create_engine(settings.url, echo=settings.echo_sql, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    """
    Create the session factory used by the SQLAlchemy stores.

    Args:
        engine: Engine to bind sessions to.

    Returns:
        sessionmaker: Factory for creating sync sessions.
    """
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
    )


@contextmanager
def session_scope(session_factory: SessionFactory) -> Generator[Session, None, None]:
    """
    Transactional scope around a series of operations.

    Usage:
        with session_scope(factory) as session:
            session.add(new_record)

    Yields:
        Session: SQLAlchemy session that auto-commits on success, rollbacks on error.
    """
    session = session_factory()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_schema(engine: Engine) -> None:
    """Create all tables known to the declarative Base (development and tests)."""
    from database.models import Base

    Base.metadata.create_all(engine)
    logger.info("Database schema created")
