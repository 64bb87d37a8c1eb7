"""
Database connection management for dqscan.

A process-wide SQLAlchemy engine and session factory are created lazily
from the configured ``database_url``. Sessions do not expire objects on
commit so that loaded rows stay readable after the session closes.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from dqscan.config import get_config, DQScanConfig

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_db_path(config: Optional[DQScanConfig] = None) -> Optional[Path]:
    """
    Get the SQLite database file path.

    Args:
        config: dqscan configuration (uses global if not provided)

    Returns:
        Path to the SQLite file, or None for non-file databases
    """
    if config is None:
        config = get_config()

    db_url = config.database_url
    if db_url.startswith("sqlite:///") and db_url != "sqlite:///:memory:":
        return Path(db_url[len("sqlite:///"):])
    return None


def init_engine(config: Optional[DQScanConfig] = None) -> Engine:
    """
    Initialize the SQLAlchemy engine.

    Args:
        config: dqscan configuration (uses global if not provided)

    Returns:
        Configured SQLAlchemy engine
    """
    global _engine

    if _engine is not None:
        return _engine

    if config is None:
        config = get_config()

    is_sqlite = config.database_url.startswith("sqlite")
    db_path = get_db_path(config)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}
    _engine = create_engine(
        config.database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=False,
    )

    if is_sqlite:
        @event.listens_for(_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable SQLite foreign key support."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.debug(f"Database engine initialized: {config.database_url}")
    return _engine


def get_session_maker(config: Optional[DQScanConfig] = None) -> sessionmaker:
    """
    Get or create the session maker.

    Args:
        config: dqscan configuration (uses global if not provided)

    Returns:
        Configured session maker
    """
    global _SessionLocal

    if _SessionLocal is not None:
        return _SessionLocal

    engine = init_engine(config)
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )

    return _SessionLocal


@contextmanager
def get_db_session(config: Optional[DQScanConfig] = None) -> Generator[Session, None, None]:
    """
    Get a database session context manager.

    Usage:
        with get_db_session() as session:
            schedule = session.query(ScanSchedule).first()

    The session is committed on success and rolled back on error.

    Args:
        config: dqscan configuration (uses global if not provided)

    Yields:
        SQLAlchemy Session
    """
    session_maker = get_session_maker(config)
    session = session_maker()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(config: Optional[DQScanConfig] = None) -> None:
    """
    Create all database tables that do not exist yet.

    Args:
        config: dqscan configuration (uses global if not provided)
    """
    from dqscan.database.models import Base

    engine = init_engine(config)
    Base.metadata.create_all(bind=engine)
    logger.debug("Database tables created")


def dispose_engine() -> None:
    """Dispose of the engine and forget the session factory."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
