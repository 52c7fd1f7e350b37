"""
SQLAlchemy engine and session factory.

Usage:
    from db.engine import get_db, SessionLocal

    # Direct usage
    with SessionLocal() as db:
        session = db.get(ConversationSession, session_id)

    # Scoped usage with commit/rollback
    with get_db_context() as db:
        db.add(ConversationMessage(...))
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.pool import StaticPool

from config import Config


def build_engine(url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite URLs (used in tests and local runs) get a single shared
    connection usable across threads; everything else gets a pool.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before use
        pool_size=10,
        max_overflow=20,
        echo=False,  # Set to True for SQL debugging
    )


engine = build_engine(Config.DATABASE_URL)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# Base class for all models
Base = declarative_base()


def get_engine() -> Engine:
    """Get the SQLAlchemy engine."""
    return engine


def get_db() -> Generator[Session, None, None]:
    """Yield a session and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for non-FastAPI usage.

    Usage:
        with get_db_context() as db:
            db.add(...)
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
