"""
Database module for Mira.

Provides SQLAlchemy models, engine, and repositories for session persistence.
"""

from db.engine import get_db, get_engine, SessionLocal, Base

__all__ = ["get_db", "get_engine", "SessionLocal", "Base"]
