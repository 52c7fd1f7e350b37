"""
Repository layer for database operations.

Provides persistence for conversation sessions, state and messages.
"""

from db.repos.session_repo import SessionRepository

__all__ = ["SessionRepository"]
