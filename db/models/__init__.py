"""
SQLAlchemy models for the Mira database.

All models inherit from db.engine.Base for Alembic migrations.
"""

from db.models.sessions import ConversationSession, ConversationMessage

__all__ = [
    "ConversationSession",
    "ConversationMessage",
]
