"""
Session models for conversation persistence.

ConversationSession: One Mira conversation and its serialized ConversationState
ConversationMessage: Chat history, with the decision that produced each reply
"""

from datetime import datetime
import uuid

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from db.engine import Base


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
StateJSON = JSON().with_variant(JSONB(), "postgresql")


class ConversationSession(Base):
    """
    Conversation session instance.

    The full ConversationState is stored as one JSON document. `version`
    increments on every save; writers must present the version they loaded
    (optimistic locking).
    """
    __tablename__ = "conversation_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    state = Column(StateJSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    # Denormalised for querying without parsing state
    phase = Column(String(20), nullable=False, default="context", index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    last_active_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    messages = relationship(
        "ConversationMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ConversationMessage.id",
    )

    def __repr__(self):
        return f"<ConversationSession(id={self.id}, phase={self.phase}, version={self.version})>"


class ConversationMessage(Base):
    """
    Chat message in a conversation session.
    """
    __tablename__ = "conversation_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("conversation_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    role = Column(String(20), nullable=False)  # user, assistant
    content = Column(Text, nullable=False)

    # Decision behind an assistant message; internal only
    action = Column(String(50), nullable=True)
    reasoning = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationship
    session = relationship("ConversationSession", back_populates="messages")

    def __repr__(self):
        return f"<ConversationMessage(id={self.id}, role={self.role})>"
