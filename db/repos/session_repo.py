"""
Session repository for conversation session operations.

Handles session creation, state loading, versioned state saves and message
history. State is stored as the JSON dump of ConversationState.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from db.engine import SessionLocal
from db.models.sessions import ConversationSession, ConversationMessage
from orchestrator.exceptions import SessionNotFoundError, StaleStateError
from orchestrator.state import ConversationState

logger = logging.getLogger(__name__)


def _parse_id(session_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(session_id))
    except ValueError:
        raise SessionNotFoundError(f"Session {session_id} not found", data={"session_id": session_id})


class SessionRepository:
    """
    Repository for session operations.

    Saves use optimistic locking: a save must name the version it loaded and
    fails with StaleStateError when another writer got there first.
    """

    def __init__(self, db: Session | None = None):
        """Initialize with optional session (for dependency injection)."""
        self._db = db

    def _get_session(self) -> Session:
        """Get database session."""
        if self._db:
            return self._db
        return SessionLocal()

    def _should_close_session(self) -> bool:
        """Check if we should close the session after operations."""
        return self._db is None

    def create_session(self, state: ConversationState | None = None) -> str:
        """Create a new conversation session and return its ID."""
        state = state or ConversationState()
        db = self._get_session()
        try:
            session = ConversationSession(
                state=state.model_dump(mode="json"),
                version=1,
                phase=state.phase.value,
            )
            db.add(session)
            db.commit()
            db.refresh(session)
            logger.info("Created session %s", session.id)
            return str(session.id)
        finally:
            if self._should_close_session():
                db.close()

    def get_session(self, session_id: str) -> ConversationSession | None:
        """Get session row by ID."""
        db = self._get_session()
        try:
            return db.execute(
                select(ConversationSession).where(ConversationSession.id == _parse_id(session_id))
            ).scalar_one_or_none()
        finally:
            if self._should_close_session():
                db.close()

    def load_state(self, session_id: str) -> tuple[ConversationState, int]:
        """
        Load a session's state and the version it was saved at.

        Raises SessionNotFoundError for unknown ids.
        """
        db = self._get_session()
        try:
            row = db.execute(
                select(ConversationSession.state, ConversationSession.version)
                .where(ConversationSession.id == _parse_id(session_id))
            ).one_or_none()
            if row is None:
                raise SessionNotFoundError(f"Session {session_id} not found", data={"session_id": session_id})
            return ConversationState.model_validate(row.state), row.version
        finally:
            if self._should_close_session():
                db.close()

    def save_state(self, session_id: str, state: ConversationState, expected_version: int) -> int:
        """
        Save state if the stored version still equals expected_version.

        Returns the new version. Raises StaleStateError when the version has
        moved on, SessionNotFoundError when the session does not exist.
        """
        db = self._get_session()
        try:
            result = db.execute(
                update(ConversationSession)
                .where(
                    ConversationSession.id == _parse_id(session_id),
                    ConversationSession.version == expected_version,
                )
                .values(
                    state=state.model_dump(mode="json"),
                    phase=state.phase.value,
                    version=expected_version + 1,
                    last_active_at=datetime.utcnow(),
                )
            )
            if result.rowcount == 0:
                db.rollback()
                exists = db.execute(
                    select(ConversationSession.version).where(ConversationSession.id == _parse_id(session_id))
                ).scalar_one_or_none()
                if exists is None:
                    raise SessionNotFoundError(f"Session {session_id} not found", data={"session_id": session_id})
                raise StaleStateError(
                    f"Session {session_id} was updated concurrently",
                    data={"session_id": session_id, "expected_version": expected_version, "current_version": exists},
                )
            db.commit()
            return expected_version + 1
        finally:
            if self._should_close_session():
                db.close()

    def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        action: str | None = None,
        reasoning: str | None = None,
    ) -> None:
        """Add a message to conversation history."""
        db = self._get_session()
        try:
            message = ConversationMessage(
                session_id=_parse_id(session_id),
                role=role,
                content=content,
                action=action,
                reasoning=reasoning,
            )
            db.add(message)
            db.commit()
        finally:
            if self._should_close_session():
                db.close()

    def get_messages(self, session_id: str, limit: int = 100) -> list[dict[str, Any]]:
        """Get conversation messages for a session, oldest first."""
        db = self._get_session()
        try:
            messages = db.execute(
                select(ConversationMessage)
                .where(ConversationMessage.session_id == _parse_id(session_id))
                .order_by(ConversationMessage.id.desc())
                .limit(limit)
            ).scalars().all()
            return [
                {
                    "role": m.role,
                    "content": m.content,
                    "action": m.action,
                    "reasoning": m.reasoning,
                    "created_at": m.created_at.isoformat() if m.created_at else None,
                }
                for m in reversed(messages)
            ]
        finally:
            if self._should_close_session():
                db.close()

    def get_history(self, session_id: str, limit: int = 100) -> list[dict[str, str]]:
        """Role/content pairs suitable for the orchestrator's history."""
        return [
            {"role": m["role"], "content": m["content"]}
            for m in self.get_messages(session_id, limit)
        ]

    def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages."""
        db = self._get_session()
        try:
            session = db.execute(
                select(ConversationSession).where(ConversationSession.id == _parse_id(session_id))
            ).scalar_one_or_none()
            if not session:
                return False
            db.delete(session)
            db.commit()
            return True
        finally:
            if self._should_close_session():
                db.close()
