"""
Session management for orchestrator instances.

Sessions are persisted to the database after every turn. Turns on one
session are serialised by an in-process lock; writers in other processes are
caught by the repository's version check.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, AsyncIterator

from db.repos import SessionRepository
from orchestrator.exceptions import StaleStateError
from orchestrator.main import Orchestrator
from orchestrator.state import Action

logger = logging.getLogger(__name__)


class SessionManager:
    """
    Manages orchestrator sessions.

    Orchestrators are cached per session id and rebuilt from the database
    on a cache miss. A stale write evicts the cached copy so the next turn
    starts from the stored state.
    """

    def __init__(
        self,
        repo: SessionRepository | None = None,
        orchestrator_factory: Callable[..., Orchestrator] | None = None,
    ):
        self.repo = repo or SessionRepository()
        self.orchestrator_factory = orchestrator_factory or Orchestrator
        self.sessions: dict[str, Orchestrator] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def create_session(self) -> tuple[Orchestrator, dict[str, Any]]:
        """Create and persist a new session. Returns the orchestrator and its opening payload."""
        session_id = self.repo.create_session()
        orchestrator = self.orchestrator_factory(session_id=session_id)
        result = orchestrator.start()
        self.repo.add_message(session_id, "assistant", result["reply"])
        self.sessions[session_id] = orchestrator
        return orchestrator, result

    def get_session(self, session_id: str) -> Orchestrator:
        """
        Get orchestrator for a session, loading it from the database if needed.

        Raises SessionNotFoundError for unknown ids.
        """
        orchestrator = self.sessions.get(session_id)
        if orchestrator is not None:
            return orchestrator

        state, version = self.repo.load_state(session_id)
        orchestrator = self.orchestrator_factory(
            session_id=session_id,
            state=state,
            history=self.repo.get_history(session_id),
            version=version,
        )
        self.sessions[session_id] = orchestrator
        logger.info("Resumed session %s at version %d", session_id, version)
        return orchestrator

    def evict(self, session_id: str) -> None:
        """Drop the cached orchestrator (DB record remains)."""
        self.sessions.pop(session_id, None)

    def _persist_turn(self, orchestrator: Orchestrator, user_input: str, result: dict[str, Any]) -> None:
        session_id = orchestrator.session_id
        decision = orchestrator.last_decision
        if decision is None or decision.action != Action.POST_COMPLETION:
            try:
                orchestrator.version = self.repo.save_state(session_id, orchestrator.state, orchestrator.version)
            except StaleStateError:
                logger.warning("Stale state for session %s, evicting cached orchestrator", session_id)
                self.evict(session_id)
                raise

        self.repo.add_message(session_id, "user", user_input)
        self.repo.add_message(
            session_id,
            "assistant",
            result["reply"],
            action=decision.action.value if decision else None,
            reasoning=decision.reasoning if decision else None,
        )

    async def stream_turn(self, session_id: str, user_input: str) -> AsyncIterator[dict[str, Any]]:
        """
        Run one turn, yielding the orchestrator's stream events.

        The turn is persisted before stream_end is yielded, so a version
        conflict surfaces as StaleStateError instead of a final reply.
        """
        async with self.lock_for(session_id):
            orchestrator = self.get_session(session_id)
            async for event in orchestrator.arespond_stream(user_input):
                if event["type"] == "stream_end":
                    self._persist_turn(orchestrator, user_input, event)
                yield event

    async def run_turn(self, session_id: str, user_input: str) -> dict[str, Any]:
        """Non-streaming turn; returns the stream_end payload."""
        result: dict[str, Any] = {}
        async for event in self.stream_turn(session_id, user_input):
            if event["type"] == "stream_end":
                result = event
        return result


_session_manager: SessionManager | None = None


def get_session_manager() -> SessionManager:
    """FastAPI dependency returning the process-wide session manager."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager
