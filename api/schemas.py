"""
Pydantic schemas for API request/response models.
"""

from typing import Any

from pydantic import BaseModel, Field


# WebSocket Message Schemas

class WSMessage(BaseModel):
    """Base WebSocket message."""
    type: str


class WSAnswer(BaseModel):
    """Client → Server: User message."""
    type: str = "answer"
    answer: str


class WSError(BaseModel):
    """Server → Client: Error message."""
    type: str = "error"
    message: str


class WSSessionStart(BaseModel):
    """Server → Client: Session started, with the opening message."""
    type: str = "session_start"
    session_id: str
    reply: str
    phase: str


class WSStreamStart(BaseModel):
    """Server → Client: A reply is about to stream."""
    type: str = "stream_start"
    phase: str
    action: str


class WSStreamDelta(BaseModel):
    """Server → Client: Incremental reply text."""
    type: str = "stream_delta"
    delta: str


class WSStreamEnd(BaseModel):
    """
    Server → Client: Final reply.

    `replaced` is true when validation swapped the streamed text for a
    regenerated or fallback reply; clients should render `reply`.
    """
    type: str = "stream_end"
    reply: str
    replaced: bool = False
    phase: str
    turn: int
    complete: bool = False


# REST Schemas

class CreateSessionResponse(BaseModel):
    session_id: str
    reply: str
    phase: str


class TurnRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)


class TurnResponse(BaseModel):
    session_id: str
    reply: str
    phase: str
    turn: int
    complete: bool = False


class SessionStateResponse(BaseModel):
    """Debug view of a session: the full state plus the last decision."""
    session_id: str
    version: int
    phase: str
    complete: bool
    state: dict[str, Any]
    messages: list[dict[str, Any]] = []
