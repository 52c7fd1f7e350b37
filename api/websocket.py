"""
WebSocket handler for real-time bidirectional communication.

Uses ``SessionManager.stream_turn()`` to send
``stream_start → stream_delta* → stream_end`` events.
"""

import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from api.schemas import (
    WSAnswer,
    WSError,
    WSSessionStart,
    WSStreamDelta,
    WSStreamEnd,
    WSStreamStart,
)
from api.sessions import SessionManager
from orchestrator.exceptions import SessionNotFoundError, StaleStateError

logger = logging.getLogger(__name__)


async def _handle_streaming_response(
    websocket: WebSocket,
    manager: SessionManager,
    session_id: str,
    user_input: str,
) -> None:
    """
    Iterate over manager.stream_turn() and send WS messages.

    The generator yields dicts with ``type`` in
    {``stream_start``, ``stream_delta``, ``stream_end``}.
    """
    async for event in manager.stream_turn(session_id, user_input):
        event_type = event.get("type")

        if event_type == "stream_start":
            await websocket.send_json(
                WSStreamStart(phase=event["phase"], action=event["action"]).model_dump()
            )

        elif event_type == "stream_delta":
            await websocket.send_json(
                WSStreamDelta(delta=event.get("delta", "")).model_dump()
            )

        elif event_type == "stream_end":
            await websocket.send_json(_stream_end_payload(event))


def _stream_end_payload(result: dict[str, Any]) -> dict[str, Any]:
    # action and reasoning stay server-side
    return WSStreamEnd(
        reply=result["reply"],
        replaced=result.get("replaced", False),
        phase=result["phase"],
        turn=result["turn"],
        complete=result.get("complete", False),
    ).model_dump()


async def websocket_handler(websocket: WebSocket, manager: SessionManager, session_id: str | None = None):
    """
    Handle WebSocket connection for a Mira conversation.

    Flow:
    1. Client connects with optional session_id
    2. If no session_id, create a new session and send the opening message
    3. Receive answers, send streaming replies
    4. Continue until the client disconnects
    """
    await websocket.accept()

    try:
        if session_id:
            try:
                manager.get_session(session_id)
            except SessionNotFoundError:
                await websocket.send_json(
                    WSError(message=f"Session {session_id} not found").model_dump()
                )
                await websocket.close()
                return
        else:
            try:
                orchestrator, result = manager.create_session()
            except Exception as e:
                logger.exception("Failed to start session")
                await websocket.send_json(
                    WSError(message=f"Failed to start session: {str(e)}").model_dump()
                )
                await websocket.close()
                return
            session_id = orchestrator.session_id
            await websocket.send_json(
                WSSessionStart(
                    session_id=session_id,
                    reply=result["reply"],
                    phase=result["phase"],
                ).model_dump()
            )

        # Main loop: receive answers, send streaming replies
        while True:
            data = await websocket.receive_text()

            try:
                answer_msg = WSAnswer(**json.loads(data))
            except json.JSONDecodeError:
                await websocket.send_json(
                    WSError(message="Invalid JSON format").model_dump()
                )
                continue
            except ValidationError as e:
                await websocket.send_json(
                    WSError(message=f"Invalid message: {e.errors()[0]['msg']}").model_dump()
                )
                continue

            if answer_msg.type != "answer":
                await websocket.send_json(
                    WSError(message=f"Expected 'answer' message, got '{answer_msg.type}'").model_dump()
                )
                continue

            try:
                await _handle_streaming_response(websocket, manager, session_id, answer_msg.answer)
            except StaleStateError:
                await websocket.send_json(
                    WSError(message="This conversation was updated elsewhere. Please send your message again.").model_dump()
                )
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.exception("Error in streaming response")
                await websocket.send_json(
                    WSError(message=f"Error processing response: {str(e)}").model_dump()
                )

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected for session %s", session_id)
