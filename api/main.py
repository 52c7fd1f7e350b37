"""
FastAPI application for the Mira conversation orchestrator.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from api.errors import register_exception_handlers
from api.schemas import CreateSessionResponse, SessionStateResponse, TurnRequest, TurnResponse
from api.sessions import SessionManager, get_session_manager
from api.websocket import websocket_handler
from config import Config

# Configure loggers for the orchestrator, agents and API
for _name in ("orchestrator", "agents", "api", "db"):
    _logger = logging.getLogger(_name)
    _logger.setLevel(logging.INFO)
    if not _logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        formatter = logging.Formatter(
            '[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )
        console_handler.setFormatter(formatter)
        _logger.addHandler(console_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown."""
    # Validate configuration on startup
    Config.validate()
    yield


app = FastAPI(
    title="Mira API",
    description="REST and WebSocket API for Mira diagnostic conversations",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.websocket("/ws")
async def websocket_new_session(
    websocket: WebSocket,
    manager: SessionManager = Depends(get_session_manager),
):
    """WebSocket endpoint for new session (no session_id)."""
    await websocket_handler(websocket, manager, session_id=None)


@app.websocket("/ws/{session_id}")
async def websocket_existing_session(
    websocket: WebSocket,
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
):
    """WebSocket endpoint for existing session."""
    await websocket_handler(websocket, manager, session_id=session_id)


@app.post("/sessions", status_code=201)
async def create_session(manager: SessionManager = Depends(get_session_manager)) -> CreateSessionResponse:
    """Start a conversation and return Mira's opening message."""
    orchestrator, result = manager.create_session()
    return CreateSessionResponse(
        session_id=orchestrator.session_id,
        reply=result["reply"],
        phase=result["phase"],
    )


@app.post("/sessions/{session_id}/turns")
async def post_turn(
    session_id: str,
    body: TurnRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> TurnResponse:
    """
    Send one user message and get Mira's reply.

    404 for unknown sessions, 409 when the session was updated concurrently.
    """
    result = await manager.run_turn(session_id, body.message)
    return TurnResponse(
        session_id=session_id,
        reply=result["reply"],
        phase=result["phase"],
        turn=result["turn"],
        complete=result["complete"],
    )


@app.get("/sessions/{session_id}/state")
async def get_state(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionStateResponse:
    """Debug view: stored state and message log, including decision reasoning."""
    state, version = manager.repo.load_state(session_id)
    return SessionStateResponse(
        session_id=session_id,
        version=version,
        phase=state.phase.value,
        complete=state.is_complete,
        state=state.model_dump(mode="json"),
        messages=manager.repo.get_messages(session_id),
    )


@app.get("/health")
async def health():
    """Health check."""
    return {"status": "healthy"}
