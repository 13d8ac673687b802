"""FastAPI surface for the chat command engine."""

import logging

from fastapi import FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from taskchat.commands.pending_actions import RedisPendingActionManager
from taskchat.commands.router import CommandRouter
from taskchat.config import get_engine_config
from taskchat.db import init_db
from taskchat.db.chat_messages import SessionStore, get_session_messages, normalize_messages
from taskchat.db.entities import DuckDBEntityStore
from taskchat.delegate import get_delegate
from taskchat.logging_utils import clear_request_id, log_info, set_request_id
from taskchat.metrics import get_metrics_collector, is_metrics_enabled
from taskchat.models import (
    ChatMessageModel,
    ChatRequest,
    ChatResponse,
    PendingConfirmationModel,
    SessionMessagesResponse,
)
from taskchat.redis_client import get_redis_client

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)
app = FastAPI(
    title="TaskChat API",
    version="1.0.0",
    description="Conversational command layer for projects, goals, tasks and milestones",
)

DEFAULT_OWNER_ID = "default"

# Database connection (initialized lazily)
_db_conn = None

_pending_action_manager: RedisPendingActionManager | None = None
# owner_id -> CommandRouter
_routers: dict[str, CommandRouter] = {}


def get_db():
    """Get or initialize database connection.

    Uses DUCKDB_PATH environment variable or defaults to data/taskchat.db.
    Tests set DUCKDB_PATH=:memory: in conftest.py for isolation.
    """
    global _db_conn
    if _db_conn is None:
        _db_conn = init_db()
    return _db_conn


def get_pending_action_manager() -> RedisPendingActionManager:
    global _pending_action_manager
    if _pending_action_manager is None:
        _pending_action_manager = RedisPendingActionManager(
            redis_client=get_redis_client(),
            default_expiry_seconds=get_engine_config().confirmation_expiry_seconds,
        )
    return _pending_action_manager


def get_command_router(owner_id: str) -> CommandRouter:
    """Get or initialize the command router for an owner.

    Routers of other owners whose sessions have all gone idle are dropped.
    """
    _prune_routers(keep=owner_id)
    router = _routers.get(owner_id)
    if router is None:
        db = get_db()
        router = CommandRouter(
            store_factory=lambda: DuckDBEntityStore(db, owner_id),
            session_store_factory=lambda session_id: SessionStore(db, owner_id, session_id),
            delegate=get_delegate(),
            pending_actions=get_pending_action_manager(),
            metrics=get_metrics_collector() if is_metrics_enabled() else None,
            owner_id=owner_id,
        )
        _routers[owner_id] = router
    return router


def _prune_routers(keep: str) -> None:
    for owner_id, router in list(_routers.items()):
        if owner_id == keep:
            continue
        router.evict_idle()
        if router.session_count == 0:
            del _routers[owner_id]


def reset_state() -> None:
    """Drop cached connections and routers (used by tests)."""
    global _db_conn, _pending_action_manager
    _db_conn = None
    _pending_action_manager = None
    _routers.clear()


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/v1/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    x_user_id: str | None = Header(default=None),
    x_request_id: str | None = Header(default=None),
) -> ChatResponse:
    """Submit one chat message.

    Returns 409 when a message for the same session is still being handled.
    """
    owner_id = x_user_id or DEFAULT_OWNER_ID
    set_request_id(x_request_id)
    try:
        return await _submit(owner_id, request)
    finally:
        clear_request_id()


async def _submit(owner_id: str, request: ChatRequest) -> ChatResponse:
    log_info(logger, "Chat submission received", session_id=request.session_id)
    session = get_command_router(owner_id).get_session(request.session_id)

    if not request.text.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "empty_message", "message": "Message text must not be empty"},
        )
    if session.is_sending:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "send_in_flight",
                "message": "A message for this session is still being handled",
            },
        )

    result = await session.submit(request.text)

    if not result.accepted:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "send_in_flight",
                "message": "A message for this session is still being handled",
            },
        )

    return ChatResponse(
        status=result.status,
        intent=result.intent,
        messages=[ChatMessageModel(**message.to_dict()) for message in result.messages],
        suggestions=result.suggestions,
        pending_confirmation=(
            PendingConfirmationModel(**result.pending_confirmation) if result.pending_confirmation else None
        ),
        retry_text=result.retry_text,
    )


@app.get("/v1/sessions/{session_id}/messages", response_model=SessionMessagesResponse)
def list_session_messages(
    session_id: str,
    limit: int = 200,
    x_user_id: str | None = Header(default=None),
) -> SessionMessagesResponse:
    """Return the durable log of a session, oldest first."""
    owner_id = x_user_id or DEFAULT_OWNER_ID
    if limit < 1 or limit > 1000:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_limit", "message": "limit must be between 1 and 1000"},
        )
    rows = get_session_messages(get_db(), owner_id, session_id, limit=limit)
    return SessionMessagesResponse(
        session_id=session_id,
        messages=[ChatMessageModel(**m.to_dict()) for m in normalize_messages(rows)],
    )


@app.get("/v1/metrics")
def get_metrics():
    """Return in-process metrics when TASKCHAT_ENABLE_METRICS is set."""
    if not is_metrics_enabled():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "metrics_disabled", "message": "Metrics are not enabled"},
        )
    return get_metrics_collector().get_snapshot()


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPExceptions and return the Error schema."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail)

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "http_error", "message": str(exc.detail)},
    )
