"""Sessions router for chat session CRUD operations.

This module provides REST API endpoints for:
- Creating, listing, retrieving, updating and deleting sessions
- Getting the display transcript of a session
- Reporting context usage and in-memory state
- Clearing the conversation
- Toggling interactive planning mode
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from relay_server.dependencies import (
    api_error,
    get_session_registry,
    load_runtime,
    session_not_found,
)
from relay_server.engine.runtime import SessionRegistry, SessionRuntime
from relay_server.models.chat import MessageResponse, TodoItemResponse
from relay_server.models.sessions import (
    ContextResponse,
    CreateSessionRequest,
    MessagesResponse,
    PlanningModeResponse,
    RateWindowResponse,
    SessionDetailResponse,
    SessionListItem,
    SessionListResponse,
    SessionResponse,
    UpdateSessionRequest,
)
from relay_server.sessions import ChatSession, SessionCreationOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])

Registry = Annotated[SessionRegistry, Depends(get_session_registry)]


def _session_response(session: ChatSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        model=session.model,
        created_at=session.metadata.created_at,
        updated_at=session.metadata.updated_at,
        message_count=session.metadata.message_count,
        sandbox_enabled=session.metadata.sandbox_enabled,
        converse_mode=session.metadata.converse_mode,
        rate_limiter_enabled=session.metadata.rate_limiter_enabled,
        planning_enabled=session.planning_enabled,
    )


def _ensure_idle(runtime: SessionRuntime) -> None:
    if runtime.turn_active:
        raise api_error(
            status.HTTP_409_CONFLICT,
            "turn_in_progress",
            f"Session {runtime.session_id} has a turn in progress",
            {"session_id": runtime.session_id},
        )


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new session",
)
async def create_session(
    body: CreateSessionRequest,
    registry: Registry,
    request: Request,
) -> SessionResponse:
    """Create a new chat session.

    The model defaults to the configured default model. Optionally accepts a
    system prompt and the sandbox, converse and rate limiter flags.

    Raises:
        HTTPException: 400 if the model name is empty
    """
    settings = request.app.state.settings
    options = SessionCreationOptions(
        model=body.model if body.model is not None else settings.default_model,
        system_prompt=body.system_prompt,
        sandbox_enabled=body.sandbox_enabled,
        converse_mode=body.converse_mode,
        rate_limiter_enabled=body.rate_limiter_enabled,
    )
    try:
        session = registry.manager.create_session(options)
    except ValueError as e:
        logger.warning(f"Session creation failed: {e}")
        raise api_error(status.HTTP_400_BAD_REQUEST, "invalid_session", str(e))

    registry.attach(session)
    return _session_response(session)


@router.get(
    "",
    response_model=SessionListResponse,
    summary="List all sessions",
)
async def list_sessions(registry: Registry) -> SessionListResponse:
    """List all chat sessions, sorted by most recently updated."""
    items = [
        SessionListItem(
            session_id=session.session_id,
            model=session.model,
            created_at=session.metadata.created_at,
            updated_at=session.metadata.updated_at,
            message_count=session.metadata.message_count,
            preview=session.get_preview(),
        )
        for session in registry.manager.list_sessions()
    ]
    return SessionListResponse(sessions=items)


@router.get(
    "/{session_id}",
    response_model=SessionDetailResponse,
    summary="Get session details",
)
async def get_session(session_id: str, registry: Registry) -> SessionDetailResponse:
    """Get full details of a specific session including its display transcript.

    Raises:
        HTTPException: 404 if session not found
    """
    session = load_runtime(registry, session_id).session
    return SessionDetailResponse(
        **_session_response(session).model_dump(),
        messages=[MessageResponse.model_validate(m) for m in session.messages],
    )


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a session",
)
async def delete_session(session_id: str, registry: Registry) -> None:
    """Delete a chat session permanently.

    Raises:
        HTTPException: 404 if session not found
        HTTPException: 409 if a turn is running
    """
    runtime = load_runtime(registry, session_id)
    _ensure_idle(runtime)
    try:
        registry.manager.delete_session(session_id)
    except FileNotFoundError:
        raise session_not_found(session_id)
    registry.discard(session_id)


@router.patch(
    "/{session_id}",
    response_model=SessionResponse,
    summary="Update session settings",
)
async def update_session(
    session_id: str,
    body: UpdateSessionRequest,
    registry: Registry,
) -> SessionResponse:
    """Update the base model and the sandbox, converse and rate limiter flags.

    Changes take effect with the next turn.

    Raises:
        HTTPException: 404 if session not found
        HTTPException: 400 if the new model name is empty
    """
    runtime = load_runtime(registry, session_id)
    if body.model is not None and not body.model.strip():
        raise api_error(
            status.HTTP_400_BAD_REQUEST, "invalid_session", "Model name must not be empty"
        )

    session = registry.manager.update_session(
        runtime.session,
        model=body.model,
        sandbox_enabled=body.sandbox_enabled,
        converse_mode=body.converse_mode,
        rate_limiter_enabled=body.rate_limiter_enabled,
    )
    return _session_response(session)


@router.get(
    "/{session_id}/messages",
    response_model=MessagesResponse,
    summary="Get session messages",
)
async def get_messages(session_id: str, registry: Registry) -> MessagesResponse:
    """Get the display transcript of a session, including reasoning and notices."""
    session = load_runtime(registry, session_id).session
    return MessagesResponse(
        messages=[MessageResponse.model_validate(m) for m in session.messages]
    )


@router.get(
    "/{session_id}/context",
    response_model=ContextResponse,
    summary="Get context usage",
)
async def get_context(session_id: str, registry: Registry) -> ContextResponse:
    """Report the estimated API context size, rate window and session state."""
    runtime = load_runtime(registry, session_id)
    report = runtime.context_report()
    return ContextResponse(
        session_id=session_id,
        model=report["model"],
        estimated_tokens=report["estimated_tokens"],
        max_context=report["max_context"],
        percentage=report["percentage"],
        api_message_count=report["api_message_count"],
        last_prompt_tokens=report["last_prompt_tokens"],
        last_completion_tokens=report["last_completion_tokens"],
        rate_window=RateWindowResponse(
            tokens_used=report["tokens_used"],
            requests_used=report["requests_used"],
            tokens_per_minute=report["tokens_per_minute"],
            requests_per_minute=report["requests_per_minute"],
        ),
        active_role=report["active_role"],
        pending_request=report["pending_request"],
        turn_active=report["turn_active"],
        transaction=report["transaction"],
        todos=[TodoItemResponse.model_validate(t) for t in report["todos"]],
    )


@router.post(
    "/{session_id}/clear",
    response_model=SessionResponse,
    summary="Clear the conversation",
)
async def clear_session(session_id: str, registry: Registry) -> SessionResponse:
    """Drop all messages except a leading system prompt.

    Also forgets the todo list, the active role and any pending request.

    Raises:
        HTTPException: 409 if a turn is running
    """
    runtime = load_runtime(registry, session_id)
    _ensure_idle(runtime)
    runtime.session.clear()
    runtime.todos = []
    runtime.active_role = None
    runtime.pending_request = None
    runtime.save()
    return _session_response(runtime.session)


@router.post(
    "/{session_id}/plan",
    response_model=PlanningModeResponse,
    summary="Toggle interactive planning mode",
)
async def toggle_planning_mode(
    session_id: str, registry: Registry
) -> PlanningModeResponse:
    """Add or remove the planning mode instructions (ask, confirm, then execute)."""
    runtime = load_runtime(registry, session_id)
    _ensure_idle(runtime)
    session = runtime.session
    if session.planning_enabled:
        session.remove_planning_prompt()
    else:
        session.add_planning_prompt()
    runtime.save()
    return PlanningModeResponse(
        session_id=session_id, planning_enabled=session.planning_enabled
    )
