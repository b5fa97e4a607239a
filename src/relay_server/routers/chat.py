"""Chat API endpoints.

This module provides the endpoints that drive a session's conversation:
submitting a turn, answering a pending approval or planning request,
cancelling the running turn, and running a brainstorm. Turns are executed by
a background worker; the SSE stream returned here is the consumer that
applies the worker's events to the session and forwards them to the client.
"""

import logging
from typing import Annotated, AsyncIterator

from fastapi import APIRouter, Depends, Request, status
from sse_starlette.sse import EventSourceResponse

from relay_server.dependencies import api_error, get_session_registry, load_runtime
from relay_server.engine.runtime import (
    ApprovalReply,
    NoPendingRequestError,
    RateLimitedError,
    SessionRegistry,
    SessionRuntime,
    TurnInProgressError,
)
from relay_server.models.chat import (
    EVENT_MODELS,
    BrainstormRequest,
    CancelResponse,
    ChatRequest,
    RespondRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])

Registry = Annotated[SessionRegistry, Depends(get_session_registry)]


def _turn_in_progress(session_id: str):
    return api_error(
        status.HTTP_409_CONFLICT,
        "turn_in_progress",
        f"Session {session_id} has a turn in progress",
        {"session_id": session_id},
    )


async def _event_stream(
    runtime: SessionRuntime, turn_id: str, request: Request
) -> AsyncIterator[dict]:
    """Generate SSE events for one turn."""
    async for event in runtime.events(turn_id, request.is_disconnected):
        payload = EVENT_MODELS[event.event_name].model_validate(event)
        yield {
            "event": event.event_name,
            "data": payload.model_dump_json(),
        }
    logger.debug(f"Event stream of turn {turn_id} closed")


@router.post("/{session_id}/stream")
async def chat_stream(
    session_id: str,
    body: ChatRequest,
    request: Request,
    registry: Registry,
) -> EventSourceResponse:
    """Send a message to a session and stream the turn via Server-Sent Events.

    A leading '@role:' directive activates that role. The API context is
    compressed if it is close to the model's limit, and the turn is held
    back if the session's rate window is nearly used up.

    Returns:
        EventSourceResponse with one SSE event per engine event

    SSE Events:
        - token / thinking_token: Streamed content and reasoning
        - new_message: A complete assistant or tool message
        - status, usage, todo_update, role_switch: Progress information
        - planning_request, confirmation_request, bash_approval_request,
          web_search_approval_request: The turn waits for /respond
        - rate_limit_pause / rate_limit_resume: Mid-turn pacing
        - error: The turn failed and file changes were rolled back
        - finished: The turn ended (completed, suspended, error, cancelled)

    Raises:
        HTTPException: 404 if session not found
        HTTPException: 400 if the message is empty
        HTTPException: 409 if a turn is already running
        HTTPException: 429 if the rate window is nearly exhausted
    """
    runtime = load_runtime(registry, session_id)

    if not body.message.strip():
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "empty_message",
            "Message must not be empty",
        )

    try:
        turn_id = runtime.submit_message(body.message)
    except TurnInProgressError:
        raise _turn_in_progress(session_id)
    except RateLimitedError as e:
        logger.warning(f"Session {session_id}: submission held back by rate limiter")
        raise api_error(
            status.HTTP_429_TOO_MANY_REQUESTS,
            "rate_limited",
            str(e),
            {"session_id": session_id},
        )

    return EventSourceResponse(_event_stream(runtime, turn_id, request))


@router.post("/{session_id}/respond")
async def respond(
    session_id: str,
    body: RespondRequest,
    request: Request,
    registry: Registry,
) -> EventSourceResponse:
    """Answer the pending request and stream the resumed turn.

    Planning questions take ``selections``, plan confirmations take
    ``feedback``, shell commands and web searches take ``decision``.

    Raises:
        HTTPException: 404 if session not found
        HTTPException: 409 if nothing is pending or a turn is running
    """
    runtime = load_runtime(registry, session_id)
    reply = ApprovalReply(
        selections=body.selections,
        feedback=body.feedback,
        decision=body.decision,
    )
    try:
        turn_id = await runtime.answer_pending(reply)
    except TurnInProgressError:
        raise _turn_in_progress(session_id)
    except NoPendingRequestError as e:
        raise api_error(
            status.HTTP_409_CONFLICT,
            "no_pending_request",
            str(e),
            {"session_id": session_id},
        )

    return EventSourceResponse(_event_stream(runtime, turn_id, request))


@router.post("/{session_id}/cancel", response_model=CancelResponse)
async def cancel(session_id: str, registry: Registry) -> CancelResponse:
    """Ask the running turn to stop.

    Cancellation is advisory: the worker stops at its next check, rolls back
    its file changes, and anything it still produces is discarded.
    """
    runtime = load_runtime(registry, session_id)
    cancelled = runtime.request_cancel()
    return CancelResponse(session_id=session_id, cancelled=cancelled)


@router.post("/{session_id}/brainstorm")
async def brainstorm(
    session_id: str,
    body: BrainstormRequest,
    request: Request,
    registry: Registry,
) -> EventSourceResponse:
    """Run a brainstorm between the personas and stream it.

    Raises:
        HTTPException: 400 if the topic is empty
        HTTPException: 409 if a turn is running
    """
    runtime = load_runtime(registry, session_id)
    topic = body.topic.strip()
    if not topic:
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            "empty_message",
            "Brainstorm topic must not be empty",
        )

    try:
        turn_id = runtime.start_brainstorm(topic)
    except TurnInProgressError:
        raise _turn_in_progress(session_id)

    return EventSourceResponse(_event_stream(runtime, turn_id, request))
