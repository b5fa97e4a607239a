"""Pydantic models for chat API requests and SSE event payloads.

Request bodies cover turn submission, approval replies and brainstorms. Each
engine event has a payload model; ``EVENT_MODELS`` maps the SSE event name to
it so the router can validate the engine's dataclasses directly.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from relay_server.engine.events import FinishReason
from relay_server.sessions.types import TodoStatus


class ChatRequest(BaseModel):
    """Request body for POST /api/v1/chat/{session_id}/stream."""

    message: str = Field(
        description="The user message. A leading '@role:' activates that role.",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"message": "List the files in the project root"},
                {"message": "@planner: Outline a migration to the new API"},
            ]
        }
    )


class RespondRequest(BaseModel):
    """Answer to the pending approval or planning request."""

    selections: list[str] | None = Field(
        default=None, description="Chosen options for a planning question"
    )
    feedback: str | None = Field(
        default=None,
        description="Plan confirmation: empty or 'y' confirms, 'n' rejects, else feedback",
    )
    decision: Literal["approve", "always", "reject"] | None = Field(
        default=None, description="Shell command or web search decision"
    )


class BrainstormRequest(BaseModel):
    """Request body for POST /api/v1/chat/{session_id}/brainstorm."""

    topic: str = Field(description="What the personas should brainstorm about")


class CancelResponse(BaseModel):
    session_id: str
    cancelled: bool = Field(description="False if no turn was running")


# --- SSE event payloads ---


class ToolCallResponse(BaseModel):
    """A tool call as exposed to API clients."""

    id: str
    name: str
    arguments: str
    type: str = "function"

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    """A single transcript message."""

    role: str = Field(description="Message role")
    content: str | None = Field(default="", description="Message content")
    message_id: str = Field(default="", description="Unique message identifier")
    timestamp: str = Field(default="", description="ISO 8601 timestamp")
    model: str | None = Field(default=None, description="Model that produced it")
    tool_calls: list[ToolCallResponse] | None = Field(
        default=None, description="Tool calls requested by the assistant"
    )
    tool_call_id: str | None = Field(default=None, description="Answered tool call")
    tool_name: str | None = Field(default=None, description="Name of the answered tool")

    model_config = ConfigDict(from_attributes=True)


class TodoItemResponse(BaseModel):
    content: str
    status: TodoStatus
    active_form: str = ""

    model_config = ConfigDict(from_attributes=True)


class _EventModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class TokenEvent(_EventModel):
    text: str


class ThinkingTokenEvent(_EventModel):
    text: str


class NewMessageEvent(_EventModel):
    message: MessageResponse


class StatusEvent(_EventModel):
    text: str


class UsageEvent(_EventModel):
    prompt_tokens: int
    completion_tokens: int


class TodoUpdateEvent(_EventModel):
    todos: list[TodoItemResponse]


class PlanningRequestEvent(_EventModel):
    question: str
    options: list[str]
    correlation_id: str


class ConfirmationRequestEvent(_EventModel):
    plan: str
    correlation_id: str


class BashApprovalRequestEvent(_EventModel):
    call: ToolCallResponse
    command: str


class WebSearchApprovalRequestEvent(_EventModel):
    call: ToolCallResponse
    query: str


class RoleSwitchEvent(_EventModel):
    from_role: str
    to_role: str


class RateLimitPauseEvent(_EventModel):
    seconds: int


class RateLimitResumeEvent(_EventModel):
    pass


class BrainstormTokenEvent(_EventModel):
    agent: str
    text: str


class BrainstormAgentDoneEvent(_EventModel):
    agent: str
    response: str


class BrainstormCompleteEvent(_EventModel):
    synthesis: str


class ErrorEvent(_EventModel):
    message: str


class FinishedEvent(_EventModel):
    reason: FinishReason


EVENT_MODELS: dict[str, type[_EventModel]] = {
    "token": TokenEvent,
    "thinking_token": ThinkingTokenEvent,
    "new_message": NewMessageEvent,
    "status": StatusEvent,
    "usage": UsageEvent,
    "todo_update": TodoUpdateEvent,
    "planning_request": PlanningRequestEvent,
    "confirmation_request": ConfirmationRequestEvent,
    "bash_approval_request": BashApprovalRequestEvent,
    "web_search_approval_request": WebSearchApprovalRequestEvent,
    "role_switch": RoleSwitchEvent,
    "rate_limit_pause": RateLimitPauseEvent,
    "rate_limit_resume": RateLimitResumeEvent,
    "brainstorm_token": BrainstormTokenEvent,
    "brainstorm_agent_done": BrainstormAgentDoneEvent,
    "brainstorm_complete": BrainstormCompleteEvent,
    "error": ErrorEvent,
    "finished": FinishedEvent,
}
