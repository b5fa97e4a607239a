"""Pydantic models for session API requests and responses."""

from pydantic import BaseModel, Field

from relay_server.models.chat import MessageResponse, TodoItemResponse


class CreateSessionRequest(BaseModel):
    """Request body for creating a new session."""

    model: str | None = Field(
        None, description="Base model for this session (default: settings.default_model)"
    )
    system_prompt: str | None = Field(
        None, description="Optional system prompt content"
    )
    sandbox_enabled: bool = Field(
        False, description="Restrict file tools to the workspace directory"
    )
    converse_mode: bool = Field(False, description="Advertise no tools to the model")
    rate_limiter_enabled: bool = Field(
        True, description="Pace requests against the model's rate limits"
    )


class UpdateSessionRequest(BaseModel):
    """Request body for updating a session."""

    model: str | None = Field(None, description="New base model")
    sandbox_enabled: bool | None = None
    converse_mode: bool | None = None
    rate_limiter_enabled: bool | None = None


class SessionResponse(BaseModel):
    """Response model for a single session (metadata only)."""

    session_id: str
    model: str
    created_at: str
    updated_at: str
    message_count: int
    sandbox_enabled: bool
    converse_mode: bool
    rate_limiter_enabled: bool
    planning_enabled: bool = False


class SessionListItem(BaseModel):
    """A session item in the list response."""

    session_id: str
    model: str
    created_at: str
    updated_at: str
    message_count: int
    preview: str = Field("", description="Preview of first user message")


class SessionListResponse(BaseModel):
    sessions: list[SessionListItem]


class SessionDetailResponse(SessionResponse):
    """Session metadata with the full display transcript."""

    messages: list[MessageResponse]


class MessagesResponse(BaseModel):
    messages: list[MessageResponse]


class RateWindowResponse(BaseModel):
    tokens_used: int
    requests_used: int
    tokens_per_minute: int
    requests_per_minute: int


class ContextResponse(BaseModel):
    """Context usage and in-memory state of a session.

    Attributes:
        estimated_tokens: Estimated size of the API context
        percentage: Estimated tokens as a share of the model's context
        rate_window: Consumption in the current rate limit window
        pending_request: Event name of the request awaiting an answer, if any
    """

    session_id: str
    model: str
    estimated_tokens: int
    max_context: int
    percentage: float
    api_message_count: int
    last_prompt_tokens: int
    last_completion_tokens: int
    rate_window: RateWindowResponse
    active_role: str | None = None
    pending_request: str | None = None
    turn_active: bool = False
    transaction: str
    todos: list[TodoItemResponse] = Field(default_factory=list)


class PlanningModeResponse(BaseModel):
    session_id: str
    planning_enabled: bool
