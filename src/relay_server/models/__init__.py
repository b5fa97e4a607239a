"""Pydantic models for API request and response schemas.

This package contains all Pydantic models used for validating and
serializing API requests, responses, and SSE event payloads.
"""

from relay_server.models.chat import (
    EVENT_MODELS,
    BrainstormRequest,
    CancelResponse,
    ChatRequest,
    MessageResponse,
    RespondRequest,
)
from relay_server.models.health import HealthResponse
from relay_server.models.models import ModelListResponse, RoleListResponse
from relay_server.models.sessions import (
    ContextResponse,
    CreateSessionRequest,
    SessionListResponse,
    SessionResponse,
    UpdateSessionRequest,
)

__all__ = [
    "EVENT_MODELS",
    "BrainstormRequest",
    "CancelResponse",
    "ChatRequest",
    "ContextResponse",
    "CreateSessionRequest",
    "HealthResponse",
    "MessageResponse",
    "ModelListResponse",
    "RespondRequest",
    "RoleListResponse",
    "SessionListResponse",
    "SessionResponse",
    "UpdateSessionRequest",
]
