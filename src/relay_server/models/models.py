"""Pydantic models for the model and role listing endpoints."""

from pydantic import BaseModel, Field


class ModelDetail(BaseModel):
    """Limits configured for a single model.

    Attributes:
        name: Model name as sent to the provider (e.g., "grok-3")
        max_context: Maximum context window size in tokens
        tokens_per_minute: Token budget of one rate limit window
        requests_per_minute: Request budget of one rate limit window
        is_default: Whether new sessions use this model by default
    """

    name: str = Field(..., description="Model name")
    max_context: int = Field(..., description="Maximum context window in tokens")
    tokens_per_minute: int = Field(..., description="Tokens per minute limit")
    requests_per_minute: int = Field(..., description="Requests per minute limit")
    is_default: bool = Field(False, description="Default model for new sessions")


class ModelListResponse(BaseModel):
    models: list[ModelDetail] = Field(..., description="Configured models")


class RoleDetail(BaseModel):
    """A role that can be activated with '@name:'."""

    name: str
    model: str
    prompt: str | None = None


class RoleListResponse(BaseModel):
    roles: list[RoleDetail]
