"""Health check response model."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for the health check endpoint.

    Attributes:
        status: Health status indicator ("ok").
        version: The version of relay-server.
        provider_url: The chat completions endpoint requests are sent to.
    """

    status: str = Field(..., description="Health status of the service")
    version: str = Field(..., description="Version of relay-server")
    provider_url: str = Field(..., description="Chat completions endpoint URL")
