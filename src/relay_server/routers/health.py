"""Health check endpoint router."""

import logging

from fastapi import APIRouter, Request

from relay_server.models.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Returns the current health status and version of the relay-server and
    the provider endpoint it forwards conversations to.

    Args:
        request: The FastAPI request object.

    Returns:
        HealthResponse: Health status and version information.
    """
    from relay_server import __version__

    settings = request.app.state.settings
    return HealthResponse(
        status="ok",
        version=__version__,
        provider_url=settings.provider_url,
    )
