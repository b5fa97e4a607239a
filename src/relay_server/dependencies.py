"""Dependency injection providers for FastAPI endpoints.

This module provides FastAPI dependency functions that are used across
multiple routers to inject common dependencies like settings and services.
"""

import logging
from functools import lru_cache

from fastapi import HTTPException, Request

from relay_server.config import RelayServerSettings
from relay_server.engine.runtime import SessionRegistry, SessionRuntime

logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> RelayServerSettings:
    """Get the application settings instance.

    This function is cached so that the same settings instance is reused
    across all requests. Settings are loaded from environment variables
    with the RELAY_ prefix.

    Returns:
        RelayServerSettings: The application configuration settings.
    """
    return RelayServerSettings()


def get_session_registry(request: Request) -> SessionRegistry:
    """Get the registry of live session runtimes from app state.

    The registry is created during application startup and holds the
    per-session rate limiters, transactions and event channels.

    Args:
        request: The FastAPI request object.

    Returns:
        SessionRegistry: The shared registry instance.

    Raises:
        HTTPException: If the registry is not initialized (503 Service Unavailable).
    """
    if not hasattr(request.app.state, "session_registry"):
        raise HTTPException(
            status_code=503,
            detail="Session registry not initialized",
        )
    return request.app.state.session_registry


def api_error(
    status_code: int, code: str, message: str, details: dict | None = None
) -> HTTPException:
    """Build an HTTPException with the standard error body."""
    return HTTPException(
        status_code=status_code,
        detail={
            "error": {
                "code": code,
                "message": message,
                "details": details or {},
            }
        },
    )


def session_not_found(session_id: str) -> HTTPException:
    return api_error(
        404,
        "session_not_found",
        f"Session {session_id} not found",
        {"session_id": session_id},
    )


def load_runtime(registry: SessionRegistry, session_id: str) -> SessionRuntime:
    """Get a session's runtime, translating load failures into API errors.

    Raises:
        HTTPException: 404 if the session doesn't exist, 500 if it can't be read
    """
    try:
        return registry.get(session_id)
    except FileNotFoundError:
        raise session_not_found(session_id)
    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"Failed to load session {session_id}: {e}")
        raise api_error(
            500,
            "session_load_error",
            f"Failed to load session: {str(e)}",
        )
