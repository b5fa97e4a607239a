"""FastAPI routers for API endpoints.

This package contains all route handlers organized by resource type.
Each router module defines endpoints for a specific domain (health, models,
sessions, chat).
"""

from relay_server.routers import chat, health, models, sessions

__all__ = [
    "chat",
    "health",
    "models",
    "sessions",
]
