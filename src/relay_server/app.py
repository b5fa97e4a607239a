"""FastAPI application factory and lifespan management.

This module contains the create_app() factory function that creates and configures
the FastAPI application instance, including lifespan management for startup/shutdown
and router registration.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relay_server.config import RelayServerSettings
from relay_server.engine.runtime import SessionRegistry
from relay_server.provider import ProviderClient
from relay_server.routers import chat, health, models, sessions
from relay_server.services import AllowListStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for FastAPI application.

    The provider client, the command allow-list and the session registry are
    created once at startup and stored in app.state for reuse across all
    requests.

    Args:
        app: The FastAPI application instance.

    Yields:
        None: Control is yielded while the app is running.
    """
    settings: RelayServerSettings = app.state.settings
    if not hasattr(app.state, "provider_client"):
        app.state.provider_client = ProviderClient(
            url=settings.provider_url,
            api_key=settings.api_key,
            timeout=settings.request_timeout,
        )
    logger.info(f"Initialized provider client for {settings.provider_url}")

    allow_list = AllowListStore(settings.resolved_allowed_commands_path)
    app.state.session_registry = SessionRegistry(
        settings=settings,
        provider=app.state.provider_client,
        allow_list=allow_list,
    )
    logger.info(f"Sessions stored in {settings.resolved_sessions_dir}")

    yield

    await app.state.provider_client.close()
    logger.info("Provider client closed")


def create_app(
    settings: RelayServerSettings | None = None,
    provider_client: ProviderClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional RelayServerSettings instance. If not provided,
                  settings will be loaded from environment variables.
        provider_client: Optional pre-built provider client, e.g. one with a
                  mock transport in tests.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    if settings is None:
        from relay_server.dependencies import get_settings

        settings = get_settings()

    app = FastAPI(
        title="relay-server",
        description="Headless server for tool-using LLM conversations",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings in app.state for lifespan access
    app.state.settings = settings
    if provider_client is not None:
        app.state.provider_client = provider_client

    # Note: FastAPI's type hints for add_middleware are overly strict
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(models.router)
    app.include_router(sessions.router)
    app.include_router(chat.router)

    return app
