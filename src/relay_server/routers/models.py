"""Model and role listing endpoints.

Models and roles are part of the server configuration; nothing is fetched
from the provider.
"""

import logging

from fastapi import APIRouter, Request

from relay_server.models.models import (
    ModelDetail,
    ModelListResponse,
    RoleDetail,
    RoleListResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["models"])


@router.get("/models", response_model=ModelListResponse)
async def list_models(request: Request) -> ModelListResponse:
    """List the configured models and their limits.

    The default model is always listed, with fallback limits if it has no
    entry of its own.
    """
    settings = request.app.state.settings
    names = list(settings.rate_limits)
    if settings.default_model not in names:
        names.insert(0, settings.default_model)

    models = []
    for name in names:
        policy = settings.policy_for(name)
        models.append(
            ModelDetail(
                name=name,
                max_context=policy.max_context,
                tokens_per_minute=policy.tokens_per_minute,
                requests_per_minute=policy.requests_per_minute,
                is_default=name == settings.default_model,
            )
        )

    logger.debug(f"Listed {len(models)} models")
    return ModelListResponse(models=models)


@router.get("/roles", response_model=RoleListResponse)
async def list_roles(request: Request) -> RoleListResponse:
    """List the roles that can be activated with an '@name:' directive."""
    settings = request.app.state.settings
    return RoleListResponse(
        roles=[
            RoleDetail(name=name, model=role.model, prompt=role.prompt)
            for name, role in settings.roles.items()
        ]
    )
