"""Unit tests for the FastAPI app factory and configuration."""

import pytest
from fastapi import FastAPI

from relay_server import __version__, create_app
from relay_server.config import RelayServerSettings
from relay_server.provider import ModelPolicy


def test_create_app_with_settings(test_settings, provider):
    """Test that create_app accepts custom settings and a provider client."""
    app = create_app(settings=test_settings, provider_client=provider)

    assert isinstance(app, FastAPI)
    assert app.state.settings is test_settings
    assert app.state.provider_client is provider


def test_create_app_metadata(test_settings):
    """Test that app has correct metadata."""
    app = create_app(settings=test_settings)

    assert app.title == "relay-server"
    assert app.version == "0.1.0"
    assert "Headless server" in app.description


def test_create_app_includes_routers(test_settings):
    """Test that every router is registered."""
    app = create_app(settings=test_settings)

    routes = [route.path for route in app.routes]  # type: ignore[attr-defined]
    assert "/api/v1/health" in routes
    assert "/api/v1/models" in routes
    assert "/api/v1/roles" in routes
    assert "/api/v1/sessions" in routes
    assert "/api/v1/sessions/{session_id}/context" in routes
    assert "/api/v1/chat/{session_id}/stream" in routes
    assert "/api/v1/chat/{session_id}/respond" in routes
    assert "/api/v1/chat/{session_id}/cancel" in routes
    assert "/api/v1/chat/{session_id}/brainstorm" in routes


def test_create_app_has_cors_middleware(test_settings):
    """Test that CORS middleware is configured."""
    app = create_app(settings=test_settings)

    middleware_classes = [m.cls.__name__ for m in app.user_middleware]  # type: ignore[attr-defined]
    assert "CORSMiddleware" in middleware_classes


@pytest.mark.asyncio
async def test_lifespan_wires_registry_and_closes_provider(test_app, provider):
    async with test_app.router.lifespan_context(test_app):
        registry = test_app.state.session_registry
        assert registry.provider is provider
        assert registry.manager.sessions_dir == test_app.state.settings.resolved_sessions_dir

    assert provider.closed is True


def test_version_constant():
    """Test that __version__ is defined and matches app version."""
    assert __version__ == "0.1.0"


def test_settings_default_values(monkeypatch):
    """Test that settings have correct default values."""
    monkeypatch.delenv("RELAY_PORT", raising=False)
    settings = RelayServerSettings()

    assert settings.host == "127.0.0.1"
    assert settings.port == 8000
    assert settings.provider_url == "https://api.x.ai/v1/chat/completions"
    assert settings.api_key is None
    assert settings.default_model == "grok-3"
    assert settings.max_empty_retries == 2
    assert settings.rate_limiter_enabled is True
    assert set(settings.roles) == {"planner", "coder", "reviewer"}


def test_settings_env_prefix(monkeypatch):
    """Test that settings respect RELAY_ environment variable prefix."""
    monkeypatch.setenv("RELAY_PORT", "9000")
    monkeypatch.setenv("RELAY_API_KEY", "secret")
    monkeypatch.setenv("RELAY_ROLES", '{"writer": {"model": "grok-3", "prompt": "Write."}}')

    settings = RelayServerSettings()

    assert settings.port == 9000
    assert settings.api_key == "secret"
    assert settings.roles["writer"].prompt == "Write."


def test_settings_resolved_paths(tmp_path):
    """Test that resolved path properties work correctly."""
    settings = RelayServerSettings(data_dir=str(tmp_path), workspace_dir=str(tmp_path))

    assert settings.resolved_sessions_dir == tmp_path / "chat_sessions"
    assert settings.resolved_allowed_commands_path == tmp_path / "allowed_commands.json"
    assert settings.resolved_workspace_dir == tmp_path.resolve()


def test_policy_for_known_model():
    settings = RelayServerSettings()

    assert settings.policy_for("grok-3-mini") == ModelPolicy(
        max_context=131072, tokens_per_minute=1500000, requests_per_minute=400
    )


def test_policy_for_unknown_model_falls_back():
    settings = RelayServerSettings(fallback_max_context=50000)

    policy = settings.policy_for("something-new")

    assert policy.max_context == 50000
    assert policy.tokens_per_minute == 1000000
    assert policy.requests_per_minute == 300
