"""Configuration module for relay-server using pydantic-settings."""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from relay_server.provider.types import ModelPolicy


class RoleConfig(BaseModel):
    """A named model + persona a conversation can hand off to."""

    model: str
    prompt: str | None = None


class RateLimitConfig(BaseModel):
    """Context size and per-minute limits of one model."""

    max_context: int
    tpm: int
    rpm: int


def _default_roles() -> dict[str, RoleConfig]:
    return {
        "planner": RoleConfig(
            model="grok-4.1-fast-reasoning",
            prompt=(
                "You are a planning assistant. Analyze requests carefully, break "
                "them into steps, and create detailed implementation plans. Focus "
                "on the 'what' and 'why', not the 'how'. When your plan is "
                "complete, hand off to @coder for implementation."
            ),
        ),
        "coder": RoleConfig(
            model="grok-code-fast-1",
            prompt=(
                "You are a code execution assistant. Implement the plan given to "
                "you efficiently. Use tools to read, edit, and test code. Be "
                "concise and focus on execution."
            ),
        ),
        "reviewer": RoleConfig(
            model="grok-3-mini",
            prompt=(
                "You are a code reviewer. Check the implementation for bugs, edge "
                "cases, and improvements. Be concise."
            ),
        ),
    }


def _default_rate_limits() -> dict[str, RateLimitConfig]:
    return {
        "grok-code-fast-1": RateLimitConfig(max_context=256000, tpm=2000000, rpm=480),
        "grok-3": RateLimitConfig(max_context=131072, tpm=1000000, rpm=300),
        "grok-3-mini": RateLimitConfig(max_context=131072, tpm=1500000, rpm=400),
        "grok-4-1-fast-reasoning": RateLimitConfig(
            max_context=2000000, tpm=3000000, rpm=300
        ),
        "grok-4-1-fast-non-reasoning": RateLimitConfig(
            max_context=2000000, tpm=3000000, rpm=300
        ),
        "grok-4-fast-reasoning": RateLimitConfig(
            max_context=2000000, tpm=3000000, rpm=300
        ),
        "grok-4-fast-non-reasoning": RateLimitConfig(
            max_context=2000000, tpm=3000000, rpm=300
        ),
        "grok-4-0709": RateLimitConfig(max_context=256000, tpm=2000000, rpm=480),
        "grok-2-vision-1212": RateLimitConfig(max_context=32768, tpm=500000, rpm=200),
    }


class RelayServerSettings(BaseSettings):
    """Main configuration settings for relay-server.

    All settings can be overridden via environment variables with the RELAY_ prefix.
    For example, RELAY_PROVIDER_URL will override the provider_url setting.
    Nested maps (roles, rate_limits) are read as JSON.
    """

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Provider
    provider_url: str = "https://api.x.ai/v1/chat/completions"
    api_key: str | None = None
    default_model: str = "grok-3"
    request_timeout: float = 300.0
    fallback_max_context: int = 131072

    # Data directories (relative to data_dir)
    data_dir: str = "."
    sessions_dir: str = "chat_sessions"
    allowed_commands_file: str = "allowed_commands.json"

    # Tool working directory and sandbox root
    workspace_dir: str = "."

    # Orchestration
    max_empty_retries: int = 2
    compression_trigger_ratio: float = 0.7
    compression_recent_ratio: float = 0.3
    rate_limiter_enabled: bool = True
    rate_limit_pause_seconds: int = 60
    event_poll_interval: float = 0.05

    # Roles and per-model limits
    roles: dict[str, RoleConfig] = Field(default_factory=_default_roles)
    rate_limits: dict[str, RateLimitConfig] = Field(default_factory=_default_rate_limits)

    # Brainstorm
    brainstorm_model: str = "grok-3-mini"
    brainstorm_max_rounds: int = 2

    # CORS
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="RELAY_")

    def policy_for(self, model: str) -> ModelPolicy:
        """Get the context and pacing limits for ``model``.

        Unknown models get the fallback context and the default model's limits.
        """
        limits = self.rate_limits.get(model)
        if limits is None:
            fallback = self.rate_limits.get(self.default_model)
            return ModelPolicy(
                max_context=self.fallback_max_context,
                tokens_per_minute=fallback.tpm if fallback else 1000000,
                requests_per_minute=fallback.rpm if fallback else 300,
            )
        return ModelPolicy(
            max_context=limits.max_context,
            tokens_per_minute=limits.tpm,
            requests_per_minute=limits.rpm,
        )

    # --- Resolved paths (computed from data_dir + relative dirs) ---

    @property
    def resolved_sessions_dir(self) -> Path:
        """Get the full path to the sessions directory."""
        return Path(self.data_dir) / self.sessions_dir

    @property
    def resolved_allowed_commands_path(self) -> Path:
        """Get the full path to the allowed commands file."""
        return Path(self.data_dir) / self.allowed_commands_file

    @property
    def resolved_workspace_dir(self) -> Path:
        """Get the absolute tool working directory."""
        return Path(self.workspace_dir).resolve()
