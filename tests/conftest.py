"""Pytest configuration and shared fixtures for relay-server tests.

This module provides common fixtures used across all test modules,
including test app creation, async client setup, and a scripted provider
that replays OpenAI-compatible SSE streams.
"""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from relay_server import create_app
from relay_server.config import RelayServerSettings
from relay_server.provider import ProviderError


class ScriptedProvider:
    """Stand-in for ProviderClient that serves queued byte streams.

    Each call to ``stream_chat`` consumes the next queued response, which is
    either a list of byte chunks or an exception to raise. Requests are
    recorded in ``calls`` as ``(model, messages, tools)``.
    """

    def __init__(self) -> None:
        self.responses: list = []
        self.calls: list[tuple[str, list[dict], list[dict]]] = []
        self.closed = False

    @staticmethod
    def frame(payload: dict) -> bytes:
        return f"data: {json.dumps(payload)}\n\n".encode()

    @classmethod
    def delta(cls, **delta) -> bytes:
        return cls.frame({"choices": [{"index": 0, "delta": delta}]})

    @classmethod
    def usage(cls, prompt_tokens: int, completion_tokens: int) -> bytes:
        return cls.frame(
            {
                "choices": [],
                "usage": {
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": completion_tokens,
                },
            }
        )

    def queue_chunks(self, chunks: list[bytes]) -> None:
        self.responses.append(list(chunks) + [b"data: [DONE]\n\n"])

    def queue_text(self, *parts: str, reasoning: str | None = None, usage=None) -> None:
        chunks = []
        if reasoning:
            chunks.append(self.delta(reasoning_content=reasoning))
        chunks.extend(self.delta(content=part) for part in parts)
        if usage:
            chunks.append(self.usage(*usage))
        self.queue_chunks(chunks)

    def queue_tool_calls(self, *calls: tuple[str, str, dict], content: str = "") -> None:
        """Queue a response requesting ``(id, name, arguments)`` tool calls."""
        chunks = []
        if content:
            chunks.append(self.delta(content=content))
        for index, (call_id, name, arguments) in enumerate(calls):
            chunks.append(
                self.delta(
                    tool_calls=[
                        {
                            "index": index,
                            "id": call_id,
                            "type": "function",
                            "function": {"name": name, "arguments": ""},
                        }
                    ]
                )
            )
            chunks.append(
                self.delta(
                    tool_calls=[
                        {"index": index, "function": {"arguments": json.dumps(arguments)}}
                    ]
                )
            )
        self.queue_chunks(chunks)

    def queue_empty(self) -> None:
        self.queue_chunks([])

    def queue_error(self, body: str, status_code: int | None = 500) -> None:
        self.responses.append(ProviderError(body, status_code))

    async def stream_chat(self, model, messages, tools):
        self.calls.append((model, messages, tools))
        if not self.responses:
            raise ProviderError("no scripted response left", 500)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        for chunk in response:
            yield chunk

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def provider():
    """A fresh scripted provider."""
    return ScriptedProvider()


@pytest.fixture
def test_settings(tmp_path):
    """Create test settings with isolated temporary directories.

    Args:
        tmp_path: Pytest fixture providing a temporary directory.

    Returns:
        RelayServerSettings: Settings instance configured for testing.
    """
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return RelayServerSettings(
        host="127.0.0.1",
        port=8000,
        provider_url="http://provider.test/v1/chat/completions",
        data_dir=str(tmp_path),
        sessions_dir="chat_sessions",
        workspace_dir=str(workspace),
        rate_limit_pause_seconds=0,
        event_poll_interval=0.01,
        log_level="DEBUG",
        cors_origins=["*"],
    )


@pytest.fixture
def test_app(test_settings, provider):
    """Create a FastAPI test application wired to the scripted provider.

    Args:
        test_settings: Test settings fixture.
        provider: Scripted provider fixture.

    Returns:
        FastAPI: Configured test application.
    """
    return create_app(settings=test_settings, provider_client=provider)


@pytest_asyncio.fixture
async def async_client(test_app):
    """Create an async HTTP client for testing FastAPI endpoints.

    Args:
        test_app: Test application fixture.

    Yields:
        AsyncClient: Async HTTP client for making test requests.
    """
    # Trigger the lifespan startup manually for tests
    async with test_app.router.lifespan_context(test_app):
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
