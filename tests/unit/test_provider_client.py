"""Unit tests for ProviderClient and provider error classification."""

import json

import httpx
import pytest

from relay_server.provider import ProviderClient, ProviderError, classify_provider_error
from relay_server.provider.types import (
    AUTH_ERROR_MESSAGE,
    RATE_LIMIT_MESSAGE,
    SAFETY_BLOCK_MESSAGE,
)

URL = "http://provider.test/v1/chat/completions"


def _client(handler, api_key=None) -> ProviderClient:
    return ProviderClient(url=URL, api_key=api_key, transport=httpx.MockTransport(handler))


async def _collect(client: ProviderClient) -> bytes:
    body = b""
    async for chunk in client.stream_chat("grok-3", [{"role": "user", "content": "hi"}], []):
        body += chunk
    return body


class TestStreamChat:
    @pytest.mark.asyncio
    async def test_streams_body_and_sends_payload(self):
        # Arrange
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["payload"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, content=b'data: {"choices": []}\n\ndata: [DONE]\n\n')

        client = _client(handler, api_key="secret")

        # Act
        body = await _collect(client)
        await client.close()

        # Assert
        assert body.endswith(b"data: [DONE]\n\n")
        assert seen["auth"] == "Bearer secret"
        assert seen["payload"]["model"] == "grok-3"
        assert seen["payload"]["stream"] is True
        assert seen["payload"]["stream_options"] == {"include_usage": True}
        assert seen["payload"]["tools"] == []

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, content=b"data: [DONE]\n\n")

        client = _client(handler)
        await _collect(client)
        await client.close()

        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_error_status_raises_with_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, text='{"error": "rate_limit exceeded"}')

        client = _client(handler)

        with pytest.raises(ProviderError) as exc_info:
            await _collect(client)
        await client.close()

        assert exc_info.value.status_code == 429
        assert "rate_limit" in exc_info.value.body
        assert str(exc_info.value).startswith("API Error: 429")

    @pytest.mark.asyncio
    async def test_network_failure_is_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)

        with pytest.raises(ProviderError) as exc_info:
            await _collect(client)
        await client.close()

        assert exc_info.value.status_code is None
        assert "connection refused" in str(exc_info.value)


class TestClassifyProviderError:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("API Error: 400 SAFETY_CHECK_TYPE_BIO", SAFETY_BLOCK_MESSAGE),
            ("content violates usage guidelines", SAFETY_BLOCK_MESSAGE),
            ("API Error: 429 too many", RATE_LIMIT_MESSAGE),
            ("rate_limit_exceeded", RATE_LIMIT_MESSAGE),
            ("API Error: 401 bad key", AUTH_ERROR_MESSAGE),
            ("no permission for model", AUTH_ERROR_MESSAGE),
        ],
    )
    def test_known_errors(self, text, expected):
        assert classify_provider_error(text) == expected

    def test_unknown_error_gets_prefix(self):
        assert classify_provider_error("boom") == "API Error: boom"

    def test_prefix_is_not_doubled(self):
        assert classify_provider_error("API Error: 500 boom") == "API Error: 500 boom"
