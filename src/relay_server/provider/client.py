"""Async client for an OpenAI-compatible chat completion endpoint.

The client is created once at startup and reused. It only transports bytes:
decoding of the event stream is done by :class:`StreamDecoder` so that the
orchestration engine sees every frame in arrival order.
"""

import logging
from typing import Any, AsyncIterator

import httpx

from relay_server.provider.types import ProviderError

logger = logging.getLogger(__name__)


class ProviderClient:
    """Streaming HTTP client for the chat completion provider.

    Attributes:
        url: Full URL of the chat completions endpoint
        api_key: Bearer token sent with every request, if set
        timeout: Read timeout for a streamed response, in seconds
    """

    def __init__(
        self,
        url: str,
        api_key: str | None = None,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the provider client.

        Args:
            url: The chat completions endpoint URL
            api_key: Optional bearer token
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        logger.info(f"ProviderClient initialized for {url}")

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def build_payload(
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Build the JSON body of a streamed completion request."""
        return {
            "model": model,
            "messages": messages,
            "tools": tools or [],
            "stream": True,
            "stream_options": {"include_usage": True},
        }

    async def stream_chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[bytes]:
        """Open a streamed completion and yield raw response chunks.

        Args:
            model: Model name to request
            messages: Conversation in provider wire format
            tools: Tool schemas to advertise; empty disables tool use

        Yields:
            bytes: Response body chunks exactly as received

        Raises:
            ProviderError: On a non-success status or a transport failure
        """
        payload = self.build_payload(model, messages, tools)
        logger.debug(
            f"Streaming completion: model={model}, messages={len(messages)}, "
            f"tools={len(payload['tools'])}"
        )

        try:
            async with self._client.stream(
                "POST", self.url, json=payload, headers=self._headers()
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        f"Provider returned {response.status_code}: {body[:500]}"
                    )
                    raise ProviderError(body, status_code=response.status_code)

                async for chunk in response.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as e:
            logger.error(f"Provider request failed: {e}")
            raise ProviderError(str(e)) from e

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
