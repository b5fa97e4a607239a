"""Type definitions for the chat completion provider.

This module contains the dataclasses produced by the stream decoder, the
rate-limit policy of a model, and the provider error type.
"""

from dataclasses import dataclass


@dataclass
class ReasoningToken:
    """A fragment of the model's reasoning text."""

    text: str


@dataclass
class ContentToken:
    """A fragment of the model's visible answer."""

    text: str


@dataclass
class ToolCallFragment:
    """An incremental piece of a tool call, keyed by the provider's index.

    Attributes:
        index: Position of the call within the response
        id: Correlation id, usually only present on the first fragment
        name_part: Substring to append to the call's function name
        arguments_part: Substring to append to the call's JSON arguments
    """

    index: int
    id: str | None = None
    name_part: str | None = None
    arguments_part: str | None = None


@dataclass
class UsageReport:
    """Authoritative token counts reported by the provider."""

    prompt_tokens: int
    completion_tokens: int


DecoderEvent = ReasoningToken | ContentToken | ToolCallFragment | UsageReport


@dataclass
class ModelPolicy:
    """Context and pacing limits of one model.

    Attributes:
        max_context: Maximum context window in tokens
        tokens_per_minute: Token budget per rolling minute
        requests_per_minute: Request budget per rolling minute
    """

    max_context: int
    tokens_per_minute: int
    requests_per_minute: int


class ProviderError(Exception):
    """Raised when the provider answers with a non-success status or is unreachable.

    Attributes:
        status_code: HTTP status, or None for network failures
        body: Response body text or the transport error description
    """

    def __init__(self, body: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        self.body = body
        if status_code is None:
            super().__init__(f"API Error: {body}")
        else:
            super().__init__(f"API Error: {status_code} {body}")


SAFETY_BLOCK_MESSAGE = "⚠️ Request blocked by safety filters. Try rephrasing your message."
RATE_LIMIT_MESSAGE = "⚠️ Rate limit exceeded. Please wait a moment before trying again."
AUTH_ERROR_MESSAGE = "⚠️ API authentication error. Check your API key."


def classify_provider_error(text: str) -> str:
    """Map a transport or API error description to a user-visible message.

    Args:
        text: The error text, typically ``str(exc)``

    Returns:
        str: Safety-block, rate-limit or auth message, else ``API Error: <text>``
    """
    if "SAFETY_CHECK" in text or "violates usage guidelines" in text:
        return SAFETY_BLOCK_MESSAGE
    if "rate_limit" in text or "429" in text:
        return RATE_LIMIT_MESSAGE
    if "401" in text or "permission" in text:
        return AUTH_ERROR_MESSAGE
    if text.startswith("API Error:"):
        return text
    return f"API Error: {text}"
