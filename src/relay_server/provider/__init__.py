"""Chat completion provider integration for relay-server.

This package provides the streaming HTTP client, the incremental stream
decoder, and the event types the decoder produces.
"""

from relay_server.provider.client import ProviderClient
from relay_server.provider.decoder import StreamDecoder, StreamResult
from relay_server.provider.types import (
    ContentToken,
    DecoderEvent,
    ModelPolicy,
    ProviderError,
    ReasoningToken,
    ToolCallFragment,
    UsageReport,
    classify_provider_error,
)

__all__ = [
    "ProviderClient",
    "StreamDecoder",
    "StreamResult",
    "ContentToken",
    "DecoderEvent",
    "ModelPolicy",
    "ProviderError",
    "ReasoningToken",
    "ToolCallFragment",
    "UsageReport",
    "classify_provider_error",
]
