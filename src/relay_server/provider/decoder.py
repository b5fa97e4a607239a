"""Incremental decoder for streamed chat completion responses.

The provider answers with newline-delimited ``data: <json>`` frames closed by
``data: [DONE]``. Chunks from the transport can split a frame anywhere, so
bytes are buffered until a complete line is available and only then decoded.
Tool calls arrive as many small deltas keyed by ``index``; they are collected
per index and only materialized once the stream has ended.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from relay_server.provider.types import (
    ContentToken,
    DecoderEvent,
    ReasoningToken,
    ToolCallFragment,
    UsageReport,
)
from relay_server.sessions.types import ToolCall

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


@dataclass
class StreamResult:
    """Everything a finished stream produced."""

    content: str = ""
    reasoning: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: UsageReport | None = None

    @property
    def is_empty(self) -> bool:
        """True when the model produced neither content nor tool calls."""
        return not self.content and not self.tool_calls


class StreamDecoder:
    """Turns raw response chunks into ordered decoder events.

    Usage::

        decoder = StreamDecoder()
        async for chunk in response.aiter_bytes():
            for event in decoder.feed(chunk):
                ...
        for event in decoder.flush():
            ...
        result = decoder.result()
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._done = False
        self._content: list[str] = []
        self._reasoning: list[str] = []
        self._tool_calls: list[ToolCall] = []
        self._usage: UsageReport | None = None

    @property
    def done(self) -> bool:
        """Whether the terminator frame has been seen."""
        return self._done

    def feed(self, chunk: bytes) -> list[DecoderEvent]:
        """Consume one chunk and return the events of every completed line.

        A trailing partial line stays buffered until the next chunk.
        """
        self._buffer += chunk
        events: list[DecoderEvent] = []
        while not self._done:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw_line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1 :]
            events.extend(self._decode_line(raw_line))
        return events

    def flush(self) -> list[DecoderEvent]:
        """Decode an unterminated final line, if the stream ended without a newline."""
        remainder = self._buffer
        self._buffer = b""
        if not remainder or self._done:
            return []
        return self._decode_line(remainder)

    def result(self) -> StreamResult:
        """Return the accumulated content, reasoning, tool calls and usage."""
        return StreamResult(
            content="".join(self._content),
            reasoning="".join(self._reasoning),
            tool_calls=[
                ToolCall(
                    id=tc.id or f"call_{index}",
                    name=tc.name,
                    arguments=tc.arguments,
                )
                for index, tc in enumerate(self._tool_calls)
                if tc.name or tc.arguments
            ],
            usage=self._usage,
        )

    def _decode_line(self, raw_line: bytes) -> list[DecoderEvent]:
        line = raw_line.decode("utf-8", errors="replace").strip()
        if not line or not line.startswith(DATA_PREFIX):
            return []

        data = line[len(DATA_PREFIX) :]
        if data == DONE_SENTINEL:
            self._done = True
            return []

        try:
            frame = json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed stream frame: {e}")
            logger.debug(f"Malformed frame payload: {data[:200]}")
            return []

        if not isinstance(frame, dict):
            logger.warning("Skipping stream frame that is not a JSON object")
            return []

        try:
            return self._decode_frame(frame)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Skipping stream frame with unexpected shape: {e}")
            logger.debug(f"Unexpected frame payload: {data[:200]}")
            return []

    def _decode_frame(self, frame: dict[str, Any]) -> list[DecoderEvent]:
        events: list[DecoderEvent] = []

        usage = frame.get("usage")
        if isinstance(usage, dict):
            report = UsageReport(
                prompt_tokens=_token_count(usage.get("prompt_tokens")),
                completion_tokens=_token_count(usage.get("completion_tokens")),
            )
            self._usage = report
            events.append(report)

        choices = frame.get("choices")
        if not isinstance(choices, list) or not choices:
            return events

        choice = choices[0] if isinstance(choices[0], dict) else {}
        delta = choice.get("delta") or choice.get("message")
        if not isinstance(delta, dict):
            return events

        reasoning = delta.get("reasoning_content") or delta.get("thinking")
        if isinstance(reasoning, str) and reasoning:
            self._reasoning.append(reasoning)
            events.append(ReasoningToken(reasoning))

        content = delta.get("content")
        if isinstance(content, str) and content:
            self._content.append(content)
            events.append(ContentToken(content))

        tool_calls = delta.get("tool_calls") or []
        if not isinstance(tool_calls, list):
            logger.warning("Ignoring tool_calls that is not a list")
            tool_calls = []
        for raw_call in tool_calls:
            fragment = self._apply_tool_call_delta(raw_call)
            if fragment is not None:
                events.append(fragment)

        return events

    def _apply_tool_call_delta(self, raw_call: Any) -> ToolCallFragment | None:
        if not isinstance(raw_call, dict):
            return None

        index = raw_call.get("index", 0)
        if not isinstance(index, int) or isinstance(index, bool) or index < 0:
            logger.warning(f"Ignoring tool call delta with invalid index: {index!r}")
            return None

        call_id = raw_call.get("id")
        function = raw_call.get("function") or {}
        if not isinstance(function, dict):
            logger.warning(f"Ignoring tool call delta with invalid function: {function!r}")
            return None
        name_part = function.get("name")
        arguments_part = function.get("arguments")
        for value in (call_id, name_part, arguments_part):
            if value is not None and not isinstance(value, str):
                logger.warning(f"Ignoring tool call delta with non-string field: {value!r}")
                return None

        while len(self._tool_calls) <= index:
            self._tool_calls.append(ToolCall())

        call = self._tool_calls[index]
        if call_id:
            call.id = call_id
        if name_part:
            call.name += name_part
        if arguments_part:
            call.arguments += arguments_part

        return ToolCallFragment(
            index=index,
            id=call_id or None,
            name_part=name_part or None,
            arguments_part=arguments_part or None,
        )


def _token_count(value: Any) -> int:
    """Usage counters are integers; anything else counts as zero."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        if value is not None:
            logger.warning(f"Ignoring non-numeric usage count: {value!r}")
        return 0
    return int(value)
