"""Context window management service.

This module provides token estimation for transcripts and the lossy history
compression that keeps a conversation under a model's context budget. The same
compression routine serves both the interactive path (before a turn is sent)
and the mid-loop path (while a long tool-use loop grows the history).
"""

import logging
import math
from dataclasses import dataclass, field

from relay_server.sessions.types import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolMessage,
    UserMessage,
)
from relay_server.tools.kinds import ToolKind, tool_kind

logger = logging.getLogger(__name__)

# Per-message role/formatting overhead added to every estimate
MESSAGE_OVERHEAD_TOKENS = 4

# Bounds for the number of recent messages kept verbatim
MIN_KEEP_RECENT = 6
MAX_KEEP_RECENT = 20

# Summary text limits
SUMMARY_CHAR_CAP = 8000
SUMMARY_MIN_PARTS = 10
USER_EXCERPT_CHARS = 120
ASSISTANT_EXCERPT_CHARS = 150

SUMMARY_HEADER = "[Previous conversation summary - {count} messages compressed]"


def estimate_tokens(text: str) -> int:
    """Approximate the token count of a string as ceil(chars / 4)."""
    return math.ceil(len(text) / 4)


def message_tokens(message: Message) -> int:
    """Estimate the tokens of one message, including role overhead and tool calls."""
    tokens = MESSAGE_OVERHEAD_TOKENS
    if message.content:
        tokens += estimate_tokens(message.content)
    if isinstance(message, AssistantMessage) and message.tool_calls:
        for call in message.tool_calls:
            tokens += estimate_tokens(call.name)
            tokens += estimate_tokens(call.arguments)
    return tokens


def estimate_messages_tokens(messages: list[Message]) -> int:
    """Estimate the tokens of a whole transcript."""
    return sum(message_tokens(msg) for msg in messages)


def safe_truncate(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars`` characters, appending ``...`` when cut."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def summarize_tool_result(tool_name: str, content: str) -> str:
    """Produce a one-line, tool-aware summary of a tool result.

    Args:
        tool_name: Name of the tool that produced the result (any alias)
        content: The tool-role message content

    Returns:
        str: A short summary such as ``Read 40 lines (1200 chars)``
    """
    if content.startswith("Error:") or content.startswith("error:"):
        first_line = content.splitlines()[0] if content else ""
        return f"Error: {safe_truncate(first_line, 80)}"

    lines = content.splitlines()
    kind = tool_kind(tool_name)

    if kind is ToolKind.READ:
        return f"Read {len(lines)} lines ({len(content)} chars)"

    if kind is ToolKind.BASH:
        stripped = content.strip()
        if not stripped or stripped == "(no output)":
            return "Command completed (no output)"
        output_lines = stripped.splitlines()
        if len(output_lines) == 1:
            return f"Output: {safe_truncate(output_lines[0], 100)}"
        return f"Output: {len(output_lines)} lines"

    if kind is ToolKind.GLOB:
        found = [line for line in lines if line.strip()]
        return f"Found {len(found)} files"

    if kind is ToolKind.GREP:
        found = [line for line in lines if line.strip()]
        return f"Found {len(found)} matches"

    if kind is ToolKind.EDIT:
        if "✓" in content:
            return "Edit successful"
        return safe_truncate(content, 80)

    if kind is ToolKind.WRITE:
        return "File written"

    if kind is ToolKind.LIST:
        items = [line for line in lines if line.strip()]
        return f"Listed {len(items)} items"

    if len(lines) <= 2:
        return safe_truncate(content, 150)
    return f"{len(lines)} lines of output"


@dataclass
class CompressionPolicy:
    """Thresholds for history compression.

    Attributes:
        trigger_ratio: Fraction of max context at which compression starts
        recent_ratio: Fraction of max context budgeted for the verbatim tail
    """

    trigger_ratio: float = 0.7
    recent_ratio: float = 0.3


@dataclass
class CompressionResult:
    """Outcome of a compression attempt."""

    messages: list[Message]
    compressed: bool = False
    compressed_count: int = 0
    summary_dropped: bool = False
    tokens_before: int = 0
    tokens_after: int = 0


@dataclass
class ContextUsage:
    """Snapshot of how much of the context window a transcript uses."""

    estimated_tokens: int
    max_context: int
    percentage: float = field(init=False)

    def __post_init__(self) -> None:
        self.percentage = (
            round(self.estimated_tokens / self.max_context * 100, 1)
            if self.max_context
            else 0.0
        )


class ContextWindowService:
    """Estimates and compresses transcripts against a context budget.

    Attributes:
        policy: The compression thresholds shared by every call site
    """

    def __init__(self, policy: CompressionPolicy | None = None) -> None:
        self.policy = policy or CompressionPolicy()

    def usage(self, messages: list[Message], max_context: int) -> ContextUsage:
        """Report estimated usage of ``max_context`` by ``messages``."""
        return ContextUsage(
            estimated_tokens=estimate_messages_tokens(messages),
            max_context=max_context,
        )

    def trigger_tokens(self, max_context: int) -> int:
        """Token count at or above which compression runs."""
        return int(max_context * self.policy.trigger_ratio)

    def keep_recent_count(self, messages: list[Message], max_context: int) -> int:
        """Size the verbatim tail from the budget and the average message size."""
        if not messages:
            return MIN_KEEP_RECENT
        total = estimate_messages_tokens(messages)
        avg = total // len(messages)
        if avg == 0:
            return MIN_KEEP_RECENT
        available = int(max_context * self.policy.recent_ratio)
        return max(MIN_KEEP_RECENT, min(MAX_KEEP_RECENT, available // avg))

    def compress(self, messages: list[Message], max_context: int) -> CompressionResult:
        """Compress older history into a summary if the transcript is over budget.

        The first message is always kept. Everything strictly between it and
        the last ``keep_recent`` messages is replaced by one synthetic system
        message. If the result is still over the trigger, the summary itself is
        dropped.

        Args:
            messages: The transcript to compress (not modified)
            max_context: The active model's maximum context in tokens

        Returns:
            CompressionResult: The new transcript and what was done to it
        """
        tokens_before = estimate_messages_tokens(messages)
        trigger = self.trigger_tokens(max_context)

        if tokens_before < trigger:
            return CompressionResult(
                messages=messages,
                tokens_before=tokens_before,
                tokens_after=tokens_before,
            )

        keep_recent = self.keep_recent_count(messages, max_context)
        if len(messages) <= keep_recent + 1:
            logger.debug(
                f"Not compressing: {len(messages)} messages with keep_recent={keep_recent}"
            )
            return CompressionResult(
                messages=messages,
                tokens_before=tokens_before,
                tokens_after=tokens_before,
            )

        split = len(messages) - keep_recent
        to_summarize = messages[1:split]
        recent = messages[split:]

        summary_text = self._build_summary(to_summarize, messages)
        summary_message = SystemMessage(
            content=(
                SUMMARY_HEADER.format(count=len(to_summarize)) + "\n" + summary_text
            ),
        )

        rebuilt: list[Message] = [messages[0], summary_message, *recent]
        tokens_after = estimate_messages_tokens(rebuilt)
        summary_dropped = False

        if tokens_after >= trigger and len(rebuilt) > 4:
            rebuilt = [messages[0], *recent]
            tokens_after = estimate_messages_tokens(rebuilt)
            summary_dropped = True
            logger.warning(
                f"Compressed history still over budget, dropped summary "
                f"({tokens_after}/{max_context} tokens)"
            )

        logger.info(
            f"Compressed {len(to_summarize)} messages: "
            f"{tokens_before} -> {tokens_after} tokens (keep_recent={keep_recent})"
        )
        return CompressionResult(
            messages=rebuilt,
            compressed=True,
            compressed_count=len(to_summarize),
            summary_dropped=summary_dropped,
            tokens_before=tokens_before,
            tokens_after=tokens_after,
        )

    def _build_summary(
        self, to_summarize: list[Message], all_messages: list[Message]
    ) -> str:
        tool_names: dict[str, str] = {}
        for msg in all_messages:
            if isinstance(msg, AssistantMessage) and msg.tool_calls:
                for call in msg.tool_calls:
                    tool_names[call.id] = call.name

        parts: list[str] = []
        total_chars = 0

        for msg in to_summarize:
            if total_chars >= SUMMARY_CHAR_CAP:
                break

            part: str | None = None
            if isinstance(msg, UserMessage) and msg.content:
                part = f"User: {safe_truncate(msg.content, USER_EXCERPT_CHARS)}"
            elif isinstance(msg, AssistantMessage):
                pieces = []
                if msg.tool_calls:
                    names = ", ".join(call.name for call in msg.tool_calls)
                    pieces.append(f"Assistant used: {names}")
                if msg.content:
                    pieces.append(
                        f"Assistant: {safe_truncate(msg.content, ASSISTANT_EXCERPT_CHARS)}"
                    )
                if pieces:
                    part = " | ".join(pieces)
            elif isinstance(msg, ToolMessage):
                name = tool_names.get(msg.tool_call_id) or msg.tool_name
                part = f"  → {summarize_tool_result(name, msg.content or '')}"

            if part:
                parts.append(part)
                total_chars += len(part)

        while total_chars > SUMMARY_CHAR_CAP and len(parts) > SUMMARY_MIN_PARTS:
            total_chars -= len(parts.pop(0))

        return "\n".join(parts)
