"""Data types for session management.

This module defines the core data structures for chat sessions: the four
provider-facing message kinds, the display-only thought message, tool calls,
todo items, and session metadata.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass
class ToolCall:
    """An action requested by the assistant.

    ``arguments`` is the serialized JSON parameter object exactly as the
    provider streamed it; it is only parsed by whoever executes the call.
    """

    id: str = ""
    name: str = ""
    arguments: str = ""
    type: str = "function"

    def to_api_dict(self) -> dict[str, Any]:
        """Return the OpenAI-compatible wire shape of this call."""
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "ToolCall":
        """Build a ToolCall from either the stored or the wire shape."""
        function = data.get("function")
        if isinstance(function, dict):
            return ToolCall(
                id=data.get("id", ""),
                name=function.get("name", ""),
                arguments=function.get("arguments", ""),
                type=data.get("type", "function"),
            )
        return ToolCall(
            id=data.get("id", ""),
            name=data.get("name", ""),
            arguments=data.get("arguments", ""),
            type=data.get("type", "function"),
        )


@dataclass
class UserMessage:
    """A message from the user."""

    role: str = "user"
    content: str | None = ""
    message_id: str = ""
    timestamp: str = ""

    def __post_init__(self) -> None:
        """Validate role is always 'user'."""
        self.role = "user"


@dataclass
class SystemMessage:
    """A system prompt message."""

    role: str = "system"
    content: str | None = ""
    message_id: str = ""
    timestamp: str = ""

    def __post_init__(self) -> None:
        """Validate role is always 'system'."""
        self.role = "system"


@dataclass
class AssistantMessage:
    """A response from the model, possibly carrying tool calls."""

    role: str = "assistant"
    content: str | None = None
    model: str = ""
    message_id: str = ""
    timestamp: str = ""
    tool_calls: list[ToolCall] | None = None

    def __post_init__(self) -> None:
        """Validate role is always 'assistant' and normalize tool calls."""
        self.role = "assistant"
        if self.tool_calls:
            self.tool_calls = [
                tc if isinstance(tc, ToolCall) else ToolCall.from_dict(tc)
                for tc in self.tool_calls
            ]


@dataclass
class ToolMessage:
    """A tool execution result answering one tool call."""

    role: str = "tool"
    content: str | None = ""
    tool_call_id: str = ""
    tool_name: str = ""
    message_id: str = ""
    timestamp: str = ""

    def __post_init__(self) -> None:
        """Validate role is always 'tool'."""
        self.role = "tool"


@dataclass
class ThoughtMessage:
    """Streamed reasoning text. Display transcript only, never sent upstream."""

    role: str = "thought"
    content: str | None = ""
    message_id: str = ""
    timestamp: str = ""

    def __post_init__(self) -> None:
        """Validate role is always 'thought'."""
        self.role = "thought"


# Union type for all message types
Message = UserMessage | SystemMessage | AssistantMessage | ToolMessage | ThoughtMessage


def is_valid_message(message: Message) -> bool:
    """A message is sendable if it has non-empty content or at least one tool call."""
    if isinstance(message, ThoughtMessage):
        return False
    has_content = bool(message.content)
    has_tool_calls = bool(getattr(message, "tool_calls", None))
    return has_content or has_tool_calls


def filter_valid_messages(messages: list[Message]) -> list[Message]:
    """Drop thought messages and messages with neither content nor tool calls."""
    return [msg for msg in messages if is_valid_message(msg)]


def message_to_api_dict(message: Message) -> dict[str, Any]:
    """Convert a message to the provider wire format."""
    data: dict[str, Any] = {"role": message.role}
    if message.content is not None:
        data["content"] = message.content
    if isinstance(message, AssistantMessage) and message.tool_calls:
        data["tool_calls"] = [tc.to_api_dict() for tc in message.tool_calls]
    if isinstance(message, ToolMessage):
        data["tool_call_id"] = message.tool_call_id
    return data


def message_from_dict(data: dict[str, Any]) -> Message:
    """Convert a dictionary to the appropriate Message type.

    Args:
        data: Message data as a dictionary

    Returns:
        Appropriate Message dataclass instance

    Raises:
        ValueError: If role is unknown
    """
    role = data.get("role")
    fields = {k: v for k, v in data.items() if k != "role"}

    if role == "user":
        return UserMessage(**fields)
    elif role == "system":
        return SystemMessage(**fields)
    elif role == "assistant":
        return AssistantMessage(**fields)
    elif role == "tool":
        return ToolMessage(**fields)
    elif role == "thought":
        return ThoughtMessage(**fields)
    else:
        raise ValueError(f"Unknown message role: {role}")


class TodoStatus(str, Enum):
    """Progress state of a todo item."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass
class TodoItem:
    """One entry of the model-maintained task list."""

    content: str
    status: TodoStatus = TodoStatus.PENDING
    active_form: str = ""

    @staticmethod
    def from_tool_argument(item: dict[str, Any]) -> "TodoItem | None":
        """Parse one ``todos`` element of a TodoWrite call; None if incomplete."""
        content = item.get("content")
        status = item.get("status")
        active_form = item.get("activeForm")
        if not isinstance(content, str) or not isinstance(status, str):
            return None
        if not isinstance(active_form, str):
            return None
        try:
            parsed_status = TodoStatus(status)
        except ValueError:
            parsed_status = TodoStatus.PENDING
        return TodoItem(content=content, status=parsed_status, active_form=active_form)


def merge_todos(old: list[TodoItem], new: list[TodoItem]) -> list[TodoItem]:
    """Apply a todo update, keeping completed items the model dropped.

    Completed items missing from ``new`` are re-inserted before the first
    item that is not yet completed.
    """
    merged = list(new)
    for old_item in old:
        if old_item.status != TodoStatus.COMPLETED:
            continue
        if any(item.content == old_item.content for item in merged):
            continue
        insert_pos = next(
            (i for i, item in enumerate(merged) if item.status != TodoStatus.COMPLETED),
            len(merged),
        )
        merged.insert(insert_pos, old_item)
    return merged


@dataclass
class SessionMetadata:
    """Metadata for a chat session."""

    session_id: str
    model: str
    created_at: str
    updated_at: str
    message_count: int = 0
    format_version: str = "1.0"
    sandbox_enabled: bool = False
    converse_mode: bool = False
    rate_limiter_enabled: bool = True
    last_prompt_tokens: int = 0
    last_completion_tokens: int = 0


@dataclass
class SessionCreationOptions:
    """Options for creating a new session."""

    model: str
    system_prompt: str | None = None
    sandbox_enabled: bool = False
    converse_mode: bool = False
    rate_limiter_enabled: bool = True
