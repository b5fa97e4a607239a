"""ChatSession class for managing individual chat sessions.

This module provides the ChatSession class which handles:
- The display transcript shown to users (including reasoning and notices)
- The API context sent to the provider
- Loading and saving both to JSON files
- Applying streamed tokens to the display transcript
- Managing session metadata
"""

import json
import logging
import uuid
from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from relay_server.sessions.types import (
    AssistantMessage,
    Message,
    SessionMetadata,
    SystemMessage,
    ThoughtMessage,
    UserMessage,
    message_from_dict,
)

logger = logging.getLogger(__name__)

PLANNING_MODE_PROMPT = (
    "You are now in INTERACTIVE PLANNING MODE.\n"
    "1. Ask the user for their goal.\n"
    "2. If clarification is needed, call `AskUser(question, options)`.\n"
    "3. Once clear, propose a plan using `ConfirmPlan(plan)`.\n"
    "4. Once confirmed, execute the plan autonomously."
)


def utc_timestamp() -> str:
    """Current UTC time in ISO 8601 with a trailing Z."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def stamp(message: Message) -> Message:
    """Fill in a message id and timestamp if the message has none."""
    if not message.message_id:
        message.message_id = ChatSession.generate_session_id()
    if not message.timestamp:
        message.timestamp = utc_timestamp()
    return message


class ChatSession:
    """Represents a single chat session with its transcripts and metadata.

    A session keeps two message lists. ``messages`` is the display transcript:
    streamed tokens are echoed into it and it holds display-only entries such
    as reasoning and notices. ``api_messages`` is the context sent to the
    provider; it only grows through complete messages and may be compressed.

    The display transcript is persisted as ``{session_id}.json``:
    {
        "metadata": {...},
        "messages": [...]
    }
    and the API context as a compact array in ``{session_id}.context.json``.
    """

    def __init__(
        self,
        session_id: str,
        model: str,
        messages: list[Message] | None = None,
        api_messages: list[Message] | None = None,
        metadata: SessionMetadata | None = None,
    ):
        """Initialize a ChatSession.

        Args:
            session_id: Unique session identifier (10-char hex)
            model: The base model name for this session
            messages: Initial display transcript (default: empty)
            api_messages: Initial API context (default: copy of messages)
            metadata: Session metadata (default: auto-generated)
        """
        self.session_id = session_id
        self.model = model
        self.messages: list[Message] = messages or []
        self.api_messages: list[Message] = (
            api_messages
            if api_messages is not None
            else [replace(m) for m in self.messages if not isinstance(m, ThoughtMessage)]
        )

        if metadata is None:
            now = utc_timestamp()
            self.metadata = SessionMetadata(
                session_id=session_id,
                model=model,
                created_at=now,
                updated_at=now,
                message_count=len(self.messages),
            )
        else:
            self.metadata = metadata

    def _touch(self) -> None:
        self.metadata.message_count = len(self.messages)
        self.metadata.updated_at = utc_timestamp()

    def add_message(self, message: Message) -> None:
        """Add a complete message to both transcripts.

        If the display transcript ends in an assistant message that was built
        from streamed tokens, a new assistant message replaces it there.

        Args:
            message: The message to add
        """
        stamp(message)
        last = self.messages[-1] if self.messages else None
        if isinstance(last, AssistantMessage) and isinstance(message, AssistantMessage):
            self.messages[-1] = message
        else:
            self.messages.append(message)
        self.api_messages.append(replace(message))
        self._touch()

    def add_display_message(self, message: Message) -> None:
        """Add a notice to the display transcript only."""
        self.messages.append(stamp(message))
        self._touch()

    def append_token(self, text: str) -> None:
        """Echo a streamed content token into the display transcript."""
        last = self.messages[-1] if self.messages else None
        if isinstance(last, AssistantMessage) and not last.tool_calls:
            last.content = (last.content or "") + text
        else:
            self.messages.append(stamp(AssistantMessage(content=text, model=self.model)))
        self._touch()

    def append_thinking(self, text: str) -> None:
        """Echo a streamed reasoning token into the display transcript."""
        last = self.messages[-1] if self.messages else None
        if isinstance(last, ThoughtMessage):
            last.content = (last.content or "") + text
        else:
            self.messages.append(stamp(ThoughtMessage(content=text)))
        self._touch()

    def replace_api_messages(self, messages: list[Message]) -> None:
        """Swap in a new API context, e.g. after compression."""
        self.api_messages = list(messages)
        self.metadata.updated_at = utc_timestamp()

    def clear(self) -> None:
        """Drop the conversation, keeping a leading system prompt if present."""
        keep = self.messages[:1] if self.has_system_prompt() else []
        self.messages = list(keep)
        self.api_messages = [replace(m) for m in keep]
        self._touch()
        logger.info(f"Cleared session {self.session_id}")

    def update_model(self, model: str) -> None:
        """Update the base model used by this session.

        Args:
            model: The new model name
        """
        self.model = model
        self.metadata.model = model
        self.metadata.updated_at = utc_timestamp()

    def has_system_prompt(self) -> bool:
        """Check if the session has a system prompt.

        Returns:
            True if the first message is a system message, False otherwise
        """
        return len(self.messages) > 0 and isinstance(self.messages[0], SystemMessage)

    def set_system_prompt(self, content: str) -> None:
        """Set or replace the leading system prompt in both transcripts.

        Note: This does NOT truncate the conversation history.

        Args:
            content: The content of the system prompt
        """
        system_message = stamp(SystemMessage(content=content))
        for transcript in (self.messages, self.api_messages):
            entry = replace(system_message)
            if transcript and isinstance(transcript[0], SystemMessage):
                transcript[0] = entry
            else:
                transcript.insert(0, entry)
        self._touch()
        logger.debug(f"Set system prompt in session {self.session_id}")

    @property
    def planning_enabled(self) -> bool:
        return any(_is_planning_prompt(m) for m in self.api_messages)

    def add_planning_prompt(self) -> None:
        """Append the interactive planning instructions as a system message."""
        self.add_message(SystemMessage(content=PLANNING_MODE_PROMPT))
        logger.info(f"Planning mode enabled for session {self.session_id}")

    def remove_planning_prompt(self) -> None:
        self.messages = [m for m in self.messages if not _is_planning_prompt(m)]
        self.api_messages = [m for m in self.api_messages if not _is_planning_prompt(m)]
        self._touch()
        logger.info(f"Planning mode disabled for session {self.session_id}")

    def to_dict(self) -> dict[str, Any]:
        """Convert session to a dictionary for JSON serialization.

        Returns:
            Dictionary representation of the session
        """
        return {
            "metadata": asdict(self.metadata),
            "messages": [_message_to_dict(msg) for msg in self.messages],
        }

    def save(self, sessions_dir: Path) -> None:
        """Save the display transcript and the API context to JSON files.

        Args:
            sessions_dir: Directory where session files are stored
        """
        sessions_dir.mkdir(parents=True, exist_ok=True)
        file_path = sessions_dir / f"{self.session_id}.json"
        context_path = sessions_dir / f"{self.session_id}.context.json"

        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

        with open(context_path, "w", encoding="utf-8") as f:
            json.dump(
                [_message_to_dict(msg) for msg in self.api_messages],
                f,
                ensure_ascii=False,
                separators=(",", ":"),
            )

        logger.debug(f"Saved session {self.session_id} to {file_path}")

    @classmethod
    def load(cls, session_id: str, sessions_dir: Path) -> "ChatSession":
        """Load a session from its JSON files.

        Args:
            session_id: The session ID to load
            sessions_dir: Directory where session files are stored

        Returns:
            Loaded ChatSession instance

        Raises:
            FileNotFoundError: If session file doesn't exist
            ValueError: If session data is invalid
        """
        file_path = sessions_dir / f"{session_id}.json"
        context_path = sessions_dir / f"{session_id}.context.json"

        if not file_path.exists():
            raise FileNotFoundError(f"Session {session_id} not found")

        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        metadata_dict = data["metadata"]
        known_fields = SessionMetadata.__dataclass_fields__
        metadata = SessionMetadata(
            **{k: v for k, v in metadata_dict.items() if k in known_fields}
        )

        messages = [message_from_dict(msg_dict) for msg_dict in data.get("messages", [])]

        api_messages: list[Message] | None = None
        if context_path.exists():
            with open(context_path, "r", encoding="utf-8") as f:
                api_messages = [message_from_dict(msg_dict) for msg_dict in json.load(f)]

        return cls(
            session_id=session_id,
            model=metadata.model,
            messages=messages,
            api_messages=api_messages,
            metadata=metadata,
        )

    @staticmethod
    def generate_session_id() -> str:
        """Generate a new unique session ID.

        Returns:
            10-character hexadecimal string
        """
        return uuid.uuid4().hex[:10]

    def get_preview(self, max_length: int = 100) -> str:
        """Get a preview of the session (first user message).

        Args:
            max_length: Maximum length of the preview

        Returns:
            Preview string, truncated if necessary
        """
        for message in self.messages:
            if isinstance(message, UserMessage):
                content = message.content or ""
                if len(content) > max_length:
                    return content[: max_length - 3] + "..."
                return content
        return ""


def _message_to_dict(message: Message) -> dict[str, Any]:
    data = asdict(message)
    if data.get("tool_calls") is None:
        data.pop("tool_calls", None)
    return data


def _is_planning_prompt(message: Message) -> bool:
    return isinstance(message, SystemMessage) and message.content == PLANNING_MODE_PROMPT
