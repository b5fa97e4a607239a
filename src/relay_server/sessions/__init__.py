"""Session management for relay-server.

This package provides session persistence, transcript management,
and CRUD operations for chat sessions.
"""

from relay_server.sessions.manager import SessionManager
from relay_server.sessions.session import ChatSession
from relay_server.sessions.types import (
    AssistantMessage,
    Message,
    SessionCreationOptions,
    SessionMetadata,
    SystemMessage,
    ThoughtMessage,
    TodoItem,
    TodoStatus,
    ToolCall,
    ToolMessage,
    UserMessage,
)

__all__ = [
    # Core classes
    "ChatSession",
    "SessionManager",
    # Message types
    "Message",
    "UserMessage",
    "SystemMessage",
    "AssistantMessage",
    "ToolMessage",
    "ThoughtMessage",
    "ToolCall",
    # Todo list
    "TodoItem",
    "TodoStatus",
    # Configuration types
    "SessionMetadata",
    "SessionCreationOptions",
]
