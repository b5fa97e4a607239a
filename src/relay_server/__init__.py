"""relay-server: Headless server for tool-using LLM conversations.

This package provides a REST API and SSE streaming interface for chat
sessions against an OpenAI-compatible provider, with tool execution behind
an approval gate, transactional file edits, context compression, rate
pacing, role handoffs and multi-agent brainstorms.
"""

__version__ = "0.1.0"

from relay_server.app import create_app  # noqa: E402

__all__ = ["create_app", "__version__"]
