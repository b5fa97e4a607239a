"""Tool kinds, schemas and the built-in tool executor.

Tool calls requested by the model are resolved to a :class:`ToolKind` through
the alias table, advertised to the provider via JSON schemas, and executed by
:class:`ToolExecutor` unless the dispatch gate intercepts them.
"""

from relay_server.tools.definitions import TOOL_DEFINITIONS, get_tool_definitions
from relay_server.tools.executor import ToolExecutor
from relay_server.tools.kinds import TOOL_ALIASES, ToolKind, tool_kind

__all__ = [
    "TOOL_ALIASES",
    "TOOL_DEFINITIONS",
    "ToolExecutor",
    "ToolKind",
    "get_tool_definitions",
    "tool_kind",
]
