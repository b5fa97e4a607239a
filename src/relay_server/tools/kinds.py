"""Tool kinds and the name to kind lookup table.

Models call the same tool under different names (``Bash`` and
``run_shell_command`` for example). Dispatch resolves every name to a
:class:`ToolKind` once and branches on the kind.
"""

from enum import Enum


class ToolKind(str, Enum):
    """Every built-in tool, valued by its canonical name."""

    BASH = "Bash"
    READ = "Read"
    EDIT = "Edit"
    WRITE = "Write"
    GLOB = "Glob"
    GREP = "Grep"
    LIST = "List"
    FILE_INFO = "FileInfo"
    ASK_USER = "AskUser"
    CONFIRM_PLAN = "ConfirmPlan"
    WEB_SEARCH = "WebSearch"
    TODO_WRITE = "TodoWrite"


TOOL_ALIASES: dict[str, ToolKind] = {
    "Bash": ToolKind.BASH,
    "run_shell_command": ToolKind.BASH,
    "Read": ToolKind.READ,
    "read_file": ToolKind.READ,
    "read_lines": ToolKind.READ,
    "Edit": ToolKind.EDIT,
    "edit_file": ToolKind.EDIT,
    "Write": ToolKind.WRITE,
    "write_file": ToolKind.WRITE,
    "Glob": ToolKind.GLOB,
    "glob": ToolKind.GLOB,
    "glob_files": ToolKind.GLOB,
    "Grep": ToolKind.GREP,
    "grep": ToolKind.GREP,
    "search": ToolKind.GREP,
    "search_files": ToolKind.GREP,
    "search_content": ToolKind.GREP,
    "List": ToolKind.LIST,
    "list_dir": ToolKind.LIST,
    "list_directory": ToolKind.LIST,
    "FileInfo": ToolKind.FILE_INFO,
    "file_info": ToolKind.FILE_INFO,
    "AskUser": ToolKind.ASK_USER,
    "ask_multiple_choice": ToolKind.ASK_USER,
    "ConfirmPlan": ToolKind.CONFIRM_PLAN,
    "confirm_plan": ToolKind.CONFIRM_PLAN,
    "WebSearch": ToolKind.WEB_SEARCH,
    "web_search": ToolKind.WEB_SEARCH,
    "TodoWrite": ToolKind.TODO_WRITE,
    "todo_write": ToolKind.TODO_WRITE,
}


def tool_kind(name: str) -> ToolKind | None:
    """Resolve a tool name or alias; None for unknown tools."""
    return TOOL_ALIASES.get(name)
