"""JSON tool schemas advertised to the provider."""

from typing import Any


def _function(
    name: str,
    description: str,
    properties: dict[str, Any],
    required: list[str],
) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    _function(
        "Bash",
        "Executes a shell command. Use for git, build commands, running programs, "
        "installing packages, etc. Do NOT use for file reading/writing - use the "
        "dedicated tools instead.",
        {
            "command": {"type": "string", "description": "The shell command to execute"},
            "description": {
                "type": "string",
                "description": "Brief description of what this command does (5-10 words)",
            },
        },
        ["command"],
    ),
    _function(
        "Read",
        "Reads a file from the filesystem. Returns content with line numbers. You "
        "MUST read a file before editing it. For large files, use offset and limit "
        "to read specific sections.",
        {
            "file_path": {
                "type": "string",
                "description": "The absolute or relative path to the file to read",
            },
            "offset": {
                "type": "integer",
                "description": "Line number to start reading from (1-indexed). Only use for large files.",
            },
            "limit": {
                "type": "integer",
                "description": "Maximum number of lines to read. Only use for large files.",
            },
        },
        ["file_path"],
    ),
    _function(
        "Edit",
        "Performs exact string replacement in a file. You MUST Read the file first "
        "before editing. The old_string must match EXACTLY including all whitespace "
        "and indentation. The edit will FAIL if old_string is not found or is not "
        "unique in the file. Use replace_all only for renaming variables/functions "
        "across the file.",
        {
            "file_path": {"type": "string", "description": "The path to the file to edit"},
            "old_string": {
                "type": "string",
                "description": "The exact text to find and replace.",
            },
            "new_string": {
                "type": "string",
                "description": "The new text to replace old_string with. Must be different from old_string.",
            },
            "replace_all": {
                "type": "boolean",
                "description": "Replace all occurrences instead of requiring uniqueness. Default: false",
            },
        },
        ["file_path", "old_string", "new_string"],
    ),
    _function(
        "Write",
        "Writes content to a file, replacing existing content or creating a new "
        "file. Creates parent directories if needed. For editing existing files, "
        "prefer Edit instead.",
        {
            "file_path": {"type": "string", "description": "The path to the file to write"},
            "content": {
                "type": "string",
                "description": "The complete content to write to the file",
            },
        },
        ["file_path", "content"],
    ),
    _function(
        "Glob",
        "Fast file pattern matching. Use to find files by name patterns. Examples: "
        "'**/*.py' (all Python files), 'src/**/*.ts' (TypeScript in src).",
        {
            "pattern": {"type": "string", "description": "Glob pattern to match files against"},
            "path": {
                "type": "string",
                "description": "Directory to search in. Defaults to current directory.",
            },
        },
        ["pattern"],
    ),
    _function(
        "Grep",
        "Search for text patterns in files. Returns matching lines with file paths "
        "and line numbers.",
        {
            "pattern": {"type": "string", "description": "Text or regex pattern to search for"},
            "path": {
                "type": "string",
                "description": "File or directory to search in. Defaults to current directory.",
            },
            "include": {
                "type": "string",
                "description": "Only search files matching this glob pattern (e.g., '*.py')",
            },
        },
        ["pattern"],
    ),
    _function(
        "List",
        "Lists files and directories at the specified path. Shows directories "
        "first (with trailing /), then files.",
        {
            "path": {
                "type": "string",
                "description": "Directory to list. Defaults to current directory.",
            },
        },
        [],
    ),
    _function(
        "FileInfo",
        "Get metadata about a file or directory, including size, permissions and "
        "modification time.",
        {"path": {"type": "string", "description": "The path to check"}},
        ["path"],
    ),
    _function(
        "AskUser",
        "Ask the user a multiple choice question to clarify requirements or get "
        "input during planning.",
        {
            "question": {"type": "string", "description": "The question to ask the user"},
            "options": {
                "type": "array",
                "items": {"type": "string"},
                "description": "The available options for the user to choose from",
            },
        },
        ["question", "options"],
    ),
    _function(
        "ConfirmPlan",
        "Present a plan to the user for confirmation before executing. Use after "
        "gathering requirements.",
        {
            "plan": {
                "type": "string",
                "description": "The detailed plan to present to the user",
            },
        },
        ["plan"],
    ),
    _function(
        "WebSearch",
        "Search the web for information. Use when you need current information, "
        "facts or documentation. Requires user approval.",
        {"query": {"type": "string", "description": "The search query"}},
        ["query"],
    ),
    _function(
        "TodoWrite",
        "Update task list to track progress. IMPORTANT: Always include ALL existing "
        "tasks when updating - mark completed ones as 'completed', don't remove "
        "them. Only ONE task should be 'in_progress' at a time.",
        {
            "todos": {
                "type": "array",
                "description": "The full todo list including completed items.",
                "items": {
                    "type": "object",
                    "properties": {
                        "content": {
                            "type": "string",
                            "description": "What needs to be done (imperative form)",
                        },
                        "status": {
                            "type": "string",
                            "enum": ["pending", "in_progress", "completed"],
                            "description": "Current status of the task",
                        },
                        "activeForm": {
                            "type": "string",
                            "description": "Present continuous form shown during execution",
                        },
                    },
                    "required": ["content", "status", "activeForm"],
                },
            },
        },
        ["todos"],
    ),
]


def get_tool_definitions(converse_mode: bool = False) -> list[dict[str, Any]]:
    """Return the tool schemas to advertise; none in converse mode."""
    if converse_mode:
        return []
    return list(TOOL_DEFINITIONS)
