"""Built-in tool executor.

Executes the file, shell and search tools the model can call. Every result is
plain text; failures are returned as ``Error: ...`` strings so the model can
see them and recover. File mutations go through the session's
:class:`TransactionManager` so a failed turn can roll them back.
"""

import html
import json
import logging
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import httpx

from relay_server.services.transactions import TransactionError, TransactionManager
from relay_server.tools.kinds import ToolKind, tool_kind

logger = logging.getLogger(__name__)

MAX_READ_BYTES = 10_000_000
MAX_GREP_LINES = 100
BASH_TIMEOUT_SECONDS = 300
WEB_SEARCH_URL = "https://html.duckduckgo.com/html/"
WEB_SEARCH_MAX_LINES = 15


class ToolExecutor:
    """Runs built-in tools relative to a working directory.

    Attributes:
        workspace_dir: Directory relative paths and shell commands resolve against
        transactions: Transaction manager wrapping Edit and Write
    """

    def __init__(
        self,
        workspace_dir: Path,
        transactions: TransactionManager | None = None,
        http_timeout: float = 15.0,
    ) -> None:
        self.workspace_dir = workspace_dir.resolve()
        self.transactions = transactions or TransactionManager()
        self.http_timeout = http_timeout

    def execute(
        self, name: str, arguments: str, sandbox_root: Path | None = None
    ) -> str:
        """Execute one tool call.

        Args:
            name: Tool name or alias
            arguments: JSON-encoded arguments object
            sandbox_root: When set, paths outside it are refused

        Returns:
            str: The tool output, or an ``Error: ...`` string
        """
        kind = tool_kind(name)
        if kind is None:
            return f"Unknown tool: {name}"

        try:
            args = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError:
            args = {}
        if not isinstance(args, dict):
            args = {}

        handlers = {
            ToolKind.BASH: self._bash,
            ToolKind.READ: self._read,
            ToolKind.EDIT: self._edit,
            ToolKind.WRITE: self._write,
            ToolKind.GLOB: self._glob,
            ToolKind.GREP: self._grep,
            ToolKind.LIST: self._list,
            ToolKind.FILE_INFO: self._file_info,
            ToolKind.WEB_SEARCH: self._web_search,
        }
        handler = handlers.get(kind)
        if handler is None:
            return "Tool handled by application"

        sandbox = sandbox_root.resolve() if sandbox_root else None
        logger.debug(f"Executing tool {kind.value} with args {list(args)}")
        try:
            return handler(args, sandbox)
        except TransactionError as e:
            return f"Error: {e}"
        except Exception as e:
            logger.warning(f"Tool {kind.value} failed: {e}")
            return f"Error: {e}"

    # --- helpers ---

    def _resolve(self, raw_path: str) -> Path:
        path = Path(raw_path).expanduser()
        if not path.is_absolute():
            path = self.workspace_dir / path
        return path.resolve()

    @staticmethod
    def _in_sandbox(path: Path, sandbox: Path | None) -> bool:
        return sandbox is None or path.is_relative_to(sandbox)

    # --- handlers ---

    def _bash(self, args: dict[str, Any], sandbox: Path | None) -> str:
        command = args.get("command") or ""
        if not command:
            return "Error: command is required"

        cwd = sandbox or self.workspace_dir
        try:
            completed = subprocess.run(
                ["sh", "-c", command],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=BASH_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            return f"Error: command timed out after {BASH_TIMEOUT_SECONDS}s"
        except OSError as e:
            return f"Error executing command: {e}"

        parts = [part for part in (completed.stdout, completed.stderr) if part]
        output = "\n".join(parts)
        return output if output else "(no output)"

    def _read(self, args: dict[str, Any], sandbox: Path | None) -> str:
        file_path = args.get("file_path") or ""
        if not file_path:
            return "Error: file_path is required"

        path = self._resolve(file_path)
        if not self._in_sandbox(path, sandbox):
            return f"Error: Cannot read files outside of {sandbox}"

        try:
            size = path.stat().st_size
            if size > MAX_READ_BYTES:
                return (
                    f"Error: File too large ({size} bytes). "
                    "Use offset and limit for large files."
                )
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            return f"Error reading file: {e}"

        lines = content.splitlines()
        total = len(lines)
        if total == 0:
            return "(empty file)"

        offset = args.get("offset") or args.get("start_line") or 1
        start = max(int(offset), 1)
        limit = args.get("limit")
        end_line = args.get("end_line")
        if limit:
            end = min(start + int(limit) - 1, total)
        elif end_line:
            end = min(int(end_line), total)
        else:
            end = total

        if start > total:
            return f"Error: offset {start} exceeds file length ({total} lines)"

        width = max(len(str(total)), 4)
        numbered = [
            f"{number:>{width}}\t{lines[number - 1]}" for number in range(start, end + 1)
        ]
        result = "\n".join(numbered) + "\n"
        if start > 1 or end < total:
            result += (
                f"\n[Showing lines {start}-{end} of {total}. "
                "Use offset/limit to see more.]"
            )
        return result

    def _edit(self, args: dict[str, Any], sandbox: Path | None) -> str:
        file_path = args.get("file_path") or ""
        old_string = args.get("old_string") or ""
        new_string = args.get("new_string") or ""
        replace_all = bool(args.get("replace_all", False))

        if not file_path:
            return "Error: file_path is required"
        path = self._resolve(file_path)
        if not self._in_sandbox(path, sandbox):
            return f"Error: Cannot edit files outside of {sandbox}"
        if not old_string:
            return "Error: old_string cannot be empty"
        if old_string == new_string:
            return "✓ No changes needed - strings are identical"

        content = path.read_text(encoding="utf-8")
        count = content.count(old_string)
        if count == 0:
            return (
                f"Error: old_string not found in {file_path}\n\n"
                "The text must match EXACTLY, including whitespace and indentation.\n"
                "Tip: Copy the exact text from the Read output."
            )
        if count > 1 and not replace_all:
            return (
                f"Error: old_string appears {count} times in the file.\n\n"
                "Include more surrounding context to make old_string unique, "
                "or use replace_all: true to replace all occurrences"
            )

        new_content = (
            content.replace(old_string, new_string)
            if replace_all
            else content.replace(old_string, new_string, 1)
        )
        self.transactions.execute(
            path, lambda target: target.write_text(new_content, encoding="utf-8")
        )

        diff = _diff_snippet(old_string, new_string)
        if replace_all and count > 1:
            return (
                f"{file_path}\n\n{diff}\n\n"
                f"✓ Replaced {count} occurrences in {file_path}"
            )
        return f"{file_path}\n\n{diff}\n\n✓ Successfully edited"

    def _write(self, args: dict[str, Any], sandbox: Path | None) -> str:
        file_path = args.get("file_path") or ""
        content = args.get("content") or ""
        if not file_path:
            return "Error: file_path is required"
        path = self._resolve(file_path)
        if not self._in_sandbox(path, sandbox):
            return f"Error: Cannot write files outside of {sandbox}"

        def write(target: Path) -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        try:
            self.transactions.execute(path, write)
        except TransactionError:
            raise
        except OSError as e:
            return f"Error writing file: {e}"
        return f"Successfully wrote to {file_path}"

    def _glob(self, args: dict[str, Any], sandbox: Path | None) -> str:
        pattern = args.get("pattern") or ""
        if not pattern:
            return "Error: pattern is required"
        base = self._resolve(args.get("path") or ".")
        if not self._in_sandbox(base, sandbox):
            return f"Error: Cannot search outside of {sandbox}"

        results = sorted(
            str(match.relative_to(self.workspace_dir))
            if match.is_relative_to(self.workspace_dir)
            else str(match)
            for match in base.glob(pattern)
            if self._in_sandbox(match.resolve(), sandbox)
        )
        if not results:
            return "No matching files found"
        return "\n".join(results)

    def _grep(self, args: dict[str, Any], sandbox: Path | None) -> str:
        pattern = args.get("pattern") or args.get("query") or ""
        if not pattern:
            return "Error: pattern is required"
        base = self._resolve(args.get("path") or ".")
        if not self._in_sandbox(base, sandbox):
            return f"Error: Cannot search outside of {sandbox}"

        try:
            regex = re.compile(pattern)
        except re.error as e:
            return f"Error: invalid pattern: {e}"

        include = args.get("include")
        if base.is_file():
            candidates = [base]
        else:
            candidates = sorted(
                p
                for p in base.rglob(include or "*")
                if p.is_file() and not any(part.startswith(".") for part in p.relative_to(base).parts)
            )

        matches: list[str] = []
        for candidate in candidates:
            try:
                text = candidate.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            display = (
                candidate.relative_to(self.workspace_dir)
                if candidate.is_relative_to(self.workspace_dir)
                else candidate
            )
            for number, line in enumerate(text.splitlines(), start=1):
                if regex.search(line):
                    matches.append(f"{display}:{number}:{line}")

        if not matches:
            return "No matches found"
        if len(matches) > MAX_GREP_LINES:
            hidden = len(matches) - MAX_GREP_LINES
            return (
                "\n".join(matches[:MAX_GREP_LINES])
                + f"\n\n... {hidden} more lines (showing first {MAX_GREP_LINES})"
            )
        return "\n".join(matches)

    def _list(self, args: dict[str, Any], sandbox: Path | None) -> str:
        path = self._resolve(args.get("path") or ".")
        if not self._in_sandbox(path, sandbox):
            return f"Error: Cannot access directories outside of {sandbox}"

        try:
            entries = list(path.iterdir())
        except OSError as e:
            return f"Error listing directory: {e}"

        dirs = sorted(f"{entry.name}/" for entry in entries if entry.is_dir())
        files = sorted(entry.name for entry in entries if not entry.is_dir())
        if not dirs and not files:
            return "(empty directory)"
        return "\n".join(dirs + files)

    def _file_info(self, args: dict[str, Any], sandbox: Path | None) -> str:
        raw_path = args.get("path") or ""
        if not raw_path:
            return "Error: path is required"
        path = self._resolve(raw_path)
        if not self._in_sandbox(path, sandbox):
            return f"Error: Cannot access paths outside of {sandbox}"

        try:
            stat = path.stat()
        except OSError as e:
            return f"Error getting metadata for {raw_path}: {e}"

        if path.is_file():
            file_type = "file"
        elif path.is_dir():
            file_type = "directory"
        else:
            file_type = "other"
        modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        read_only = not (stat.st_mode & 0o200)
        return (
            f"Path: {raw_path}\n"
            f"Type: {file_type}\n"
            f"Size: {stat.st_size} bytes\n"
            f"Modified: {int(modified.timestamp())} (Unix timestamp)\n"
            f"Read-only: {str(read_only).lower()}"
        )

    def _web_search(self, args: dict[str, Any], sandbox: Path | None) -> str:
        query = args.get("query") or ""
        if not query:
            return "Error: query is required"
        try:
            response = httpx.get(
                WEB_SEARCH_URL,
                params={"q": query},
                headers={"User-Agent": "Mozilla/5.0"},
                timeout=self.http_timeout,
                follow_redirects=True,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            return f"Error performing search: {e}"
        return parse_search_results(response.text)


_RESULT_TITLE = re.compile(r'class="result__a"[^>]*>(.*?)</a>', re.S)
_RESULT_SNIPPET = re.compile(r'class="result__snippet"[^>]*>(.*?)</', re.S)
_TAG = re.compile(r"<[^>]+>")


def parse_search_results(page: str) -> str:
    """Extract result titles and snippets from a DuckDuckGo HTML page."""
    lines: list[str] = []
    titles = _RESULT_TITLE.findall(page)
    snippets = _RESULT_SNIPPET.findall(page)
    for index, raw_title in enumerate(titles):
        title = html.unescape(_TAG.sub("", raw_title)).strip()
        if not title:
            continue
        lines.append(f"• {title}")
        if index < len(snippets):
            snippet = html.unescape(_TAG.sub("", snippets[index])).strip()
            if snippet:
                lines.append(f"  {snippet}")
                lines.append("")
        if len(lines) >= WEB_SEARCH_MAX_LINES:
            break

    if not lines:
        return "No results found or unable to parse search results."
    return "\n".join(lines).rstrip()


def _diff_snippet(old_string: str, new_string: str) -> str:
    old_lines = old_string.splitlines()
    new_lines = new_string.splitlines()
    out = [f"@@ -{len(old_lines)} lines +{len(new_lines)} lines @@"]
    out.extend(f"-  {line}" for line in old_lines)
    out.extend(f"+  {line}" for line in new_lines)
    return "\n".join(out)
