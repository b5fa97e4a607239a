"""Per-directory allow-list of pre-approved shell commands.

The list is stored as a JSON object mapping a working directory to the
commands approved there. The dispatch gate only reads it; it is appended to
when the user answers "always approve".
"""

import json
import logging
import threading
from pathlib import Path

logger = logging.getLogger(__name__)


class AllowListStore:
    """JSON-backed map of working directory -> approved commands."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict[str, list[str]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read allow-list {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {
            str(cwd): [str(cmd) for cmd in commands]
            for cwd, commands in data.items()
            if isinstance(commands, list)
        }

    def commands_for(self, cwd: Path) -> list[str]:
        """Commands approved for ``cwd``."""
        with self._lock:
            return self._load().get(str(cwd), [])

    def is_allowed(self, cwd: Path, command: str) -> bool:
        return command in self.commands_for(cwd)

    def add(self, cwd: Path, command: str) -> None:
        """Persist ``command`` as approved for ``cwd``."""
        with self._lock:
            data = self._load()
            commands = data.setdefault(str(cwd), [])
            if command in commands:
                return
            commands.append(command)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        logger.info(f"Added '{command}' to allowed commands for {cwd}")
