"""Transactional file store for turn-scoped file mutations.

Before a tool mutates a file, its pre-transaction state (content and whether
it existed) is captured once. A clean turn commits, discarding snapshots; a
failed turn rolls back, rewriting every touched file or deleting files that
did not exist before the turn.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionError(OSError):
    """Raised when a mutation targets a path outside the sandbox root."""


@dataclass
class FileSnapshot:
    """Pre-transaction state of one path."""

    path: Path
    existed: bool
    prior_content: bytes | None = None

    @classmethod
    def capture(cls, path: Path) -> "FileSnapshot":
        """Read the current state of ``path``."""
        if path.is_file():
            return cls(path=path, existed=True, prior_content=path.read_bytes())
        return cls(path=path, existed=path.exists())

    def restore(self) -> None:
        """Put ``path`` back into its captured state."""
        if self.existed:
            if self.prior_content is None:
                # Existed but was not a regular file; leave it alone
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_bytes(self.prior_content)
        elif self.path.is_file():
            self.path.unlink()


@dataclass
class Transaction:
    """Snapshots and touched paths of one turn."""

    snapshots: dict[Path, FileSnapshot] = field(default_factory=dict)
    modified_files: list[Path] = field(default_factory=list)

    def snapshot(self, path: Path) -> None:
        """Capture ``path`` unless it was already captured (first write wins)."""
        if path not in self.snapshots:
            self.snapshots[path] = FileSnapshot.capture(path)

    def mark_modified(self, path: Path) -> None:
        if path not in self.modified_files:
            self.modified_files.append(path)


class TransactionManager:
    """Owns the single active transaction of a session.

    Attributes:
        sandbox_root: When set, only paths inside it may be mutated
    """

    def __init__(self, sandbox_root: Path | None = None) -> None:
        self.sandbox_root = sandbox_root.resolve() if sandbox_root else None
        self._lock = threading.Lock()
        self._active: Transaction | None = None

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._active is not None

    def begin(self) -> None:
        """Open a fresh transaction, discarding any stale one."""
        with self._lock:
            if self._active is not None:
                logger.warning("Beginning a transaction while another was open")
            self._active = Transaction()
        logger.debug("Transaction started")

    def commit(self) -> None:
        """Discard all snapshots of the active transaction."""
        with self._lock:
            transaction = self._active
            self._active = None
        if transaction is not None:
            logger.info(
                f"Transaction committed ({len(transaction.modified_files)} files modified)"
            )

    def rollback(self) -> list[Path]:
        """Restore every snapshotted path and close the transaction.

        Returns:
            list[Path]: The paths that were restored
        """
        with self._lock:
            transaction = self._active
            self._active = None
        if transaction is None:
            return []

        restored: list[Path] = []
        for path, snapshot in transaction.snapshots.items():
            try:
                snapshot.restore()
                restored.append(path)
            except OSError as e:
                logger.error(f"Failed to restore {path}: {e}")
        logger.info(f"Transaction rolled back ({len(restored)} files restored)")
        return restored

    def _check_sandbox(self, path: Path) -> Path:
        resolved = path.resolve()
        if self.sandbox_root is not None and not resolved.is_relative_to(
            self.sandbox_root
        ):
            raise TransactionError(
                f"Cannot modify files outside of sandbox: {path}"
            )
        return resolved

    def prepare(self, path: Path) -> Path:
        """Check the sandbox and snapshot ``path`` into the active transaction.

        Returns:
            Path: The resolved path

        Raises:
            TransactionError: If ``path`` lies outside the sandbox root
        """
        resolved = self._check_sandbox(path)
        with self._lock:
            if self._active is not None:
                self._active.snapshot(resolved)
        return resolved

    def mark_modified(self, path: Path) -> None:
        with self._lock:
            if self._active is not None:
                self._active.mark_modified(path.resolve())

    def execute(self, path: Path, mutation: Callable[[Path], T]) -> T:
        """Snapshot ``path``, run ``mutation`` on it and mark it modified.

        The mutation's own result is returned and its exceptions propagate.
        """
        resolved = self.prepare(path)
        result = mutation(resolved)
        self.mark_modified(resolved)
        return result

    def status(self) -> str:
        """Human-readable description of the active transaction."""
        with self._lock:
            if self._active is None:
                return "No active transaction"
            return (
                f"Transaction active: {len(self._active.snapshots)} files tracked, "
                f"{len(self._active.modified_files)} modified"
            )
