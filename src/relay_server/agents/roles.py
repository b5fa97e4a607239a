"""Role directives and handoff detection.

A role directive has the form ``@name: message``. It can open a user's input,
or appear in assistant output as a line of its own or after "hand off to" /
"handoff to", which hands the conversation to another role.
"""

import logging
from dataclasses import dataclass

from relay_server.config import RoleConfig

logger = logging.getLogger(__name__)

HANDOFF_PHRASES = ("hand off to @", "handoff to @")
DEFAULT_ROLE_NAME = "default"


@dataclass
class RoleDirective:
    """A parsed ``@role: content`` directive."""

    role: str
    content: str


@dataclass
class SessionRole:
    """The model and persona a turn runs under."""

    name: str
    model: str
    system_prompt: str | None = None

    def system_message_content(self) -> str | None:
        """Content of the role's injected system message, if it has a prompt."""
        if not self.system_prompt:
            return None
        return f"[Role: @{self.name}]\n{self.system_prompt}"


def _valid_role_name(name: str) -> bool:
    return bool(name) and all(ch.isalnum() or ch in "_-" for ch in name)


def parse_role_directive(text: str) -> RoleDirective | None:
    """Parse ``@name: content`` at the start of ``text``.

    The role name is lowercased and may contain letters, digits, ``_`` and
    ``-``. The content is the trimmed remainder after the first colon.

    Returns:
        RoleDirective | None: The directive, or None if ``text`` is not one
    """
    stripped = text.strip()
    if not stripped.startswith("@"):
        return None

    colon = stripped.find(":")
    if colon < 0:
        return None

    role = stripped[1:colon].strip().lower()
    if not _valid_role_name(role):
        return None

    return RoleDirective(role=role, content=stripped[colon + 1 :].strip())


def find_handoff_directive(text: str) -> RoleDirective | None:
    """Scan assistant output line by line for a handoff directive.

    A line matches if it is itself a directive, or if it contains
    "hand off to @" / "handoff to @" followed by a directive.
    """
    for line in text.splitlines():
        trimmed = line.strip()
        directive = parse_role_directive(trimmed)
        if directive is not None:
            return directive

        lowered = trimmed.lower()
        for phrase in HANDOFF_PHRASES:
            start = lowered.find(phrase)
            if start < 0:
                continue
            # Each phrase ends with the "@" that opens the directive
            at = start + len(phrase) - 1
            directive = parse_role_directive(trimmed[at:])
            if directive is not None:
                return directive
    return None


def resolve_role(name: str, roles: dict[str, RoleConfig]) -> SessionRole | None:
    """Look up a configured role by name."""
    config = roles.get(name)
    if config is None:
        return None
    return SessionRole(name=name, model=config.model, system_prompt=config.prompt)
