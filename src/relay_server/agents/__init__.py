"""Roles, handoff detection and the multi-agent brainstorm."""

from relay_server.agents.brainstorm import PERSONAS, BrainstormRunner, BrainstormState
from relay_server.agents.roles import (
    RoleDirective,
    SessionRole,
    find_handoff_directive,
    parse_role_directive,
    resolve_role,
)

__all__ = [
    "PERSONAS",
    "BrainstormRunner",
    "BrainstormState",
    "RoleDirective",
    "SessionRole",
    "find_handoff_directive",
    "parse_role_directive",
    "resolve_role",
]
