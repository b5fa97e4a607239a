"""Events the orchestration worker delivers to the consumer.

Each event class carries an ``event_name`` used as the SSE event type. The
consumer applies events to the session's display transcript and forwards
them to the HTTP client.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar

from relay_server.sessions.types import Message, TodoItem, ToolCall


class FinishReason(str, Enum):
    """Why a worker stopped."""

    COMPLETED = "completed"
    SUSPENDED = "suspended"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class Token:
    text: str
    event_name: ClassVar[str] = "token"


@dataclass
class ThinkingToken:
    text: str
    event_name: ClassVar[str] = "thinking_token"


@dataclass
class NewMessage:
    """A complete message appended to the conversation."""

    message: Message
    event_name: ClassVar[str] = "new_message"


@dataclass
class StatusUpdate:
    text: str
    event_name: ClassVar[str] = "status"


@dataclass
class UsageUpdate:
    prompt_tokens: int
    completion_tokens: int
    event_name: ClassVar[str] = "usage"


@dataclass
class TodoUpdate:
    todos: list[TodoItem] = field(default_factory=list)
    event_name: ClassVar[str] = "todo_update"


@dataclass
class PlanningRequest:
    """The model asked the user a multiple choice question."""

    question: str
    options: list[str]
    correlation_id: str
    event_name: ClassVar[str] = "planning_request"


@dataclass
class ConfirmationRequest:
    """The model presented a plan for confirmation."""

    plan: str
    correlation_id: str
    event_name: ClassVar[str] = "confirmation_request"


@dataclass
class BashApprovalRequest:
    """A shell command needs the user's consent."""

    call: ToolCall
    command: str
    event_name: ClassVar[str] = "bash_approval_request"


@dataclass
class WebSearchApprovalRequest:
    """A web search needs the user's consent."""

    call: ToolCall
    query: str
    event_name: ClassVar[str] = "web_search_approval_request"


@dataclass
class RoleSwitch:
    from_role: str
    to_role: str
    event_name: ClassVar[str] = "role_switch"


@dataclass
class RateLimitPause:
    seconds: int
    event_name: ClassVar[str] = "rate_limit_pause"


@dataclass
class RateLimitResume:
    event_name: ClassVar[str] = "rate_limit_resume"


@dataclass
class BrainstormToken:
    agent: str
    text: str
    event_name: ClassVar[str] = "brainstorm_token"


@dataclass
class BrainstormAgentDone:
    agent: str
    response: str
    event_name: ClassVar[str] = "brainstorm_agent_done"


@dataclass
class BrainstormComplete:
    synthesis: str
    event_name: ClassVar[str] = "brainstorm_complete"


@dataclass
class ErrorEvent:
    message: str
    event_name: ClassVar[str] = "error"


@dataclass
class Finished:
    reason: FinishReason = FinishReason.COMPLETED
    event_name: ClassVar[str] = "finished"


ApprovalRequest = (
    PlanningRequest | ConfirmationRequest | BashApprovalRequest | WebSearchApprovalRequest
)

EngineEvent = (
    Token
    | ThinkingToken
    | NewMessage
    | StatusUpdate
    | UsageUpdate
    | TodoUpdate
    | PlanningRequest
    | ConfirmationRequest
    | BashApprovalRequest
    | WebSearchApprovalRequest
    | RoleSwitch
    | RateLimitPause
    | RateLimitResume
    | BrainstormToken
    | BrainstormAgentDone
    | BrainstormComplete
    | ErrorEvent
    | Finished
)
