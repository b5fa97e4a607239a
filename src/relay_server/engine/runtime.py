"""Per-session runtime: turn submission, approval replies and the event consumer.

A :class:`SessionRuntime` owns everything that lives across turns of one
session: its rate limiter, file transaction manager, tool executor, active
role, todo list, pending approval request, and the event channel. It enforces
at most one worker per session, spawns workers, and acts as the consumer that
applies delivered events to the session transcripts.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, replace
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

from relay_server.agents.brainstorm import SYNTHESIS_AGENT, BrainstormRunner
from relay_server.agents.roles import SessionRole, parse_role_directive, resolve_role
from relay_server.config import RelayServerSettings
from relay_server.engine.channel import Envelope, EventChannel, TurnEmitter
from relay_server.engine.events import (
    ApprovalRequest,
    BashApprovalRequest,
    BrainstormAgentDone,
    BrainstormComplete,
    BrainstormToken,
    ConfirmationRequest,
    EngineEvent,
    Finished,
    NewMessage,
    PlanningRequest,
    RoleSwitch,
    ThinkingToken,
    TodoUpdate,
    Token,
    UsageUpdate,
    WebSearchApprovalRequest,
)
from relay_server.engine.orchestrator import ConversationEngine, TurnRequest
from relay_server.provider import ProviderClient
from relay_server.services import (
    AllowListStore,
    CompressionPolicy,
    ContextWindowService,
    RateLimiter,
    TransactionManager,
)
from relay_server.sessions import ChatSession, SessionManager
from relay_server.sessions.types import (
    AssistantMessage,
    SystemMessage,
    TodoItem,
    ToolMessage,
    UserMessage,
    merge_todos,
)
from relay_server.tools import ToolExecutor

logger = logging.getLogger(__name__)

NOT_EXECUTED_RESULT = "Not executed: waiting for user input on a previous action."
BASH_REJECTED = "Command rejected by user."
WEB_SEARCH_REJECTED = "Web search rejected by user."
PLAN_CONFIRMED = "Plan Confirmed. Proceed."
PLAN_REJECTED = "Plan Rejected by user."


class TurnInProgressError(Exception):
    """Raised when a turn is submitted while another one is running."""


class NoPendingRequestError(Exception):
    """Raised when a reply arrives but no approval request is pending."""


class RateLimitedError(Exception):
    """Raised when the preflight check holds a submission back."""


@dataclass
class ApprovalReply:
    """The user's answer to a pending approval request.

    Attributes:
        selections: Chosen options for a planning question
        feedback: Free text for a plan confirmation (empty or "y" confirms)
        decision: ``approve``, ``always`` or ``reject`` for shell and web search
    """

    selections: list[str] | None = None
    feedback: str | None = None
    decision: str | None = None


def confirmation_reply_text(feedback: str | None) -> str:
    """Map a plan confirmation answer to the tool result sent to the model."""
    answer = (feedback or "").strip()
    if not answer or answer.lower() == "y":
        return PLAN_CONFIRMED
    if answer.lower() == "n":
        return PLAN_REJECTED
    return f"Plan Feedback: {answer}"


class SessionRuntime:
    """In-memory state and worker management for one session."""

    def __init__(
        self,
        session: ChatSession,
        settings: RelayServerSettings,
        provider: ProviderClient,
        allow_list: AllowListStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.settings = settings
        self.provider = provider
        self.allow_list = allow_list
        self.sessions_dir = settings.resolved_sessions_dir
        self.workspace_dir = settings.resolved_workspace_dir

        self.channel = EventChannel()
        self.rate_limiter = RateLimiter(
            enabled=settings.rate_limiter_enabled and session.metadata.rate_limiter_enabled,
            pause_seconds=settings.rate_limit_pause_seconds,
            sleep=sleep,
        )
        self.transactions = TransactionManager()
        self.executor = ToolExecutor(self.workspace_dir, self.transactions)
        self.context_window = ContextWindowService(
            CompressionPolicy(
                trigger_ratio=settings.compression_trigger_ratio,
                recent_ratio=settings.compression_recent_ratio,
            )
        )

        self.active_role: SessionRole | None = None
        self.pending_request: ApprovalRequest | None = None
        self.todos: list[TodoItem] = []
        self.current_turn_id: str | None = None
        self.cancel_event = asyncio.Event()
        self.cancelling = False
        self._worker: asyncio.Task | None = None
        self._brainstorm_agent: str | None = None
        self._brainstorm_buffer = ""

    # --- state ---

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def turn_active(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def current_model(self) -> str:
        return self.active_role.model if self.active_role else self.session.model

    @property
    def sandbox_root(self) -> Path | None:
        return self.workspace_dir if self.session.metadata.sandbox_enabled else None

    def save(self) -> None:
        self.session.save(self.sessions_dir)

    # --- submission ---

    def submit_message(self, text: str) -> str:
        """Accept a user message and start a turn for it.

        A leading ``@role:`` directive activates that role and is stripped
        from the message. The API context is compressed if needed, and the
        preflight rate check may hold the turn back.

        Returns:
            str: The id of the started turn

        Raises:
            TurnInProgressError: If a worker is still running
            RateLimitedError: If usage is too close to the model's limits
        """
        if self.turn_active:
            raise TurnInProgressError(f"Session {self.session_id} has a turn in progress")

        content = text.strip()
        directive = parse_role_directive(content)
        if directive is not None:
            role = resolve_role(directive.role, self.settings.roles)
            if role is not None:
                logger.info(f"Session {self.session_id}: activated role @{role.name}")
                self.active_role = role
                content = directive.content or content

        self.pending_request = None
        self._fill_skipped_results()
        self.session.add_message(UserMessage(content=content))
        self.compress_context()

        preflight = self.rate_limiter.preflight(self.settings.policy_for(self.current_model))
        if not preflight.allowed:
            self.session.add_display_message(SystemMessage(content=preflight.message))
            self.save()
            raise RateLimitedError(preflight.message)

        self.save()
        return self._start_worker()

    def compress_context(self) -> bool:
        """Compress the session's API context against the active model's budget."""
        policy = self.settings.policy_for(self.current_model)
        result = self.context_window.compress(self.session.api_messages, policy.max_context)
        if not result.compressed:
            return False
        self.session.replace_api_messages(result.messages)
        self.session.add_display_message(
            SystemMessage(
                content=f"Context compressed: {result.compressed_count} messages summarized"
            )
        )
        return True

    async def answer_pending(self, reply: ApprovalReply) -> str:
        """Turn the user's reply into tool results and resume with a new worker.

        Returns:
            str: The id of the resumed turn

        Raises:
            NoPendingRequestError: If nothing is waiting for an answer
            TurnInProgressError: If a worker is still running
        """
        if self.turn_active:
            raise TurnInProgressError(f"Session {self.session_id} has a turn in progress")
        request = self.pending_request
        if request is None:
            raise NoPendingRequestError(f"Session {self.session_id} has no pending request")

        if isinstance(request, PlanningRequest):
            call_id, call_name = request.correlation_id, "AskUser"
            result = f"User selected: {json.dumps(reply.selections or [], ensure_ascii=False)}"
        elif isinstance(request, ConfirmationRequest):
            call_id, call_name = request.correlation_id, "ConfirmPlan"
            result = confirmation_reply_text(reply.feedback)
        elif isinstance(request, BashApprovalRequest):
            call_id, call_name = request.call.id, request.call.name
            decision = (reply.decision or "reject").lower()
            if decision == "always":
                self.allow_list.add(self.workspace_dir, request.command)
            if decision in ("approve", "always"):
                result = await asyncio.to_thread(
                    self.executor.execute,
                    request.call.name,
                    request.call.arguments,
                    self.sandbox_root,
                )
            else:
                result = BASH_REJECTED
        else:
            call_id, call_name = request.call.id, request.call.name
            decision = (reply.decision or "reject").lower()
            if decision in ("approve", "always"):
                result = await asyncio.to_thread(
                    self.executor.execute, request.call.name, request.call.arguments, None
                )
            else:
                result = WEB_SEARCH_REJECTED

        self.pending_request = None
        self.session.add_message(
            ToolMessage(content=result, tool_call_id=call_id, tool_name=call_name)
        )
        self._fill_skipped_results()
        self.save()
        logger.info(f"Session {self.session_id}: answered {call_name} request, resuming")
        return self._start_worker()

    def _fill_skipped_results(self) -> None:
        """Answer calls of the last batch that never ran, so the context stays valid."""
        answered: set[str] = set()
        for message in reversed(self.session.api_messages):
            if isinstance(message, ToolMessage):
                answered.add(message.tool_call_id)
                continue
            if isinstance(message, AssistantMessage) and message.tool_calls:
                for call in message.tool_calls:
                    if call.id not in answered:
                        self.session.add_message(
                            ToolMessage(
                                content=NOT_EXECUTED_RESULT,
                                tool_call_id=call.id,
                                tool_name=call.name,
                            )
                        )
            break

    def start_brainstorm(self, topic: str) -> str:
        """Start a brainstorm worker on ``topic``.

        Raises:
            TurnInProgressError: If a worker is still running
        """
        if self.turn_active:
            raise TurnInProgressError(f"Session {self.session_id} has a turn in progress")

        self.session.add_display_message(
            SystemMessage(content=f"=== Brainstorm ===\nTopic: {topic}")
        )
        self.save()
        self._brainstorm_agent = None
        self._brainstorm_buffer = ""

        runner = BrainstormRunner(
            provider=self.provider,
            model=self.settings.brainstorm_model,
            max_rounds=self.settings.brainstorm_max_rounds,
            rate_limiter=self.rate_limiter,
        )
        turn_id, emitter = self._new_turn()
        self._spawn(runner.run(topic, emitter))
        return turn_id

    def request_cancel(self) -> bool:
        """Ask the running worker to stop; its remaining events are discarded.

        Returns:
            bool: False if no turn was running
        """
        if not self.turn_active:
            return False
        self.cancel_event.set()
        self.cancelling = True
        logger.info(f"Session {self.session_id}: cancellation requested")
        return True

    def _new_turn(self) -> tuple[str, TurnEmitter]:
        turn_id = uuid.uuid4().hex[:12]
        self.current_turn_id = turn_id
        self.cancel_event = asyncio.Event()
        self.cancelling = False
        self.channel.drain()
        return turn_id, TurnEmitter(self.channel, turn_id)

    def _spawn(self, coro: Awaitable) -> None:
        self._worker = asyncio.create_task(coro)
        self._worker.add_done_callback(self._on_worker_done)

    def _on_worker_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning(f"Session {self.session_id}: worker task was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Session {self.session_id}: worker crashed: {exc!r}")

    def _start_worker(self) -> str:
        self.rate_limiter.enabled = (
            self.settings.rate_limiter_enabled and self.session.metadata.rate_limiter_enabled
        )
        self.transactions.sandbox_root = (
            self.sandbox_root.resolve() if self.sandbox_root else None
        )
        engine = ConversationEngine(
            provider=self.provider,
            settings=self.settings,
            context_window=self.context_window,
            executor=self.executor,
            transactions=self.transactions,
            rate_limiter=self.rate_limiter,
            allow_list=self.allow_list,
        )
        request = TurnRequest(
            messages=list(self.session.api_messages),
            base_model=self.session.model,
            workspace_dir=self.workspace_dir,
            role=self.active_role,
            converse_mode=self.session.metadata.converse_mode,
            sandbox_root=self.sandbox_root,
        )
        turn_id, emitter = self._new_turn()
        self._spawn(engine.run(request, emitter, self.cancel_event))
        logger.info(f"Session {self.session_id}: started turn {turn_id}")
        return turn_id

    # --- consumer ---

    def apply(self, envelope: Envelope) -> EngineEvent | None:
        """Apply one delivered event to the session.

        Returns:
            The event if it should be forwarded, None if it was discarded
        """
        if envelope.turn_id != self.current_turn_id:
            logger.debug(f"Dropping event of stale turn {envelope.turn_id}")
            return None

        event = envelope.event
        if self.cancelling:
            if not isinstance(event, Finished):
                return None
            self.cancelling = False
            self.save()
            return event

        if isinstance(event, Token):
            self.session.append_token(event.text)
        elif isinstance(event, ThinkingToken):
            self.session.append_thinking(event.text)
        elif isinstance(event, NewMessage):
            self.session.add_message(replace(event.message))
            self.save()
        elif isinstance(event, UsageUpdate):
            self.session.metadata.last_prompt_tokens = event.prompt_tokens
            self.session.metadata.last_completion_tokens = event.completion_tokens
        elif isinstance(event, TodoUpdate):
            self.todos = merge_todos(self.todos, event.todos)
        elif isinstance(
            event,
            (PlanningRequest, ConfirmationRequest, BashApprovalRequest, WebSearchApprovalRequest),
        ):
            self.pending_request = event
        elif isinstance(event, RoleSwitch):
            self.active_role = resolve_role(event.to_role, self.settings.roles)
        elif isinstance(event, BrainstormToken):
            self._apply_brainstorm_token(event)
        elif isinstance(event, BrainstormAgentDone):
            last = self.session.messages[-1] if self.session.messages else None
            if isinstance(last, AssistantMessage) and (last.content or "").startswith(
                f"[{event.agent}]"
            ):
                last.content = f"[{event.agent}] {event.response}"
            self._brainstorm_buffer = ""
            self.save()
        elif isinstance(event, BrainstormComplete):
            last = self.session.messages[-1] if self.session.messages else None
            content = f"=== Synthesis ===\n{event.synthesis}"
            if isinstance(last, AssistantMessage) and self._brainstorm_agent == SYNTHESIS_AGENT:
                last.content = content
            else:
                self.session.add_display_message(AssistantMessage(content=content))
            self._brainstorm_agent = None
            self._brainstorm_buffer = ""
            self.save()
        elif isinstance(event, Finished):
            self.save()

        return event

    def _apply_brainstorm_token(self, event: BrainstormToken) -> None:
        if self._brainstorm_agent != event.agent:
            self._brainstorm_agent = event.agent
            self._brainstorm_buffer = ""
            self.session.add_display_message(AssistantMessage(content=f"[{event.agent}]"))
        self._brainstorm_buffer += event.text
        last = self.session.messages[-1]
        if isinstance(last, AssistantMessage):
            last.content = f"[{event.agent}] {self._brainstorm_buffer}"

    async def events(
        self,
        turn_id: str,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[EngineEvent]:
        """Poll the channel and yield applied events of ``turn_id`` until it finishes.

        A client disconnect is treated as a cancellation request.
        """
        poll_interval = self.settings.event_poll_interval
        while True:
            if is_disconnected is not None and await is_disconnected():
                logger.info(f"Client disconnected from turn {turn_id}")
                self.request_cancel()
                return

            envelope = await self.channel.receive(timeout=poll_interval)
            if envelope is None:
                if not self.turn_active and len(self.channel) == 0:
                    return
                continue

            event = self.apply(envelope)
            if event is None:
                continue
            yield event
            if isinstance(event, Finished) and envelope.turn_id == turn_id:
                return

    # --- reporting ---

    def context_report(self) -> dict:
        """Usage and state summary for the context endpoint."""
        policy = self.settings.policy_for(self.current_model)
        usage = self.context_window.usage(self.session.api_messages, policy.max_context)
        window = self.rate_limiter.snapshot()
        return {
            "model": self.current_model,
            "estimated_tokens": usage.estimated_tokens,
            "max_context": usage.max_context,
            "percentage": usage.percentage,
            "api_message_count": len(self.session.api_messages),
            "tokens_used": window.tokens_used,
            "requests_used": window.requests_used,
            "tokens_per_minute": policy.tokens_per_minute,
            "requests_per_minute": policy.requests_per_minute,
            "last_prompt_tokens": self.session.metadata.last_prompt_tokens,
            "last_completion_tokens": self.session.metadata.last_completion_tokens,
            "active_role": self.active_role.name if self.active_role else None,
            "pending_request": self.pending_request.event_name if self.pending_request else None,
            "transaction": self.transactions.status(),
            "turn_active": self.turn_active,
            "todos": self.todos,
        }


class SessionRegistry:
    """Keeps one :class:`SessionRuntime` per session loaded in this process."""

    def __init__(
        self,
        settings: RelayServerSettings,
        provider: ProviderClient,
        allow_list: AllowListStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.provider = provider
        self.allow_list = allow_list
        self.manager = SessionManager(sessions_dir=settings.resolved_sessions_dir)
        self._sleep = sleep
        self._runtimes: dict[str, SessionRuntime] = {}

    def attach(self, session: ChatSession) -> SessionRuntime:
        runtime = SessionRuntime(
            session=session,
            settings=self.settings,
            provider=self.provider,
            allow_list=self.allow_list,
            sleep=self._sleep,
        )
        self._runtimes[session.session_id] = runtime
        return runtime

    def get(self, session_id: str) -> SessionRuntime:
        """Get the runtime of a session, loading it from disk on first use.

        Raises:
            FileNotFoundError: If the session doesn't exist
        """
        runtime = self._runtimes.get(session_id)
        if runtime is None:
            runtime = self.attach(self.manager.get_session(session_id))
        return runtime

    def discard(self, session_id: str) -> None:
        self._runtimes.pop(session_id, None)
