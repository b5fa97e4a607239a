"""Conversation orchestration worker.

One :class:`ConversationEngine` run drives one turn. Each pass of the loop
compresses the working history if needed, paces against the rate window,
streams a completion, and then either dispatches the returned tool calls,
hands off to another role, or finishes. Every state change is delivered to
the consumer through the event channel.

The engine owns the file transaction for the lifetime of the turn: it is
committed on a clean finish or a suspension and rolled back on a transport
failure, on exhausted empty-response retries, and on cancellation.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from relay_server.agents.roles import (
    DEFAULT_ROLE_NAME,
    SessionRole,
    find_handoff_directive,
    resolve_role,
)
from relay_server.config import RelayServerSettings
from relay_server.engine.channel import TurnEmitter
from relay_server.engine.events import (
    BashApprovalRequest,
    ConfirmationRequest,
    ErrorEvent,
    FinishReason,
    Finished,
    NewMessage,
    PlanningRequest,
    RateLimitPause,
    RateLimitResume,
    RoleSwitch,
    StatusUpdate,
    ThinkingToken,
    TodoUpdate,
    Token,
    UsageUpdate,
    WebSearchApprovalRequest,
)
from relay_server.provider import (
    ContentToken,
    DecoderEvent,
    ProviderClient,
    ProviderError,
    ReasoningToken,
    StreamDecoder,
    StreamResult,
    ToolCallFragment,
    UsageReport,
    classify_provider_error,
)
from relay_server.services import (
    AllowListStore,
    ContextWindowService,
    RateLimiter,
    TransactionManager,
)
from relay_server.sessions.session import stamp
from relay_server.sessions.types import (
    AssistantMessage,
    Message,
    SystemMessage,
    TodoItem,
    ToolCall,
    ToolMessage,
    UserMessage,
    filter_valid_messages,
    message_to_api_dict,
)
from relay_server.tools import ToolExecutor, ToolKind, get_tool_definitions, tool_kind

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_WARNING = (
    "⚠️ The model returned an empty response. This may be due to safety filters "
    "or API issues. Try rephrasing your request."
)
NUDGE_MESSAGE = "Please continue with your response."
HANDOFF_TEMPLATE = "Continue with the following task:\n{content}"
TODO_ACK = "Todo list updated."


@dataclass
class TurnRequest:
    """Inputs of one worker run.

    Attributes:
        messages: The worker's own copy of the API context
        base_model: Session model used when no role is active
        role: The active role, if any
        converse_mode: When True no tools are advertised
        sandbox_root: When set, tools may only touch paths inside it
        workspace_dir: Working directory, also the allow-list key
    """

    messages: list[Message]
    base_model: str
    workspace_dir: Path
    role: SessionRole | None = None
    converse_mode: bool = False
    sandbox_root: Path | None = None


class ConversationEngine:
    """Runs the Thinking -> Streamed -> dispatch loop for one turn."""

    def __init__(
        self,
        provider: ProviderClient,
        settings: RelayServerSettings,
        context_window: ContextWindowService,
        executor: ToolExecutor,
        transactions: TransactionManager,
        rate_limiter: RateLimiter,
        allow_list: AllowListStore,
    ) -> None:
        self.provider = provider
        self.settings = settings
        self.context_window = context_window
        self.executor = executor
        self.transactions = transactions
        self.rate_limiter = rate_limiter
        self.allow_list = allow_list

    async def run(
        self,
        request: TurnRequest,
        emitter: TurnEmitter,
        cancel: asyncio.Event,
    ) -> FinishReason:
        """Drive one turn to completion, suspension, failure or cancellation.

        Args:
            request: History, model and mode of the turn
            emitter: Delivers events tagged with this turn's id
            cancel: Advisory flag checked between awaits

        Returns:
            FinishReason: How the turn ended; also sent as a Finished event
        """
        history = list(request.messages)
        role = request.role
        role_message = self._inject_role(history, role, None)
        empty_retries = 0

        self.transactions.begin()
        logger.info(
            f"Turn {emitter.turn_id} started: model={self._model(request, role)}, "
            f"messages={len(history)}"
        )

        try:
            while True:
                if cancel.is_set():
                    return self._finish_cancelled(emitter)

                model = self._model(request, role)
                policy = self.settings.policy_for(model)

                compression = self.context_window.compress(history, policy.max_context)
                if compression.compressed:
                    history = compression.messages
                    role_message = self._inject_role(history, role, role_message)
                    emitter.emit(StatusUpdate("Context compressed..."))

                emitter.emit(
                    StatusUpdate(f"@{role.name} thinking..." if role else "Thinking...")
                )

                if self.rate_limiter.needs_pause(policy):
                    seconds = self.rate_limiter.pause_seconds
                    emitter.emit(RateLimitPause(seconds))
                    emitter.emit(
                        StatusUpdate(f"Rate limit approaching - pausing {seconds}s...")
                    )
                    await self.rate_limiter.pause()
                    emitter.emit(RateLimitResume())
                    emitter.emit(StatusUpdate("Rate limit cleared - resuming..."))
                    if cancel.is_set():
                        return self._finish_cancelled(emitter)

                tools = get_tool_definitions(request.converse_mode)
                try:
                    result = await self._stream(model, history, tools, emitter)
                except ProviderError as e:
                    return self._finish_failed(emitter, classify_provider_error(str(e)))

                if cancel.is_set():
                    return self._finish_cancelled(emitter)

                if result.is_empty:
                    empty_retries += 1
                    if empty_retries > self.settings.max_empty_retries:
                        logger.warning(
                            f"Turn {emitter.turn_id}: {empty_retries} consecutive empty responses"
                        )
                        emitter.emit(StatusUpdate("Model returned empty response"))
                        emitter.emit(
                            NewMessage(
                                stamp(AssistantMessage(content=EMPTY_RESPONSE_WARNING, model=model))
                            )
                        )
                        self.transactions.rollback()
                        emitter.emit(Finished(FinishReason.ERROR))
                        return FinishReason.ERROR

                    logger.warning(
                        f"Empty response, retrying ({empty_retries}/"
                        f"{self.settings.max_empty_retries})"
                    )
                    emitter.emit(
                        StatusUpdate(
                            f"Retrying ({empty_retries}/{self.settings.max_empty_retries})..."
                        )
                    )
                    history.append(UserMessage(content=NUDGE_MESSAGE))
                    continue

                empty_retries = 0
                assistant = stamp(
                    AssistantMessage(
                        content=result.content or None,
                        tool_calls=result.tool_calls or None,
                        model=model,
                    )
                )
                emitter.emit(NewMessage(assistant))
                history.append(assistant)

                if assistant.tool_calls:
                    outcome = await self._dispatch(
                        assistant.tool_calls, history, request, emitter, cancel
                    )
                    if outcome is FinishReason.SUSPENDED:
                        self.transactions.commit()
                        emitter.emit(Finished(FinishReason.SUSPENDED))
                        logger.info(f"Turn {emitter.turn_id} suspended for user input")
                        return FinishReason.SUSPENDED
                    if outcome is FinishReason.CANCELLED:
                        return self._finish_cancelled(emitter)
                    continue

                directive = find_handoff_directive(result.content)
                new_role = (
                    resolve_role(directive.role, self.settings.roles)
                    if directive is not None
                    else None
                )
                if directive is None or new_role is None:
                    break
                if role is not None and new_role.name == role.name:
                    logger.debug(f"Ignoring handoff to the active role @{role.name}")
                    break

                from_name = role.name if role else DEFAULT_ROLE_NAME
                logger.info(f"Handoff from @{from_name} to @{new_role.name}")
                emitter.emit(RoleSwitch(from_role=from_name, to_role=new_role.name))
                handoff = stamp(
                    UserMessage(content=HANDOFF_TEMPLATE.format(content=directive.content))
                )
                history.append(handoff)
                emitter.emit(NewMessage(handoff))
                role = new_role
                role_message = self._inject_role(history, role, role_message)

            self.transactions.commit()
            emitter.emit(Finished(FinishReason.COMPLETED))
            logger.info(f"Turn {emitter.turn_id} completed")
            return FinishReason.COMPLETED

        except Exception as e:
            logger.exception(f"Turn {emitter.turn_id} failed unexpectedly")
            return self._finish_failed(emitter, classify_provider_error(str(e)))

    # --- loop helpers ---

    @staticmethod
    def _model(request: TurnRequest, role: SessionRole | None) -> str:
        return role.model if role else request.base_model

    @staticmethod
    def _inject_role(
        history: list[Message],
        role: SessionRole | None,
        previous: SystemMessage | None,
    ) -> SystemMessage | None:
        """Place the role's system message right after the primary one."""
        if previous is not None:
            for index, message in enumerate(history):
                if message is previous:
                    del history[index]
                    break

        content = role.system_message_content() if role else None
        if content is None:
            return None

        role_message = SystemMessage(content=content)
        if len(history) <= 1:
            history.append(role_message)
        else:
            history.insert(1, role_message)
        return role_message

    def _finish_failed(self, emitter: TurnEmitter, message: str) -> FinishReason:
        logger.error(f"Turn {emitter.turn_id} failed: {message}")
        self.transactions.rollback()
        emitter.emit(ErrorEvent(message))
        emitter.emit(NewMessage(stamp(AssistantMessage(content=message))))
        emitter.emit(Finished(FinishReason.ERROR))
        return FinishReason.ERROR

    def _finish_cancelled(self, emitter: TurnEmitter) -> FinishReason:
        logger.info(f"Turn {emitter.turn_id} cancelled")
        self.transactions.rollback()
        emitter.emit(Finished(FinishReason.CANCELLED))
        return FinishReason.CANCELLED

    async def _stream(
        self,
        model: str,
        history: list[Message],
        tools: list[dict[str, Any]],
        emitter: TurnEmitter,
    ) -> StreamResult:
        """Send one streamed request and forward decoder events as they arrive."""
        api_messages = [message_to_api_dict(m) for m in filter_valid_messages(history)]
        decoder = StreamDecoder()
        self.rate_limiter.record_request()

        async for chunk in self.provider.stream_chat(model, api_messages, tools):
            for event in decoder.feed(chunk):
                self._forward(event, emitter)
        for event in decoder.flush():
            self._forward(event, emitter)

        result = decoder.result()
        logger.debug(
            f"Stream finished: {len(result.content)} chars, "
            f"{len(result.tool_calls)} tool calls"
        )
        return result

    def _forward(self, event: DecoderEvent, emitter: TurnEmitter) -> None:
        if isinstance(event, ContentToken):
            emitter.emit(Token(event.text))
        elif isinstance(event, ReasoningToken):
            emitter.emit(ThinkingToken(event.text))
        elif isinstance(event, UsageReport):
            self.rate_limiter.record_usage(event.prompt_tokens, event.completion_tokens)
            emitter.emit(UsageUpdate(event.prompt_tokens, event.completion_tokens))
        elif isinstance(event, ToolCallFragment):
            logger.debug(f"Tool call fragment for index {event.index}")

    # --- dispatch gate ---

    async def _dispatch(
        self,
        calls: list[ToolCall],
        history: list[Message],
        request: TurnRequest,
        emitter: TurnEmitter,
        cancel: asyncio.Event,
    ) -> FinishReason | None:
        """Route a batch of tool calls in order.

        Returns:
            SUSPENDED if a call needs the user, CANCELLED if the flag was set
            between calls, None if every call produced a result
        """
        for call in calls:
            if cancel.is_set():
                return FinishReason.CANCELLED

            kind = tool_kind(call.name)
            args = _parse_arguments(call.arguments)

            if kind is ToolKind.ASK_USER:
                options = args.get("options")
                emitter.emit(
                    PlanningRequest(
                        question=str(args.get("question") or "Select options"),
                        options=[str(o) for o in options] if isinstance(options, list) else [],
                        correlation_id=call.id,
                    )
                )
                return FinishReason.SUSPENDED

            if kind is ToolKind.CONFIRM_PLAN:
                emitter.emit(
                    ConfirmationRequest(plan=str(args.get("plan") or ""), correlation_id=call.id)
                )
                return FinishReason.SUSPENDED

            if kind is ToolKind.BASH:
                command = str(args.get("command") or "")
                if not self.allow_list.is_allowed(request.workspace_dir, command):
                    emitter.emit(BashApprovalRequest(call=call, command=command))
                    return FinishReason.SUSPENDED

            if kind is ToolKind.WEB_SEARCH:
                emitter.emit(
                    WebSearchApprovalRequest(call=call, query=str(args.get("query") or ""))
                )
                return FinishReason.SUSPENDED

            if kind is ToolKind.TODO_WRITE:
                todos = _parse_todos(args)
                emitter.emit(TodoUpdate(todos))
                self._append_tool_result(history, call, TODO_ACK, emitter)
                continue

            emitter.emit(StatusUpdate(f"Running tool: {call.name}..."))
            result = await asyncio.to_thread(
                self.executor.execute, call.name, call.arguments, request.sandbox_root
            )
            self._append_tool_result(history, call, result, emitter)

        return None

    @staticmethod
    def _append_tool_result(
        history: list[Message], call: ToolCall, content: str, emitter: TurnEmitter
    ) -> None:
        message = stamp(ToolMessage(content=content, tool_call_id=call.id, tool_name=call.name))
        history.append(message)
        emitter.emit(NewMessage(message))


def _parse_arguments(arguments: str) -> dict[str, Any]:
    try:
        parsed = json.loads(arguments) if arguments.strip() else {}
    except json.JSONDecodeError:
        logger.warning(f"Tool call arguments are not valid JSON: {arguments[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _parse_todos(args: dict[str, Any]) -> list[TodoItem]:
    todos: list[TodoItem] = []
    for item in args.get("todos") or []:
        if not isinstance(item, dict):
            continue
        todo = TodoItem.from_tool_argument(item)
        if todo is not None:
            todos.append(todo)
    return todos
