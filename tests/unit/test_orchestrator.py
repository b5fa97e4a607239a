"""Unit tests for the conversation worker driven by a scripted provider."""

import asyncio
from unittest.mock import patch

import pytest

from relay_server.agents import SessionRole
from relay_server.engine import EventChannel, FinishReason, Finished, TurnEmitter
from relay_server.engine.events import (
    BashApprovalRequest,
    ConfirmationRequest,
    ErrorEvent,
    NewMessage,
    PlanningRequest,
    RateLimitPause,
    RateLimitResume,
    RoleSwitch,
    ThinkingToken,
    TodoUpdate,
    Token,
    UsageUpdate,
    WebSearchApprovalRequest,
)
from relay_server.engine.orchestrator import (
    EMPTY_RESPONSE_WARNING,
    NUDGE_MESSAGE,
    ConversationEngine,
    TurnRequest,
)
from relay_server.services import (
    AllowListStore,
    ContextWindowService,
    RateLimiter,
    TransactionManager,
)
from relay_server.sessions.types import (
    AssistantMessage,
    SystemMessage,
    TodoStatus,
    ToolMessage,
    UserMessage,
)
from relay_server.tools import ToolExecutor


class Harness:
    """Wires a ConversationEngine to a scripted provider and a fresh channel."""

    def __init__(self, provider, settings, tmp_path) -> None:
        self.provider = provider
        self.settings = settings
        self.workspace = settings.resolved_workspace_dir
        self.transactions = TransactionManager()
        self.rate_limiter = RateLimiter()
        self.allow_list = AllowListStore(tmp_path / "allowed_commands.json")
        self.channel = EventChannel()
        self.cancel = asyncio.Event()
        self.engine = ConversationEngine(
            provider=provider,
            settings=settings,
            context_window=ContextWindowService(),
            executor=ToolExecutor(self.workspace, self.transactions),
            transactions=self.transactions,
            rate_limiter=self.rate_limiter,
            allow_list=self.allow_list,
        )

    def request(self, text: str = "hello", **kwargs) -> TurnRequest:
        messages = [SystemMessage(content="You are helpful."), UserMessage(content=text)]
        kwargs.setdefault("base_model", "grok-3")
        return TurnRequest(messages=messages, workspace_dir=self.workspace, **kwargs)

    async def run(self, request: TurnRequest | None = None) -> tuple[FinishReason, list]:
        reason = await self.engine.run(
            request or self.request(), TurnEmitter(self.channel, "turn"), self.cancel
        )
        events = []
        while (envelope := await self.channel.receive(timeout=0.01)) is not None:
            events.append(envelope.event)
        return reason, events


def _messages(events: list) -> list:
    return [e.message for e in events if isinstance(e, NewMessage)]


@pytest.fixture
def harness(provider, test_settings, tmp_path):
    return Harness(provider, test_settings, tmp_path)


class TestCompletion:
    @pytest.mark.asyncio
    async def test_plain_answer(self, harness):
        # Arrange
        harness.provider.queue_text("Hel", "lo!", reasoning="greet", usage=(12, 3))

        # Act
        reason, events = await harness.run()

        # Assert
        assert reason is FinishReason.COMPLETED
        assert [e for e in events if isinstance(e, Token)] == [Token("Hel"), Token("lo!")]
        assert ThinkingToken("greet") in events
        assert UsageUpdate(12, 3) in events
        (assistant,) = _messages(events)
        assert assistant.content == "Hello!"
        assert assistant.model == "grok-3"
        assert assistant.message_id
        assert events[-1] == Finished(FinishReason.COMPLETED)
        assert harness.rate_limiter.snapshot().requests_used == 1
        assert harness.rate_limiter.snapshot().tokens_used == 15

    @pytest.mark.asyncio
    async def test_frame_with_unexpected_shape_does_not_end_turn(self, harness):
        harness.provider.queue_chunks(
            [
                harness.provider.delta(tool_calls=[{"index": 0, "function": "oops"}]),
                harness.provider.delta(content="Hello"),
            ]
        )

        reason, events = await harness.run()

        assert reason is FinishReason.COMPLETED
        assert not any(isinstance(e, ErrorEvent) for e in events)
        (assistant,) = _messages(events)
        assert assistant.content == "Hello"
        assert assistant.tool_calls is None

    @pytest.mark.asyncio
    async def test_request_carries_history_and_tools(self, harness):
        harness.provider.queue_text("ok")

        await harness.run()

        model, messages, tools = harness.provider.calls[0]
        assert model == "grok-3"
        assert messages == [
            {"role": "system", "content": "You are helpful."},
            {"role": "user", "content": "hello"},
        ]
        assert {tool["function"]["name"] for tool in tools} >= {"Read", "Bash", "TodoWrite"}

    @pytest.mark.asyncio
    async def test_converse_mode_advertises_no_tools(self, harness):
        harness.provider.queue_text("chatting")

        await harness.run(harness.request(converse_mode=True))

        assert harness.provider.calls[0][2] == []

    @pytest.mark.asyncio
    async def test_does_not_mutate_request_messages(self, harness):
        harness.provider.queue_text("ok")
        request = harness.request()

        await harness.run(request)

        assert len(request.messages) == 2


class TestToolLoop:
    @pytest.mark.asyncio
    async def test_read_result_is_fed_back(self, harness):
        # Arrange
        (harness.workspace / "notes.txt").write_text("remember me\n")
        harness.provider.queue_tool_calls(("call_1", "Read", {"file_path": "notes.txt"}))
        harness.provider.queue_text("The file says remember me.")

        # Act
        reason, events = await harness.run()

        # Assert
        assert reason is FinishReason.COMPLETED
        assistant, tool, final = _messages(events)
        assert assistant.tool_calls[0].name == "Read"
        assert isinstance(tool, ToolMessage)
        assert tool.tool_call_id == "call_1"
        assert tool.content == "   1\tremember me\n"
        assert final.content == "The file says remember me."

        second_request = harness.provider.calls[1][1]
        assert second_request[-1] == {
            "role": "tool",
            "content": "   1\tremember me\n",
            "tool_call_id": "call_1",
        }
        assert second_request[-2]["tool_calls"][0]["id"] == "call_1"

    @pytest.mark.asyncio
    async def test_todo_write_is_handled_inline(self, harness):
        todos = [
            {"content": "Write tests", "status": "in_progress", "activeForm": "Writing tests"},
            {"content": "broken"},
        ]
        harness.provider.queue_tool_calls(("call_t", "TodoWrite", {"todos": todos}))
        harness.provider.queue_text("done")

        reason, events = await harness.run()

        assert reason is FinishReason.COMPLETED
        (update,) = [e for e in events if isinstance(e, TodoUpdate)]
        assert len(update.todos) == 1
        assert update.todos[0].status is TodoStatus.IN_PROGRESS
        assert _messages(events)[1].content == "Todo list updated."

    @pytest.mark.asyncio
    async def test_failed_edit_is_rolled_back_on_provider_error(self, harness):
        target = harness.workspace / "a.txt"
        target.write_text("before")
        harness.provider.queue_tool_calls(
            ("c1", "Edit", {"file_path": "a.txt", "old_string": "before", "new_string": "after"})
        )
        harness.provider.queue_error('{"error": "overloaded"}', 503)

        reason, events = await harness.run()

        assert reason is FinishReason.ERROR
        assert target.read_text() == "before"
        error = next(e for e in events if isinstance(e, ErrorEvent))
        assert error.message.startswith("API Error: 503")
        assert _messages(events)[-1].content == error.message
        assert events[-1] == Finished(FinishReason.ERROR)

    @pytest.mark.asyncio
    async def test_completed_turn_keeps_edits(self, harness):
        target = harness.workspace / "a.txt"
        target.write_text("before")
        harness.provider.queue_tool_calls(
            ("c1", "Edit", {"file_path": "a.txt", "old_string": "before", "new_string": "after"})
        )
        harness.provider.queue_text("edited")

        reason, _ = await harness.run()

        assert reason is FinishReason.COMPLETED
        assert target.read_text() == "after"
        assert harness.transactions.is_active is False


class TestSuspension:
    @pytest.mark.asyncio
    async def test_unapproved_bash_suspends(self, harness):
        harness.provider.queue_tool_calls(("c1", "Bash", {"command": "ls -la"}))

        reason, events = await harness.run()

        assert reason is FinishReason.SUSPENDED
        (request,) = [e for e in events if isinstance(e, BashApprovalRequest)]
        assert request.command == "ls -la"
        assert request.call.id == "c1"
        assert events[-1] == Finished(FinishReason.SUSPENDED)
        assert len(harness.provider.calls) == 1

    @pytest.mark.asyncio
    async def test_allow_listed_bash_runs(self, harness):
        harness.allow_list.add(harness.workspace, "echo hi")
        harness.provider.queue_tool_calls(("c1", "Bash", {"command": "echo hi"}))
        harness.provider.queue_text("printed")

        reason, events = await harness.run()

        assert reason is FinishReason.COMPLETED
        assert _messages(events)[1].content == "hi\n"

    @pytest.mark.asyncio
    async def test_ask_user(self, harness):
        harness.provider.queue_tool_calls(
            ("ask_1", "AskUser", {"question": "Which DB?", "options": ["sqlite", "postgres"]})
        )

        reason, events = await harness.run()

        assert reason is FinishReason.SUSPENDED
        assert PlanningRequest(
            question="Which DB?", options=["sqlite", "postgres"], correlation_id="ask_1"
        ) in events

    @pytest.mark.asyncio
    async def test_confirm_plan(self, harness):
        harness.provider.queue_tool_calls(("plan_1", "confirm_plan", {"plan": "1. do it"}))

        reason, events = await harness.run()

        assert reason is FinishReason.SUSPENDED
        assert ConfirmationRequest(plan="1. do it", correlation_id="plan_1") in events

    @pytest.mark.asyncio
    async def test_web_search_always_asks(self, harness):
        harness.provider.queue_tool_calls(("w1", "WebSearch", {"query": "fastapi sse"}))

        reason, events = await harness.run()

        assert reason is FinishReason.SUSPENDED
        (request,) = [e for e in events if isinstance(e, WebSearchApprovalRequest)]
        assert request.query == "fastapi sse"

    @pytest.mark.asyncio
    async def test_calls_before_the_suspending_one_still_run(self, harness):
        (harness.workspace / "a.txt").write_text("x")
        harness.provider.queue_tool_calls(
            ("c1", "Read", {"file_path": "a.txt"}),
            ("c2", "Bash", {"command": "rm -rf build"}),
            ("c3", "Read", {"file_path": "a.txt"}),
        )

        reason, events = await harness.run()

        assert reason is FinishReason.SUSPENDED
        tool_messages = [m for m in _messages(events) if isinstance(m, ToolMessage)]
        assert [m.tool_call_id for m in tool_messages] == ["c1"]


class TestEmptyResponses:
    @pytest.mark.asyncio
    async def test_retries_then_recovers(self, harness):
        harness.provider.queue_empty()
        harness.provider.queue_text("finally")

        reason, events = await harness.run()

        assert reason is FinishReason.COMPLETED
        assert harness.provider.calls[1][1][-1] == {"role": "user", "content": NUDGE_MESSAGE}
        assert _messages(events)[-1].content == "finally"

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, harness):
        for _ in range(3):
            harness.provider.queue_empty()

        with patch.object(
            harness.transactions, "rollback", wraps=harness.transactions.rollback
        ) as rollback:
            reason, events = await harness.run()

        assert reason is FinishReason.ERROR
        assert len(harness.provider.calls) == 3
        warnings = [m for m in _messages(events) if m.content == EMPTY_RESPONSE_WARNING]
        assert len(warnings) == 1
        assert isinstance(warnings[0], AssistantMessage)
        assert _messages(events)[-1] is warnings[0]
        assert rollback.call_count == 1
        assert events[-1] == Finished(FinishReason.ERROR)


class TestPacing:
    @pytest.mark.asyncio
    async def test_pauses_and_resets_before_next_request(self, harness):
        # Arrange
        slept: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            slept.append(seconds)

        limiter = RateLimiter(pause_seconds=60, sleep=fake_sleep)
        limiter.record_usage(850_000, 0)
        harness.engine.rate_limiter = limiter

        windows_at_request = []
        stream_chat = harness.provider.stream_chat

        def recording_stream_chat(model, messages, tools):
            windows_at_request.append(limiter.snapshot())
            return stream_chat(model, messages, tools)

        harness.provider.stream_chat = recording_stream_chat
        harness.provider.queue_text("Hello")

        # Act
        reason, events = await harness.run()

        # Assert
        assert reason is FinishReason.COMPLETED
        assert slept == [60]
        kinds = [type(e) for e in events if isinstance(e, (RateLimitPause, RateLimitResume, Token))]
        assert kinds == [RateLimitPause, RateLimitResume, Token]
        assert RateLimitPause(60) in events
        (window,) = windows_at_request
        assert window.tokens_used == 0
        assert window.requests_used == 1

    @pytest.mark.asyncio
    async def test_no_pause_below_threshold(self, harness):
        slept: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            slept.append(seconds)

        limiter = RateLimiter(sleep=fake_sleep)
        limiter.record_usage(500_000, 0)
        harness.engine.rate_limiter = limiter
        harness.provider.queue_text("Hello")

        reason, events = await harness.run()

        assert reason is FinishReason.COMPLETED
        assert slept == []
        assert not any(isinstance(e, RateLimitPause) for e in events)
        assert limiter.snapshot().tokens_used == 500_000


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start(self, harness):
        harness.cancel.set()

        reason, events = await harness.run()

        assert reason is FinishReason.CANCELLED
        assert events == [Finished(FinishReason.CANCELLED)]
        assert harness.provider.calls == []

    @pytest.mark.asyncio
    async def test_cancel_after_stream_rolls_back(self, harness):
        target = harness.workspace / "a.txt"
        target.write_text("before")
        harness.provider.queue_tool_calls(
            ("c1", "Write", {"file_path": "a.txt", "content": "after"})
        )
        harness.provider.queue_text("never seen")
        original = harness.provider.stream_chat

        async def cancelling_stream(model, messages, tools):
            async for chunk in original(model, messages, tools):
                yield chunk
            if len(harness.provider.calls) == 2:
                harness.cancel.set()

        harness.provider.stream_chat = cancelling_stream

        reason, events = await harness.run()

        assert reason is FinishReason.CANCELLED
        assert target.read_text() == "before"
        assert events[-1] == Finished(FinishReason.CANCELLED)


class TestRoles:
    @pytest.mark.asyncio
    async def test_role_prompt_is_injected_after_system(self, harness):
        harness.provider.queue_text("plan")
        role = SessionRole(name="planner", model="planner-model", system_prompt="Plan.")

        await harness.run(harness.request(role=role))

        model, messages, _ = harness.provider.calls[0]
        assert model == "planner-model"
        assert messages[1] == {"role": "system", "content": "[Role: @planner]\nPlan."}

    @pytest.mark.asyncio
    async def test_handoff_switches_role_and_continues(self, harness):
        # Arrange
        harness.provider.queue_text("Plan ready. hand off to @coder: implement step 1")
        harness.provider.queue_text("Implemented.")
        planner = SessionRole(name="planner", model="planner-model", system_prompt="Plan.")

        # Act
        reason, events = await harness.run(harness.request(role=planner))

        # Assert
        assert reason is FinishReason.COMPLETED
        assert RoleSwitch(from_role="planner", to_role="coder") in events
        coder_model, coder_messages, _ = harness.provider.calls[1]
        assert coder_model == harness.settings.roles["coder"].model
        assert coder_messages[1]["content"].startswith("[Role: @coder]")
        assert not any("[Role: @planner]" in (m.get("content") or "") for m in coder_messages)
        assert coder_messages[-1] == {
            "role": "user",
            "content": "Continue with the following task:\nimplement step 1",
        }

    @pytest.mark.asyncio
    async def test_handoff_to_unknown_role_finishes(self, harness):
        harness.provider.queue_text("@nobody: do it")

        reason, events = await harness.run()

        assert reason is FinishReason.COMPLETED
        assert not any(isinstance(e, RoleSwitch) for e in events)
        assert len(harness.provider.calls) == 1

    @pytest.mark.asyncio
    async def test_self_handoff_is_ignored(self, harness):
        harness.provider.queue_text("@coder: keep going")
        coder = SessionRole(name="coder", model="m", system_prompt=None)

        reason, events = await harness.run(harness.request(role=coder))

        assert reason is FinishReason.COMPLETED
        assert len(harness.provider.calls) == 1
