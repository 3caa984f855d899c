"""
Test suite for AgentTurnClient against the in-memory agent runtime.

Tests cover:
- Turn state machine progression and polling
- Tagged results: success / quality failure / transport failure
- Thread mapping persistence and reuse
- Retry of transient failures, no retry of terminal ones
- Turn deadline (TIMED_OUT) handling and run cancellation before a retry
- Concurrent turns on one conversation (last writer wins)
"""

import asyncio

import pytest
from azure.core.exceptions import ClientAuthenticationError, HttpResponseError

from src.agents.client import AgentTurnClient, TurnState, TurnTrace, is_low_quality_response
from src.agents.fake import InMemoryAgentRuntime
from src.agents.results import FailureKind, TurnOutcomeKind
from src.resilience.errors import InvalidTransitionError, TransportError
from src.threads.store import InMemoryThreadMappingStore

ANSWER = "Try Azul: quick to teach, beautiful tiles and real decisions every turn."


class VirtualTime:
    """Clock and sleep pair where sleeping advances the clock instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def vtime():
    return VirtualTime()


@pytest.fixture
def store():
    return InMemoryThreadMappingStore()


def _client(runtime, store, executor, vtime, **kwargs) -> AgentTurnClient:
    return AgentTurnClient(
        runtime=runtime,
        thread_store=store,
        executor=executor,
        agent_id="asst_test",
        poll_initial_seconds=0.05,
        poll_max_seconds=0.5,
        turn_deadline_seconds=kwargs.pop("turn_deadline_seconds", 30.0),
        sleep=vtime.sleep,
        clock=vtime.clock,
        **kwargs,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# HAPPY PATH
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_queued_in_progress_completed_returns_assistant_text(store, executor, vtime):
    runtime = InMemoryAgentRuntime(
        responder=lambda text: ANSWER,
        status_script=["queued", "in_progress", "in_progress", "completed"],
    )
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.ok
    assert result.kind is TurnOutcomeKind.SUCCESS
    assert result.text == ANSWER
    assert result.attempts == 1
    assert result.trace.states == [
        TurnState.NEW,
        TurnState.THREAD_RESOLVED,
        TurnState.MESSAGE_POSTED,
        TurnState.RUN_CREATED,
        TurnState.POLLING,
        TurnState.COMPLETED,
    ]
    assert result.trace.poll_count == 4


@pytest.mark.asyncio
async def test_polling_interval_widens_to_ceiling(store, executor, vtime):
    runtime = InMemoryAgentRuntime(
        responder=lambda text: ANSWER,
        status_script=["in_progress"] * 6 + ["completed"],
    )
    client = _client(runtime, store, executor, vtime)

    assert (await client.run_turn("hi there friend")).ok

    assert vtime.sleeps == pytest.approx([0.05, 0.1, 0.2, 0.4, 0.5, 0.5, 0.5])


@pytest.mark.asyncio
async def test_stale_status_reports_are_ignored(store, executor, vtime):
    runtime = InMemoryAgentRuntime(
        responder=lambda text: ANSWER,
        status_script=["in_progress", "queued", "completed"],
    )
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game")

    assert result.ok
    assert result.text == ANSWER


# ═══════════════════════════════════════════════════════════════════════════════
# THREAD MAPPING
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_thread_is_persisted_and_reused(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: ANSWER)
    client = _client(runtime, store, executor, vtime)

    first = await client.run_turn("Recommend a game", conversation_id="conv-1")
    second = await client.run_turn("Something shorter?", conversation_id="conv-1")

    assert first.thread_id == second.thread_id
    assert await store.get("conv-1") == first.thread_id
    assert runtime.calls["create_thread"] == 1
    assert len(runtime.threads[first.thread_id]) == 4


@pytest.mark.asyncio
async def test_turn_without_conversation_id_does_not_touch_store(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: ANSWER)
    client = _client(runtime, store, executor, vtime)

    first = await client.run_turn("Recommend a game")
    second = await client.run_turn("Recommend a game")

    assert first.ok and second.ok
    assert first.thread_id != second.thread_id
    assert len(store) == 0


@pytest.mark.asyncio
async def test_stale_mapped_thread_is_replaced(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: ANSWER)
    client = _client(runtime, store, executor, vtime)
    await store.set("conv-1", "thread_deleted_on_service")

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.ok
    assert result.thread_id != "thread_deleted_on_service"
    assert await store.get("conv-1") == result.thread_id


@pytest.mark.asyncio
async def test_end_conversation_forgets_thread(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: ANSWER)
    client = _client(runtime, store, executor, vtime)
    await client.run_turn("Recommend a game", conversation_id="conv-1")

    await client.end_conversation("conv-1")

    assert await store.get("conv-1") is None


@pytest.mark.asyncio
async def test_concurrent_turns_race_and_last_writer_wins(store, executor):
    runtime = InMemoryAgentRuntime(
        responder=lambda text: ANSWER, status_script=["in_progress", "completed"]
    )
    client = AgentTurnClient(
        runtime=runtime,
        thread_store=store,
        executor=executor,
        agent_id="asst_test",
        poll_initial_seconds=0.001,
        poll_max_seconds=0.002,
    )

    first, second = await asyncio.gather(
        client.run_turn("Recommend a game", conversation_id="conv-1"),
        client.run_turn("Recommend another", conversation_id="conv-1"),
    )

    assert first.ok and second.ok
    # Both turns resolved independently: two threads, one surviving mapping.
    assert runtime.calls["create_thread"] == 2
    assert first.thread_id != second.thread_id
    assert await store.get("conv-1") in {first.thread_id, second.thread_id}


# ═══════════════════════════════════════════════════════════════════════════════
# QUALITY FAILURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_completed_without_assistant_message_is_quality_failure(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: None)
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.is_quality_failure
    assert result.failure is FailureKind.EMPTY_RESPONSE
    assert result.text is None
    assert result.attempts == 1
    # The run completed, so the thread is still remembered for the conversation.
    assert await store.get("conv-1") == result.thread_id


@pytest.mark.asyncio
async def test_previous_reply_is_not_mistaken_for_current_one(store, executor, vtime):
    replies = iter([ANSWER, None])
    runtime = InMemoryAgentRuntime(responder=lambda text: next(replies))
    client = _client(runtime, store, executor, vtime)

    first = await client.run_turn("Recommend a game", conversation_id="conv-1")
    second = await client.run_turn("And another?", conversation_id="conv-1")

    assert first.ok
    assert second.failure is FailureKind.EMPTY_RESPONSE


@pytest.mark.asyncio
async def test_short_reply_is_returned_as_success(store, executor, vtime):
    runtime = InMemoryAgentRuntime(
        responder=lambda text: "Try Azul.",
        status_script=["queued", "in_progress", "completed"],
    )
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.ok
    assert result.text == "Try Azul."
    assert result.low_quality is False
    assert result.failure is None


@pytest.mark.asyncio
async def test_placeholder_reply_is_returned_and_flagged(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: "Looking into that for you...")
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.ok
    assert result.low_quality is True
    assert result.text == "Looking into that for you..."
    assert await store.get("conv-1") == result.thread_id


@pytest.mark.parametrize(
    "text, expected",
    [
        (None, True),
        ("   ", True),
        ("Sure!", False),
        ("Try Azul.", False),
        ("One moment while I check the shelf.", True),
        ("Let me help you with that request right away.", True),
        (ANSWER, False),
    ],
)
def test_is_low_quality_response(text, expected):
    assert is_low_quality_response(text) is expected


# ═══════════════════════════════════════════════════════════════════════════════
# TRANSPORT FAILURES
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_transient_503_is_retried_on_same_thread(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: ANSWER)
    runtime.fail_next("create_run", TransportError("Service Unavailable", status_code=503))
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.ok
    assert result.attempts == 2
    assert runtime.calls["create_thread"] == 1
    # at-least-once: the retried attempt posts the user message again
    assert runtime.calls["post_message"] == 2


@pytest.mark.asyncio
async def test_transient_failures_beyond_budget_become_transport_failure(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: ANSWER)
    runtime.fail_next(
        "create_thread", *[TransportError("Too Many Requests", status_code=429) for _ in range(3)]
    )
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.is_transport_failure
    assert result.failure is FailureKind.RATE_LIMITED
    assert result.attempts == 3
    assert "429" not in (result.message or "")
    assert await store.get("conv-1") is None


@pytest.mark.asyncio
async def test_authentication_failure_is_not_retried(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: ANSWER)
    runtime.fail_next("create_thread", ClientAuthenticationError("token rejected"))
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game")

    assert result.is_transport_failure
    assert result.failure is FailureKind.AUTHENTICATION
    assert result.attempts == 1


@pytest.mark.asyncio
async def test_failed_run_is_terminal(store, executor, vtime):
    runtime = InMemoryAgentRuntime(
        responder=lambda text: ANSWER,
        status_script=["in_progress", "failed"],
        run_error={"code": "invalid_prompt", "message": "prompt rejected"},
    )
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game")

    assert result.is_transport_failure
    assert result.failure is FailureKind.RUN_FAILED
    assert result.attempts == 1
    assert result.trace.state is TurnState.FAILED


@pytest.mark.asyncio
async def test_rate_limited_run_is_retried(store, executor, vtime):
    runtime = InMemoryAgentRuntime(
        responder=lambda text: ANSWER,
        status_script=["failed"],
        run_error={"code": "rate_limit_exceeded", "message": "slow down"},
    )
    client = _client(runtime, store, executor, vtime)

    result = await client.run_turn("Recommend a game")

    assert result.failure is FailureKind.RATE_LIMITED
    assert result.attempts == 3
    assert runtime.calls["create_run"] == 3


@pytest.mark.asyncio
async def test_run_exceeding_deadline_times_out(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: ANSWER, status_script=["in_progress"])
    client = _client(runtime, store, executor, vtime, turn_deadline_seconds=2.0)

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.is_transport_failure
    assert result.failure is FailureKind.TIMEOUT
    assert result.attempts == 3
    assert result.trace.state is TurnState.TIMED_OUT
    assert runtime.calls["create_thread"] == 1
    assert runtime.calls["cancel_run"] == 3
    assert not runtime.has_active_run(result.thread_id)


class BusyThreadRuntime(InMemoryAgentRuntime):
    """Rejects new messages while a run is active on the thread, like the service does."""

    async def post_message(self, thread_id, role, content):
        if self.has_active_run(thread_id):
            self.calls["post_message_rejected"] += 1
            raise HttpResponseError(
                message="Can't add messages to thread while a run is active."
            )
        await super().post_message(thread_id, role, content)


@pytest.mark.asyncio
async def test_timed_out_run_is_cancelled_before_retry(store, executor, vtime):
    runtime = BusyThreadRuntime(responder=lambda text: ANSWER, status_script=["in_progress"])
    client = _client(runtime, store, executor, vtime, turn_deadline_seconds=2.0)

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.failure is FailureKind.TIMEOUT
    assert result.attempts == 3
    assert runtime.calls["post_message"] == 3
    assert runtime.calls["post_message_rejected"] == 0


@pytest.mark.asyncio
async def test_retry_after_deadline_can_still_succeed(store, executor, vtime):
    runtime = BusyThreadRuntime(responder=lambda text: ANSWER, status_script=["in_progress"])
    client = _client(runtime, store, executor, vtime, turn_deadline_seconds=2.0)
    original_create_run = runtime.create_run

    async def create_run(thread_id, agent_id):
        if runtime.calls["create_run"] >= 1:
            runtime.status_script = ["completed"]
        return await original_create_run(thread_id, agent_id)

    runtime.create_run = create_run

    result = await client.run_turn("Recommend a game", conversation_id="conv-1")

    assert result.ok
    assert result.text == ANSWER
    assert result.attempts == 2
    assert runtime.calls["cancel_run"] == 1


@pytest.mark.asyncio
async def test_failed_cancel_does_not_mask_timeout(store, executor, vtime):
    runtime = InMemoryAgentRuntime(responder=lambda text: ANSWER, status_script=["in_progress"])
    runtime.fail_next(
        "cancel_run", *[TransportError("Service Unavailable", status_code=503) for _ in range(3)]
    )
    client = _client(runtime, store, executor, vtime, turn_deadline_seconds=2.0)

    result = await client.run_turn("Recommend a game")

    assert result.failure is FailureKind.TIMEOUT
    assert result.attempts == 3


# ═══════════════════════════════════════════════════════════════════════════════
# STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════════════


def test_turn_trace_rejects_backwards_transition():
    trace = TurnTrace()
    trace.advance(TurnState.THREAD_RESOLVED)
    trace.advance(TurnState.MESSAGE_POSTED)

    with pytest.raises(InvalidTransitionError):
        trace.advance(TurnState.THREAD_RESOLVED)


def test_turn_trace_rejects_transition_after_terminal():
    trace = TurnTrace()
    for state in (
        TurnState.THREAD_RESOLVED,
        TurnState.MESSAGE_POSTED,
        TurnState.RUN_CREATED,
        TurnState.POLLING,
        TurnState.COMPLETED,
    ):
        trace.advance(state)

    with pytest.raises(InvalidTransitionError):
        trace.advance(TurnState.FAILED)


def test_client_rejects_inverted_poll_bounds(store, executor):
    with pytest.raises(ValueError):
        AgentTurnClient(
            runtime=InMemoryAgentRuntime(),
            thread_store=store,
            executor=executor,
            agent_id="asst_test",
            poll_initial_seconds=1.0,
            poll_max_seconds=0.5,
        )
