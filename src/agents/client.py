"""
Agent turn client.

One turn walks a forward-only state machine::

    NEW → THREAD_RESOLVED → MESSAGE_POSTED → RUN_CREATED → POLLING
        → COMPLETED | FAILED | TIMED_OUT

The whole attempt runs under the AGENT_CALL policy of the resilient call
executor. Thread creation, message posting and run creation are not
idempotent, so a retried attempt may leave a duplicate user message or an
extra run on the same thread (at-least-once). The resolved thread id is
kept across attempts so retries never fan out into new threads.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from azure.core.exceptions import ResourceNotFoundError
from opentelemetry import trace

from src.agents.results import FailureKind, TurnResult, classify_failure
from src.agents.runtime import (
    AgentRuntime,
    MessageOrder,
    MessageRole,
    RunError,
    RunSnapshot,
    RunStatus,
)
from src.enums.monitoring import SpanAttr
from src.resilience.errors import InvalidTransitionError, RunFailedError, RunTimedOutError
from src.resilience.executor import ResilientCallExecutor
from src.resilience.policies import PolicyClass
from src.threads.store import ThreadMappingStore
from utils.conversation_context import bind_thread_id
from utils.ml_logging import get_logger

logger = get_logger("agents.client")
tracer = trace.get_tracer(__name__)

CANCEL_RUN_TIMEOUT_SECONDS = 2.0


# ═══════════════════════════════════════════════════════════════════════════════
# TURN STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════════════


class TurnState(str, Enum):
    NEW = "new"
    THREAD_RESOLVED = "thread_resolved"
    MESSAGE_POSTED = "message_posted"
    RUN_CREATED = "run_created"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def rank(self) -> int:
        return _TURN_STATE_ORDER.index(self) if self in _TURN_STATE_ORDER else len(_TURN_STATE_ORDER)

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.COMPLETED, TurnState.FAILED, TurnState.TIMED_OUT)


_TURN_STATE_ORDER = (
    TurnState.NEW,
    TurnState.THREAD_RESOLVED,
    TurnState.MESSAGE_POSTED,
    TurnState.RUN_CREATED,
    TurnState.POLLING,
)


@dataclass
class TurnTrace:
    """Ordered record of the states one attempt passed through."""

    attempt: int = 1
    state: TurnState = TurnState.NEW
    transitions: list[tuple[TurnState, float]] = field(default_factory=list)
    poll_count: int = 0

    def __post_init__(self):
        if not self.transitions:
            self.transitions.append((self.state, time.perf_counter()))

    def advance(self, target: TurnState) -> None:
        if self.state.is_terminal or target.rank <= self.state.rank:
            raise InvalidTransitionError(self.state, target)
        self.state = target
        self.transitions.append((target, time.perf_counter()))

    @property
    def states(self) -> list[TurnState]:
        return [state for state, _ in self.transitions]


@dataclass
class AgentRun:
    run_id: str
    thread_id: str
    status: RunStatus
    last_error: RunError | None = None

    @classmethod
    def from_snapshot(cls, snapshot: RunSnapshot) -> AgentRun:
        return cls(
            run_id=snapshot.run_id,
            thread_id=snapshot.thread_id,
            status=snapshot.status,
            last_error=snapshot.last_error,
        )

    def advance(self, snapshot: RunSnapshot) -> bool:
        """Apply a fresh status; stale (backwards) reports are ignored. Returns True if moved."""
        if self.status.is_terminal or snapshot.status.rank < self.status.rank:
            return False
        moved = snapshot.status is not self.status
        self.status = snapshot.status
        if snapshot.last_error is not None:
            self.last_error = snapshot.last_error
        return moved


# ═══════════════════════════════════════════════════════════════════════════════
# RESPONSE QUALITY
# ═══════════════════════════════════════════════════════════════════════════════

_PLACEHOLDER_PATTERNS = (
    re.compile(r"^looking into (that|this) for you", re.IGNORECASE),
    re.compile(r"^on it!?\s*give me a (moment|sec)", re.IGNORECASE),
    re.compile(r"^let me help you with that", re.IGNORECASE),
    re.compile(r"^let me (check|look into) (that|this)", re.IGNORECASE),
    re.compile(r"^one moment", re.IGNORECASE),
)


def is_low_quality_response(text: str | None) -> bool:
    """Empty, or a known 'working on it' placeholder. Short answers are fine."""
    if not text or not text.strip():
        return True
    stripped = text.strip()
    return any(pattern.search(stripped) for pattern in _PLACEHOLDER_PATTERNS)


# ═══════════════════════════════════════════════════════════════════════════════
# CLIENT
# ═══════════════════════════════════════════════════════════════════════════════


def _latest_reply(messages_newest_first) -> str | None:
    # A user message newer than any assistant message means this run did not answer.
    for message in messages_newest_first:
        if message.role is MessageRole.USER:
            return None
        if message.role is MessageRole.ASSISTANT:
            return message.text_content
    return None


@dataclass
class _TurnContext:
    user_text: str
    conversation_id: str | None
    thread_id: str | None = None
    reused_thread: bool = False
    attempts: int = 0
    traces: list[TurnTrace] = field(default_factory=list)


@dataclass
class _CompletedRun:
    run: AgentRun
    text: str | None


class AgentTurnClient:
    """
    Executes conversation turns against an agent runtime.

    Args:
        runtime: Agent runtime (Foundry-backed or the in-memory double).
        thread_store: Conversation → thread mapping store.
        executor: Resilient call executor; the turn runs under AGENT_CALL.
        agent_id: Agent to run against each thread.
        poll_initial_seconds: First polling interval; doubles per poll.
        poll_max_seconds: Polling interval ceiling.
        turn_deadline_seconds: Hard bound on one attempt's polling.
    """

    def __init__(
        self,
        runtime: AgentRuntime,
        thread_store: ThreadMappingStore,
        executor: ResilientCallExecutor,
        agent_id: str,
        poll_initial_seconds: float = 0.05,
        poll_max_seconds: float = 0.5,
        turn_deadline_seconds: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if poll_initial_seconds <= 0 or poll_initial_seconds > poll_max_seconds:
            raise ValueError("poll_initial_seconds must be positive and <= poll_max_seconds")
        self.runtime = runtime
        self.thread_store = thread_store
        self.executor = executor
        self.agent_id = agent_id
        self.poll_initial_seconds = poll_initial_seconds
        self.poll_max_seconds = poll_max_seconds
        self.turn_deadline_seconds = turn_deadline_seconds
        self._sleep = sleep
        self._clock = clock

    async def run_turn(self, user_text: str, conversation_id: str | None = None) -> TurnResult:
        """
        Run one turn and return a tagged result; never raises for runtime failures.

        A missing ``conversation_id`` runs the turn on a fresh thread without
        touching the mapping store.
        """
        ctx = _TurnContext(user_text=user_text, conversation_id=conversation_id)
        started = time.perf_counter()

        with tracer.start_as_current_span(
            "agent.turn",
            attributes={
                SpanAttr.AGENT_ID.value: self.agent_id,
                SpanAttr.CONVERSATION_ID.value: conversation_id or "",
            },
        ) as span:
            if conversation_id:
                ctx.thread_id = await self.thread_store.get(conversation_id)
                ctx.reused_thread = ctx.thread_id is not None

            try:
                execution = await self.executor.run(
                    lambda: self._attempt(ctx),
                    PolicyClass.AGENT_CALL,
                    operation_name="agent.turn",
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                failure = classify_failure(exc)
                logger.error(
                    "Agent turn failed after %d attempt(s) on thread %s: %s (%s: %s)",
                    ctx.attempts,
                    ctx.thread_id,
                    failure.value,
                    type(exc).__name__,
                    exc,
                )
                span.set_attribute(SpanAttr.TURN_FAILURE_KIND.value, failure.value)
                span.set_attribute(SpanAttr.TURN_ATTEMPTS.value, ctx.attempts)
                return TurnResult.transport_failure(
                    failure,
                    conversation_id=conversation_id,
                    thread_id=ctx.thread_id,
                    attempts=ctx.attempts,
                    elapsed_seconds=time.perf_counter() - started,
                    trace=ctx.traces[-1] if ctx.traces else None,
                )

            completed: _CompletedRun = execution.value
            thread_id = completed.run.thread_id
            if conversation_id:
                await self.thread_store.set(conversation_id, thread_id)

            common = dict(
                conversation_id=conversation_id,
                thread_id=thread_id,
                attempts=execution.attempts,
                elapsed_seconds=time.perf_counter() - started,
                trace=ctx.traces[-1],
            )
            span.set_attribute(SpanAttr.AGENT_THREAD_ID.value, thread_id)
            span.set_attribute(SpanAttr.TURN_ATTEMPTS.value, execution.attempts)

            text = completed.text
            if not text or not text.strip():
                logger.warning("Run %s completed without assistant text", completed.run.run_id)
                span.set_attribute(SpanAttr.TURN_FAILURE_KIND.value, FailureKind.EMPTY_RESPONSE.value)
                return TurnResult.quality_failure(FailureKind.EMPTY_RESPONSE, **common)

            low_quality = is_low_quality_response(text)
            if low_quality:
                logger.warning(
                    "Run %s returned a placeholder response (%d chars)",
                    completed.run.run_id,
                    len(text),
                )
                span.set_attribute(SpanAttr.TURN_LOW_QUALITY.value, True)

            span.set_attribute(SpanAttr.TURN_OUTCOME.value, "success")
            logger.info(
                "Agent turn completed on thread %s in %.0fms (%d attempt(s))",
                thread_id,
                common["elapsed_seconds"] * 1000,
                execution.attempts,
            )
            return TurnResult.success(text, low_quality=low_quality, **common)

    async def end_conversation(self, conversation_id: str | None) -> None:
        """Explicit teardown: forget the conversation's thread mapping."""
        await self.thread_store.remove(conversation_id)

    async def _attempt(self, ctx: _TurnContext) -> _CompletedRun:
        ctx.attempts += 1
        turn = TurnTrace(attempt=ctx.attempts)
        ctx.traces.append(turn)
        started = self._clock()

        thread_id = await self._resolve_thread(ctx)
        turn.advance(TurnState.THREAD_RESOLVED)

        thread_id = await self._post_user_message(ctx, thread_id)
        turn.advance(TurnState.MESSAGE_POSTED)

        run = AgentRun.from_snapshot(await self.runtime.create_run(thread_id, self.agent_id))
        turn.advance(TurnState.RUN_CREATED)
        logger.debug("Created run %s on thread %s", run.run_id, thread_id)

        turn.advance(TurnState.POLLING)
        try:
            await self._poll_until_terminal(run, turn, started)
        except RunTimedOutError:
            turn.advance(TurnState.TIMED_OUT)
            await self._cancel_run(run)
            raise
        except (asyncio.CancelledError, Exception):
            # Attempt timeout (cancellation) or a failed poll: the run may still be active.
            await self._cancel_run(run)
            raise

        if run.status is RunStatus.FAILED:
            turn.advance(TurnState.FAILED)
            error = run.last_error or RunError(code=None, message=None)
            logger.warning(
                "Run %s failed: code=%s message=%s", run.run_id, error.code, error.message
            )
            raise RunFailedError(run.run_id, code=error.code, message=error.message)

        turn.advance(TurnState.COMPLETED)
        messages = await self.runtime.list_messages(thread_id, MessageOrder.DESC)
        return _CompletedRun(run=run, text=_latest_reply(messages))

    async def _cancel_run(self, run: AgentRun) -> None:
        # The runtime rejects new messages on a thread while one of its runs is active.
        try:
            await asyncio.wait_for(
                self.runtime.cancel_run(run.thread_id, run.run_id),
                timeout=CANCEL_RUN_TIMEOUT_SECONDS,
            )
            logger.info("Cancelled run %s on thread %s", run.run_id, run.thread_id)
        except Exception as exc:
            logger.warning(
                "Could not cancel run %s on thread %s: %s: %s",
                run.run_id,
                run.thread_id,
                type(exc).__name__,
                exc,
            )

    async def _resolve_thread(self, ctx: _TurnContext) -> str:
        if ctx.thread_id is None:
            ctx.thread_id = await self.runtime.create_thread()
            ctx.reused_thread = False
            logger.debug("Created new thread %s for conversation %s", ctx.thread_id, ctx.conversation_id)
        bind_thread_id(ctx.thread_id)
        return ctx.thread_id

    async def _post_user_message(self, ctx: _TurnContext, thread_id: str) -> str:
        try:
            await self.runtime.post_message(thread_id, MessageRole.USER, ctx.user_text)
            return thread_id
        except ResourceNotFoundError:
            if not ctx.reused_thread:
                raise
        # The mapped thread no longer exists on the runtime side: start over on a new one.
        logger.warning(
            "Mapped thread %s for conversation %s no longer exists; creating a new thread",
            thread_id,
            ctx.conversation_id,
        )
        await self.thread_store.remove(ctx.conversation_id)
        ctx.thread_id = None
        thread_id = await self._resolve_thread(ctx)
        await self.runtime.post_message(thread_id, MessageRole.USER, ctx.user_text)
        return thread_id

    async def _poll_until_terminal(self, run: AgentRun, turn: TurnTrace, started: float) -> None:
        deadline = started + self.turn_deadline_seconds
        interval = self.poll_initial_seconds

        while not run.status.is_terminal:
            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning(
                    "Run %s still %s after %.1fs deadline",
                    run.run_id,
                    run.status.value,
                    self.turn_deadline_seconds,
                )
                run.status = RunStatus.TIMED_OUT
                raise RunTimedOutError(run.run_id, run.thread_id, self.turn_deadline_seconds)

            await self._sleep(min(interval, remaining))
            snapshot = await self.runtime.get_run(run.thread_id, run.run_id)
            turn.poll_count += 1
            if run.advance(snapshot):
                logger.debug("Run %s is now %s", run.run_id, run.status.value)
            interval = min(interval * 2, self.poll_max_seconds)
