import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Generic, TypeVar

from opentelemetry import trace

from config.types import ResilienceSettings
from src.enums.monitoring import SpanAttr
from src.resilience.errors import AttemptTimeoutError
from src.resilience.policies import PolicyClass, RetryPolicy, build_policies
from utils.ml_logging import get_logger

logger = get_logger("resilience.executor")

T = TypeVar("T")


@dataclass
class ExecutionResult(Generic[T]):
    value: T
    attempts: int
    elapsed_seconds: float


def _drain_abandoned(task: asyncio.Future) -> None:
    """Consume the outcome of an attempt nobody waits for any more."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned attempt finished with %s: %s", type(exc).__name__, exc)
    else:
        logger.debug("Abandoned attempt finished after its deadline; result discarded")


class ResilientCallExecutor:
    """
    Runs awaitable operations under a retry policy with a pessimistic per-attempt timeout.

    The timeout does not rely on the operation honouring cancellation: the
    attempt is scheduled as a task and raced against the deadline. On expiry
    the executor stops waiting, requests cancellation, and leaves a callback
    that discards whatever the task eventually produces.

    ``operation`` is a zero-argument callable invoked once per attempt.
    """

    def __init__(
        self,
        policies: Mapping[PolicyClass, RetryPolicy] | None = None,
        settings: ResilienceSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policies = dict(policies) if policies is not None else build_policies(settings)
        self._sleep = sleep
        self._clock = clock

    def policy_for(self, policy_class: PolicyClass) -> RetryPolicy:
        return self.policies[policy_class]

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy_class: PolicyClass,
        operation_name: str | None = None,
    ) -> T:
        result = await self.run(operation, policy_class, operation_name=operation_name)
        return result.value

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy_class: PolicyClass,
        operation_name: str | None = None,
    ) -> ExecutionResult[T]:
        policy = self.policy_for(policy_class)
        label = operation_name or getattr(operation, "__name__", "operation")
        started = self._clock()
        attempt = 0

        while True:
            attempt += 1
            try:
                value = await self._attempt(operation, policy)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if not policy.is_retryable(exc):
                    raise
                if attempt > policy.max_retries:
                    logger.error(
                        "%s: %s exhausted %d retries (%s)",
                        policy.name,
                        label,
                        policy.max_retries,
                        type(exc).__name__,
                    )
                    if isinstance(exc, AttemptTimeoutError):
                        raise AttemptTimeoutError(
                            policy.attempt_timeout_seconds,
                            attempts=attempt,
                            policy=policy.name,
                        ) from exc
                    raise

                delay = policy.delay_for(attempt)
                logger.warning(
                    "%s: retry %d/%d for %s in %.3fs after %s",
                    policy.name,
                    attempt,
                    policy.max_retries,
                    label,
                    delay,
                    type(exc).__name__,
                )
                span = trace.get_current_span()
                if span.is_recording():
                    span.add_event(
                        "retry",
                        {
                            SpanAttr.RETRY_POLICY.value: policy.name,
                            SpanAttr.RETRY_ATTEMPT.value: attempt,
                            SpanAttr.ERROR_TYPE.value: type(exc).__name__,
                        },
                    )
                await self._sleep(delay)
                continue

            return ExecutionResult(
                value=value,
                attempts=attempt,
                elapsed_seconds=self._clock() - started,
            )

    async def _attempt(self, operation: Callable[[], Awaitable[T]], policy: RetryPolicy) -> T:
        timeout = policy.attempt_timeout_seconds
        if timeout is None:
            return await operation()

        task = asyncio.ensure_future(operation())
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            task.add_done_callback(_drain_abandoned)
            raise

        if task in done:
            return task.result()

        task.cancel()
        task.add_done_callback(_drain_abandoned)
        raise AttemptTimeoutError(timeout, policy=policy.name)
