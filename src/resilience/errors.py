"""
Orchestration error taxonomy.

Transient errors are retried by the resilient call executor, terminal errors
surface immediately. Quality failures (empty transcript, empty assistant
reply) are never raised: they travel as tagged result values.
"""

from __future__ import annotations

# Runtime error codes that indicate the run may succeed when re-issued.
TRANSIENT_RUN_ERROR_CODES = frozenset({"rate_limit_exceeded", "server_error"})


class OrchestrationError(Exception):
    """Base class for all orchestration-core errors."""


class TransportError(OrchestrationError):
    """An external call failed at the transport layer."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AttemptTimeoutError(OrchestrationError, TimeoutError):
    """A single attempt exceeded its deadline (or every attempt did, once retries run out)."""

    def __init__(
        self,
        timeout_seconds: float | None,
        attempts: int = 1,
        policy: str | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.attempts = attempts
        self.policy = policy
        scope = f" under policy {policy}" if policy else ""
        super().__init__(
            f"Operation exceeded {timeout_seconds}s per-attempt timeout{scope} "
            f"after {attempts} attempt(s)"
        )


class RunTimedOutError(OrchestrationError):
    """An agent run did not reach a terminal status before the turn deadline."""

    def __init__(self, run_id: str, thread_id: str, deadline_seconds: float):
        self.run_id = run_id
        self.thread_id = thread_id
        self.deadline_seconds = deadline_seconds
        super().__init__(
            f"Run {run_id} on thread {thread_id} did not finish within {deadline_seconds}s"
        )


class RunFailedError(OrchestrationError):
    """The agent runtime reported a failed, cancelled or expired run."""

    def __init__(self, run_id: str, code: str | None = None, message: str | None = None):
        self.run_id = run_id
        self.code = code
        super().__init__(message or f"Run {run_id} failed ({code or 'unknown'})")

    @property
    def transient(self) -> bool:
        return self.code in TRANSIENT_RUN_ERROR_CODES


class MalformedResponseError(OrchestrationError):
    """A runtime payload did not match any recognized shape."""


class InvalidTransitionError(OrchestrationError):
    """A turn or run attempted to move backwards through its lifecycle."""

    def __init__(self, current: object, target: object):
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition {current} -> {target}")
