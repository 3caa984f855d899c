"""Tagged turn outcomes and the stable failure kinds exposed to callers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)

from src.resilience.errors import (
    TRANSIENT_RUN_ERROR_CODES,
    AttemptTimeoutError,
    MalformedResponseError,
    RunFailedError,
    RunTimedOutError,
    TransportError,
)

if TYPE_CHECKING:
    from src.agents.client import TurnTrace


class TurnOutcomeKind(str, Enum):
    SUCCESS = "success"
    QUALITY_FAILURE = "quality_failure"
    TRANSPORT_FAILURE = "transport_failure"


class FailureKind(str, Enum):
    # quality
    EMPTY_RESPONSE = "empty_response"
    # transport / terminal
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    RUN_FAILED = "run_failed"
    AUTHENTICATION = "authentication"
    MALFORMED_RESPONSE = "malformed_response"
    INVALID_REQUEST = "invalid_request"
    UNKNOWN = "unknown"


# Caller-facing text; raw error detail stays in the logs.
FAILURE_MESSAGES = {
    FailureKind.EMPTY_RESPONSE: "The assistant did not produce a response.",
    FailureKind.TIMEOUT: "The assistant took too long to respond.",
    FailureKind.RATE_LIMITED: "The assistant is handling too many requests right now.",
    FailureKind.UNAVAILABLE: "The assistant service is temporarily unavailable.",
    FailureKind.RUN_FAILED: "The assistant could not complete the request.",
    FailureKind.AUTHENTICATION: "The assistant service rejected our credentials.",
    FailureKind.MALFORMED_RESPONSE: "The assistant service returned an unexpected response.",
    FailureKind.INVALID_REQUEST: "The assistant service rejected the request.",
    FailureKind.UNKNOWN: "The assistant request failed.",
}


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, (HttpResponseError, TransportError)):
        return exc.status_code
    return None


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an exception raised during a turn to a stable failure kind."""
    if isinstance(exc, (AttemptTimeoutError, RunTimedOutError, asyncio.TimeoutError, TimeoutError)):
        return FailureKind.TIMEOUT
    if isinstance(exc, RunFailedError):
        if exc.code == "rate_limit_exceeded":
            return FailureKind.RATE_LIMITED
        return FailureKind.UNAVAILABLE if exc.code in TRANSIENT_RUN_ERROR_CODES else FailureKind.RUN_FAILED
    if isinstance(exc, MalformedResponseError):
        return FailureKind.MALFORMED_RESPONSE
    if isinstance(exc, ClientAuthenticationError):
        return FailureKind.AUTHENTICATION

    status = _status_code(exc)
    if status is not None:
        if status in (401, 403):
            return FailureKind.AUTHENTICATION
        if status == 408:
            return FailureKind.TIMEOUT
        if status == 429:
            return FailureKind.RATE_LIMITED
        if status >= 500:
            return FailureKind.UNAVAILABLE
        if status >= 400:
            return FailureKind.INVALID_REQUEST

    if isinstance(exc, (ServiceRequestError, ServiceResponseError, ConnectionError)):
        return FailureKind.UNAVAILABLE
    return FailureKind.UNKNOWN


@dataclass
class TurnResult:
    """
    Outcome of one conversation turn.

    ``text`` is set on success; ``low_quality`` marks a successful reply that
    is only a "working on it" placeholder. ``failure``/``message`` are set
    for every non-success outcome.
    """

    kind: TurnOutcomeKind
    conversation_id: str | None = None
    thread_id: str | None = None
    text: str | None = None
    failure: FailureKind | None = None
    message: str | None = None
    low_quality: bool = False
    attempts: int = 0
    elapsed_seconds: float = 0.0
    trace: TurnTrace | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.kind is TurnOutcomeKind.SUCCESS

    @property
    def is_quality_failure(self) -> bool:
        return self.kind is TurnOutcomeKind.QUALITY_FAILURE

    @property
    def is_transport_failure(self) -> bool:
        return self.kind is TurnOutcomeKind.TRANSPORT_FAILURE

    @classmethod
    def success(cls, text: str, **kwargs) -> TurnResult:
        return cls(kind=TurnOutcomeKind.SUCCESS, text=text, **kwargs)

    @classmethod
    def quality_failure(cls, failure: FailureKind, text: str | None = None, **kwargs) -> TurnResult:
        return cls(
            kind=TurnOutcomeKind.QUALITY_FAILURE,
            failure=failure,
            message=FAILURE_MESSAGES[failure],
            text=text,
            **kwargs,
        )

    @classmethod
    def transport_failure(cls, failure: FailureKind, **kwargs) -> TurnResult:
        return cls(
            kind=TurnOutcomeKind.TRANSPORT_FAILURE,
            failure=failure,
            message=FAILURE_MESSAGES[failure],
            **kwargs,
        )
