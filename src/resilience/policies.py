"""
Retry/timeout policies for the two classes of unreliable dependency.

AGENT_CALL covers agent-runtime operations: HTTP-like transient status codes
and timeouts are retryable, anything else is terminal. CACHE_OP covers the
distributed key-value store with millisecond-scale backoff: connectivity and
timeout failures are retryable, authentication failures are not.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from azure.core.exceptions import (
    HttpResponseError,
    ServiceRequestTimeoutError,
    ServiceResponseTimeoutError,
)
from redis.exceptions import (
    AuthenticationError,
    ClusterDownError,
    MovedError,
    RedisClusterException,
)
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from config.types import ResilienceSettings
from src.resilience.errors import (
    AttemptTimeoutError,
    RunFailedError,
    RunTimedOutError,
    TransportError,
)

TRANSIENT_HTTP_STATUS_CODES = frozenset({408, 429, 502, 503, 504})


class PolicyClass(str, Enum):
    AGENT_CALL = "agent_call"
    CACHE_OP = "cache_op"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry (outer) around a per-attempt timeout (inner).

    Attributes:
        name: Label used in logs and spans.
        max_retries: Retries after the first attempt; total attempts is max_retries + 1.
        base_delay_seconds: Delay before retry n is base_delay_seconds * 2 ** (n - 1).
        attempt_timeout_seconds: Per-attempt deadline; None disables it.
        is_retryable: Classifies an exception as transient.
    """

    name: str
    max_retries: int
    base_delay_seconds: float
    attempt_timeout_seconds: float | None
    is_retryable: Callable[[BaseException], bool]

    def delay_for(self, retry_number: int) -> float:
        return self.base_delay_seconds * (2 ** (retry_number - 1))


def is_transient_http_status(status_code: int | None) -> bool:
    return status_code in TRANSIENT_HTTP_STATUS_CODES


def is_transient_agent_error(exc: BaseException) -> bool:
    if isinstance(
        exc,
        (
            AttemptTimeoutError,
            RunTimedOutError,
            ServiceRequestTimeoutError,
            ServiceResponseTimeoutError,
            asyncio.TimeoutError,
            TimeoutError,
        ),
    ):
        return True
    if isinstance(exc, RunFailedError):
        return exc.transient
    if isinstance(exc, (HttpResponseError, TransportError)):
        return is_transient_http_status(exc.status_code)
    return False


def is_transient_cache_error(exc: BaseException) -> bool:
    # redis-py derives AuthenticationError from ConnectionError
    if isinstance(exc, AuthenticationError):
        return False
    return isinstance(
        exc,
        (
            RedisConnectionError,
            RedisTimeoutError,
            MovedError,
            ClusterDownError,
            RedisClusterException,
            AttemptTimeoutError,
            TimeoutError,
            OSError,
        ),
    )


def agent_call_policy(settings: ResilienceSettings) -> RetryPolicy:
    return RetryPolicy(
        name=PolicyClass.AGENT_CALL.value,
        max_retries=settings.agent_call_max_retries,
        base_delay_seconds=settings.agent_call_retry_base_delay_seconds,
        attempt_timeout_seconds=settings.agent_call_timeout_seconds,
        is_retryable=is_transient_agent_error,
    )


def cache_op_policy(settings: ResilienceSettings) -> RetryPolicy:
    return RetryPolicy(
        name=PolicyClass.CACHE_OP.value,
        max_retries=settings.redis_max_retries,
        base_delay_seconds=settings.redis_retry_base_delay_ms / 1000.0,
        attempt_timeout_seconds=settings.redis_operation_timeout_seconds,
        is_retryable=is_transient_cache_error,
    )


def build_policies(settings: ResilienceSettings | None = None) -> dict[PolicyClass, RetryPolicy]:
    settings = settings or ResilienceSettings()
    return {
        PolicyClass.AGENT_CALL: agent_call_policy(settings),
        PolicyClass.CACHE_OP: cache_op_policy(settings),
    }
