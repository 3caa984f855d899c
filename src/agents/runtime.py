"""
Agent runtime protocol and its closed set of response shapes.

The runtime is an opaque service organised as threads of messages, with
runs that execute an agent against a thread. Payloads coming back from a
runtime implementation are parsed into the dataclasses below; any shape
that does not match is rejected with ``MalformedResponseError``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from src.resilience.errors import MalformedResponseError


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def rank(self) -> int:
        return _RUN_STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.TIMED_OUT)


_RUN_STATUS_RANK = {
    RunStatus.QUEUED: 0,
    RunStatus.IN_PROGRESS: 1,
    RunStatus.COMPLETED: 2,
    RunStatus.FAILED: 2,
    RunStatus.TIMED_OUT: 2,
}

# Runtime wire statuses → lifecycle status
_WIRE_RUN_STATUS = {
    "queued": RunStatus.QUEUED,
    "in_progress": RunStatus.IN_PROGRESS,
    "cancelling": RunStatus.IN_PROGRESS,
    "completed": RunStatus.COMPLETED,
    "failed": RunStatus.FAILED,
    "cancelled": RunStatus.FAILED,
    "expired": RunStatus.FAILED,
    # Tool calls are not wired into this core; a run waiting on one cannot finish.
    "requires_action": RunStatus.FAILED,
}


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class RunError:
    code: str | None
    message: str | None


@dataclass(frozen=True)
class RunSnapshot:
    run_id: str
    thread_id: str
    status: RunStatus
    last_error: RunError | None = None
    wire_status: str | None = None


@dataclass(frozen=True)
class ThreadMessage:
    role: MessageRole
    text_content: str


@runtime_checkable
class AgentRuntime(Protocol):
    async def create_thread(self) -> str: ...

    async def post_message(self, thread_id: str, role: MessageRole, content: str) -> None: ...

    async def create_run(self, thread_id: str, agent_id: str) -> RunSnapshot: ...

    async def get_run(self, thread_id: str, run_id: str) -> RunSnapshot: ...

    async def cancel_run(self, thread_id: str, run_id: str) -> None: ...

    async def list_messages(
        self, thread_id: str, order: MessageOrder = MessageOrder.DESC
    ) -> Sequence[ThreadMessage]: ...

    async def close(self) -> None: ...


def _as_mapping(payload: Any, what: str) -> Mapping[str, Any]:
    if isinstance(payload, Mapping):
        return payload
    as_dict = getattr(payload, "as_dict", None)
    if callable(as_dict):
        return as_dict()
    raise MalformedResponseError(f"{what} payload is not a mapping: {type(payload).__name__}")


def _require_str(data: Mapping[str, Any], key: str, what: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedResponseError(f"{what} payload is missing '{key}'")
    return value


def parse_run_status(raw: Any) -> RunStatus:
    value = getattr(raw, "value", raw)
    if not isinstance(value, str):
        raise MalformedResponseError(f"Run status is not a string: {raw!r}")
    try:
        return _WIRE_RUN_STATUS[value.lower()]
    except KeyError:
        raise MalformedResponseError(f"Unrecognized run status '{value}'") from None


def parse_run(payload: Any) -> RunSnapshot:
    """Parse a runtime run payload (``id``, ``thread_id``, ``status``, optional ``last_error``)."""
    data = _as_mapping(payload, "run")
    raw_status = data.get("status")
    status = parse_run_status(raw_status)

    last_error = None
    raw_error = data.get("last_error")
    if raw_error is not None:
        error = _as_mapping(raw_error, "run.last_error")
        last_error = RunError(code=error.get("code"), message=error.get("message"))

    return RunSnapshot(
        run_id=_require_str(data, "id", "run"),
        thread_id=_require_str(data, "thread_id", "run"),
        status=status,
        last_error=last_error,
        wire_status=str(getattr(raw_status, "value", raw_status)).lower(),
    )


def parse_message(payload: Any) -> ThreadMessage:
    """
    Parse a thread message payload.

    Expected shape::

        {"role": "assistant",
         "content": [{"type": "text", "text": {"value": "..."}}]}

    Text parts are concatenated in order. Unknown roles and non-text parts
    are rejected.
    """
    data = _as_mapping(payload, "message")

    raw_role = data.get("role")
    role_value = getattr(raw_role, "value", raw_role)
    try:
        role = MessageRole(str(role_value).lower())
    except ValueError:
        raise MalformedResponseError(f"Unrecognized message role '{role_value}'") from None

    content = data.get("content")
    if content is None:
        content = []
    if isinstance(content, (str, bytes)) or not isinstance(content, Sequence):
        raise MalformedResponseError("Message content is not a list of parts")

    texts: list[str] = []
    for raw_part in content:
        part = _as_mapping(raw_part, "message.content")
        if part.get("type") != "text":
            raise MalformedResponseError(f"Unsupported message content part '{part.get('type')}'")
        text = part.get("text")
        text_map = _as_mapping(text, "message.content.text") if text is not None else {}
        value = text_map.get("value")
        if not isinstance(value, str):
            raise MalformedResponseError("Text content part has no string 'value'")
        texts.append(value)

    return ThreadMessage(role=role, text_content="".join(texts))
