"""Tests for runtime payload parsing and the Foundry runtime adapter."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from azure.ai.agents.models import ListSortOrder

from src.agents.foundry import FoundryAgentRuntime
from src.agents.runtime import (
    AgentRuntime,
    MessageOrder,
    MessageRole,
    RunStatus,
    parse_message,
    parse_run,
    parse_run_status,
)
from src.enums.monitoring import SpanAttr
from src.resilience.errors import MalformedResponseError


def _text_message(role: str, *parts: str) -> dict:
    return {
        "role": role,
        "content": [{"type": "text", "text": {"value": p, "annotations": []}} for p in parts],
    }


@pytest.mark.parametrize(
    "wire, expected",
    [
        ("queued", RunStatus.QUEUED),
        ("in_progress", RunStatus.IN_PROGRESS),
        ("IN_PROGRESS", RunStatus.IN_PROGRESS),
        ("cancelling", RunStatus.IN_PROGRESS),
        ("completed", RunStatus.COMPLETED),
        ("failed", RunStatus.FAILED),
        ("cancelled", RunStatus.FAILED),
        ("expired", RunStatus.FAILED),
        ("requires_action", RunStatus.FAILED),
    ],
)
def test_parse_run_status(wire, expected):
    assert parse_run_status(wire) is expected


@pytest.mark.parametrize("wire", ["paused", None, 3])
def test_unrecognized_run_status_is_malformed(wire):
    with pytest.raises(MalformedResponseError):
        parse_run_status(wire)


def test_parse_run_with_error():
    snapshot = parse_run(
        {
            "id": "run_1",
            "thread_id": "thread_1",
            "status": "failed",
            "last_error": {"code": "server_error", "message": "boom"},
        }
    )

    assert snapshot.status is RunStatus.FAILED
    assert snapshot.last_error.code == "server_error"
    assert snapshot.wire_status == "failed"


def test_parse_run_accepts_sdk_models():
    model = SimpleNamespace(
        as_dict=lambda: {"id": "run_1", "thread_id": "thread_1", "status": "queued"}
    )
    assert parse_run(model).run_id == "run_1"


@pytest.mark.parametrize(
    "payload",
    [
        {"thread_id": "thread_1", "status": "queued"},
        {"id": "run_1", "status": "queued"},
        ["not", "a", "mapping"],
    ],
)
def test_parse_run_rejects_incomplete_payloads(payload):
    with pytest.raises(MalformedResponseError):
        parse_run(payload)


def test_parse_message_joins_text_parts():
    message = parse_message(_text_message("assistant", "Try ", "Azul."))

    assert message.role is MessageRole.ASSISTANT
    assert message.text_content == "Try Azul."


def test_parse_message_without_content_is_empty_text():
    assert parse_message({"role": "assistant", "content": []}).text_content == ""


@pytest.mark.parametrize(
    "payload",
    [
        {"role": "system", "content": []},
        {"role": "assistant", "content": [{"type": "image_file", "image_file": {}}]},
        {"role": "assistant", "content": "plain string"},
        {"role": "assistant", "content": [{"type": "text", "text": {"value": 42}}]},
    ],
)
def test_parse_message_rejects_unknown_shapes(payload):
    with pytest.raises(MalformedResponseError):
        parse_message(payload)


class _AsyncPager:
    def __init__(self, items):
        self._items = list(items)

    def __aiter__(self):
        return self._aiter()

    async def _aiter(self):
        for item in self._items:
            yield item


@pytest.fixture
def agents_client():
    client = MagicMock()
    client.threads.create = AsyncMock(return_value=SimpleNamespace(id="thread_1"))
    client.messages.create = AsyncMock()
    client.runs.create = AsyncMock(
        return_value={"id": "run_1", "thread_id": "thread_1", "status": "queued"}
    )
    client.runs.get = AsyncMock(
        return_value={"id": "run_1", "thread_id": "thread_1", "status": "completed"}
    )
    client.runs.cancel = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_foundry_runtime_maps_sdk_calls(agents_client):
    runtime = FoundryAgentRuntime(endpoint="https://example.services.ai.azure.com", client=agents_client)
    assert isinstance(runtime, AgentRuntime)

    assert await runtime.create_thread() == "thread_1"
    await runtime.post_message("thread_1", MessageRole.USER, "hello")
    run = await runtime.create_run("thread_1", "asst_1")
    polled = await runtime.get_run("thread_1", "run_1")

    agents_client.messages.create.assert_awaited_once_with(
        thread_id="thread_1", role="user", content="hello"
    )
    agents_client.runs.create.assert_awaited_once_with(thread_id="thread_1", agent_id="asst_1")
    assert run.status is RunStatus.QUEUED
    assert polled.status is RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_foundry_runtime_cancels_run(agents_client):
    runtime = FoundryAgentRuntime(endpoint="https://example.services.ai.azure.com", client=agents_client)

    await runtime.cancel_run("thread_1", "run_1")

    agents_client.runs.cancel.assert_awaited_once_with(thread_id="thread_1", run_id="run_1")


@pytest.mark.asyncio
async def test_foundry_runtime_polls_inside_client_span(agents_client):
    runtime = FoundryAgentRuntime(endpoint="https://example.services.ai.azure.com", client=agents_client)
    runtime.tracer = MagicMock()

    await runtime.get_run("thread_1", "run_1")

    name = runtime.tracer.start_as_current_span.call_args.args[0]
    attributes = runtime.tracer.start_as_current_span.call_args.kwargs["attributes"]
    assert name == "AgentRuntime.get_run"
    assert attributes[SpanAttr.AGENT_RUN_ID.value] == "run_1"
    assert attributes[SpanAttr.AGENT_THREAD_ID.value] == "thread_1"


@pytest.mark.asyncio
async def test_foundry_runtime_lists_messages_newest_first(agents_client):
    agents_client.messages.list = MagicMock(
        return_value=_AsyncPager(
            [_text_message("assistant", "second"), _text_message("user", "first")]
        )
    )
    runtime = FoundryAgentRuntime(endpoint="https://example.services.ai.azure.com", client=agents_client)

    messages = await runtime.list_messages("thread_1", MessageOrder.DESC)

    assert [m.text_content for m in messages] == ["second", "first"]
    kwargs = agents_client.messages.list.call_args.kwargs
    assert kwargs["order"] == ListSortOrder.DESCENDING
    assert kwargs["limit"] == 20


@pytest.mark.asyncio
async def test_foundry_runtime_close_keeps_injected_client_credential(agents_client):
    runtime = FoundryAgentRuntime(endpoint="https://example.services.ai.azure.com", client=agents_client)

    await runtime.close()

    agents_client.close.assert_awaited_once()
