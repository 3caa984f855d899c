"""Agent runtime backed by Azure AI Foundry Agent Service (``azure-ai-agents``)."""

from __future__ import annotations

from collections.abc import Sequence

from azure.ai.agents.aio import AgentsClient
from azure.ai.agents.models import ListSortOrder
from opentelemetry import trace
from opentelemetry.trace import SpanKind

from src.agents.runtime import (
    MessageOrder,
    MessageRole,
    RunSnapshot,
    ThreadMessage,
    parse_message,
    parse_run,
)
from src.enums.monitoring import PeerService, SpanAttr
from utils.azure_auth import get_async_credential
from utils.ml_logging import get_logger

logger = get_logger("agents.foundry")

_SORT_ORDER = {
    MessageOrder.ASC: ListSortOrder.ASCENDING,
    MessageOrder.DESC: ListSortOrder.DESCENDING,
}


class FoundryAgentRuntime:
    """
    Thin adapter from the async ``AgentsClient`` to the runtime protocol.

    SDK errors (``HttpResponseError`` and friends) propagate unchanged so the
    AGENT_CALL policy can classify them.
    """

    def __init__(
        self,
        endpoint: str,
        credential: object | None = None,
        client: AgentsClient | None = None,
        message_page_limit: int = 20,
    ):
        if not endpoint and client is None:
            raise ValueError("Agent service endpoint is required")
        self.endpoint = endpoint
        self._owns_credential = credential is None and client is None
        self._credential = credential or (None if client is not None else get_async_credential())
        self._client = client or AgentsClient(endpoint=endpoint, credential=self._credential)
        self.message_page_limit = message_page_limit
        self.tracer = trace.get_tracer(__name__)

    def _span(self, name: str, **attributes):
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.CLIENT,
            attributes={
                SpanAttr.PEER_SERVICE.value: PeerService.AZURE_AI_AGENTS,
                SpanAttr.SERVER_ADDRESS.value: self.endpoint,
                **{k: v for k, v in attributes.items() if v is not None},
            },
        )

    async def create_thread(self) -> str:
        with self._span("AgentRuntime.create_thread"):
            thread = await self._client.threads.create()
        logger.debug("Created agent thread %s", thread.id)
        return thread.id

    async def post_message(self, thread_id: str, role: MessageRole, content: str) -> None:
        with self._span(
            "AgentRuntime.post_message", **{SpanAttr.AGENT_THREAD_ID.value: thread_id}
        ):
            await self._client.messages.create(
                thread_id=thread_id, role=role.value, content=content
            )

    async def create_run(self, thread_id: str, agent_id: str) -> RunSnapshot:
        with self._span(
            "AgentRuntime.create_run",
            **{SpanAttr.AGENT_THREAD_ID.value: thread_id, SpanAttr.AGENT_ID.value: agent_id},
        ):
            run = await self._client.runs.create(thread_id=thread_id, agent_id=agent_id)
        return parse_run(run)

    async def get_run(self, thread_id: str, run_id: str) -> RunSnapshot:
        with self._span(
            "AgentRuntime.get_run",
            **{SpanAttr.AGENT_THREAD_ID.value: thread_id, SpanAttr.AGENT_RUN_ID.value: run_id},
        ):
            run = await self._client.runs.get(thread_id=thread_id, run_id=run_id)
        return parse_run(run)

    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        with self._span(
            "AgentRuntime.cancel_run",
            **{SpanAttr.AGENT_THREAD_ID.value: thread_id, SpanAttr.AGENT_RUN_ID.value: run_id},
        ):
            await self._client.runs.cancel(thread_id=thread_id, run_id=run_id)

    async def list_messages(
        self, thread_id: str, order: MessageOrder = MessageOrder.DESC
    ) -> Sequence[ThreadMessage]:
        messages: list[ThreadMessage] = []
        with self._span(
            "AgentRuntime.list_messages", **{SpanAttr.AGENT_THREAD_ID.value: thread_id}
        ):
            pager = self._client.messages.list(
                thread_id=thread_id,
                order=_SORT_ORDER[order],
                limit=self.message_page_limit,
            )
            async for message in pager:
                messages.append(parse_message(message))
                if len(messages) >= self.message_page_limit:
                    break
        return messages

    async def close(self) -> None:
        await self._client.close()
        if self._owns_credential and self._credential is not None:
            await self._credential.close()
