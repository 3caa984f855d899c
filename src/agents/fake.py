"""
Deterministic in-process agent runtime.

Used for local runs and functional tests (``AGENT_USE_FAKE=true``) so no live
agent service is needed. Replies come from a small table of canned answers
unless a custom ``responder`` is supplied; run status progressions can be
scripted per run to exercise polling.
"""

from __future__ import annotations

import itertools
import uuid
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence

from azure.core.exceptions import ResourceNotFoundError

from src.agents.runtime import (
    MessageOrder,
    MessageRole,
    RunSnapshot,
    ThreadMessage,
    parse_run,
)
from utils.ml_logging import get_logger

logger = get_logger("agents.fake")

CANNED_RESPONSES = {
    "i want a strategic board game for 2-4 players": "Try Splendor, Azul or 7 Wonders: strategic, quick to learn and great at 2 to 4 players.",
    "fun game": "Ticket to Ride is a classic fun gateway game with simple turns and satisfying route building.",
    "tell me about catan": "Catan: trade wood, brick, wheat, sheep and ore to build roads and settlements, then race to 10 points.",
    "what about party games?": "Great party picks: Codenames for word deduction, Just One for co-op clueing and Dixit for creative storytelling.",
    "i want a strategic board game": "Consider Terraforming Mars for engine building or Wingspan for gentle tableau strategy.",
    "what makes a game family friendly?": "Family friendly means short turns, low downtime, clear iconography, forgiving rules and positive interaction.",
    "how to win at ticket to ride?": "Prioritise long routes early, secure critical choke connections and chain tickets that share track.",
    "what are worker placement games?": "Worker placement games have you assign limited workers to exclusive action spots, as in Agricola or Lords of Waterdeep.",
    "i am looking for a new board game.": "Give Cascadia or Azul a try: quick to teach, satisfying puzzles and great table presence.",
}

DEFAULT_RESPONSE = "Try a modern gateway: Ticket to Ride, Azul or Splendor are accessible and replayable."
EMPTY_INPUT_RESPONSE = "Please ask something about board games: player count, style, theme, anything!"
ACTIVE_WIRE_STATUSES = ("queued", "in_progress", "cancelling")


def canned_response(user_text: str) -> str:
    """Exact match first, then the first canned prompt contained in the input."""
    trimmed = (user_text or "").strip()
    if not trimmed:
        return EMPTY_INPUT_RESPONSE
    lowered = trimmed.lower()
    if lowered in CANNED_RESPONSES:
        return CANNED_RESPONSES[lowered]
    for prompt, reply in CANNED_RESPONSES.items():
        if prompt in lowered:
            return reply
    return DEFAULT_RESPONSE


class InMemoryAgentRuntime:
    """
    Runtime double holding threads, messages and runs in memory.

    Args:
        responder: Maps the latest user message to the assistant reply.
            Returning None or "" completes the run without an assistant message.
        status_script: Wire statuses reported by successive ``get_run`` calls
            for each run (the last one repeats). Defaults to ``["completed"]``.
        run_error: ``last_error`` attached to runs that end ``failed``.
    """

    def __init__(
        self,
        responder: Callable[[str], str | None] | None = None,
        status_script: Iterable[str] | None = None,
        run_error: dict | None = None,
    ):
        self.responder = responder or canned_response
        self.status_script = list(status_script or ["completed"])
        self.run_error = run_error
        self.threads: dict[str, list[ThreadMessage]] = {}
        self._runs: dict[str, dict] = {}
        self._failures: dict[str, list[BaseException]] = defaultdict(list)
        self._run_ids = itertools.count(1)
        self.calls: dict[str, int] = defaultdict(int)

    def fail_next(self, operation: str, *errors: BaseException) -> None:
        """Queue errors raised by the next calls to ``operation`` (e.g. "create_run")."""
        self._failures[operation].extend(errors)

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    async def create_thread(self) -> str:
        self._enter("create_thread")
        thread_id = f"thread_{uuid.uuid4().hex}"
        self.threads[thread_id] = []
        return thread_id

    async def post_message(self, thread_id: str, role: MessageRole, content: str) -> None:
        self._enter("post_message")
        self._thread(thread_id).append(ThreadMessage(role=role, text_content=content))

    async def create_run(self, thread_id: str, agent_id: str) -> RunSnapshot:
        self._enter("create_run")
        messages = self._thread(thread_id)
        last_user = next(
            (m.text_content for m in reversed(messages) if m.role is MessageRole.USER), ""
        )
        run_id = f"run_{next(self._run_ids)}"
        logger.debug("Fake runtime starting %s on %s", run_id, thread_id)
        self._runs[run_id] = {
            "thread_id": thread_id,
            "agent_id": agent_id,
            "script": list(self.status_script),
            "reply": self.responder(last_user),
            "status": "queued",
        }
        return self._snapshot(run_id)

    async def get_run(self, thread_id: str, run_id: str) -> RunSnapshot:
        self._enter("get_run")
        run = self._runs[run_id]
        if run["script"]:
            run["status"] = run["script"].pop(0) if len(run["script"]) > 1 else run["script"][0]
        if run["status"] == "completed" and not run.get("answered"):
            run["answered"] = True
            if run["reply"]:
                self._thread(thread_id).append(
                    ThreadMessage(role=MessageRole.ASSISTANT, text_content=run["reply"])
                )
        return self._snapshot(run_id)

    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        self._enter("cancel_run")
        run = self._runs[run_id]
        if run["status"] in ACTIVE_WIRE_STATUSES:
            run["status"] = "cancelled"
            run["script"] = []

    def has_active_run(self, thread_id: str) -> bool:
        return any(
            run["thread_id"] == thread_id and run["status"] in ACTIVE_WIRE_STATUSES
            for run in self._runs.values()
        )

    async def list_messages(
        self, thread_id: str, order: MessageOrder = MessageOrder.DESC
    ) -> Sequence[ThreadMessage]:
        self._enter("list_messages")
        messages = list(self._thread(thread_id))
        return list(reversed(messages)) if order is MessageOrder.DESC else messages

    async def close(self) -> None:
        return None

    def _thread(self, thread_id: str) -> list[ThreadMessage]:
        if thread_id not in self.threads:
            # Mirrors the service: unknown threads are a 404
            raise ResourceNotFoundError(f"No thread found with id '{thread_id}'.")
        return self.threads[thread_id]

    def _snapshot(self, run_id: str) -> RunSnapshot:
        run = self._runs[run_id]
        payload = {"id": run_id, "thread_id": run["thread_id"], "status": run["status"]}
        if run["status"] == "failed" and self.run_error:
            payload["last_error"] = self.run_error
        return parse_run(payload)
