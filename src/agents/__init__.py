"""
Agent runtime access and conversation turns.

Exports:
- AgentTurnClient: Runs one conversation turn (thread → message → run → poll → text)
- TurnResult / TurnOutcomeKind / FailureKind: Tagged turn outcomes
- AgentRuntime: Runtime protocol; FoundryAgentRuntime and InMemoryAgentRuntime implement it
"""

from src.agents.client import AgentRun, AgentTurnClient, TurnState, TurnTrace, is_low_quality_response
from src.agents.fake import InMemoryAgentRuntime
from src.agents.results import FailureKind, TurnOutcomeKind, TurnResult, classify_failure
from src.agents.runtime import (
    AgentRuntime,
    MessageOrder,
    MessageRole,
    RunSnapshot,
    RunStatus,
    ThreadMessage,
    parse_message,
    parse_run,
)

__all__ = [
    "AgentRun",
    "AgentRuntime",
    "AgentTurnClient",
    "FailureKind",
    "InMemoryAgentRuntime",
    "MessageOrder",
    "MessageRole",
    "RunSnapshot",
    "RunStatus",
    "ThreadMessage",
    "TurnOutcomeKind",
    "TurnResult",
    "TurnState",
    "TurnTrace",
    "classify_failure",
    "is_low_quality_response",
    "parse_message",
    "parse_run",
]
