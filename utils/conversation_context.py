"""
Conversation Context Management for Telemetry Correlation.

Propagates conversation correlation attributes (conversation_id, thread_id,
turn channel) to every span and log emitted while a turn is being served.

Usage:
    async with conversation_context(conversation_id="conv-42", channel="voice"):
        await pipeline.process(audio, AudioFormat.WAV, conversation_id="conv-42")

    # In any nested function (no extra params needed):
    logger.info("Polling run")  # Automatically includes conversation_id
"""

from __future__ import annotations

import contextvars
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from opentelemetry import trace

# ═══════════════════════════════════════════════════════════════════════════════
# CONTEXT VARIABLE - Thread-safe, async-safe conversation state
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class ConversationCorrelation:
    """
    Correlation data for a single conversation turn.

    Attributes:
        conversation_id: Application-level conversation identifier
        thread_id: Agent runtime thread, once resolved
        channel: "text" or "voice"
        extra: Additional custom attributes
    """

    conversation_id: str | None = None
    thread_id: str | None = None
    channel: str | None = None
    extra: dict = field(default_factory=dict)

    @property
    def short_id(self) -> str:
        """Short identifier for logging prefixes."""
        if self.conversation_id:
            return self.conversation_id[-8:]
        return "anonymous"

    def to_span_attributes(self) -> dict[str, Any]:
        """Convert to OpenTelemetry span attributes."""
        attrs = {}
        if self.conversation_id:
            attrs["conversation.id"] = self.conversation_id
        if self.thread_id:
            attrs["agent.thread.id"] = self.thread_id
        if self.channel:
            attrs["conversation.channel"] = self.channel
        for key, value in self.extra.items():
            if isinstance(value, (str, int, float, bool)):
                attrs[key] = value
        return attrs


_conversation_context: contextvars.ContextVar[ConversationCorrelation | None] = (
    contextvars.ContextVar("conversation_correlation", default=None)
)


# ═══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ═══════════════════════════════════════════════════════════════════════════════


@asynccontextmanager
async def conversation_context(
    conversation_id: str | None = None,
    channel: str | None = None,
    **extra: Any,
):
    """
    Establish conversation correlation for all nested operations.

    Opens a root span carrying the correlation attributes; the previous
    context is restored on exit.
    """
    correlation = ConversationCorrelation(
        conversation_id=conversation_id,
        channel=channel,
        extra=extra,
    )
    token = _conversation_context.set(correlation)

    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(
        f"conversation[{channel or 'text'}]",
        kind=trace.SpanKind.SERVER,
        attributes=correlation.to_span_attributes(),
    ):
        try:
            yield correlation
        finally:
            _conversation_context.reset(token)


def get_conversation_correlation() -> ConversationCorrelation | None:
    """Current correlation, or None outside a conversation_context."""
    return _conversation_context.get()


def bind_thread_id(thread_id: str) -> None:
    """Record the resolved agent thread on the active correlation, if any."""
    ctx = _conversation_context.get()
    if ctx is not None:
        ctx.thread_id = thread_id


def get_span_attributes() -> dict[str, Any]:
    """
    Span attributes from the current conversation context.

        with tracer.start_as_current_span("agent.turn") as span:
            for k, v in get_span_attributes().items():
                span.set_attribute(k, v)
    """
    ctx = _conversation_context.get()
    return ctx.to_span_attributes() if ctx else {}
