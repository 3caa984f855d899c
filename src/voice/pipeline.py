"""
Audio pipeline orchestrator.

Single-pass voice turn: validate input → speech-to-text → optional context
prefix → agent turn → sanitize → text-to-speech. Any stage failure aborts the
remaining stages and is reported as a stage-tagged result. The orchestrator
never retries; the agent client applies its own resilience policy.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum

from opentelemetry import trace

from src.agents.client import AgentTurnClient
from src.agents.results import FailureKind
from src.enums.monitoring import SpanAttr
from src.speech.backend import AudioFormat, SpeechBackend
from src.speech.sanitizer import sanitize_for_tts
from src.voice.metrics import PipelineMetrics
from utils.ml_logging import get_logger

logger = get_logger("voice.pipeline")
tracer = trace.get_tracer(__name__)

DEFAULT_MAX_AUDIO_BYTES = 5 * 1024 * 1024


class PipelineStageError(str, Enum):
    INVALID_AUDIO = "invalid-audio"
    TRANSCRIPTION_EMPTY = "transcription-empty"
    TRANSCRIPTION_FAILURE = "transcription-failure"
    AGENT_EMPTY_RESPONSE = "agent-empty-response"
    AGENT_FAILURE = "agent-failure"
    SYNTHESIS_FAILURE = "synthesis-failure"


STAGE_ERROR_MESSAGES: dict[PipelineStageError, str] = {
    PipelineStageError.INVALID_AUDIO: "The audio input was empty or too large.",
    PipelineStageError.TRANSCRIPTION_EMPTY: "No speech was recognized in the audio.",
    PipelineStageError.TRANSCRIPTION_FAILURE: "Speech recognition is unavailable.",
    PipelineStageError.AGENT_EMPTY_RESPONSE: "The assistant did not produce a response.",
    PipelineStageError.AGENT_FAILURE: "The assistant is unavailable.",
    PipelineStageError.SYNTHESIS_FAILURE: "Speech synthesis is unavailable.",
}


@dataclass
class StageTimings:
    """Per-stage durations plus cumulative elapsed time at the end of each stage."""

    stt_ms: float = 0.0
    agent_ms: float = 0.0
    tts_ms: float = 0.0
    total_ms: float = 0.0
    cumulative_ms: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "stt_ms": round(self.stt_ms, 2),
            "agent_ms": round(self.agent_ms, 2),
            "tts_ms": round(self.tts_ms, 2),
            "total_ms": round(self.total_ms, 2),
            "cumulative_ms": {k: round(v, 2) for k, v in self.cumulative_ms.items()},
        }


@dataclass
class AudioTurn:
    audio_in_size: int
    transcript: str
    response_text: str
    audio_out: bytes
    conversation_id: str | None = None


@dataclass
class AudioPipelineResult:
    """Either ``turn`` is set (success) or ``stage_error`` names the aborted stage."""

    timings: StageTimings
    turn: AudioTurn | None = None
    stage_error: PipelineStageError | None = None
    failure: FailureKind | None = None
    message: str | None = None
    transcript: str | None = None
    conversation_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.stage_error is None and self.turn is not None

    @property
    def error(self) -> PipelineStageError | None:
        return self.stage_error


class _Stopwatch:
    def __init__(self):
        self.started = time.perf_counter()
        self.mark = self.started

    def lap(self) -> tuple[float, float]:
        """Return (stage_ms, cumulative_ms) and start the next lap."""
        now = time.perf_counter()
        stage_ms = (now - self.mark) * 1000
        self.mark = now
        return stage_ms, (now - self.started) * 1000


class AudioPipelineOrchestrator:
    """
    Runs one voice turn end to end.

    Args:
        speech: Speech backend (Azure Speech or a test double).
        agent_client: Agent turn client for the conversational turn.
        metrics: Shared pipeline counters; a private instance is created when omitted.
        max_audio_bytes: Upper bound on the inbound audio payload.
        default_voice: Voice used when ``process`` is not given one.
        context_prefix: Fixed text prepended to every transcript unless
            ``process`` overrides it.
    """

    def __init__(
        self,
        speech: SpeechBackend,
        agent_client: AgentTurnClient,
        metrics: PipelineMetrics | None = None,
        max_audio_bytes: int = DEFAULT_MAX_AUDIO_BYTES,
        default_voice: str | None = None,
        context_prefix: str | None = None,
    ):
        self.speech = speech
        self.agent_client = agent_client
        self.metrics = metrics or PipelineMetrics()
        self.max_audio_bytes = max_audio_bytes
        self.default_voice = default_voice
        self.context_prefix = context_prefix

    async def process(
        self,
        audio: bytes,
        fmt: AudioFormat | str,
        conversation_id: str | None = None,
        context_prefix: str | None = None,
        voice: str | None = None,
    ) -> AudioPipelineResult:
        timings = StageTimings()
        clock = _Stopwatch()
        fmt_label = fmt.value if isinstance(fmt, AudioFormat) else str(fmt)
        self.metrics.record_request(fmt_label)

        with tracer.start_as_current_span(
            "voice.pipeline",
            attributes={
                SpanAttr.CONVERSATION_ID.value: conversation_id or "",
                SpanAttr.PIPELINE_AUDIO_IN_BYTES.value: len(audio or b""),
            },
        ) as span:

            def fail(
                stage_error: PipelineStageError,
                failure: FailureKind | None = None,
                transcript: str | None = None,
                error_type: str | None = None,
            ) -> AudioPipelineResult:
                timings.total_ms = (time.perf_counter() - clock.started) * 1000
                self.metrics.record_failure(stage_error.value, fmt_label, error_type)
                self.metrics.record_stage("total", timings.total_ms, fmt_label)
                span.set_attribute(SpanAttr.PIPELINE_STAGE_ERROR.value, stage_error.value)
                return AudioPipelineResult(
                    timings=timings,
                    stage_error=stage_error,
                    failure=failure,
                    message=STAGE_ERROR_MESSAGES[stage_error],
                    transcript=transcript,
                    conversation_id=conversation_id,
                )

            # Validate
            try:
                audio_format = AudioFormat.parse(fmt)
            except ValueError:
                logger.warning("Rejected audio with unsupported format '%s'", fmt_label)
                return fail(PipelineStageError.INVALID_AUDIO, error_type="UnsupportedFormat")
            if not audio or len(audio) > self.max_audio_bytes:
                logger.warning(
                    "Rejected audio payload of %d bytes (limit %d)",
                    len(audio or b""),
                    self.max_audio_bytes,
                )
                return fail(PipelineStageError.INVALID_AUDIO, error_type="InvalidAudioSize")

            # Speech-to-text
            span.set_attribute(SpanAttr.PIPELINE_STAGE.value, "stt")
            try:
                transcript = await self.speech.speech_to_text(audio, audio_format)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                timings.stt_ms, timings.cumulative_ms["stt"] = clock.lap()
                logger.error("Speech-to-text failed: %s: %s", type(exc).__name__, exc)
                return fail(
                    PipelineStageError.TRANSCRIPTION_FAILURE, error_type=type(exc).__name__
                )
            timings.stt_ms, timings.cumulative_ms["stt"] = clock.lap()
            self.metrics.record_stage("stt", timings.stt_ms, fmt_label)

            if not transcript or not transcript.strip():
                logger.warning("Speech-to-text returned no transcript (%.0fms)", timings.stt_ms)
                return fail(PipelineStageError.TRANSCRIPTION_EMPTY, error_type="EmptyTranscript")
            transcript = transcript.strip()
            span.set_attribute(SpanAttr.SPEECH_STT_TEXT_LENGTH.value, len(transcript))

            # Agent turn
            span.set_attribute(SpanAttr.PIPELINE_STAGE.value, "agent")
            prefix = context_prefix if context_prefix is not None else self.context_prefix
            prompt = f"{prefix} {transcript}" if prefix else transcript
            result = await self.agent_client.run_turn(prompt, conversation_id=conversation_id)
            timings.agent_ms, timings.cumulative_ms["agent"] = clock.lap()
            self.metrics.record_stage("agent", timings.agent_ms, fmt_label)

            if result.is_transport_failure:
                return fail(
                    PipelineStageError.AGENT_FAILURE,
                    failure=result.failure,
                    transcript=transcript,
                    error_type=result.failure.value if result.failure else None,
                )
            if not result.ok:
                return fail(
                    PipelineStageError.AGENT_EMPTY_RESPONSE,
                    failure=result.failure,
                    transcript=transcript,
                    error_type=result.failure.value if result.failure else None,
                )

            response_text = result.text or ""
            spoken_text = sanitize_for_tts(response_text)
            if not spoken_text or not spoken_text.strip():
                logger.warning("Agent response was empty after TTS sanitization")
                return fail(
                    PipelineStageError.AGENT_EMPTY_RESPONSE,
                    failure=FailureKind.EMPTY_RESPONSE,
                    transcript=transcript,
                    error_type=FailureKind.EMPTY_RESPONSE.value,
                )

            # Text-to-speech
            span.set_attribute(SpanAttr.PIPELINE_STAGE.value, "tts")
            selected_voice = voice or self.default_voice
            span.set_attribute(SpanAttr.SPEECH_TTS_TEXT_LENGTH.value, len(spoken_text))
            if selected_voice:
                span.set_attribute(SpanAttr.SPEECH_TTS_VOICE.value, selected_voice)
            try:
                audio_out = await self.speech.text_to_speech(spoken_text, selected_voice)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                timings.tts_ms, timings.cumulative_ms["tts"] = clock.lap()
                logger.error("Text-to-speech failed: %s: %s", type(exc).__name__, exc)
                return fail(
                    PipelineStageError.SYNTHESIS_FAILURE,
                    transcript=transcript,
                    error_type=type(exc).__name__,
                )
            timings.tts_ms, timings.cumulative_ms["tts"] = clock.lap()
            self.metrics.record_stage("tts", timings.tts_ms, fmt_label)

            if not audio_out:
                logger.error("Text-to-speech returned no audio")
                return fail(
                    PipelineStageError.SYNTHESIS_FAILURE,
                    transcript=transcript,
                    error_type="EmptyAudio",
                )

            timings.total_ms = timings.cumulative_ms["tts"]
            self.metrics.record_stage("total", timings.total_ms, fmt_label)
            self.metrics.record_audio_size(len(audio_out))
            span.set_attribute(SpanAttr.PIPELINE_AUDIO_OUT_BYTES.value, len(audio_out))

            resolved_conversation = conversation_id or result.thread_id
            logger.info(
                "Voice turn completed in %.0fms (stt %.0fms, agent %.0fms, tts %.0fms)",
                timings.total_ms,
                timings.stt_ms,
                timings.agent_ms,
                timings.tts_ms,
            )
            return AudioPipelineResult(
                timings=timings,
                turn=AudioTurn(
                    audio_in_size=len(audio),
                    transcript=transcript,
                    response_text=response_text,
                    audio_out=audio_out,
                    conversation_id=resolved_conversation,
                ),
                transcript=transcript,
                conversation_id=resolved_conversation,
            )
