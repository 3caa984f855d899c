"""Speech backend protocol shared by the voice pipeline and its test doubles."""

from __future__ import annotations

from enum import Enum
from typing import Protocol, runtime_checkable

from src.resilience.errors import OrchestrationError

WAV_HEADER_BYTES = 44


class AudioFormat(str, Enum):
    WAV = "wav"  # RIFF container, 44-byte header
    PCM16 = "pcm16"  # raw 16-bit little-endian mono

    @classmethod
    def parse(cls, value: str | AudioFormat) -> AudioFormat:
        if isinstance(value, AudioFormat):
            return value
        normalized = value.strip().lower()
        aliases = {"pcm": cls.PCM16, "pcm16": cls.PCM16, "wav": cls.WAV}
        if normalized not in aliases:
            raise ValueError(f"Unsupported audio format '{value}'")
        return aliases[normalized]


class SpeechServiceError(OrchestrationError):
    """The speech service rejected or cancelled a recognition/synthesis request."""

    def __init__(self, message: str, reason: str | None = None, error_code: str | None = None):
        super().__init__(message)
        self.reason = reason
        self.error_code = error_code


def strip_wav_header(audio: bytes) -> bytes:
    """Return the PCM payload of a RIFF/WAV buffer; non-RIFF input is returned unchanged."""
    if len(audio) > WAV_HEADER_BYTES and audio[:4] == b"RIFF" and audio[8:12] == b"WAVE":
        return audio[WAV_HEADER_BYTES:]
    return audio


@runtime_checkable
class SpeechBackend(Protocol):
    async def speech_to_text(self, audio: bytes, fmt: AudioFormat) -> str:
        """Transcribe one utterance. An empty string means nothing was recognized."""
        ...

    async def text_to_speech(self, text: str, voice: str | None = None) -> bytes:
        """Synthesize text to audio bytes."""
        ...
