"""
Voice pipeline instrumentation.

Counters live in process memory behind a lock (the only shared mutable
state of the pipeline) and are mirrored to OpenTelemetry instruments.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any

from src.voice.metrics_factory import LazyMeter

_meter = LazyMeter("orchestration.voice", version="1.0.0")

_audio_requests = _meter.counter(
    "voice.audio_requests_total", "Total number of audio processing requests"
)
_audio_failures = _meter.counter(
    "voice.audio_failures_total", "Total number of audio processing failures"
)
_stage_histograms = {
    "stt": _meter.histogram("voice.stt_duration_ms", "Speech-to-Text processing duration"),
    "agent": _meter.histogram("voice.agent_duration_ms", "Agent turn duration"),
    "tts": _meter.histogram("voice.tts_duration_ms", "Text-to-Speech processing duration"),
    "total": _meter.histogram("voice.total_duration_ms", "Total audio pipeline duration"),
}
_audio_size = _meter.histogram("voice.audio_size_bytes", "Size of synthesized audio responses", "bytes")


@dataclass
class _PipelineCounters:
    requests: int = 0
    failures: int = 0
    failures_by_stage: dict[str, int] = field(default_factory=dict)
    duration_ms_total: dict[str, float] = field(default_factory=dict)
    duration_samples: dict[str, int] = field(default_factory=dict)
    audio_out_bytes_total: int = 0


class PipelineMetrics:
    """Thread-safe request/failure/duration counters with an OTel mirror."""

    def __init__(self, export: bool = True) -> None:
        self._export = export
        self._lock = threading.Lock()
        self._counters = _PipelineCounters()

    def record_request(self, fmt: str) -> None:
        with self._lock:
            self._counters.requests += 1
        if self._export:
            _audio_requests.add(1, {"format": fmt})

    def record_stage(self, stage: str, duration_ms: float, fmt: str | None = None) -> None:
        with self._lock:
            c = self._counters
            c.duration_ms_total[stage] = c.duration_ms_total.get(stage, 0.0) + duration_ms
            c.duration_samples[stage] = c.duration_samples.get(stage, 0) + 1
        histogram = _stage_histograms.get(stage)
        if self._export and histogram is not None:
            histogram.record(duration_ms, {"format": fmt} if fmt else None)

    def record_failure(self, stage_error: str, fmt: str, error_type: str | None = None) -> None:
        with self._lock:
            c = self._counters
            c.failures += 1
            c.failures_by_stage[stage_error] = c.failures_by_stage.get(stage_error, 0) + 1
        if self._export:
            attributes = {"format": fmt, "stage_error": stage_error}
            if error_type:
                attributes["error_type"] = error_type
            _audio_failures.add(1, attributes)

    def record_audio_size(self, size_bytes: int) -> None:
        with self._lock:
            self._counters.audio_out_bytes_total += size_bytes
        if self._export:
            _audio_size.record(size_bytes)

    def snapshot(self) -> dict[str, Any]:
        """Return a consistent copy of all counters for logging/diagnostics."""
        with self._lock:
            c = self._counters
            averages = {
                stage: c.duration_ms_total[stage] / c.duration_samples[stage]
                for stage in c.duration_ms_total
                if c.duration_samples.get(stage)
            }
            return {
                "requests": c.requests,
                "failures": c.failures,
                "failures_by_stage": dict(c.failures_by_stage),
                "duration_ms_total": dict(c.duration_ms_total),
                "duration_ms_avg": averages,
                "audio_out_bytes_total": c.audio_out_bytes_total,
                "timestamp": time.time(),
            }
