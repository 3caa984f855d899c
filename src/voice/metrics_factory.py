"""
Metrics Factory
===============

Lazy-initialization wrappers for OpenTelemetry instruments, so instruments
are created only once a MeterProvider has had the chance to be configured.
Without a configured provider every instrument is a no-op.

Usage:
    from src.voice.metrics_factory import LazyMeter

    meter = LazyMeter("orchestration.voice", version="1.0.0")
    stt_duration = meter.histogram("voice.stt_duration_ms", "STT duration", "ms")
    stt_duration.record(150.5, attributes={"format": "wav"})
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter

from utils.ml_logging import get_logger

logger = get_logger("voice.metrics_factory")


class LazyHistogram:
    """Histogram that creates the underlying instrument on first ``record``."""

    def __init__(
        self,
        meter_getter: Callable[[], Meter],
        name: str,
        description: str,
        unit: str,
    ) -> None:
        self._meter_getter = meter_getter
        self._name = name
        self._description = description
        self._unit = unit
        self._histogram: Histogram | None = None

    def _ensure_initialized(self) -> Histogram:
        if self._histogram is None:
            self._histogram = self._meter_getter().create_histogram(
                name=self._name,
                description=self._description,
                unit=self._unit,
            )
        return self._histogram

    def record(self, value: float, attributes: dict[str, Any] | None = None) -> None:
        self._ensure_initialized().record(value, attributes=attributes)


class LazyCounter:
    """Counter that creates the underlying instrument on first ``add``."""

    def __init__(
        self,
        meter_getter: Callable[[], Meter],
        name: str,
        description: str,
        unit: str,
    ) -> None:
        self._meter_getter = meter_getter
        self._name = name
        self._description = description
        self._unit = unit
        self._counter: Counter | None = None

    def _ensure_initialized(self) -> Counter:
        if self._counter is None:
            self._counter = self._meter_getter().create_counter(
                name=self._name,
                description=self._description,
                unit=self._unit,
            )
        return self._counter

    def add(self, amount: int, attributes: dict[str, Any] | None = None) -> None:
        self._ensure_initialized().add(amount, attributes=attributes)


class LazyMeter:
    """
    Deferred OpenTelemetry meter with factory methods for lazy instruments.

    Example:
        meter = LazyMeter("orchestration.voice", version="1.0.0")
        requests = meter.counter("voice.audio_requests_total", "Audio requests")
        requests.add(1, {"format": "wav"})
    """

    def __init__(self, name: str, version: str = "1.0.0") -> None:
        self._name = name
        self._version = version
        self._meter: Meter | None = None

    def _get_meter(self) -> Meter:
        if self._meter is None:
            self._meter = metrics.get_meter(self._name, version=self._version)
            logger.info("Initialized meter: %s (v%s)", self._name, self._version)
        return self._meter

    def histogram(self, name: str, description: str, unit: str = "ms") -> LazyHistogram:
        return LazyHistogram(self._get_meter, name=name, description=description, unit=unit)

    def counter(self, name: str, description: str, unit: str = "1") -> LazyCounter:
        return LazyCounter(self._get_meter, name=name, description=description, unit=unit)


__all__ = [
    "LazyCounter",
    "LazyHistogram",
    "LazyMeter",
]
