"""
Voice pipeline: speech-to-text → agent turn → text-to-speech.

Exports:
    AudioPipelineOrchestrator: Runs one voice turn end to end
    AudioPipelineResult / AudioTurn / StageTimings: Result types
    PipelineStageError: Stage tags for aborted turns
    PipelineMetrics: Shared pipeline counters
"""

from src.voice.metrics import PipelineMetrics
from src.voice.pipeline import (
    AudioPipelineOrchestrator,
    AudioPipelineResult,
    AudioTurn,
    PipelineStageError,
    StageTimings,
)

__all__ = [
    "AudioPipelineOrchestrator",
    "AudioPipelineResult",
    "AudioTurn",
    "PipelineMetrics",
    "PipelineStageError",
    "StageTimings",
]
