"""
Configuration Types
===================

Structured dataclass configuration objects for type-safe access.
These wrap the flat settings from settings.py into organized objects that
are injected into the orchestration components.

Usage:
    from config import AppConfig

    config = AppConfig()
    print(config.threads.ttl_minutes)
"""

from dataclasses import dataclass, field
from typing import Any

from .settings import (
    AGENT_CALL_MAX_RETRIES,
    AGENT_CALL_RETRY_BASE_DELAY_SECONDS,
    AGENT_CALL_TIMEOUT_SECONDS,
    AGENT_POLL_INITIAL_MS,
    AGENT_POLL_MAX_MS,
    AGENT_SERVICE_AGENT_ID,
    AGENT_SERVICE_ENDPOINT,
    AGENT_TURN_DEADLINE_SECONDS,
    AGENT_USE_FAKE,
    AZURE_SPEECH_DEFAULT_VOICE,
    AZURE_SPEECH_KEY,
    AZURE_SPEECH_LANGUAGE,
    AZURE_SPEECH_REGION,
    CRITERIA_CACHE_DOMAIN,
    CRITERIA_CACHE_ENVIRONMENT,
    CRITERIA_CACHE_L1_MAX_ENTRIES,
    CRITERIA_CACHE_L1_MINUTES,
    CRITERIA_CACHE_L2_MINUTES,
    CRITERIA_CACHE_MAX_KEY_LENGTH,
    CRITERIA_CACHE_VERSION,
    REDIS_ENABLED,
    REDIS_MAX_RETRIES,
    REDIS_OPERATION_TIMEOUT_SECONDS,
    REDIS_RETRY_BASE_DELAY_MS,
    STT_SAMPLE_RATE,
    THREAD_MAPPING_SWEEP_INTERVAL_SECONDS,
    THREAD_MAPPING_TTL_MINUTES,
    VOICE_CONTEXT_PREFIX,
    VOICE_MAX_AUDIO_BYTES,
)


@dataclass
class ResilienceSettings:
    """Retry and timeout policy configuration."""

    agent_call_timeout_seconds: float = AGENT_CALL_TIMEOUT_SECONDS
    agent_call_max_retries: int = AGENT_CALL_MAX_RETRIES
    agent_call_retry_base_delay_seconds: float = AGENT_CALL_RETRY_BASE_DELAY_SECONDS
    redis_max_retries: int = REDIS_MAX_RETRIES
    redis_retry_base_delay_ms: int = REDIS_RETRY_BASE_DELAY_MS
    redis_operation_timeout_seconds: float = REDIS_OPERATION_TIMEOUT_SECONDS

    def to_dict(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass
class ThreadMappingSettings:
    """Conversation to agent-thread mapping configuration."""

    ttl_minutes: int = THREAD_MAPPING_TTL_MINUTES
    sweep_interval_seconds: float = THREAD_MAPPING_SWEEP_INTERVAL_SECONDS

    def to_dict(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass
class CacheSettings:
    """Tiered criteria cache configuration."""

    domain: str = CRITERIA_CACHE_DOMAIN
    environment: str = CRITERIA_CACHE_ENVIRONMENT
    version: str = CRITERIA_CACHE_VERSION
    l1_ttl_minutes: int = CRITERIA_CACHE_L1_MINUTES
    l2_ttl_minutes: int = CRITERIA_CACHE_L2_MINUTES
    l1_max_entries: int = CRITERIA_CACHE_L1_MAX_ENTRIES
    max_key_length: int = CRITERIA_CACHE_MAX_KEY_LENGTH

    def to_dict(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass
class AgentSettings:
    """Agent runtime configuration."""

    endpoint: str = AGENT_SERVICE_ENDPOINT
    agent_id: str = AGENT_SERVICE_AGENT_ID
    use_fake: bool = AGENT_USE_FAKE
    poll_initial_ms: int = AGENT_POLL_INITIAL_MS
    poll_max_ms: int = AGENT_POLL_MAX_MS
    turn_deadline_seconds: float = AGENT_TURN_DEADLINE_SECONDS

    def to_dict(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass
class SpeechSettings:
    """Azure Speech configuration."""

    key: str = AZURE_SPEECH_KEY
    region: str = AZURE_SPEECH_REGION
    default_voice: str = AZURE_SPEECH_DEFAULT_VOICE
    language: str = AZURE_SPEECH_LANGUAGE
    sample_rate: int = STT_SAMPLE_RATE

    def to_dict(self) -> dict[str, Any]:
        data = {k: getattr(self, k) for k in self.__dataclass_fields__}
        data["key"] = "***" if self.key else ""
        return data


@dataclass
class PipelineSettings:
    """Voice pipeline configuration."""

    max_audio_bytes: int = VOICE_MAX_AUDIO_BYTES
    context_prefix: str = VOICE_CONTEXT_PREFIX

    def to_dict(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass
class AppConfig:
    """
    Complete orchestration configuration.

    Every section defaults to the values loaded by settings.py; tests build
    sections explicitly instead of touching the environment.
    """

    redis_enabled: bool = REDIS_ENABLED
    resilience: ResilienceSettings = field(default_factory=ResilienceSettings)
    threads: ThreadMappingSettings = field(default_factory=ThreadMappingSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    speech: SpeechSettings = field(default_factory=SpeechSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)

    def to_dict(self) -> dict[str, Any]:
        """Serialize configuration to dictionary."""
        return {
            "redis_enabled": self.redis_enabled,
            "resilience": self.resilience.to_dict(),
            "threads": self.threads.to_dict(),
            "cache": self.cache.to_dict(),
            "agent": self.agent.to_dict(),
            "speech": self.speech.to_dict(),
            "pipeline": self.pipeline.to_dict(),
        }

    def validate(self) -> dict[str, Any]:
        """Validate configuration and return results."""
        issues = []
        warnings = []

        if self.threads.ttl_minutes < 1:
            issues.append("Thread mapping TTL must be at least 1 minute")

        if self.cache.l1_ttl_minutes < 1 or self.cache.l2_ttl_minutes < 1:
            issues.append("Cache TTLs must be at least 1 minute")
        elif self.cache.l1_ttl_minutes > self.cache.l2_ttl_minutes:
            warnings.append(
                f"L1 TTL ({self.cache.l1_ttl_minutes}m) exceeds L2 TTL ({self.cache.l2_ttl_minutes}m)"
            )

        if self.agent.poll_initial_ms <= 0 or self.agent.poll_initial_ms > self.agent.poll_max_ms:
            issues.append("Agent poll interval must be positive and not exceed the ceiling")

        if not self.agent.use_fake and not self.agent.agent_id:
            issues.append("Agent id is required unless the fake runtime is enabled")

        if self.resilience.agent_call_max_retries < 0 or self.resilience.redis_max_retries < 0:
            issues.append("Retry counts cannot be negative")

        if not self.redis_enabled:
            warnings.append("Redis disabled: running with in-process thread mapping and L1-only cache")

        return {
            "valid": len(issues) == 0,
            "issues": issues,
            "warnings": warnings,
        }
