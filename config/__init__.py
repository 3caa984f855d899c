"""
Configuration Package
=====================

Centralized configuration for the orchestration core.

Structure:
  - settings.py   : All environment-loaded settings (flat, organized by domain)
  - types.py      : Dataclass config objects for structured access
  - __init__.py   : This file (exports everything)

Usage:
    # Direct settings access
    from config import THREAD_MAPPING_TTL_MINUTES

    # Structured config object
    from config import AppConfig
    config = AppConfig()
    print(config.cache.l1_ttl_minutes)
"""

from .settings import (
    AGENT_CALL_MAX_RETRIES,
    AGENT_CALL_RETRY_BASE_DELAY_SECONDS,
    AGENT_CALL_TIMEOUT_SECONDS,
    AGENT_SERVICE_AGENT_ID,
    AGENT_SERVICE_ENDPOINT,
    AGENT_USE_FAKE,
    AZURE_SPEECH_DEFAULT_VOICE,
    CRITERIA_CACHE_ENVIRONMENT,
    DEBUG_MODE,
    ENVIRONMENT,
    REDIS_ENABLED,
    REDIS_MAX_RETRIES,
    REDIS_RETRY_BASE_DELAY_MS,
    THREAD_MAPPING_TTL_MINUTES,
    VOICE_MAX_AUDIO_BYTES,
    validate_settings,
)
from .types import (
    AgentSettings,
    AppConfig,
    CacheSettings,
    PipelineSettings,
    ResilienceSettings,
    SpeechSettings,
    ThreadMappingSettings,
)

__all__ = [
    # Settings
    "AGENT_CALL_MAX_RETRIES",
    "AGENT_CALL_RETRY_BASE_DELAY_SECONDS",
    "AGENT_CALL_TIMEOUT_SECONDS",
    "AGENT_SERVICE_AGENT_ID",
    "AGENT_SERVICE_ENDPOINT",
    "AGENT_USE_FAKE",
    "AZURE_SPEECH_DEFAULT_VOICE",
    "CRITERIA_CACHE_ENVIRONMENT",
    "DEBUG_MODE",
    "ENVIRONMENT",
    "REDIS_ENABLED",
    "REDIS_MAX_RETRIES",
    "REDIS_RETRY_BASE_DELAY_MS",
    "THREAD_MAPPING_TTL_MINUTES",
    "VOICE_MAX_AUDIO_BYTES",
    "validate_settings",
    # Types
    "AgentSettings",
    "AppConfig",
    "CacheSettings",
    "PipelineSettings",
    "ResilienceSettings",
    "SpeechSettings",
    "ThreadMappingSettings",
]
