"""
Application Settings
====================

All environment-loaded configuration for the orchestration core, organized by
domain. This is the single source of truth for runtime configuration.

Loading Order:
    1. Load .env.local (if exists) - local development overrides
    2. Environment variables (container/cloud deployments)

Usage:
    from config import THREAD_MAPPING_TTL_MINUTES, AGENT_CALL_TIMEOUT_SECONDS
    from config.types import AppConfig
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# ==============================================================================
# LOAD .env.local FILE (FIRST PRIORITY FOR LOCAL DEVELOPMENT)
# ==============================================================================
# Variables already set in the environment are NOT overridden.


def _load_dotenv_local():
    """
    Load .env.local file if it exists.

    Search order:
    1. Project root .env.local
    2. Project root .env (fallback)
    """
    project_root = Path(__file__).parent.parent

    env_files = [
        project_root / ".env.local",
        project_root / ".env",
    ]

    for env_file in env_files:
        if env_file.exists():
            load_dotenv(env_file, override=False)
            break


_load_dotenv_local()


# ==============================================================================
# HELPER FUNCTIONS
# ==============================================================================


def _env_bool(key: str, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    return os.getenv(key, str(default)).lower() in ("true", "1", "yes", "on")


def _env_int(key: str, default: int) -> int:
    """Parse integer from environment variable."""
    return int(os.getenv(key, str(default)))


def _env_float(key: str, default: float) -> float:
    """Parse float from environment variable."""
    return float(os.getenv(key, str(default)))


# ==============================================================================
# ENVIRONMENT
# ==============================================================================

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development").lower()
DEBUG_MODE: bool = _env_bool("DEBUG", False)


# ==============================================================================
# REDIS (distributed key-value store)
# ==============================================================================
# REDIS_HOST / REDIS_PORT / REDIS_ACCESS_KEY are read by AzureRedisManager
# itself; an empty host means the core runs in degraded (in-process) mode.

REDIS_HOST: str = os.getenv("REDIS_HOST", "")
REDIS_ENABLED: bool = _env_bool("REDIS_ENABLED", bool(REDIS_HOST))


# ==============================================================================
# THREAD MAPPING
# ==============================================================================

THREAD_MAPPING_TTL_MINUTES: int = _env_int("THREAD_MAPPING_TTL_MINUTES", 120)
THREAD_MAPPING_SWEEP_INTERVAL_SECONDS: float = _env_float(
    "THREAD_MAPPING_SWEEP_INTERVAL_SECONDS", 600.0
)


# ==============================================================================
# CRITERIA CACHE (L1 in-process + L2 Redis)
# ==============================================================================

CRITERIA_CACHE_DOMAIN: str = os.getenv("CRITERIA_CACHE_DOMAIN", "criteria")
CRITERIA_CACHE_VERSION: str = os.getenv("CRITERIA_CACHE_VERSION", "v1")
CRITERIA_CACHE_ENVIRONMENT: str = os.getenv("CRITERIA_CACHE_ENVIRONMENT", "default")
CRITERIA_CACHE_L1_MINUTES: int = _env_int("CRITERIA_CACHE_L1_EXPIRATION_MINUTES", 10)
CRITERIA_CACHE_L2_MINUTES: int = _env_int("CRITERIA_CACHE_L2_EXPIRATION_MINUTES", 30)
CRITERIA_CACHE_L1_MAX_ENTRIES: int = _env_int("CRITERIA_CACHE_L1_MAX_ENTRIES", 1024)
CRITERIA_CACHE_MAX_KEY_LENGTH: int = _env_int("CRITERIA_CACHE_MAX_KEY_LENGTH", 200)


# ==============================================================================
# RESILIENCE (retry + timeout policies)
# ==============================================================================

AGENT_CALL_TIMEOUT_SECONDS: float = _env_float("AGENT_CALL_TIMEOUT_SECONDS", 30.0)
AGENT_CALL_MAX_RETRIES: int = _env_int("AGENT_CALL_MAX_RETRIES", 2)
AGENT_CALL_RETRY_BASE_DELAY_SECONDS: float = _env_float(
    "AGENT_CALL_RETRY_BASE_DELAY_SECONDS", 1.0
)
REDIS_MAX_RETRIES: int = _env_int("REDIS_MAX_RETRIES", 2)
REDIS_RETRY_BASE_DELAY_MS: int = _env_int("REDIS_RETRY_BASE_DELAY_MS", 100)
REDIS_OPERATION_TIMEOUT_SECONDS: float = _env_float("REDIS_OPERATION_TIMEOUT_SECONDS", 2.0)


# ==============================================================================
# AGENT RUNTIME
# ==============================================================================

AGENT_SERVICE_ENDPOINT: str = os.getenv("AGENT_SERVICE_ENDPOINT", "")
AGENT_SERVICE_AGENT_ID: str = os.getenv("AGENT_SERVICE_AGENT_ID", "")
AGENT_USE_FAKE: bool = _env_bool("AGENT_USE_FAKE", False)
AGENT_POLL_INITIAL_MS: int = _env_int("AGENT_POLL_INITIAL_MS", 50)
AGENT_POLL_MAX_MS: int = _env_int("AGENT_POLL_MAX_MS", 500)
AGENT_TURN_DEADLINE_SECONDS: float = _env_float("AGENT_TURN_DEADLINE_SECONDS", 30.0)


# ==============================================================================
# AZURE SPEECH SERVICES
# ==============================================================================

AZURE_SPEECH_KEY: str = os.getenv("AZURE_SPEECH_KEY", "")
AZURE_SPEECH_REGION: str = os.getenv("AZURE_SPEECH_REGION", "")
AZURE_SPEECH_DEFAULT_VOICE: str = os.getenv(
    "AZURE_SPEECH_DEFAULT_VOICE", "en-US-AvaMultilingualNeural"
)
AZURE_SPEECH_LANGUAGE: str = os.getenv("AZURE_SPEECH_LANGUAGE", "en-US")
STT_SAMPLE_RATE: int = _env_int("STT_SAMPLE_RATE", 24000)


# ==============================================================================
# VOICE PIPELINE
# ==============================================================================

VOICE_MAX_AUDIO_BYTES: int = _env_int("VOICE_MAX_AUDIO_BYTES", 5 * 1024 * 1024)
VOICE_CONTEXT_PREFIX: str = os.getenv("VOICE_CONTEXT_PREFIX", "")


# ==============================================================================
# VALIDATION
# ==============================================================================


def validate_settings() -> dict:
    """
    Validate the loaded settings.

    Returns:
        Dict with "valid" flag plus lists of "issues" and "warnings".
    """
    issues: list[str] = []
    warnings: list[str] = []

    if not AGENT_USE_FAKE:
        if not AGENT_SERVICE_ENDPOINT:
            issues.append("AGENT_SERVICE_ENDPOINT is not set")
        if not AGENT_SERVICE_AGENT_ID:
            issues.append("AGENT_SERVICE_AGENT_ID is not set")

    if not REDIS_ENABLED:
        warnings.append(
            "Redis disabled: thread mappings and criteria cache run in-process only"
        )

    if AGENT_POLL_INITIAL_MS > AGENT_POLL_MAX_MS:
        issues.append("AGENT_POLL_INITIAL_MS must not exceed AGENT_POLL_MAX_MS")

    if CRITERIA_CACHE_L1_MINUTES > CRITERIA_CACHE_L2_MINUTES:
        warnings.append("L1 cache TTL is longer than the L2 TTL")

    if not AZURE_SPEECH_KEY or not AZURE_SPEECH_REGION:
        warnings.append("Azure Speech key/region missing: voice turns are unavailable")

    return {"valid": not issues, "issues": issues, "warnings": warnings}
