"""
Orchestration core composition.

Wires the resilient call executor, thread mapping store, tiered cache, agent
turn client and audio pipeline from an ``AppConfig``. Collaborators can be
injected (tests, alternate runtimes); anything not injected is built from
configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from config.types import AppConfig
from src.agents.client import AgentTurnClient
from src.agents.fake import InMemoryAgentRuntime
from src.agents.foundry import FoundryAgentRuntime
from src.agents.runtime import AgentRuntime
from src.cache.tiered import TieredCache
from src.redis.manager import AzureRedisManager
from src.resilience.executor import ResilientCallExecutor
from src.speech.azure_speech import AzureSpeechBackend
from src.speech.backend import SpeechBackend
from src.threads.store import (
    InMemoryThreadMappingStore,
    ThreadMappingStore,
    build_thread_mapping_store,
)
from src.voice.metrics import PipelineMetrics
from src.voice.pipeline import AudioPipelineOrchestrator
from utils.ml_logging import get_logger

logger = get_logger("orchestration")


@dataclass
class OrchestrationServices:
    config: AppConfig
    executor: ResilientCallExecutor
    thread_store: ThreadMappingStore
    cache: TieredCache
    agent_runtime: AgentRuntime
    agent_client: AgentTurnClient
    redis_manager: AzureRedisManager | None = None
    pipeline: AudioPipelineOrchestrator | None = None
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)

    async def start(self) -> None:
        """Validate Redis (degraded mode on failure) and start background sweeps."""
        if self.redis_manager is not None:
            try:
                await self.redis_manager.initialize()
            except ConnectionError as e:
                logger.warning(
                    "Redis unavailable at startup, continuing degraded: %s", e
                )
        if isinstance(self.thread_store, InMemoryThreadMappingStore):
            self.thread_store.start_sweeper()
        logger.keyinfo(
            "Orchestration core started (redis=%s, voice=%s)",
            self.redis_manager is not None,
            self.pipeline is not None,
        )

    async def shutdown(self) -> None:
        if isinstance(self.thread_store, InMemoryThreadMappingStore):
            await self.thread_store.stop_sweeper()
        await self.agent_runtime.close()
        logger.info("Orchestration core stopped")


def _build_redis_manager(config: AppConfig) -> AzureRedisManager | None:
    if not config.redis_enabled:
        return None
    try:
        return AzureRedisManager()
    except Exception as e:
        logger.warning("Redis client could not be created, running in-process only: %s", e)
        return None


def _build_agent_runtime(config: AppConfig) -> AgentRuntime:
    if config.agent.use_fake:
        logger.warning("Using the in-memory agent runtime (AGENT_USE_FAKE)")
        return InMemoryAgentRuntime()
    return FoundryAgentRuntime(endpoint=config.agent.endpoint)


def _build_speech_backend(config: AppConfig) -> SpeechBackend | None:
    speech = config.speech
    if not speech.key or not speech.region:
        logger.warning("Azure Speech not configured: voice pipeline disabled")
        return None
    return AzureSpeechBackend(
        key=speech.key,
        region=speech.region,
        language=speech.language,
        default_voice=speech.default_voice,
        sample_rate=speech.sample_rate,
    )


def build_orchestration(
    app_config: AppConfig | None = None,
    redis_manager: AzureRedisManager | None = None,
    agent_runtime: AgentRuntime | None = None,
    speech_backend: SpeechBackend | None = None,
) -> OrchestrationServices:
    """
    Build the orchestration services.

    Args:
        app_config: Configuration; defaults to the environment-loaded settings.
        redis_manager: Shared Redis manager; built from the environment when
            Redis is enabled and none is given.
        agent_runtime: Agent runtime; Foundry-backed unless ``agent.use_fake``.
        speech_backend: Speech backend; the voice pipeline is only built when
            one is given or Azure Speech is configured.
    """
    config = app_config or AppConfig()
    redis_manager = redis_manager or _build_redis_manager(config)

    executor = ResilientCallExecutor(settings=config.resilience)
    thread_store = build_thread_mapping_store(config.threads, redis_manager, executor)
    cache = TieredCache(settings=config.cache, redis_manager=redis_manager, executor=executor)

    runtime = agent_runtime or _build_agent_runtime(config)
    agent_client = AgentTurnClient(
        runtime=runtime,
        thread_store=thread_store,
        executor=executor,
        agent_id=config.agent.agent_id,
        poll_initial_seconds=config.agent.poll_initial_ms / 1000,
        poll_max_seconds=config.agent.poll_max_ms / 1000,
        turn_deadline_seconds=config.agent.turn_deadline_seconds,
    )

    metrics = PipelineMetrics()
    speech = speech_backend or _build_speech_backend(config)
    pipeline = None
    if speech is not None:
        pipeline = AudioPipelineOrchestrator(
            speech,
            agent_client,
            metrics=metrics,
            max_audio_bytes=config.pipeline.max_audio_bytes,
            default_voice=config.speech.default_voice,
            context_prefix=config.pipeline.context_prefix or None,
        )

    return OrchestrationServices(
        config=config,
        executor=executor,
        thread_store=thread_store,
        cache=cache,
        agent_runtime=runtime,
        agent_client=agent_client,
        redis_manager=redis_manager,
        pipeline=pipeline,
        metrics=metrics,
    )
