from enum import Enum


# Span attribute keys for OpenTelemetry tracing
class SpanAttr(str, Enum):
    """
    Standardized span attribute keys for OpenTelemetry tracing.

    Attribute Categories:
    - Core: Basic correlation and identification
    - Dependency: Peer service / database attributes for dependency maps
    - Agent: Agent runtime turn attributes
    - Cache: Tiered cache attributes
    - Pipeline: Voice pipeline stage attributes
    """

    # ═══════════════════════════════════════════════════════════════════════════
    # CORE ATTRIBUTES
    # ═══════════════════════════════════════════════════════════════════════════
    CONVERSATION_ID = "conversation.id"
    OPERATION_NAME = "operation.name"
    ERROR_TYPE = "error.type"
    ERROR_MESSAGE = "error.message"
    RETRY_ATTEMPT = "retry.attempt"
    RETRY_POLICY = "retry.policy"

    # ═══════════════════════════════════════════════════════════════════════════
    # DEPENDENCY ATTRIBUTES
    # ═══════════════════════════════════════════════════════════════════════════
    PEER_SERVICE = "peer.service"  # Target service name (creates edge)
    SERVER_ADDRESS = "server.address"
    SERVER_PORT = "server.port"
    NET_PEER_NAME = "net.peer.name"
    DB_SYSTEM = "db.system"
    DB_OPERATION = "db.operation"

    # ═══════════════════════════════════════════════════════════════════════════
    # AGENT RUNTIME ATTRIBUTES
    # ═══════════════════════════════════════════════════════════════════════════
    AGENT_ID = "agent.id"
    AGENT_THREAD_ID = "agent.thread.id"
    AGENT_RUN_ID = "agent.run.id"
    AGENT_RUN_STATUS = "agent.run.status"
    AGENT_POLL_COUNT = "agent.poll.count"
    TURN_OUTCOME = "turn.outcome"
    TURN_FAILURE_KIND = "turn.failure_kind"
    TURN_ATTEMPTS = "turn.attempts"
    TURN_NEW_THREAD = "turn.new_thread"
    TURN_LOW_QUALITY = "turn.low_quality"

    # ═══════════════════════════════════════════════════════════════════════════
    # CACHE ATTRIBUTES
    # ═══════════════════════════════════════════════════════════════════════════
    CACHE_KEY = "cache.key"
    CACHE_TIER = "cache.tier"
    CACHE_HIT = "cache.hit"

    # ═══════════════════════════════════════════════════════════════════════════
    # PIPELINE ATTRIBUTES
    # ═══════════════════════════════════════════════════════════════════════════
    PIPELINE_STAGE = "pipeline.stage"
    PIPELINE_STAGE_ERROR = "pipeline.stage_error"
    PIPELINE_AUDIO_IN_BYTES = "pipeline.audio_in.bytes"
    PIPELINE_AUDIO_OUT_BYTES = "pipeline.audio_out.bytes"
    SPEECH_STT_TEXT_LENGTH = "speech.stt.text_length"
    SPEECH_TTS_VOICE = "speech.tts.voice"
    SPEECH_TTS_TEXT_LENGTH = "speech.tts.text_length"


# ═══════════════════════════════════════════════════════════════════════════════
# PEER SERVICE CONSTANTS - Standard values for dependency edges
# ═══════════════════════════════════════════════════════════════════════════════
class PeerService:
    """
    Standard peer.service values for dependency visualization.

    Use these constants when setting SpanAttr.PEER_SERVICE to ensure consistent
    node naming.
    """

    AZURE_AI_AGENTS = "azure.ai.agents"
    AZURE_SPEECH = "azure.speech"
    AZURE_MANAGED_REDIS = "azure-managed-redis"
    REDIS = "redis"
