import json
import logging
import os

from colorama import Fore, Style
from colorama import init as colorama_init

# Conditionally import OpenTelemetry based on DISABLE_CLOUD_TELEMETRY
_telemetry_disabled = os.getenv("DISABLE_CLOUD_TELEMETRY", "false").lower() == "true"

if not _telemetry_disabled:
    from opentelemetry import trace
else:
    trace = None

colorama_init(autoreset=True)

# Define a new logging level named "KEYINFO" with a level of 25
KEYINFO_LEVEL_NUM = 25
logging.addLevelName(KEYINFO_LEVEL_NUM, "KEYINFO")


def keyinfo(self: logging.Logger, message, *args, **kws):
    if self.isEnabledFor(KEYINFO_LEVEL_NUM):
        self._log(KEYINFO_LEVEL_NUM, message, args, **kws)


logging.Logger.keyinfo = keyinfo


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging in deployed environments."""

    def format(self, record: logging.LogRecord) -> str:
        record.funcName = getattr(record, "func_name_override", record.funcName)
        record.filename = getattr(record, "file_name_override", record.filename)

        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "name": record.name,
            "process": record.processName,
            "level": record.levelname,
            "trace_id": getattr(record, "trace_id", "-"),
            "span_id": getattr(record, "span_id", "-"),
            "conversation_id": getattr(record, "conversation_id", "-"),
            "thread_id": getattr(record, "thread_id", "-"),
            "operation_name": getattr(record, "operation_name", "-"),
            "component": getattr(record, "component", "-"),
            "message": record.getMessage(),
            "file": record.filename,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Custom correlation attributes copied from the conversation context
        for attr_name in dir(record):
            if attr_name.startswith(("conversation_", "agent_", "pipeline_", "cache_")):
                log_record[attr_name] = getattr(record, attr_name)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


class PrettyFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.MAGENTA,
        "KEYINFO": Fore.BLUE,
    }

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        level = record.levelname
        name = record.name
        msg = record.getMessage()
        conversation_id = getattr(record, "conversation_id", "-")
        prefix = f" [{conversation_id[-8:]}]" if conversation_id not in ("-", None) else ""

        color = self.LEVEL_COLORS.get(level, "")
        return f"{Fore.WHITE}[{timestamp}]{Style.RESET_ALL} {color}{level}{Style.RESET_ALL} - {Fore.BLUE}{name}{Style.RESET_ALL}{prefix}: {msg}"


class TraceLogFilter(logging.Filter):
    """
    Logging filter that enriches log records with conversation correlation and trace context.

    Correlation is sourced in priority order:
    1. Conversation context (contextvars) - set once per turn
    2. Current span attributes
    3. Default values ("-") - when no context available
    """

    def filter(self, record):
        from utils.conversation_context import get_conversation_correlation

        conversation_ctx = get_conversation_correlation()

        record.conversation_id = "-"
        record.thread_id = "-"
        record.operation_name = "-"
        record.component = "-"
        record.trace_id = "-"
        record.span_id = "-"

        if conversation_ctx:
            record.conversation_id = conversation_ctx.conversation_id or "-"
            record.thread_id = conversation_ctx.thread_id or "-"
            record.component = conversation_ctx.extra.get("component", "-")
            for key, value in conversation_ctx.extra.items():
                if isinstance(value, (str, int, float, bool)):
                    setattr(record, key.replace(".", "_"), value)

        if _telemetry_disabled or trace is None:
            return True

        span = trace.get_current_span()
        context = span.get_span_context() if span else None
        record.trace_id = f"{context.trace_id:032x}" if context and context.trace_id else "-"
        record.span_id = f"{context.span_id:016x}" if context and context.span_id else "-"
        # NonRecordingSpan doesn't have 'name'
        record.operation_name = getattr(span, "name", "-") if span else "-"

        if not conversation_ctx and span and span.is_recording():
            span_attributes = getattr(span, "_attributes", None) or {}
            record.conversation_id = span_attributes.get("conversation.id", "-")
            record.thread_id = span_attributes.get("agent.thread.id", "-")
            record.component = span_attributes.get("component", "-")

        return True


def get_logger(
    name: str = "orchestration",
    level: int | None = None,
    include_stream_handler: bool = True,
) -> logging.Logger:
    """
    Get or create a logger with correlation enrichment.

    Args:
        name: Logger name (hierarchical, e.g., "agents.client")
        level: Optional logging level; defaults to INFO if logger has no level set
        include_stream_handler: Whether to add a console StreamHandler

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if level is not None or logger.level == 0:
        logger.setLevel(level or logging.INFO)

    is_production = os.environ.get("ENV", "dev").lower() == "prod"

    if not any(isinstance(f, TraceLogFilter) for f in logger.filters):
        logger.addFilter(TraceLogFilter())

    if include_stream_handler and not any(
        isinstance(h, logging.StreamHandler) for h in logger.handlers
    ):
        sh = logging.StreamHandler()
        sh.setFormatter(JsonFormatter() if is_production else PrettyFormatter())
        sh.addFilter(TraceLogFilter())
        logger.addHandler(sh)

    return logger
