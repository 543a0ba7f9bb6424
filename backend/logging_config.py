"""
Structured Logging Configuration for ServeSense
JSON-formatted logs for production, colored logs for development, correlation
IDs for request tracing and a throttle for per-tick warnings.
"""

import logging
import json
import sys
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable
from contextvars import ContextVar
import uuid

# Context variable for correlation ID (request or live session)
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Get current correlation ID or generate new one"""
    cid = correlation_id_var.get()
    if not cid:
        cid = str(uuid.uuid4())[:8]
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID for current context"""
    correlation_id_var.set(correlation_id)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs one JSON object per line for log aggregators.
    """

    # Fields to exclude from extra data
    RESERVED_ATTRS = {
        'args', 'asctime', 'created', 'exc_info', 'exc_text', 'filename',
        'funcName', 'levelname', 'levelno', 'lineno', 'module', 'msecs',
        'message', 'msg', 'name', 'pathname', 'process', 'processName',
        'relativeCreated', 'stack_info', 'thread', 'threadName',
        'taskName'  # Python 3.12+
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if record.levelno >= logging.WARNING:
            log_data["location"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName
            }

        # Extra fields (stage, frame_index, duration_ms, ...)
        for key, value in record.__dict__.items():
            if key not in self.RESERVED_ATTRS and not key.startswith('_'):
                try:
                    json.dumps(value)
                    log_data[key] = value
                except (TypeError, ValueError):
                    log_data[key] = str(value)

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        return json.dumps(log_data, default=str)


class PrettyFormatter(logging.Formatter):
    """Human-readable colored formatter for development."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, '')
        correlation_id = get_correlation_id()
        cid_str = f"[{correlation_id}] " if correlation_id else ""

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        level = f"{color}{record.levelname:8}{self.RESET}"
        message = f"{timestamp} {level} {cid_str}{record.name}: {record.getMessage()}"

        extras = [
            f"{key}={value}"
            for key, value in record.__dict__.items()
            if key not in JSONFormatter.RESERVED_ATTRS
            and not key.startswith('_')
            and key != "correlation_id"
        ]
        if extras:
            message += f" | {', '.join(extras)}"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


class CorrelationFilter(logging.Filter):
    """Filter that adds correlation ID to all log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    correlation_filter = CorrelationFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.addFilter(correlation_filter)
    console_handler.setFormatter(JSONFormatter() if json_format else PrettyFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.addFilter(correlation_filter)
        file_handler.setFormatter(JSONFormatter())  # Always JSON for files
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("absl").setLevel(logging.ERROR)  # mediapipe

    root_logger.info(
        "Logging configured",
        extra={
            "level": level,
            "json_format": json_format,
            "log_file": log_file
        }
    )


class TickLogThrottle:
    """
    Limits how often a per-tick condition is logged.

    The frame loop runs at display rate, so a fault that repeats every tick
    would otherwise write 60 lines per second. Each key is logged at most
    once per `interval_sec`; suppressed occurrences are counted and reported
    with the next emitted line.
    """

    def __init__(self, interval_sec: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.interval_sec = interval_sec
        self._clock = clock
        self._last_emit: Dict[str, float] = {}
        self._suppressed: Dict[str, int] = {}

    def should_log(self, key: str) -> bool:
        now = self._clock()
        last = self._last_emit.get(key)
        if last is not None and now - last < self.interval_sec:
            self._suppressed[key] = self._suppressed.get(key, 0) + 1
            return False
        self._last_emit[key] = now
        return True

    def pop_suppressed(self, key: str) -> int:
        return self._suppressed.pop(key, 0)

    def log(
        self,
        logger: logging.Logger,
        level: int,
        key: str,
        message: str,
        exc_info: bool = False,
        **extra
    ) -> None:
        if not self.should_log(key):
            return
        suppressed = self.pop_suppressed(key)
        if suppressed:
            extra["suppressed"] = suppressed
        logger.log(level, message, exc_info=exc_info, extra=extra)


# Timer context manager for performance logging
class LogTimer:
    """Context manager for timing operations"""

    def __init__(self, logger: logging.Logger, operation: str, **extra):
        self.logger = logger
        self.operation = operation
        self.extra = extra
        self.start_time = None
        self.duration_ms = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type:
            self.logger.error(
                f"{self.operation} failed after {self.duration_ms:.2f}ms",
                extra={**self.extra, "duration_ms": self.duration_ms, "error": str(exc_val)}
            )
        else:
            log_level = logging.WARNING if self.duration_ms > 5000 else logging.INFO
            self.logger.log(
                log_level,
                f"{self.operation} completed in {self.duration_ms:.2f}ms",
                extra={**self.extra, "duration_ms": self.duration_ms}
            )

        return False  # Don't suppress exceptions
