"""
Logging, correlation IDs and in-process metrics.

Every scheduled job run (``job-…``), webhook reaction (``wh-…``) and HTTP
request (``req-…``) runs under its own correlation id, which both log
formatters and outbound platform requests pick up.

Usage:
    logger = get_logger(__name__)
    with correlation_context(generate_correlation_id("job")):
        logger.info("Syncing procore.projects", extra={"job": "procore_sync"})
"""
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Any, Dict, List, Tuple

import orjson

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# LogRecord attributes; anything else on a record came from ``extra``
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}

# Third-party loggers that only speak up at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "apscheduler")


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id.set(correlation_id)


def generate_correlation_id(prefix: str = "") -> str:
    """Short random id, e.g. ``wh-1a2b3c4d`` for prefix 'wh'."""
    short = uuid.uuid4().hex[:8]
    return f"{prefix}-{short}" if prefix else short


class correlation_context:
    """Scope a correlation id to a block; the previous id is restored on exit."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self.token = None

    def __enter__(self):
        self.token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, *args):
        _correlation_id.reset(self.token)


# ═══════════════════════════════════════════════════════════════════════════════
# FORMATTERS
# ═══════════════════════════════════════════════════════════════════════════════

class _ContextFormatter(logging.Formatter):
    """Shared access to the correlation id and ``extra`` fields of a record."""

    @staticmethod
    def extras(record: logging.LogRecord) -> Dict[str, Any]:
        return {
            k: v for k, v in record.__dict__.items()
            if k not in _STANDARD_ATTRS and not k.startswith("_")
        }

    def context(self, record: logging.LogRecord) -> Tuple[Optional[str], Dict[str, Any]]:
        return get_correlation_id(), self.extras(record)


class StructuredFormatter(_ContextFormatter):
    """One JSON object per line: timestamp, level, logger, message, extras."""

    def format(self, record: logging.LogRecord) -> str:
        correlation_id, extras = self.context(record)
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if correlation_id:
            entry["correlation_id"] = correlation_id
        entry.update(extras)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str).decode()


class HumanReadableFormatter(_ContextFormatter):
    """``TIMESTAMP - LEVEL - LOGGER [CORRELATION_ID] - MESSAGE | {extras}``"""

    def format(self, record: logging.LogRecord) -> str:
        correlation_id, extras = self.context(record)
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        scope = f" [{correlation_id}]" if correlation_id else ""

        line = f"{stamp} - {record.levelname:8} - {record.name}{scope} - {record.getMessage()}"
        if extras:
            line += f" | {extras}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Install a single root handler; LOG_FORMAT=json selects StructuredFormatter."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper()))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


# ═══════════════════════════════════════════════════════════════════════════════
# TIMING AND METRICS
# ═══════════════════════════════════════════════════════════════════════════════

class Timer:
    """
    Measure a block in milliseconds.

    With a logger, the duration is logged on exit: DEBUG normally, WARNING
    past one second (slow platform calls show up without debug logging).
    """

    SLOW_MS = 1000

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger
        self.start_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        if self.logger:
            level = logging.WARNING if self.elapsed_ms > self.SLOW_MS else logging.DEBUG
            self.logger.log(
                level, f"{self.name} completed", extra={"duration_ms": round(self.elapsed_ms, 2)}
            )


class MetricsCollector:
    """Request, error and timing counters served by ``GET /metrics``."""

    def __init__(self, max_samples: int = 100):
        self._requests: Dict[str, int] = {}
        self._errors: Dict[str, int] = {}
        self._timings: Dict[str, List[float]] = {}
        self._max_samples = max_samples

    def record_request(self, endpoint: str) -> None:
        self._requests[endpoint] = self._requests.get(endpoint, 0) + 1

    def record_error(self, error_type: str) -> None:
        self._errors[error_type] = self._errors.get(error_type, 0) + 1

    def record_timing(self, operation: str, duration_ms: float) -> None:
        samples = self._timings.setdefault(operation, [])
        samples.append(duration_ms)
        del samples[:-self._max_samples]

    def get_stats(self) -> Dict[str, Any]:
        timing = {}
        for operation, samples in self._timings.items():
            ordered = sorted(samples)
            timing[operation] = {
                "count": len(ordered),
                "avg_ms": round(sum(ordered) / len(ordered), 2),
                "max_ms": round(ordered[-1], 2),
                "p50_ms": round(ordered[len(ordered) // 2], 2),
            }
        return {"requests": dict(self._requests), "errors": dict(self._errors), "timing": timing}


metrics = MetricsCollector()
