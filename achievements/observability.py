"""
Observability Module - Logging, Metrics, and Health

Provides:
- Structured JSON logging with request and actor IDs
- Request context for callers (the HTTP layer sets it per request)
- Metrics collection (review decisions, batch failures, latencies)
- Health check utilities

Configuration:
- ACHIEVEMENTS_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
- ACHIEVEMENTS_LOG_FORMAT: json, text (default: json in production)
- ACHIEVEMENTS_PRODUCTION: Enable production mode

Usage:
    from achievements.observability import get_logger, request_context

    logger = get_logger(__name__)
    logger.info("Achievement approved", achievement_id=str(achievement_id))
"""

import json
import logging
import os
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Generator, Optional

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
actor_id_var: ContextVar[str] = ContextVar("actor_id", default="")


# ============================================================
# CONFIGURATION
# ============================================================

def _is_production() -> bool:
    return os.environ.get("ACHIEVEMENTS_PRODUCTION", "").lower() in ("1", "true", "yes")


def _get_log_level() -> int:
    level_str = os.environ.get("ACHIEVEMENTS_LOG_LEVEL", "INFO").upper()
    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return levels.get(level_str, logging.INFO)


def _use_json_logging() -> bool:
    format_str = os.environ.get("ACHIEVEMENTS_LOG_FORMAT", "").lower()
    if format_str == "json":
        return True
    if format_str == "text":
        return False
    return _is_production()


# ============================================================
# STRUCTURED LOGGING
# ============================================================

_RESERVED_RECORD_KEYS = frozenset((
    "name", "msg", "args", "created", "levelname", "levelno",
    "pathname", "filename", "module", "lineno", "funcName",
    "exc_info", "exc_text", "stack_info", "message", "msecs",
    "relativeCreated", "thread", "threadName", "processName",
    "process", "taskName",
))


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2024-01-15T10:30:00.000Z",
        "level": "INFO",
        "logger": "achievements.core.workflow",
        "message": "Achievement approved",
        "request_id": "abc-123",
        "actor_id": "uuid-456",
        "achievement_id": "uuid-789",
        ...extra fields...
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        actor_id = actor_id_var.get()
        if actor_id:
            log_data["actor_id"] = actor_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_KEYS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        request_id = request_id_var.get()
        if request_id:
            prefix = f"[{request_id[:8]}] "

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        msg = f"{timestamp} {record.levelname:8} {prefix}{record.name}: {record.getMessage()}"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that turns keyword arguments into structured fields.

    Usage:
        logger = get_logger(__name__)
        logger.warning("Batch item failed", achievement_id=str(aid), error_kind="invalid_state")
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get("extra") or {})

        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel", "extra"):
                extra[key] = kwargs.pop(key)

        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(name: str) -> ContextLogger:
    """
    Get a structured logger for the given name.

    Args:
        name: Logger name (typically __name__)
    """
    return ContextLogger(logging.getLogger(name), {})


def setup_logging() -> None:
    """
    Configure logging for the application.

    Call this once at startup (CLI entry point, worker boot, ...).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_get_log_level())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_get_log_level())

    if _use_json_logging():
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger.addHandler(handler)


@contextmanager
def request_context(
    request_id: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> Generator[str, None, None]:
    """
    Bind a request ID (and optionally the acting user) to log output.

    The caller's transport layer wraps each inbound request in this.
    Yields the request ID in effect.
    """
    rid = request_id or str(uuid.uuid4())[:8]
    rid_token = request_id_var.set(rid)
    aid_token = actor_id_var.set(actor_id or "")
    try:
        yield rid
    finally:
        request_id_var.reset(rid_token)
        actor_id_var.reset(aid_token)


# ============================================================
# METRICS
# ============================================================

@dataclass
class MetricsCollector:
    """
    Simple in-memory metrics collector.

    For production, replace with Prometheus, StatsD, or similar.
    """

    # Counters
    approvals: int = 0
    rejections: int = 0
    batch_items_failed: int = 0
    storage_errors: int = 0
    failures_by_kind: Dict[str, int] = field(default_factory=dict)

    # Histograms (simplified as lists)
    decision_latencies_ms: list = field(default_factory=list)

    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def record_decision(self, decision: str, latency_ms: float) -> None:
        """Record a committed review decision."""
        with self._lock:
            if decision == "approved":
                self.approvals += 1
            else:
                self.rejections += 1
            self.decision_latencies_ms.append(latency_ms)
            # Keep only last 1000 samples
            if len(self.decision_latencies_ms) > 1000:
                self.decision_latencies_ms = self.decision_latencies_ms[-1000:]

    def record_failure(self, kind: str) -> None:
        """Record a failed review attempt by error kind."""
        with self._lock:
            self.failures_by_kind[kind] = self.failures_by_kind.get(kind, 0) + 1
            if kind == "storage_error":
                self.storage_errors += 1

    def record_batch_item_failure(self) -> None:
        """Record one failed item inside a batch approval."""
        with self._lock:
            self.batch_items_failed += 1

    def reset(self) -> None:
        with self._lock:
            self.approvals = 0
            self.rejections = 0
            self.batch_items_failed = 0
            self.storage_errors = 0
            self.failures_by_kind = {}
            self.decision_latencies_ms = []

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary."""
        def percentile(data: list, p: float) -> Optional[float]:
            if not data:
                return None
            sorted_data = sorted(data)
            idx = int(len(sorted_data) * p)
            return sorted_data[min(idx, len(sorted_data) - 1)]

        with self._lock:
            return {
                "approvals": self.approvals,
                "rejections": self.rejections,
                "batch_items_failed": self.batch_items_failed,
                "storage_errors": self.storage_errors,
                "failures_by_kind": dict(self.failures_by_kind),
                "decision_latency_p50_ms": percentile(self.decision_latencies_ms, 0.5),
                "decision_latency_p95_ms": percentile(self.decision_latencies_ms, 0.95),
                "decision_latency_p99_ms": percentile(self.decision_latencies_ms, 0.99),
            }


# Global metrics instance
_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


# ============================================================
# HEALTH CHECKS
# ============================================================

@dataclass
class HealthStatus:
    """Health check result."""
    healthy: bool
    checks: Dict[str, Dict[str, Any]]
    duration_ms: float


def check_health(resource_store=None, audit_store=None) -> HealthStatus:
    """
    Run all health checks.

    Args:
        resource_store: ResourceStore instance
        audit_store: AuditRecordStore instance
    """
    start = time.perf_counter()
    checks = {}
    all_healthy = True

    checks["liveness"] = {"status": "healthy"}

    if resource_store is not None:
        try:
            checks["resource_store"] = {
                "status": "healthy",
                "pending_count": resource_store.count_pending(),
            }
        except Exception as e:
            checks["resource_store"] = {
                "status": "unhealthy",
                "error": type(e).__name__,
            }
            all_healthy = False

    if audit_store is not None:
        try:
            checks["audit_store"] = {
                "status": "healthy",
                "rejection_rate": audit_store.rejection_rate(),
            }
        except Exception as e:
            checks["audit_store"] = {
                "status": "unhealthy",
                "error": type(e).__name__,
            }
            all_healthy = False

    duration_ms = (time.perf_counter() - start) * 1000

    return HealthStatus(
        healthy=all_healthy,
        checks=checks,
        duration_ms=round(duration_ms, 2),
    )
