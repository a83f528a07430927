"""Tests for logging, metrics and health checks."""

import json
import logging

from achievements.db import InMemoryResourceStore, StoreError
from achievements.observability import (
    ContextLogger,
    MetricsCollector,
    StructuredFormatter,
    check_health,
    get_logger,
    request_context,
    request_id_var,
)


def make_record(logger: ContextLogger, msg: str, **fields) -> logging.LogRecord:
    msg, kwargs = logger.process(msg, dict(fields))
    return logger.logger.makeRecord(
        logger.logger.name, logging.INFO, __file__, 1, msg, (), None, extra=kwargs["extra"]
    )


class TestStructuredLogging:

    def test_fields_become_json_keys(self):
        logger = get_logger("achievements.test")
        record = make_record(logger, "Achievement reviewed", achievement_id="abc", decision="approved")

        data = json.loads(StructuredFormatter().format(record))
        assert data["message"] == "Achievement reviewed"
        assert data["achievement_id"] == "abc"
        assert data["decision"] == "approved"
        assert data["level"] == "INFO"

    def test_request_context_is_attached(self):
        logger = get_logger("achievements.test")
        with request_context(request_id="req-1", actor_id="user-9") as rid:
            assert rid == "req-1"
            data = json.loads(StructuredFormatter().format(make_record(logger, "hello")))
        assert data["request_id"] == "req-1"
        assert data["actor_id"] == "user-9"
        assert request_id_var.get() == ""

    def test_generated_request_id(self):
        with request_context() as rid:
            assert rid
            assert request_id_var.get() == rid


class TestMetricsCollector:

    def test_counts(self):
        metrics = MetricsCollector()
        metrics.record_decision("approved", 1.0)
        metrics.record_decision("rejected", 3.0)
        metrics.record_failure("storage_error")
        metrics.record_failure("invalid_state")
        metrics.record_batch_item_failure()

        summary = metrics.get_summary()
        assert summary["approvals"] == 1
        assert summary["rejections"] == 1
        assert summary["storage_errors"] == 1
        assert summary["failures_by_kind"] == {"storage_error": 1, "invalid_state": 1}
        assert summary["batch_items_failed"] == 1

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.record_decision("approved", 1.0)
        metrics.reset()
        assert metrics.get_summary()["approvals"] == 0
        assert metrics.get_summary()["decision_latency_p50_ms"] is None


class TestHealth:

    def test_healthy(self):
        resources = InMemoryResourceStore()
        status = check_health(resources, resources.audit_store)
        assert status.healthy
        assert status.checks["resource_store"]["pending_count"] == 0
        assert status.checks["audit_store"]["rejection_rate"] == 0.0

    def test_unhealthy_store(self):
        class DownStore(InMemoryResourceStore):
            def count_achievements(self, criteria=None):
                raise StoreError("connection refused")

        status = check_health(DownStore())
        assert not status.healthy
        assert status.checks["resource_store"] == {"status": "unhealthy", "error": "StoreError"}
