"""
Integration tests for synchub/observability.py

Tests structured logging, correlation IDs, and metrics collection.
"""
import logging
import json
import time as time_module

from synchub.observability import (
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    HumanReadableFormatter,
    MetricsCollector,
    StructuredFormatter,
    Timer,
)


def _record(msg: str = "Test message", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test.logger",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationId:
    """Tests for correlation ID management."""

    def test_generate_with_prefix(self):
        cid = generate_correlation_id("wh")
        assert cid.startswith("wh-")
        assert len(cid) == 11

    def test_generate_without_prefix(self):
        assert len(generate_correlation_id()) == 8

    def test_context_sets_and_restores(self):
        outer = get_correlation_id()

        with correlation_context("job-reconcile") as cid:
            assert cid == "job-reconcile"
            assert get_correlation_id() == "job-reconcile"

        assert get_correlation_id() == outer


class TestTimer:
    """Tests for Timer context manager."""

    def test_measures_elapsed_time(self):
        with Timer("test_operation") as timer:
            time_module.sleep(0.05)

        assert timer.elapsed_ms >= 45
        assert timer.elapsed_ms < 500

    def test_logs_when_logger_given(self, caplog):
        logger = get_logger("synchub.tests.timer")

        with caplog.at_level(logging.DEBUG, logger="synchub.tests.timer"):
            with Timer("fetch_page", logger):
                pass

        assert any("fetch_page completed" in r.getMessage() for r in caplog.records)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_record_request_and_error(self):
        metrics = MetricsCollector()
        metrics.record_request("/webhooks/procore")
        metrics.record_request("/webhooks/procore")
        metrics.record_error("PlatformAuthError")

        stats = metrics.get_stats()
        assert stats["requests"]["/webhooks/procore"] == 2
        assert stats["errors"]["PlatformAuthError"] == 1

    def test_record_timing(self):
        metrics = MetricsCollector()
        for value in (100.0, 200.0, 150.0):
            metrics.record_timing("procore_sync", value)

        timings = metrics.get_stats()["timing"]["procore_sync"]
        assert timings["count"] == 3
        assert timings["avg_ms"] == 150.0
        assert timings["max_ms"] == 200.0
        assert timings["p50_ms"] == 150.0

    def test_timing_samples_are_bounded(self):
        metrics = MetricsCollector(max_samples=3)
        for value in range(10):
            metrics.record_timing("op", float(value))

        assert metrics.get_stats()["timing"]["op"]["count"] == 3

    def test_empty_snapshot(self):
        assert MetricsCollector().get_stats() == {"requests": {}, "errors": {}, "timing": {}}


class TestStructuredFormatter:
    """Tests for JSON log formatter."""

    def test_formats_as_json(self):
        parsed = json.loads(StructuredFormatter().format(_record()))

        assert parsed["message"] == "Test message"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test.logger"
        assert "T" in parsed["timestamp"]

    def test_includes_extras(self):
        parsed = json.loads(StructuredFormatter().format(_record(job="procore_sync", stats={"created": 2})))

        assert parsed["job"] == "procore_sync"
        assert parsed["stats"] == {"created": 2}

    def test_includes_correlation_id(self):
        with correlation_context("wh-1234abcd"):
            parsed = json.loads(StructuredFormatter().format(_record()))

        assert parsed["correlation_id"] == "wh-1234abcd"


class TestHumanReadableFormatter:

    def test_includes_correlation_and_extras(self):
        with correlation_context("job-x"):
            output = HumanReadableFormatter().format(_record("Running", job="x"))

        assert "[job-x]" in output
        assert "Running" in output
        assert "'job': 'x'" in output
