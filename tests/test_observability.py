"""
Tests for observability components (metrics and logging).

This module tests:
- Prometheus metrics collection and export
- Structured logging functionality
- Log context management
"""

import json
import logging
import sys

import pytest

from trend_pulse.observability.metrics import (
    alerts_counter,
    get_metrics,
    job_counter,
    job_failure_streak,
    mentions_dropped_counter,
    mentions_ingested_counter,
    record_alert,
    record_job_result,
    record_mentions_dropped,
    record_mentions_ingested,
    record_state_transition,
    state_transition_counter,
    update_failure_streak,
)
from trend_pulse.observability.logging import (
    JSONFormatter,
    add_log_context,
    clear_log_context,
    get_log_context,
    get_logger,
    log_context,
    setup_logging,
)


# ============================================================================
# Metrics Tests
# ============================================================================

class TestPrometheusMetrics:
    """Test Prometheus metrics collection."""

    def test_record_job_result(self):
        """Test job counter increments per status."""
        initial = job_counter.labels(job="test_job", status="success")._value.get()

        record_job_result("test_job", "success", 0.25, processed=3)

        assert job_counter.labels(job="test_job", status="success")._value.get() == initial + 1

    def test_failure_streak_gauge(self):
        update_failure_streak("test_job", 4)

        assert job_failure_streak.labels(job="test_job")._value.get() == 4

    def test_mentions_counters(self):
        """Test ingestion and drop counters."""
        ingested = mentions_ingested_counter.labels(source_type="social")._value.get()
        dropped = mentions_dropped_counter.labels(reason="duplicate")._value.get()

        record_mentions_ingested("social", 5)
        record_mentions_dropped("duplicate", 2)
        record_mentions_dropped("duplicate", 0)

        assert mentions_ingested_counter.labels(source_type="social")._value.get() == ingested + 5
        assert mentions_dropped_counter.labels(reason="duplicate")._value.get() == dropped + 2

    def test_state_transition_counter(self):
        initial = state_transition_counter.labels(from_state="candidate", to_state="trending")._value.get()

        record_state_transition("candidate", "trending")

        assert (
            state_transition_counter.labels(from_state="candidate", to_state="trending")._value.get()
            == initial + 1
        )

    def test_alert_counter(self):
        initial = alerts_counter.labels(alert_type="mention_spike", severity="critical")._value.get()

        record_alert("mention_spike", "critical")

        assert (
            alerts_counter.labels(alert_type="mention_spike", severity="critical")._value.get()
            == initial + 1
        )

    def test_get_metrics_export(self):
        """Test metrics export in Prometheus text format."""
        record_job_result("rescore_trends", "success", 1.0)

        metrics = get_metrics()

        assert isinstance(metrics, bytes)
        text = metrics.decode("utf-8")
        assert "engine_jobs_total" in text
        assert "mentions_ingested_total" in text
        assert "app_info" in text


# ============================================================================
# Logging Tests
# ============================================================================

def _record(message="Rescored 3 clusters", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="trend_pulse.test",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    """Test the structured log formatter."""

    def test_basic_fields(self):
        output = json.loads(JSONFormatter().format(_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "trend_pulse.test"
        assert output["message"] == "Rescored 3 clusters"
        assert output["timestamp"].endswith("Z")
        assert "context" not in output

    def test_exception_info(self):
        """Test exceptions are serialized."""
        try:
            raise ValueError("bad batch")
        except ValueError:
            record = _record("Job failed", logging.ERROR, sys.exc_info())

        output = json.loads(JSONFormatter().format(record))

        assert output["exception"]["type"] == "ValueError"
        assert output["exception"]["message"] == "bad batch"

    def test_extra_fields(self):
        record = _record()
        record.extra_fields = {"job": "rescore_trends"}

        output = json.loads(JSONFormatter().format(record))

        assert output["job"] == "rescore_trends"

    def test_includes_log_context(self):
        """Test the job context is attached to records."""
        with log_context(job="rescore_trends", run_id="abc"):
            output = json.loads(JSONFormatter().format(_record()))

        assert output["context"] == {"job": "rescore_trends", "run_id": "abc"}


class TestLogContext:
    """Test log context management."""

    @pytest.fixture(autouse=True)
    def clean_context(self):
        clear_log_context()
        yield
        clear_log_context()

    def test_context_is_scoped(self):
        with log_context(job="rescore_trends"):
            with log_context(run_id="123"):
                assert get_log_context() == {"job": "rescore_trends", "run_id": "123"}
            assert get_log_context() == {"job": "rescore_trends"}

        assert get_log_context() == {}

    def test_add_and_clear(self):
        add_log_context(org="org-1")
        assert get_log_context() == {"org": "org-1"}

        clear_log_context()
        assert get_log_context() == {}

    def test_get_logger(self):
        assert get_logger("trend_pulse.engine").name == "trend_pulse.engine"


def test_setup_logging():
    """Test the root logger gets a JSON handler."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    try:
        setup_logging(level="DEBUG", json_format=True)

        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers = handlers
        root.setLevel(level)
