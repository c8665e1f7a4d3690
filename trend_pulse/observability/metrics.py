"""
Prometheus metrics for the trend engine.

This module defines and exports Prometheus metrics for monitoring:
- Batch job executions, durations and failure streaks
- Mention ingestion and drops
- Trend lifecycle transitions and active trends
- Anomaly alerts and organization scoring
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    CollectorRegistry,
    generate_latest,
)


# Create a custom registry for this application
metrics_registry = CollectorRegistry()


# ============================================================================
# Job Metrics
# ============================================================================

job_counter = Counter(
    "engine_jobs_total",
    "Total number of engine job runs",
    ["job", "status"],  # status: success, failure, timeout, skipped, circuit_open
    registry=metrics_registry,
)

job_duration = Histogram(
    "engine_job_duration_seconds",
    "Engine job duration in seconds",
    ["job"],
    buckets=[0.05, 0.1, 0.5, 1, 5, 10, 30, 60, 120, 300],
    registry=metrics_registry,
)

job_failure_streak = Gauge(
    "engine_job_failure_streak",
    "Consecutive failures of an engine job",
    ["job"],
    registry=metrics_registry,
)

job_items_processed = Counter(
    "engine_items_processed_total",
    "Total number of keys/records processed by engine jobs",
    ["job"],
    registry=metrics_registry,
)

# ============================================================================
# Business Metrics
# ============================================================================

mentions_ingested_counter = Counter(
    "mentions_ingested_total",
    "Total number of accepted mention events",
    ["source_type"],
    registry=metrics_registry,
)

mentions_dropped_counter = Counter(
    "mentions_dropped_total",
    "Total number of dropped mention events",
    ["reason"],  # empty_key, duplicate, expired
    registry=metrics_registry,
)

state_transition_counter = Counter(
    "trend_state_transitions_total",
    "Total number of trend lifecycle transitions",
    ["from_state", "to_state"],
    registry=metrics_registry,
)

active_trends_gauge = Gauge(
    "active_trends",
    "Number of trends per lifecycle state",
    ["state"],
    registry=metrics_registry,
)

stale_trends_gauge = Gauge(
    "stale_trends",
    "Number of trending events not updated within their SLA",
    registry=metrics_registry,
)

alerts_counter = Counter(
    "anomaly_alerts_total",
    "Total number of anomaly alerts emitted",
    ["alert_type", "severity"],
    registry=metrics_registry,
)

alerts_throttled_counter = Counter(
    "anomaly_alerts_throttled_total",
    "Total number of anomaly alerts suppressed by throttling",
    ["alert_type"],
    registry=metrics_registry,
)

org_scores_counter = Counter(
    "org_scores_computed_total",
    "Total number of organization trend scores computed",
    ["bucket"],
    registry=metrics_registry,
)

# ============================================================================
# Application Info
# ============================================================================

app_info = Info(
    "app",
    "Application information",
    registry=metrics_registry,
)

app_info.info({
    "name": "Trend Pulse",
    "version": "1.0.0",
})


# ============================================================================
# Metrics Endpoint Handler
# ============================================================================


def get_metrics() -> bytes:
    """
    Get Prometheus metrics in text format.

    Returns:
        Metrics data in Prometheus text format
    """
    return generate_latest(metrics_registry)


# ============================================================================
# Helper Functions
# ============================================================================


def record_job_result(job: str, status: str, duration_seconds: float, processed: int = 0):
    """
    Record one job execution.

    Args:
        job: Job name
        status: success, failure, timeout, skipped or circuit_open
        duration_seconds: Wall-clock duration
        processed: Number of keys/records processed
    """
    job_counter.labels(job=job, status=status).inc()
    job_duration.labels(job=job).observe(duration_seconds)
    if processed:
        job_items_processed.labels(job=job).inc(processed)


def update_failure_streak(job: str, streak: int):
    """Set the consecutive failure count of a job."""
    job_failure_streak.labels(job=job).set(streak)


def record_mentions_ingested(source_type: str, count: int = 1):
    """Record accepted mentions for a source type."""
    mentions_ingested_counter.labels(source_type=source_type).inc(count)


def record_mentions_dropped(reason: str, count: int = 1):
    """Record dropped mentions by reason."""
    if count:
        mentions_dropped_counter.labels(reason=reason).inc(count)


def record_state_transition(from_state: str, to_state: str):
    """Record a trend lifecycle transition."""
    state_transition_counter.labels(from_state=from_state, to_state=to_state).inc()


def update_active_trends(state: str, count: int):
    """Set the number of trends in a lifecycle state."""
    active_trends_gauge.labels(state=state).set(count)


def update_stale_trends(count: int):
    """Set the number of stale trending events."""
    stale_trends_gauge.set(count)


def record_alert(alert_type: str, severity: str):
    """Record an emitted anomaly alert."""
    alerts_counter.labels(alert_type=alert_type, severity=severity).inc()


def record_alert_throttled(alert_type: str):
    """Record a throttled anomaly alert."""
    alerts_throttled_counter.labels(alert_type=alert_type).inc()


def record_org_score(bucket: str):
    """Record a computed organization score."""
    org_scores_counter.labels(bucket=bucket).inc()
