"""
Observability module for metrics and structured logging.
"""

from trend_pulse.observability.metrics import (
    metrics_registry,
    job_counter,
    job_duration,
    job_failure_streak,
    mentions_ingested_counter,
    state_transition_counter,
    alerts_counter,
    get_metrics,
)

from trend_pulse.observability.logging import (
    setup_logging,
    get_logger,
    log_context,
)

__all__ = [
    # Metrics
    "metrics_registry",
    "job_counter",
    "job_duration",
    "job_failure_streak",
    "mentions_ingested_counter",
    "state_transition_counter",
    "alerts_counter",
    "get_metrics",
    # Logging
    "setup_logging",
    "get_logger",
    "log_context",
]
