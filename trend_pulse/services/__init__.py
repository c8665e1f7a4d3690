"""
Engine services: lifecycle, organization relevance, alerts and job execution.
"""

from trend_pulse.services.trend_states import (
    TrendStateService,
    StateTransition,
    LifecycleSignals,
)
from trend_pulse.services.relevance import OrgRelevanceScorer, rank_org_feed
from trend_pulse.services.alerts import AlertEmitter, AlertError
from trend_pulse.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
)
from trend_pulse.services.jobs import JobRunner, JobResult, JobSkipped, get_job_runner
from trend_pulse.services.engine import TrendEngine, build_engine, get_engine

__all__ = [
    "TrendStateService",
    "StateTransition",
    "LifecycleSignals",
    "OrgRelevanceScorer",
    "rank_org_feed",
    "AlertEmitter",
    "AlertError",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "JobRunner",
    "JobResult",
    "JobSkipped",
    "get_job_runner",
    "TrendEngine",
    "build_engine",
    "get_engine",
]
