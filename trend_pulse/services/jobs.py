"""
Bounded job execution.

Every engine job runs through JobRunner, which enforces the job's time budget,
consults the circuit breaker, records metrics and keeps the health signals
(last run, duration, processed count, failure streak) for monitoring.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import uuid4

from trend_pulse.config import JobConfig
from trend_pulse.observability.logging import log_context
from trend_pulse.observability.metrics import (
    record_job_result,
    update_active_trends,
    update_failure_streak,
    update_stale_trends,
)
from trend_pulse.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
)
from trend_pulse.storage.interfaces import TrendRepository
from trend_pulse.services.trend_states import TrendStateService
from trend_pulse.types import ensure_utc, utc_now

logger = logging.getLogger(__name__)

# A job factory receives the monotonic deadline it must finish by
JobFactory = Callable[[float], Awaitable[Any]]


class JobSkipped(Exception):
    """Raised by a job that must skip its cycle (e.g. missing watchlists)."""

    pass


@dataclass
class JobResult:
    """Outcome of one job run."""

    job_name: str
    run_id: str
    status: str  # success, failure, timeout, skipped
    started_at: datetime
    duration_seconds: float = 0.0
    processed: int = 0
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job_name,
            "run_id": self.run_id,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "processed": self.processed,
            "error": self.error,
        }


@dataclass
class JobHealth:
    """Health signals of one job."""

    job_name: str
    last_run_at: Optional[datetime] = None
    last_status: Optional[str] = None
    last_duration_seconds: float = 0.0
    last_processed: int = 0
    last_error: Optional[str] = None
    failure_streak: int = 0
    runs: int = 0
    history: Dict[str, int] = field(default_factory=dict)


class JobRunner:
    """
    Runs engine jobs within their time budgets.

    A job that times out is cancelled; whatever per-key upserts it already
    committed stay valid and the next invocation picks up from there.

    Usage:
        runner = JobRunner(config.jobs)
        result = await runner.run(
            "rescore_trends", lambda deadline: engine.rescore_trends(now, deadline)
        )
    """

    def __init__(
        self,
        config: Optional[JobConfig] = None,
        breaker: Optional[CircuitBreaker] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize job runner.

        Args:
            config: Job budgets, breaker threshold and stale SLA
            breaker: Circuit breaker (built from config if None)
            clock: Returns the current UTC time (utc_now if None)
        """
        self._config = config or JobConfig()
        self._clock = clock or utc_now
        self._breaker = breaker or CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=self._config.failure_threshold,
                cooldown_seconds=self._config.cooldown_seconds,
            ),
            clock=self._clock,
        )
        self._health: Dict[str, JobHealth] = {}

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def budget_for(self, job_name: str) -> float:
        """Time budget of a job in seconds."""
        return self._config.budgets_seconds.get(job_name, self._config.default_budget_seconds)

    async def run(
        self,
        job_name: str,
        factory: JobFactory,
        budget_seconds: Optional[float] = None,
    ) -> JobResult:
        """
        Run one job.

        Args:
            job_name: Job name (also the circuit id)
            factory: Called with the monotonic deadline; returns the job coroutine
            budget_seconds: Time budget (configured budget if None)

        Returns:
            JobResult. The processed count is taken from an int result or
            from a dict result's "processed" entry.

        Raises:
            CircuitOpenError: If the job's circuit is open
        """
        budget = budget_seconds if budget_seconds is not None else self.budget_for(job_name)
        health = self._health.setdefault(job_name, JobHealth(job_name=job_name))

        if not self._breaker.can_proceed(job_name):
            record_job_result(job_name, "circuit_open", 0.0)
            raise CircuitOpenError(f"Circuit open for job '{job_name}'")

        run = JobResult(
            job_name=job_name,
            run_id=uuid4().hex,
            status="failure",
            started_at=self._clock(),
        )
        start = time.monotonic()

        with log_context(job=job_name, run_id=run.run_id):
            logger.info(f"Job started: {job_name} (budget={budget:.0f}s)")
            try:
                run.result = await asyncio.wait_for(factory(start + budget), timeout=budget)
                run.status = "success"
                run.processed = _processed_count(run.result)

            except asyncio.TimeoutError:
                run.status = "timeout"
                run.error = f"Exceeded budget of {budget:.0f}s"
                logger.error(f"Job {job_name} timed out after {budget:.0f}s")

            except JobSkipped as e:
                run.status = "skipped"
                run.error = str(e)
                logger.error(f"Job {job_name} skipped its cycle: {e}")

            except Exception as e:
                run.status = "failure"
                run.error = str(e)
                logger.error(f"Job {job_name} failed: {e}", exc_info=True)

            run.duration_seconds = time.monotonic() - start

            if run.status == "success":
                self._breaker.record_success(job_name)
                health.failure_streak = 0
            else:
                self._breaker.record_failure(job_name, run.error)
                health.failure_streak += 1

            health.last_run_at = run.started_at
            health.last_status = run.status
            health.last_duration_seconds = run.duration_seconds
            health.last_processed = run.processed
            health.last_error = run.error
            health.runs += 1
            health.history[run.status] = health.history.get(run.status, 0) + 1

            record_job_result(job_name, run.status, run.duration_seconds, run.processed)
            update_failure_streak(job_name, health.failure_streak)

            logger.info(
                f"Job finished: {job_name} status={run.status} "
                f"duration={run.duration_seconds:.2f}s processed={run.processed}"
            )

        return run

    def get_health(self, job_name: str) -> Optional[JobHealth]:
        """Health record of one job, if it ever ran."""
        return self._health.get(job_name)

    async def health_snapshot(
        self,
        now: datetime,
        trend_repo: Optional[TrendRepository] = None,
    ) -> Dict[str, Any]:
        """
        Health signals for the monitoring collaborator.

        Args:
            now: Current wall-clock time
            trend_repo: Trend storage used to count stale trends

        Returns:
            Dictionary with per-job health, trends per state and the number
            of trending events not updated within the stale SLA
        """
        now = ensure_utc(now)
        jobs: Dict[str, Any] = {}
        for name in sorted(self._health):
            health = self._health[name]
            jobs[name] = {
                "last_run_at": health.last_run_at.isoformat() if health.last_run_at else None,
                "last_status": health.last_status,
                "last_duration_seconds": round(health.last_duration_seconds, 3),
                "last_processed": health.last_processed,
                "last_error": health.last_error,
                "failure_streak": health.failure_streak,
                "runs": health.runs,
                "circuit_state": self._breaker.get_circuit_state(name).value,
            }

        snapshot: Dict[str, Any] = {"timestamp": now.isoformat(), "jobs": jobs}

        if trend_repo is not None:
            trends = await trend_repo.list_all()
            cutoff = now - timedelta(hours=self._config.stale_after_hours)
            stale = sorted(
                trend.canonical_key
                for trend in trends
                if trend.is_trending and (trend.updated_at is None or trend.updated_at < cutoff)
            )
            states = TrendStateService.state_counts(trends)

            for state, count in states.items():
                update_active_trends(state, count)
            update_stale_trends(len(stale))

            if stale:
                logger.warning(f"{len(stale)} trending events are stale: {stale[:10]}")

            snapshot["trends"] = {
                "total": len(trends),
                "by_state": states,
                "stale_count": len(stale),
                "stale_keys": stale,
            }

        snapshot["healthy"] = all(
            job["circuit_state"] == "closed" for job in jobs.values()
        ) and snapshot.get("trends", {}).get("stale_count", 0) == 0
        return snapshot


def _processed_count(result: Any) -> int:
    if isinstance(result, bool):
        return 0
    if isinstance(result, int):
        return result
    if isinstance(result, dict):
        value = result.get("processed", 0)
        return value if isinstance(value, int) else 0
    return 0


# ============================================================================
# Singleton Instance
# ============================================================================

_job_runner: Optional[JobRunner] = None


def get_job_runner(config: Optional[JobConfig] = None) -> JobRunner:
    """
    Get or create the process-wide job runner.

    The runner keeps breaker state and health signals across task runs.

    Args:
        config: Job configuration (used only on first call)

    Returns:
        JobRunner instance
    """
    global _job_runner
    if _job_runner is None:
        _job_runner = JobRunner(config)
    return _job_runner


def reset_job_runner(runner: Optional[JobRunner] = None) -> None:
    """Replace (or drop) the process-wide job runner."""
    global _job_runner
    _job_runner = runner
