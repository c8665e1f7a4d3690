"""
Unit tests for JobRunner.

Tests time budgets, failure handling, circuit breaking and health signals.
"""

import asyncio
import time
from datetime import timedelta

import pytest

from trend_pulse.config import JobConfig
from trend_pulse.services.circuit_breaker import CircuitOpenError
from trend_pulse.services.jobs import JobRunner, JobSkipped
from trend_pulse.storage.memory import InMemoryTrendRepository
from trend_pulse.types import TrendState

from tests.fixtures import NOW, create_trend


@pytest.fixture
def runner():
    """Create JobRunner with default limits and a fixed clock."""
    return JobRunner(JobConfig(), clock=lambda: NOW)


async def _ok(deadline):
    return {"processed": 7}


async def _fail(deadline):
    raise RuntimeError("database went away")


async def _skip(deadline):
    raise JobSkipped("Watchlists unavailable")


async def _slow(deadline):
    await asyncio.sleep(5)
    return {"processed": 1}


@pytest.mark.asyncio
async def test_success(runner):
    """Test a successful run records processed items."""
    result = await runner.run("rescore_trends", _ok)

    assert result.status == "success"
    assert result.processed == 7
    assert result.result == {"processed": 7}
    assert runner.get_health("rescore_trends").failure_streak == 0


@pytest.mark.asyncio
async def test_factory_receives_deadline(runner):
    """Test the deadline handed to the job matches the budget."""
    seen = {}

    async def job(deadline):
        seen["remaining"] = deadline - time.monotonic()
        return 0

    await runner.run("rescore_trends", job, budget_seconds=30)

    assert 29 < seen["remaining"] <= 30


@pytest.mark.asyncio
async def test_timeout(runner):
    """Test a job exceeding its budget is cancelled."""
    result = await runner.run("rescore_trends", _slow, budget_seconds=0.05)

    assert result.status == "timeout"
    assert runner.get_health("rescore_trends").failure_streak == 1


@pytest.mark.asyncio
async def test_failure_is_captured(runner):
    """Test exceptions become failure results."""
    result = await runner.run("rescore_trends", _fail)

    assert result.status == "failure"
    assert "database went away" in result.error


@pytest.mark.asyncio
async def test_skipped(runner):
    """Test a job skipping its cycle."""
    result = await runner.run("score_organizations", _skip)

    assert result.status == "skipped"
    assert result.error == "Watchlists unavailable"


@pytest.mark.asyncio
async def test_breaker_trips_after_consecutive_failures(runner):
    """Test the fifth consecutive failure disables the job."""
    for _ in range(5):
        await runner.run("rescore_trends", _fail)

    with pytest.raises(CircuitOpenError):
        await runner.run("rescore_trends", _ok)

    # Other jobs keep running
    assert (await runner.run("recompute_baselines", _ok)).status == "success"


@pytest.mark.asyncio
async def test_budget_for():
    """Test configured and default budgets."""
    runner = JobRunner(JobConfig(budgets_seconds={"rescore_trends": 45.0}, default_budget_seconds=90.0))

    assert runner.budget_for("rescore_trends") == 45.0
    assert runner.budget_for("anything_else") == 90.0


@pytest.mark.asyncio
async def test_health_snapshot_reports_stale_trends(runner):
    """Test trending events not updated within the SLA are stale."""
    repo = InMemoryTrendRepository()
    await repo.upsert(
        create_trend(
            "stale topic", "Stale Topic",
            state=TrendState.TRENDING, is_trending=True,
            last_seen_at=NOW - timedelta(hours=3),
        )
    )
    await repo.upsert(
        create_trend("fresh topic", "Fresh Topic", state=TrendState.TRENDING, is_trending=True)
    )
    await runner.run("rescore_trends", _ok)

    snapshot = await runner.health_snapshot(NOW, repo)

    assert snapshot["trends"]["stale_keys"] == ["stale topic"]
    assert snapshot["trends"]["by_state"]["trending"] == 2
    assert snapshot["jobs"]["rescore_trends"]["last_status"] == "success"
    assert snapshot["jobs"]["rescore_trends"]["circuit_state"] == "closed"
    assert not snapshot["healthy"]


@pytest.mark.asyncio
async def test_health_snapshot_healthy(runner):
    await runner.run("rescore_trends", _ok)

    snapshot = await runner.health_snapshot(NOW, InMemoryTrendRepository())

    assert snapshot["healthy"]
    assert snapshot["trends"]["total"] == 0
