"""
Celery tasks that trigger the engine jobs.

Each task runs one engine method through the process-wide JobRunner and
returns the run summary. A tripped circuit breaker turns the task into a
no-op until the cool-down has elapsed.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from trend_pulse.services.circuit_breaker import CircuitOpenError
from trend_pulse.services.engine import get_engine
from trend_pulse.services.jobs import get_job_runner
from trend_pulse.tasks import app
from trend_pulse.types import MentionEvent, ensure_utc, utc_now

logger = logging.getLogger(__name__)


def _parse_now(now: Optional[str]) -> datetime:
    return ensure_utc(datetime.fromisoformat(now)) if now else utc_now()


@app.task(name="trend_pulse.tasks.engine.ingest_mentions_task")
def ingest_mentions_task(events: List[Dict[str, Any]], now: Optional[str] = None) -> Dict[str, Any]:
    """
    Ingest a batch of mention events and rescore the top-K keys.

    Args:
        events: Mention events as JSON dictionaries
        now: Batch timestamp (ISO 8601, current UTC time if omitted)

    Returns:
        Job run summary
    """
    logger.info(f"Ingesting batch of {len(events)} mentions")
    return asyncio.run(_ingest_mentions_async(events, _parse_now(now)))


async def _ingest_mentions_async(events: List[Dict[str, Any]], now: datetime) -> Dict[str, Any]:
    mentions = [MentionEvent.model_validate(event) for event in events]
    engine = get_engine()
    return await _run_job(
        "ingest_mentions",
        lambda deadline: engine.on_mention_batch(mentions, now, deadline),
    )


@app.task(name="trend_pulse.tasks.engine.rescore_trends_task")
def rescore_trends_task(now: Optional[str] = None) -> Dict[str, Any]:
    """
    Rescore the top-K trends.

    Returns:
        Job run summary
    """
    engine_now = _parse_now(now)
    return asyncio.run(
        _run_job("rescore_trends", lambda deadline: get_engine().rescore_trends(engine_now, deadline))
    )


@app.task(name="trend_pulse.tasks.engine.recompute_baselines_task")
def recompute_baselines_task(now: Optional[str] = None) -> Dict[str, Any]:
    """
    Recompute daily baselines.

    Returns:
        Job run summary
    """
    engine_now = _parse_now(now)
    return asyncio.run(
        _run_job(
            "recompute_baselines",
            lambda deadline: get_engine().recompute_baselines(engine_now, deadline),
        )
    )


@app.task(name="trend_pulse.tasks.engine.score_organizations_task")
def score_organizations_task(now: Optional[str] = None) -> Dict[str, Any]:
    """
    Score active trends for every organization watchlist.

    Returns:
        Job run summary
    """
    engine_now = _parse_now(now)
    return asyncio.run(
        _run_job(
            "score_organizations",
            lambda deadline: get_engine().score_organizations(engine_now, deadline),
        )
    )


@app.task(name="trend_pulse.tasks.engine.health_check_task")
def health_check_task(now: Optional[str] = None) -> Dict[str, Any]:
    """
    Report job health and stale trends.

    Returns:
        Health snapshot
    """
    result = asyncio.run(_health_check_async(_parse_now(now)))
    if not result["healthy"]:
        logger.warning(f"Engine unhealthy: {result.get('trends', {})}")
    return result


async def _health_check_async(now: datetime) -> Dict[str, Any]:
    engine = get_engine()
    await engine.connect()
    try:
        return await get_job_runner(engine.config.jobs).health_snapshot(now, engine.trend_repo)
    finally:
        await engine.close()


async def _run_job(job_name: str, factory) -> Dict[str, Any]:
    """Run one engine job with connections held for its duration."""
    engine = get_engine()
    runner = get_job_runner(engine.config.jobs)

    await engine.connect()
    try:
        result = await runner.run(job_name, factory)
        return result.to_dict()
    except CircuitOpenError as e:
        logger.warning(f"Skipping {job_name}: {e}")
        return {"job": job_name, "status": "circuit_open", "error": str(e)}
    finally:
        await engine.close()
