"""
Celery task queue configuration for the trend engine.

Celery is only the periodic trigger: every task calls one explicit engine
method through the JobRunner, which enforces its time budget and circuit
breaker.

Ingestion and scoring are routed to separate queues. Workers on those queues
share engine state only through the Redis store (TREND_PULSE_STORE=redis);
with the in-memory store, run one worker process consuming both queues.
"""

import os
import logging
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging
from kombu import Queue, Exchange

from trend_pulse.config import LOG_JSON, LOG_LEVEL
from trend_pulse.observability.logging import setup_logging

logger = logging.getLogger(__name__)


# Celery configuration
class CeleryConfig:
    """Celery configuration class."""

    # Broker settings
    broker_url = os.getenv(
        "CELERY_BROKER_URL",
        "redis://localhost:6379/0"
    )
    result_backend = os.getenv(
        "CELERY_RESULT_BACKEND",
        "redis://localhost:6379/1"
    )

    # Task settings
    task_serializer = "json"
    result_serializer = "json"
    accept_content = ["json"]
    timezone = "UTC"
    enable_utc = True

    # Task execution settings
    task_acks_late = True  # Acknowledge task after completion
    task_reject_on_worker_lost = True  # Requeue tasks if worker crashes
    task_track_started = True  # Track when tasks start
    worker_prefetch_multiplier = 1  # Fetch one task at a time

    # Task result settings
    result_expires = 3600  # Keep results for 1 hour

    # Task routing
    task_default_queue = "default"
    task_default_exchange = "default"
    task_default_routing_key = "default"

    # Define task queues
    task_queues = (
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("ingest", Exchange("ingest"), routing_key="ingest.#"),
        Queue("scoring", Exchange("scoring"), routing_key="scoring.#"),
    )

    # Task routes
    task_routes = {
        "trend_pulse.tasks.engine.ingest_mentions_task": {
            "queue": "ingest",
            "routing_key": "ingest.mentions",
        },
        "trend_pulse.tasks.engine.rescore_trends_task": {
            "queue": "scoring",
            "routing_key": "scoring.trends",
        },
        "trend_pulse.tasks.engine.recompute_baselines_task": {
            "queue": "scoring",
            "routing_key": "scoring.baselines",
        },
        "trend_pulse.tasks.engine.score_organizations_task": {
            "queue": "scoring",
            "routing_key": "scoring.organizations",
        },
    }

    # Beat schedule (periodic tasks)
    beat_schedule = {
        # Rescore top-K trends every 5 minutes
        "rescore-trends": {
            "task": "trend_pulse.tasks.engine.rescore_trends_task",
            "schedule": crontab(minute="*/5"),
            "options": {"queue": "scoring"},
        },
        # Score organizations every 15 minutes
        "score-organizations": {
            "task": "trend_pulse.tasks.engine.score_organizations_task",
            "schedule": crontab(minute="*/15"),
            "options": {"queue": "scoring"},
        },
        # Recompute baselines daily at 2 AM
        "recompute-baselines-daily": {
            "task": "trend_pulse.tasks.engine.recompute_baselines_task",
            "schedule": crontab(hour=2, minute=0),
            "options": {"queue": "scoring"},
        },
        # Health check every 5 minutes
        "health-check": {
            "task": "trend_pulse.tasks.engine.health_check_task",
            "schedule": crontab(minute="*/5"),
            "options": {"queue": "default"},
        },
    }

    # Logging
    worker_hijack_root_logger = False
    worker_log_format = "[%(asctime)s: %(levelname)s/%(processName)s] %(message)s"
    worker_task_log_format = "[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s"


# Create Celery app
app = Celery("trend_pulse")
app.config_from_object(CeleryConfig)

# Auto-discover tasks
app.autodiscover_tasks(["trend_pulse.tasks.engine"], related_name=None)


@app.on_after_finalize.connect
def setup_task_monitoring(sender, **kwargs):
    """Log once the Celery app is finalized."""
    logger.info("Celery app finalized and ready")


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Use the engine's logging setup instead of Celery's."""
    setup_logging(level=LOG_LEVEL, json_format=LOG_JSON)
