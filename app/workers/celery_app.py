"""
Celery application configuration.

This module configures the Celery app with Redis as broker and backend, and
schedules the periodic stuck-asset scan and system insight on beat.
"""

from celery import Celery
from celery.signals import worker_process_init
from loguru import logger

from assetflow_core.config import settings
from assetflow_core.infrastructure.telemetry import setup_telemetry
from assetflow_core.logging import setup_logging

# Create Celery app
celery_app = Celery(
    "assetflow",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.pipeline_tasks",
        "app.workers.reliability_tasks",
    ],
)

# Configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task tracking
    task_track_started=True,
    task_acks_late=True,  # Acknowledge after task completes (for reliability)
    # Results
    result_expires=3600,  # Results expire after 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    # Periodic tasks
    beat_schedule={
        "scan-stuck-assets": {
            "task": "assetflow.reliability.scan_stuck_assets",
            "schedule": float(settings.STUCK_SCAN_INTERVAL_SECONDS),
        },
        "system-reliability-insight": {
            "task": "assetflow.reliability.generate_system_insight",
            "schedule": float(settings.SYSTEM_INSIGHT_INTERVAL_SECONDS),
        },
    },
)

logger.info(f"Celery app configured with broker: {settings.CELERY_BROKER_URL}")


@worker_process_init.connect
def init_worker_process(**kwargs):
    """Configure logging and telemetry in each worker process."""
    setup_logging()
    setup_telemetry()
