"""
Celery-backed implementations of the reliability dispatch protocols.

Task modules are imported on first use: they import the factories, which in
turn construct these adapters.
"""

from __future__ import annotations

from loguru import logger

from assetflow_core.domain.assets import PipelineStage
from assetflow_core.domain.events import FailureReported
from assetflow_core.domain.failures import FailureDomain


class CeleryRetryDispatcher:
    """Re-enqueues the stage chain from the failed stage."""

    def dispatch(self, asset_id: str, stage: PipelineStage) -> None:
        from app.workers.pipeline_tasks import dispatch_pipeline

        dispatch_pipeline(asset_id, stage)


class CeleryFailureEventPublisher:
    def publish(self, event: FailureReported) -> None:
        from app.workers.reliability_tasks import handle_failure_reported

        handle_failure_reported.delay(event.model_dump(mode="json"))
        logger.debug(f"[{event.asset_id or event.failure_record_id}] Published FailureReported ({event.stage})")


class CeleryClassificationEnqueuer:
    def enqueue(self, domain: FailureDomain, record_id: str) -> None:
        from app.workers.reliability_tasks import classify_failure

        classify_failure.delay(domain.value, record_id)
