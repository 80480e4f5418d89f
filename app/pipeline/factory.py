"""
Pipeline module factory.
"""

from __future__ import annotations

from functools import lru_cache

from app.pipeline.services.asset_writer import AssetWriter
from app.pipeline.services.failure_handler import StageFailureHandler
from app.pipeline.services.processors import ProcessorRegistry, build_registry
from app.pipeline.services.stage_runner import StageRunner
from app.reliability.factory import (
    get_activity_sink,
    get_asset_repository,
    get_conflict_retry_policy,
    get_failure_record_repository,
    get_reconciliation_service,
    get_reliability_engine,
)
from app.workers.dispatch import CeleryFailureEventPublisher
from assetflow_core.config import settings


@lru_cache()
def get_processor_registry() -> ProcessorRegistry:
    """Registry loaded from STAGE_PROCESSORS; hosts may register more at startup."""
    return build_registry(settings.STAGE_PROCESSORS)


@lru_cache()
def get_asset_writer() -> AssetWriter:
    return AssetWriter(get_asset_repository(), retry_policy=get_conflict_retry_policy())


@lru_cache()
def get_stage_failure_handler() -> StageFailureHandler:
    return StageFailureHandler(
        writer=get_asset_writer(),
        failure_records=get_failure_record_repository(),
        engine=get_reliability_engine(),
        publisher=CeleryFailureEventPublisher(),
        activity=get_activity_sink(),
        trace_limit=settings.CLASSIFICATION_TRACE_MAX_CHARS,
    )


@lru_cache()
def get_stage_runner() -> StageRunner:
    return StageRunner(
        writer=get_asset_writer(),
        processors=get_processor_registry(),
        reconciliation=get_reconciliation_service(),
        failure_records=get_failure_record_repository(),
        failure_handler=get_stage_failure_handler(),
        engine=get_reliability_engine(),
        activity=get_activity_sink(),
    )
