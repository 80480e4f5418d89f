"""
Runs one pipeline stage for one asset.

The runner owns the stage's typed status: ``processing`` while the processor
runs, ``completed`` or ``skipped`` afterwards. It writes the legacy flag the
stage has always written and then reconciles the asset. Processor exceptions
propagate to the caller, which decides whether to retry or to record the
failure through ``handle_failure``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger
from pydantic import BaseModel

from app.pipeline.protocols import StageOutput
from app.pipeline.services.asset_writer import AssetWriter
from app.pipeline.services.failure_handler import THUMBNAIL_DERIVATIVE, StageFailureHandler
from app.pipeline.services.processors import ProcessorRegistry
from app.reliability.protocols import ActivitySink, FailureRecordRepository
from app.reliability.services.activity import ActivityEvent
from app.reliability.services.engine import ReliabilityEngine
from app.reliability.services.reconciliation import ReconciliationService
from assetflow_core.domain.assets import (
    AnalysisStatus,
    Asset,
    MetadataFlag,
    PipelineStage,
    StageStatus,
    analysis_rank,
)
from assetflow_core.domain.failures import FailureDomain
from assetflow_core.domain.incidents import SystemIncident
from assetflow_core.runtime.context import RunContext


class StageRunStatus:
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ALREADY_DONE = "already_done"
    BLOCKED = "blocked"
    MISSING = "missing"
    FAILED = "failed"


class StageRunResult(BaseModel):
    asset_id: str
    stage: PipelineStage
    status: str
    incident_id: Optional[str] = None


class StageRunner:
    def __init__(
        self,
        writer: AssetWriter,
        processors: ProcessorRegistry,
        reconciliation: ReconciliationService,
        failure_records: FailureRecordRepository,
        failure_handler: StageFailureHandler,
        engine: ReliabilityEngine | None = None,
        activity: ActivitySink | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._writer = writer
        self._processors = processors
        self._reconciliation = reconciliation
        self._failure_records = failure_records
        self._failure_handler = failure_handler
        self._engine = engine
        self._activity = activity
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def run(self, asset_id: str, stage: PipelineStage, ctx: RunContext) -> StageRunResult:
        asset = self._writer.get(asset_id)
        if asset is None or asset.is_deleted:
            logger.warning(f"[{asset_id}] Asset missing or deleted, skipping {stage.value}")
            return StageRunResult(asset_id=asset_id, stage=stage, status=StageRunStatus.MISSING)

        if asset.stage_status(stage).is_done:
            logger.debug(f"[{asset_id}] {stage.value} already {asset.stage_status(stage).value}")
            return StageRunResult(asset_id=asset_id, stage=stage, status=StageRunStatus.ALREADY_DONE)

        failed_stage = asset.flag(MetadataFlag.FAILED_STAGE)
        if asset.has_blocking_failure and failed_stage != stage.value:
            logger.info(f"[{asset_id}] {stage.value} blocked by failed {failed_stage} stage")
            return StageRunResult(asset_id=asset_id, stage=stage, status=StageRunStatus.BLOCKED)

        if stage == PipelineStage.AI_TAGGING and not self._thumbnails_available(asset):
            self._finish(asset_id, stage, StageStatus.SKIPPED, StageOutput(skipped=True))
            logger.info(f"[{asset_id}] AI tagging skipped: no thumbnails available")
            self._resolve_cleared(asset_id)
            return StageRunResult(asset_id=asset_id, stage=stage, status=StageRunStatus.SKIPPED)

        processor = self._processors.get(stage)

        asset = self._writer.update(asset_id, lambda a: self._mark_processing(a, stage))
        if asset is None:
            return StageRunResult(asset_id=asset_id, stage=stage, status=StageRunStatus.MISSING)

        logger.info(f"[{asset_id}] Running {stage.value} with {type(processor).__name__}")
        output = processor.run(asset, ctx)

        status = StageStatus.SKIPPED if output.skipped else StageStatus.COMPLETED
        self._finish(asset_id, stage, status, output)

        if stage == PipelineStage.THUMBNAIL and status == StageStatus.COMPLETED:
            self._record_derivative_success(asset_id)
        self._resolve_cleared(asset_id)

        logger.info(f"[{asset_id}] {stage.value} {status.value}")
        return StageRunResult(
            asset_id=asset_id,
            stage=stage,
            status=StageRunStatus.SKIPPED if output.skipped else StageRunStatus.COMPLETED,
        )

    def handle_failure(
        self, asset_id: str, stage: PipelineStage, exc: BaseException, ctx: RunContext
    ) -> StageRunResult:
        processor = None
        if stage in self._processors.stages():
            processor = type(self._processors.get(stage)).__name__
        incident: SystemIncident | None = self._failure_handler.handle(
            asset_id, stage, exc, ctx, processor=processor
        )
        return StageRunResult(
            asset_id=asset_id,
            stage=stage,
            status=StageRunStatus.FAILED,
            incident_id=incident.id if incident else None,
        )

    @staticmethod
    def _thumbnails_available(asset: Asset) -> bool:
        return asset.thumbnail_status == StageStatus.COMPLETED or asset.has_derived_media()

    @staticmethod
    def _mark_processing(asset: Asset, stage: PipelineStage) -> None:
        asset.set_stage_status(stage, StageStatus.PROCESSING)

        running = stage.running_analysis_status
        current = asset.analysis_status
        if current == AnalysisStatus.PROMOTION_FAILED.value and stage == PipelineStage.PROMOTION:
            asset.analysis_status = running.value
        else:
            rank = analysis_rank(current)
            if rank is not None and analysis_rank(running.value) > rank:
                asset.analysis_status = running.value

        flags = asset.flags
        if flags is not None and not flags.get(MetadataFlag.PROCESSING_STARTED):
            flags[MetadataFlag.PROCESSING_STARTED] = True

    def _finish(
        self, asset_id: str, stage: PipelineStage, status: StageStatus, output: StageOutput
    ) -> None:
        now = self._clock()

        def mutate(asset: Asset) -> None:
            asset.set_stage_status(stage, status)
            flags = asset.flags
            if flags is None:
                logger.warning(f"[{asset.id}] Malformed metadata, legacy flags not written for {stage.value}")
                return
            flags.update(output.metadata)
            if stage == PipelineStage.AI_TAGGING and status == StageStatus.SKIPPED:
                flags[MetadataFlag.AI_TAGGING_SKIPPED] = True
            if status != StageStatus.COMPLETED:
                return
            if stage == PipelineStage.THUMBNAIL:
                flags[MetadataFlag.THUMBNAILS_GENERATED] = True
            elif stage == PipelineStage.METADATA:
                flags[MetadataFlag.METADATA_EXTRACTED] = True
            elif stage == PipelineStage.PROMOTION:
                flags[MetadataFlag.PIPELINE_COMPLETED_AT] = now.isoformat()

        self._writer.update(asset_id, mutate)
        self._reconciliation.reconcile(asset_id)

        if self._activity:
            asset = self._writer.get(asset_id)
            self._activity.record(
                ActivityEvent.ASSET_STAGE_COMPLETED,
                asset.tenant_id if asset else None,
                "asset",
                asset_id,
                {"stage": stage.value},
            )

    def _record_derivative_success(self, asset_id: str) -> None:
        record = self._failure_records.find_for_asset(
            FailureDomain.DERIVATIVE, asset_id, derivative_type=THUMBNAIL_DERIVATIVE
        )
        if record is not None:
            self._failure_records.record_success(FailureDomain.DERIVATIVE, record.id)

    def _resolve_cleared(self, asset_id: str) -> None:
        if self._engine is None:
            return
        try:
            self._engine.resolve_cleared(asset_id)
        except Exception as e:
            logger.exception(f"[{asset_id}] Could not resolve cleared incidents: {e}")
