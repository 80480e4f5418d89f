"""
Stage failure handling.

Turns an exception raised by a stage processor into persisted state:
the failure flags and counter on the asset, a derivative failure record for
thumbnails, an incident in the reliability engine and a FailureReported
event for the escalation subscriber.
"""

from __future__ import annotations

import errno
import traceback
from datetime import datetime, timezone
from typing import Callable, Optional

from celery.exceptions import SoftTimeLimitExceeded
from loguru import logger

from app.pipeline.services.asset_writer import AssetWriter
from app.reliability.protocols import ActivitySink, FailureEventPublisher, FailureRecordRepository
from app.reliability.services.activity import ActivityEvent
from app.reliability.services.engine import ReliabilityEngine
from app.reliability.services.reconciliation import resolve_visibility
from assetflow_core.domain.assets import AnalysisStatus, Asset, MetadataFlag, PipelineStage, StageStatus
from assetflow_core.domain.events import FailureReported
from assetflow_core.domain.failures import (
    FailureDomain,
    FailureRecord,
    ReasonPolicy,
    StageFailureReason,
    policy_for,
)
from assetflow_core.domain.incidents import (
    IncidentKey,
    IncidentReport,
    IncidentSeverity,
    SourceType,
    SystemIncident,
)
from assetflow_core.runtime.context import RunContext
from assetflow_core.runtime.errors import ErrorCode, ServiceError

THUMBNAIL_DERIVATIVE = "thumbnail"
MAX_ERROR_MESSAGE_CHARS = 500

_CODE_REASONS = {
    ErrorCode.TIMEOUT: StageFailureReason.TIMEOUT,
    ErrorCode.CONNECTION_ERROR: StageFailureReason.STORAGE_UNAVAILABLE,
    ErrorCode.STORAGE_UNAVAILABLE: StageFailureReason.STORAGE_UNAVAILABLE,
    ErrorCode.STORAGE_MISSING: StageFailureReason.STORAGE_MISSING,
    ErrorCode.DISK_FULL: StageFailureReason.DISK_FULL,
    ErrorCode.PERMISSION_DENIED: StageFailureReason.PERMISSION_ERROR,
    ErrorCode.INVALID_FORMAT: StageFailureReason.INVALID_FORMAT,
}


def classify_exception(exc: BaseException) -> StageFailureReason:
    """Map an exception raised inside a stage onto a failure reason."""
    if isinstance(exc, ServiceError):
        return _CODE_REASONS.get(exc.code, StageFailureReason.UNKNOWN)
    if isinstance(exc, (SoftTimeLimitExceeded, TimeoutError)):
        return StageFailureReason.TIMEOUT
    if isinstance(exc, OSError) and exc.errno == errno.ENOSPC:
        return StageFailureReason.DISK_FULL
    if isinstance(exc, PermissionError):
        return StageFailureReason.PERMISSION_ERROR
    if isinstance(exc, FileNotFoundError):
        return StageFailureReason.STORAGE_MISSING
    if isinstance(exc, ConnectionError):
        return StageFailureReason.STORAGE_UNAVAILABLE
    if isinstance(exc, ValueError):
        return StageFailureReason.INVALID_FORMAT
    if "no space left" in str(exc).lower():
        return StageFailureReason.DISK_FULL
    return StageFailureReason.UNKNOWN


def stage_failure_signature(stage: PipelineStage, asset_id: str) -> str:
    return f"stage_failed:{stage.value}:{asset_id}"


def _safe_message(exc: BaseException) -> str:
    message = exc.message_safe if isinstance(exc, ServiceError) else str(exc)
    return (message or type(exc).__name__)[:MAX_ERROR_MESSAGE_CHARS]


def _format_trace(exc: BaseException, limit: int) -> str:
    trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    # Keep the innermost frames
    return trace[-limit:]


class StageFailureHandler:
    def __init__(
        self,
        writer: AssetWriter,
        failure_records: FailureRecordRepository,
        engine: ReliabilityEngine,
        publisher: FailureEventPublisher,
        activity: ActivitySink | None = None,
        trace_limit: int = 2000,
        clock: Callable[[], datetime] | None = None,
    ):
        self._writer = writer
        self._failure_records = failure_records
        self._engine = engine
        self._publisher = publisher
        self._activity = activity
        self._trace_limit = trace_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def reason_for(self, stage: PipelineStage, exc: BaseException) -> StageFailureReason:
        reason = classify_exception(exc)
        if reason != StageFailureReason.UNKNOWN:
            return reason
        if stage == PipelineStage.PROMOTION:
            return StageFailureReason.PROMOTION_FAILED
        if stage == PipelineStage.THUMBNAIL:
            return StageFailureReason.PROCESSOR_CRASH
        return reason

    def handle(
        self,
        asset_id: str,
        stage: PipelineStage,
        exc: BaseException,
        ctx: RunContext,
        processor: Optional[str] = None,
    ) -> SystemIncident | None:
        """Record a stage failure. Returns the incident, or None if the asset is gone."""
        reason = self.reason_for(stage, exc)
        policy = policy_for(reason.value)
        message = _safe_message(exc)
        trace = _format_trace(exc, self._trace_limit)
        now = self._clock()

        asset = self._writer.update(
            asset_id, lambda a: self._mark_failed(a, stage, reason, policy, message, now)
        )
        if asset is None:
            logger.warning(f"[{asset_id}] {stage.value} failed ({reason.value}) but the asset is gone: {message}")
            return None

        logger.error(
            f"[{asset_id}] {stage.value} failed on attempt {ctx.attempt + 1}/{ctx.max_attempts}: "
            f"{reason.value} ({message})"
        )

        record = None
        if stage == PipelineStage.THUMBNAIL:
            record = self._failure_records.record_failure(
                FailureDomain.DERIVATIVE,
                FailureDomain.DERIVATIVE.coerce_reason(reason.value),
                tenant_id=asset.tenant_id,
                asset_id=asset.id,
                trace=trace,
                derivative_type=THUMBNAIL_DERIVATIVE,
                processor=processor,
            )

        incident = self._report(asset, stage, reason, policy, message, record)

        # Derivative failures escalate through their record; the others through the incident.
        if record is None and self._engine.is_escalation_eligible(incident, asset.failure_count):
            self._engine.escalate(incident)

        self._publish(asset, stage, reason, incident, record, trace)

        if self._activity:
            self._activity.record(
                ActivityEvent.ASSET_STAGE_FAILED,
                asset.tenant_id,
                "asset",
                asset.id,
                {
                    "stage": stage.value,
                    "failure_reason": reason.value,
                    "failure_count": asset.failure_count,
                    "incident_id": incident.id,
                    "retryable": policy.retryable,
                },
            )
        return incident

    @staticmethod
    def _mark_failed(
        asset: Asset,
        stage: PipelineStage,
        reason: StageFailureReason,
        policy: ReasonPolicy,
        message: str,
        now: datetime,
    ) -> None:
        asset.set_stage_status(stage, StageStatus.FAILED)
        asset.failure_count += 1

        flags = asset.flags
        if flags is None:
            logger.warning(f"[{asset.id}] Malformed metadata, failure flags not written")
            return

        flags[MetadataFlag.FAILURE_REASON] = reason.value
        flags[MetadataFlag.FAILURE_ATTEMPTS] = asset.failure_count
        flags[MetadataFlag.FAILURE_IS_RETRYABLE] = policy.retryable
        flags[MetadataFlag.FAILED_AT] = now.isoformat()

        if stage.is_blocking:
            flags[MetadataFlag.PROCESSING_FAILED] = True
            flags[MetadataFlag.FAILED_STAGE] = stage.value

        if stage == PipelineStage.PROMOTION:
            flags[MetadataFlag.PROMOTION_FAILED] = True
            flags[MetadataFlag.PROMOTION_FAILED_AT] = now.isoformat()
            flags[MetadataFlag.PROMOTION_ERROR] = message
            asset.analysis_status = AnalysisStatus.PROMOTION_FAILED.value

        asset.status = resolve_visibility(asset)

    def _report(
        self,
        asset: Asset,
        stage: PipelineStage,
        reason: StageFailureReason,
        policy: ReasonPolicy,
        message: str,
        record: FailureRecord | None,
    ) -> SystemIncident:
        if policy.requires_support:
            severity = IncidentSeverity.CRITICAL
        elif stage.is_blocking:
            severity = IncidentSeverity.ERROR
        else:
            severity = IncidentSeverity.WARNING

        metadata = {IncidentKey.STAGE: stage.value, "failure_reason": reason.value}
        if record is not None:
            metadata[IncidentKey.FAILURE_RECORD_ID] = record.id

        return self._engine.report(
            IncidentReport(
                source_type=SourceType.JOB,
                source_id=asset.id,
                tenant_id=asset.tenant_id,
                severity=severity,
                title=f"{stage.value} failed: {reason.value}",
                message=message,
                retryable=policy.retryable,
                requires_support=policy.requires_support,
                unique_signature=stage_failure_signature(stage, asset.id),
                metadata=metadata,
            )
        )

    def _publish(
        self,
        asset: Asset,
        stage: PipelineStage,
        reason: StageFailureReason,
        incident: SystemIncident,
        record: FailureRecord | None,
        trace: str,
    ) -> None:
        event = FailureReported(
            asset_id=asset.id,
            tenant_id=asset.tenant_id,
            stage=stage.value,
            failure_reason=reason.value,
            incident_id=incident.id,
            domain=record.domain if record else None,
            failure_record_id=record.id if record else None,
            failure_trace=trace,
        )
        try:
            self._publisher.publish(event)
        except Exception as e:
            # The failure itself is already persisted
            logger.exception(f"[{asset.id}] Could not publish FailureReported for {stage.value}: {e}")
