"""
Reliability engine: the single funnel for "something went wrong".

Stage tasks, the stuck-asset scanner and admin actions all go through this
service. It records incidents (deduplicated by signature), runs
source-specific repair, resolves incidents, re-dispatches retryable work
and hands escalation-eligible incidents to the EscalationService.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from loguru import logger

from app.reliability.protocols import (
    ActivitySink,
    AssetRepository,
    FailureRecordRepository,
    IncidentRepository,
    RetryDispatcher,
)
from app.reliability.services.activity import ActivityEvent
from app.reliability.services.escalation import EscalationService
from app.reliability.services.reconciliation import ReconciliationService
from app.reliability.services.repair import (
    AssetRepairStrategy,
    FailureRecordRepairStrategy,
    JobRepairStrategy,
    RepairOutcome,
    RepairStrategy,
    is_resolved_after_reconcile,
)
from assetflow_core.domain.assets import (
    PIPELINE_ORDER,
    AnalysisStatus,
    Asset,
    MetadataFlag,
    PipelineStage,
)
from assetflow_core.domain.failures import ESCALATION_THRESHOLD, FailureDomain
from assetflow_core.domain.incidents import (
    IncidentKey,
    IncidentReport,
    IncidentSeverity,
    RecoveryResult,
    SourceType,
    SystemIncident,
)
from assetflow_core.domain.tickets import EscalationResult, Ticket
from assetflow_core.infrastructure.telemetry import increment_counter

INCIDENTS_RECORDED_COUNTER = "reliability.incidents.recorded"


def stuck_signature(asset_id: str) -> str:
    return f"stuck:{asset_id}"


class ReliabilityEngine:
    def __init__(
        self,
        incidents: IncidentRepository,
        assets: AssetRepository,
        failure_records: FailureRecordRepository,
        reconciliation: ReconciliationService,
        escalation: EscalationService,
        retry_dispatcher: RetryDispatcher | None = None,
        activity: ActivitySink | None = None,
        escalation_threshold: int = ESCALATION_THRESHOLD,
        stuck_after_minutes: int = 30,
        stuck_batch_size: int = 200,
        clock: Callable[[], datetime] | None = None,
    ):
        self._incidents = incidents
        self._assets = assets
        self._escalation = escalation
        self._retry_dispatcher = retry_dispatcher
        self._activity = activity
        self._threshold = escalation_threshold
        self._stuck_after = timedelta(minutes=stuck_after_minutes)
        self._stuck_batch_size = stuck_batch_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        asset_strategy = AssetRepairStrategy(assets, reconciliation)
        self._strategies: dict[SourceType, RepairStrategy] = {
            SourceType.ASSET: asset_strategy,
            SourceType.JOB: JobRepairStrategy(asset_strategy, self.dispatch_retry),
            SourceType.UPLOAD: FailureRecordRepairStrategy(FailureDomain.UPLOAD, failure_records),
            SourceType.DOWNLOAD: FailureRecordRepairStrategy(FailureDomain.DOWNLOAD, failure_records),
            SourceType.DERIVATIVE: FailureRecordRepairStrategy(FailureDomain.DERIVATIVE, failure_records),
        }

    def report(self, payload: IncidentReport) -> SystemIncident:
        """Record an incident, or return the open one with the same signature.

        A newly recorded incident that requires support is escalated at once;
        one backed by a failure record still waits for the record's threshold.
        """
        incident, created = self._incidents.record(payload)

        if not created:
            logger.debug(
                f"[{incident.id}] Duplicate report for {payload.source_type.value}:{payload.source_id} "
                f"({payload.unique_signature}), occurrences={incident.occurrences}"
            )
            return incident

        logger.info(
            f"[{incident.id}] Recorded {incident.severity.value} incident for "
            f"{incident.source_type.value}:{incident.source_id}: {incident.title}"
        )
        increment_counter(
            INCIDENTS_RECORDED_COUNTER,
            {"source_type": incident.source_type.value, "severity": incident.severity.value},
        )
        if self._activity:
            self._activity.record(
                ActivityEvent.INCIDENT_RECORDED,
                incident.tenant_id,
                incident.source_type.value,
                incident.source_id,
                {
                    "incident_id": incident.id,
                    "severity": incident.severity.value,
                    "retryable": incident.retryable,
                    "stage": incident.stage,
                },
            )

        if incident.requires_support:
            self._escalation.escalate(incident)

        return incident

    def get_incident(self, incident_id: str) -> Optional[SystemIncident]:
        return self._incidents.get(incident_id)

    def attempt_recovery(self, incident: SystemIncident) -> RecoveryResult:
        """Run the source's repair strategy; resolve on success, escalate if eligible."""
        if incident.is_resolved:
            return RecoveryResult()

        incident = self._incidents.increment_repair_attempts(incident.id)
        strategy = self._strategies.get(incident.source_type)
        outcome = strategy.repair(incident) if strategy else RepairOutcome()

        if outcome.resolved:
            self.resolve(incident, auto=True)
            logger.info(f"[{incident.id}] Auto-recovered after {incident.repair_attempts} attempt(s)")
            return RecoveryResult(
                resolved=True,
                changes=outcome.changes,
                retry_dispatched=outcome.retry_dispatched,
            )

        escalated = False
        if self.is_escalation_eligible(incident, outcome.source_failure_count):
            result = self._escalation.escalate(incident)
            escalated = result.ticket is not None

        return RecoveryResult(
            resolved=False,
            changes=outcome.changes,
            retry_dispatched=outcome.retry_dispatched,
            escalated=escalated,
        )

    def is_escalation_eligible(
        self, incident: SystemIncident, source_failure_count: Optional[int]
    ) -> bool:
        """Eligible when support was required up front, or after a failed repair once
        the source's failure counter or the incident's repair attempts reach the threshold.
        """
        if incident.requires_support:
            return True
        if source_failure_count is not None and source_failure_count >= self._threshold:
            return True
        return incident.repair_attempts >= self._threshold

    def resolve(self, incident: SystemIncident, auto: bool = False) -> SystemIncident:
        if incident.is_resolved:
            return incident

        resolved = self._incidents.mark_resolved(incident.id, auto, self._clock())
        if resolved is None:
            # Resolved concurrently
            return self._incidents.get(incident.id) or incident

        if self._activity:
            self._activity.record(
                ActivityEvent.INCIDENT_RESOLVED,
                resolved.tenant_id,
                resolved.source_type.value,
                resolved.source_id,
                {"incident_id": resolved.id, "auto_resolved": auto},
            )
        return resolved

    def resolve_cleared(self, asset_id: str) -> list[SystemIncident]:
        """Auto-resolve open asset and job incidents whose condition no longer holds."""
        asset = self._assets.get(asset_id)
        if asset is None:
            return []

        resolved = []
        for source_type in (SourceType.ASSET, SourceType.JOB):
            for incident in self._incidents.list_incidents(
                unresolved_only=True, source_type=source_type, source_id=asset_id
            ):
                if is_resolved_after_reconcile(incident, asset):
                    resolved.append(self.resolve(incident, auto=True))
        if resolved:
            logger.info(f"[{asset_id}] Auto-resolved {len(resolved)} incident(s) after progress")
        return resolved

    def escalate(self, incident: SystemIncident) -> EscalationResult:
        return self._escalation.escalate(incident)

    def create_ticket(self, incident: SystemIncident) -> Optional[Ticket]:
        return self._escalation.create_ticket(incident)

    def dispatch_retry(self, incident: SystemIncident) -> bool:
        """Re-enqueue the failed stage (or promotion) of a retryable asset-backed incident."""
        if self._retry_dispatcher is None:
            return False
        if not incident.retryable or not incident.source_id or not incident.source_type.is_asset_backed:
            return False

        asset = self._assets.get(incident.source_id)
        if asset is None or asset.is_deleted:
            return False

        stage = self._retry_stage(incident, asset)
        if stage is None:
            logger.info(f"[{incident.id}] Nothing to retry for asset {asset.id}")
            return False

        self._retry_dispatcher.dispatch(asset.id, stage)
        self._incidents.merge_metadata(
            incident.id,
            {IncidentKey.RETRIED: True, IncidentKey.RETRIED_AT: self._clock().isoformat()},
        )
        logger.info(f"[{incident.id}] Dispatched retry of {stage.value} for asset {asset.id}")
        if self._activity:
            self._activity.record(
                ActivityEvent.INCIDENT_RETRIED,
                asset.tenant_id,
                incident.source_type.value,
                asset.id,
                {"incident_id": incident.id, "stage": stage.value},
            )
        return True

    @staticmethod
    def _retry_stage(incident: SystemIncident, asset: Asset) -> Optional[PipelineStage]:
        if asset.analysis_status == AnalysisStatus.PROMOTION_FAILED.value:
            return PipelineStage.PROMOTION
        for candidate in (incident.stage, asset.flag(MetadataFlag.FAILED_STAGE)):
            try:
                return PipelineStage(candidate)
            except ValueError:
                continue
        for stage in PIPELINE_ORDER:
            if not asset.stage_status(stage).is_done:
                return stage
        return None

    def scan_stuck_assets(
        self, now: datetime | None = None, stuck_after_minutes: int | None = None
    ) -> list[SystemIncident]:
        """Report assets whose pipeline cursor has not moved recently, then try to repair them."""
        now = now or self._clock()
        stuck_after = (
            timedelta(minutes=stuck_after_minutes) if stuck_after_minutes is not None else self._stuck_after
        )
        stuck = self._assets.list_stuck(now - stuck_after, self._stuck_batch_size)
        if not stuck:
            return []

        logger.info(f"Stuck asset scan found {len(stuck)} asset(s)")
        incidents = []
        for asset in stuck:
            minutes = int((now - asset.updated_at).total_seconds() // 60) if asset.updated_at else None
            try:
                incident = self.report(
                    IncidentReport(
                        source_type=SourceType.ASSET,
                        source_id=asset.id,
                        tenant_id=asset.tenant_id,
                        severity=IncidentSeverity.WARNING,
                        title=f"Asset stuck in {asset.analysis_status}",
                        message=f"No pipeline progress for {minutes} minute(s)" if minutes is not None else None,
                        retryable=True,
                        unique_signature=stuck_signature(asset.id),
                        metadata={
                            IncidentKey.KIND: "stuck",
                            IncidentKey.ANALYSIS_STATUS: asset.analysis_status,
                        },
                    )
                )
                self.attempt_recovery(incident)
                incidents.append(incident)
            except Exception as e:
                logger.exception(f"[{asset.id}] Stuck asset handling failed: {e}")
        return incidents
