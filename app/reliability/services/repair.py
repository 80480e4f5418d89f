"""
Source-specific repair strategies used by ReliabilityEngine.attempt_recovery.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from pydantic import BaseModel, Field

from app.reliability.protocols import AssetRepository, FailureRecordRepository
from app.reliability.services.reconciliation import ReconciliationService
from assetflow_core.domain.assets import (
    AnalysisStatus,
    Asset,
    FieldChange,
    MetadataFlag,
    PipelineStage,
    analysis_rank,
)
from assetflow_core.domain.failures import FailureDomain
from assetflow_core.domain.incidents import IncidentKey, SystemIncident


class RepairOutcome(BaseModel):
    resolved: bool = False
    changes: list[FieldChange] = Field(default_factory=list)
    # The source's own domain failure counter, when it has one
    source_failure_count: Optional[int] = None
    retry_dispatched: bool = False


class RepairStrategy(Protocol):
    def repair(self, incident: SystemIncident) -> RepairOutcome:
        ...


def is_resolved_after_reconcile(incident: SystemIncident, asset: Optional[Asset]) -> bool:
    """Whether the condition an asset-backed incident was raised for has cleared."""
    if asset is None or asset.is_deleted:
        return False

    status = asset.analysis_status
    if status == AnalysisStatus.PROMOTION_FAILED.value:
        return False
    if status == AnalysisStatus.COMPLETE.value and not asset.has_blocking_failure:
        return True

    try:
        stage = PipelineStage(incident.stage) if incident.stage else None
    except ValueError:
        stage = None
    if stage is not None:
        still_failed = (
            asset.has_blocking_failure
            and asset.flag(MetadataFlag.FAILED_STAGE) == stage.value
        )
        return asset.stage_status(stage).is_done and not still_failed

    if incident.metadata.get(IncidentKey.KIND) == "stuck":
        recorded = analysis_rank(incident.metadata.get(IncidentKey.ANALYSIS_STATUS))
        current = analysis_rank(status)
        return recorded is not None and current is not None and current > recorded

    return False


class AssetRepairStrategy:
    """Reconcile the asset and check whether the incident's condition cleared."""

    def __init__(self, assets: AssetRepository, reconciliation: ReconciliationService):
        self._assets = assets
        self._reconciliation = reconciliation

    def repair(self, incident: SystemIncident) -> RepairOutcome:
        if not incident.source_id or self._assets.get(incident.source_id) is None:
            return RepairOutcome()

        result = self._reconciliation.reconcile(incident.source_id)
        asset = result.asset or self._assets.get(incident.source_id)
        return RepairOutcome(
            resolved=is_resolved_after_reconcile(incident, asset),
            changes=result.changes,
            source_failure_count=asset.failure_count if asset else None,
        )


class JobRepairStrategy:
    """Job incidents carry the asset id; repair as an asset, then retry if allowed."""

    def __init__(
        self,
        asset_strategy: AssetRepairStrategy,
        dispatch_retry: Callable[[SystemIncident], bool],
    ):
        self._asset_strategy = asset_strategy
        self._dispatch_retry = dispatch_retry

    def repair(self, incident: SystemIncident) -> RepairOutcome:
        outcome = self._asset_strategy.repair(incident)
        if not outcome.resolved and incident.retryable:
            outcome.retry_dispatched = self._dispatch_retry(incident)
        return outcome


class FailureRecordRepairStrategy:
    """Upload, download and derivative incidents resolve once the record recovered."""

    def __init__(self, domain: FailureDomain, failure_records: FailureRecordRepository):
        self._domain = domain
        self._failure_records = failure_records

    def repair(self, incident: SystemIncident) -> RepairOutcome:
        if not incident.source_id:
            return RepairOutcome()
        record = self._failure_records.get(self._domain, incident.source_id)
        if record is None:
            return RepairOutcome()
        return RepairOutcome(
            resolved=record.is_recovered,
            source_failure_count=record.failure_count,
        )
