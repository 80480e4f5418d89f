"""
Entry point for upload and download failures reported by the host.

Upload finalization and ZIP building run outside the asset pipeline; they
report through this service so their failures follow the same path as stage
failures: counter, incident, FailureReported.
"""

from __future__ import annotations

from loguru import logger

from app.reliability.protocols import FailureEventPublisher, FailureRecordRepository
from app.reliability.services.engine import ReliabilityEngine
from assetflow_core.domain.events import FailureReported
from assetflow_core.domain.failures import FailureDomain, FailureRecord, policy_for
from assetflow_core.domain.incidents import IncidentKey, IncidentReport, IncidentSeverity, SourceType


def failure_signature(domain: FailureDomain, record_id: str) -> str:
    return f"{domain.value}_failed:{record_id}"


class FailureTracker:
    def __init__(
        self,
        failure_records: FailureRecordRepository,
        engine: ReliabilityEngine,
        publisher: FailureEventPublisher,
        trace_limit: int = 2000,
    ):
        self._failure_records = failure_records
        self._engine = engine
        self._publisher = publisher
        self._trace_limit = trace_limit

    def record_failure(
        self,
        domain: FailureDomain,
        reason: str,
        record_id: str | None = None,
        asset_id: str | None = None,
        tenant_id: str | None = None,
        trace: str | None = None,
    ) -> FailureRecord:
        record = self._failure_records.record_failure(
            domain,
            reason,
            tenant_id=tenant_id,
            asset_id=asset_id,
            record_id=record_id,
            trace=(trace or "")[: self._trace_limit] or None,
        )
        policy = policy_for(record.failure_reason)
        severity = (
            IncidentSeverity.CRITICAL
            if record.failure_reason in domain.critical_reasons
            else IncidentSeverity.ERROR
        )
        incident = self._engine.report(
            IncidentReport(
                source_type=SourceType(domain.value),
                source_id=record.id,
                tenant_id=record.tenant_id,
                severity=severity,
                title=f"{domain.value.capitalize()} failed: {record.failure_reason}",
                message=f"Failure {record.failure_count} for {domain.value} {record.id}",
                retryable=policy.retryable,
                requires_support=policy.requires_support,
                unique_signature=failure_signature(domain, record.id),
                metadata={IncidentKey.FAILURE_RECORD_ID: record.id},
            )
        )
        logger.info(
            f"[{record.id}] {domain.value} failure recorded "
            f"(reason={record.failure_reason}, count={record.failure_count})"
        )
        self._publisher.publish(
            FailureReported(
                asset_id=record.asset_id,
                tenant_id=record.tenant_id,
                stage=domain.value,
                failure_reason=record.failure_reason or "unknown",
                incident_id=incident.id,
                domain=domain,
                failure_record_id=record.id,
            )
        )
        return record

    def record_success(self, domain: FailureDomain, record_id: str) -> None:
        self._failure_records.record_success(domain, record_id)
