"""
Read-side queries for the operations surface.
"""

from __future__ import annotations

from typing import Optional

from app.reliability.protocols import FailureRecordRepository, IncidentRepository
from assetflow_core.domain.failures import FailureDomain, FailureRecord
from assetflow_core.domain.incidents import (
    IncidentSeverity,
    SourceType,
    SystemIncident,
    sort_for_triage,
)


class OperationsQueryService:
    def __init__(self, incidents: IncidentRepository, failure_records: FailureRecordRepository):
        self._incidents = incidents
        self._failure_records = failure_records

    def list_incidents(
        self,
        unresolved_only: bool = True,
        source_type: Optional[SourceType] = None,
        source_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        severity: Optional[IncidentSeverity] = None,
        limit: int = 100,
    ) -> list[SystemIncident]:
        """Incidents in triage order: critical first, then most recent."""
        incidents = self._incidents.list_incidents(
            unresolved_only=unresolved_only,
            source_type=source_type,
            source_id=source_id,
            tenant_id=tenant_id,
            severity=severity,
            limit=limit,
        )
        return sort_for_triage(incidents)

    def get_incident(self, incident_id: str) -> Optional[SystemIncident]:
        return self._incidents.get(incident_id)

    def summary(self, tenant_id: Optional[str] = None) -> dict:
        """Unresolved incident counts, computed in the store over every row."""
        return self._incidents.summarize_unresolved(tenant_id).model_dump()

    def list_failure_records(
        self,
        domain: FailureDomain,
        escalated: Optional[bool] = None,
        tenant_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[FailureRecord]:
        return self._failure_records.list_records(
            domain, escalated=escalated, tenant_id=tenant_id, limit=limit
        )
