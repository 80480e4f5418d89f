"""
Domain models for system incidents.

An incident is one detected anomaly in the processing pipeline. Incidents are
appended and resolved, never deleted.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from .assets import FieldChange


class SourceType(str, Enum):
    ASSET = "asset"
    JOB = "job"
    DERIVATIVE = "derivative"
    UPLOAD = "upload"
    DOWNLOAD = "download"

    @property
    def is_asset_backed(self) -> bool:
        """Asset and job incidents both carry the asset id as source_id."""
        return self in (SourceType.ASSET, SourceType.JOB)


class IncidentSeverity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Triage rank; lower sorts first."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    IncidentSeverity.CRITICAL: 0,
    IncidentSeverity.ERROR: 1,
    IncidentSeverity.WARNING: 2,
    IncidentSeverity.INFO: 3,
}


class IncidentKey:
    """Keys of the incident metadata bag."""
    UNIQUE_SIGNATURE = "unique_signature"
    REPAIR_ATTEMPTS = "repair_attempts"
    OCCURRENCES = "occurrences"
    TICKET_ID = "ticket_id"
    STAGE = "stage"
    KIND = "kind"
    ANALYSIS_STATUS = "analysis_status"
    AUTO_RECOVERED = "auto_recovered"
    RETRIED = "retried"
    RETRIED_AT = "retried_at"
    LAST_SEEN_AT = "last_seen_at"
    FAILURE_RECORD_ID = "failure_record_id"


class IncidentReport(BaseModel):
    """Payload accepted by ReliabilityEngine.report()."""

    source_type: SourceType
    source_id: Optional[str] = None
    tenant_id: Optional[str] = None
    severity: IncidentSeverity = IncidentSeverity.ERROR
    title: str
    message: Optional[str] = None
    retryable: bool = False
    requires_support: bool = False
    unique_signature: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


INCIDENT_COLUMNS = (
    "id",
    "source_type",
    "source_id",
    "tenant_id",
    "severity",
    "title",
    "message",
    "metadata",
    "retryable",
    "requires_support",
    "auto_resolved",
    "detected_at",
    "resolved_at",
)


class SystemIncident(BaseModel):
    """One detected anomaly."""

    id: str = Field(..., description="UUID primary key")
    source_type: SourceType
    source_id: Optional[str] = None
    tenant_id: Optional[str] = None
    severity: IncidentSeverity
    title: str
    message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False
    requires_support: bool = False
    auto_resolved: bool = False
    detected_at: datetime
    resolved_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    @property
    def unique_signature(self) -> Optional[str]:
        return self.metadata.get(IncidentKey.UNIQUE_SIGNATURE)

    @property
    def repair_attempts(self) -> int:
        return int(self.metadata.get(IncidentKey.REPAIR_ATTEMPTS) or 0)

    @property
    def occurrences(self) -> int:
        return int(self.metadata.get(IncidentKey.OCCURRENCES) or 1)

    @property
    def ticket_id(self) -> Optional[str]:
        value = self.metadata.get(IncidentKey.TICKET_ID)
        return str(value) if value else None

    @property
    def stage(self) -> Optional[str]:
        return self.metadata.get(IncidentKey.STAGE)

    @classmethod
    def from_db_row(cls, row: tuple) -> "SystemIncident":
        data = dict(zip(INCIDENT_COLUMNS, row))
        data["id"] = str(data["id"])
        data["metadata"] = data.get("metadata") or {}
        return cls(**data)


def triage_key(incident: SystemIncident) -> tuple[int, float]:
    """critical > error > warning > info, then most recently detected first."""
    return (incident.severity.rank, -incident.detected_at.timestamp())


def sort_for_triage(incidents: Iterable[SystemIncident]) -> list[SystemIncident]:
    return sorted(incidents, key=triage_key)


class IncidentSummary(BaseModel):
    """Counts of unresolved incidents."""

    unresolved: int = 0
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_source_type: dict[str, int] = Field(default_factory=dict)
    requires_support: int = 0
    with_ticket: int = 0

    @classmethod
    def from_groups(cls, rows: Iterable[tuple]) -> "IncidentSummary":
        """Fold (severity, source_type, count, requires_support, with_ticket) groups."""
        summary = cls(by_severity={severity.value: 0 for severity in IncidentSeverity})
        for severity, source_type, count, requires_support, with_ticket in rows:
            summary.unresolved += count
            summary.by_severity[severity] = summary.by_severity.get(severity, 0) + count
            summary.by_source_type[source_type] = summary.by_source_type.get(source_type, 0) + count
            summary.requires_support += requires_support or 0
            summary.with_ticket += with_ticket or 0
        return summary


class RecoveryResult(BaseModel):
    """Outcome of ReliabilityEngine.attempt_recovery()."""
    resolved: bool = False
    changes: list[FieldChange] = Field(default_factory=list)
    retry_dispatched: bool = False
    escalated: bool = False
