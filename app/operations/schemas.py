"""
Pydantic schemas for the operations module.

This module contains response models for incident triage, failure records,
reliability metrics and incident actions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from assetflow_core.domain.failures import FailureRecord
from assetflow_core.domain.incidents import SystemIncident
from assetflow_core.domain.tickets import Ticket


# ==============================================================================
# INCIDENTS
# ==============================================================================


class IncidentResponse(BaseModel):
    """Response model for a system incident."""

    id: str
    source_type: str
    source_id: Optional[str]
    tenant_id: Optional[str]
    severity: str
    title: str
    message: Optional[str]
    retryable: bool
    requires_support: bool
    auto_resolved: bool
    detected_at: datetime
    resolved_at: Optional[datetime]
    repair_attempts: int
    occurrences: int
    ticket_id: Optional[str]
    metadata: dict[str, Any]

    @classmethod
    def from_incident(cls, incident: SystemIncident) -> "IncidentResponse":
        return cls(
            id=incident.id,
            source_type=incident.source_type.value,
            source_id=incident.source_id,
            tenant_id=incident.tenant_id,
            severity=incident.severity.value,
            title=incident.title,
            message=incident.message,
            retryable=incident.retryable,
            requires_support=incident.requires_support,
            auto_resolved=incident.auto_resolved,
            detected_at=incident.detected_at,
            resolved_at=incident.resolved_at,
            repair_attempts=incident.repair_attempts,
            occurrences=incident.occurrences,
            ticket_id=incident.ticket_id,
            metadata=incident.metadata,
        )


class IncidentListResponse(BaseModel):
    incidents: list[IncidentResponse]
    total: int


class IncidentSummaryResponse(BaseModel):
    """Counts of unresolved incidents."""

    unresolved: int
    by_severity: dict[str, int] = Field(default_factory=dict)
    by_source_type: dict[str, int] = Field(default_factory=dict)
    requires_support: int = 0
    with_ticket: int = 0


# ==============================================================================
# ACTIONS
# ==============================================================================


class TicketResponse(BaseModel):
    id: str
    status: str
    severity: str
    source: str
    subject: str
    incident_id: Optional[str] = None

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            id=ticket.id,
            status=ticket.status.value,
            severity=ticket.severity.value,
            source=ticket.source.value,
            subject=ticket.subject,
            incident_id=ticket.incident_id,
        )


class RecoveryResponse(BaseModel):
    incident_id: str
    resolved: bool
    retry_dispatched: bool
    escalated: bool
    changes: list[str]


class RetryResponse(BaseModel):
    incident_id: str
    dispatched: bool


class ResolveResponse(BaseModel):
    incident: IncidentResponse


class CreateTicketResponse(BaseModel):
    incident_id: str
    ticket: Optional[TicketResponse]


# ==============================================================================
# FAILURE RECORDS
# ==============================================================================


class FailureRecordResponse(BaseModel):
    id: str
    domain: str
    tenant_id: Optional[str]
    asset_id: Optional[str]
    failure_reason: Optional[str]
    failure_count: int
    last_failed_at: Optional[datetime]
    last_succeeded_at: Optional[datetime]
    escalation_ticket_id: Optional[str]
    ai_severity: Optional[str]
    ai_summary: Optional[str]
    ai_recommendation: Optional[str]
    derivative_type: Optional[str] = None

    @classmethod
    def from_record(cls, record: FailureRecord) -> "FailureRecordResponse":
        return cls(
            id=record.id,
            domain=record.domain.value,
            tenant_id=record.tenant_id,
            asset_id=record.asset_id,
            failure_reason=record.failure_reason,
            failure_count=record.failure_count,
            last_failed_at=record.last_failed_at,
            last_succeeded_at=record.last_succeeded_at,
            escalation_ticket_id=record.escalation_ticket_id,
            ai_severity=record.ai_severity.value if record.ai_severity else None,
            ai_summary=record.ai_summary,
            ai_recommendation=record.ai_recommendation,
            derivative_type=record.derivative_type,
        )


class FailureRecordListResponse(BaseModel):
    domain: str
    records: list[FailureRecordResponse]
    total: int


# ==============================================================================
# METRICS
# ==============================================================================


class IntegrityMetrics(BaseModel):
    total_assets: int
    affected_assets: int
    rate_percent: float


class MttrMetrics(BaseModel):
    resolved_count: int
    mttr_minutes_avg: Optional[float]


class RecoverySuccessMetrics(BaseModel):
    resolved_count: int
    auto_resolved_count: int
    recovery_rate_percent: Optional[float]


class TicketEscalationMetrics(BaseModel):
    unresolved_count: int
    escalated_count: int


class ReliabilityMetricsResponse(BaseModel):
    integrity: IntegrityMetrics
    mttr: MttrMetrics
    recovery_success: RecoverySuccessMetrics
    ticket_escalation: TicketEscalationMetrics
