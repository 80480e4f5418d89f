"""
Escalation service: turns unresolved incidents and repeated failures into
support tickets, exactly once.

``create_ticket`` is the idempotent primitive used by admin actions.
``escalate`` and ``create_ticket_if_needed`` are the automatic paths; they
never raise, count against the hourly ticket cap, and report what happened
as an EscalationResult.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger
from pydantic import BaseModel

from app.reliability.protocols import (
    ActivitySink,
    AssetRepository,
    FailureRecordRepository,
    IncidentRepository,
    TicketRepository,
)
from app.reliability.services.activity import ActivityEvent
from assetflow_core.domain.assets import Asset
from assetflow_core.domain.failures import ESCALATION_THRESHOLD, AISeverity, FailureDomain, FailureRecord
from assetflow_core.domain.incidents import IncidentKey, IncidentSeverity, SourceType, SystemIncident
from assetflow_core.domain.tickets import (
    EscalationResult,
    NewTicket,
    Ticket,
    TicketSeverity,
    TicketSource,
)
from assetflow_core.infrastructure.telemetry import increment_counter

TICKETS_CREATED_COUNTER = "reliability.tickets.created"


class EscalationPolicy(BaseModel):
    """Tunables for automatic escalation.

    Attributes:
        failure_threshold: failure_count at which a failure record escalates.
        rate_cap_per_hour: Automatic tickets allowed per clock hour (0 disables the cap).
        sources: Incident source types that may open tickets.
        system_actor_id: Recorded as the ticket creator.
    """

    failure_threshold: int = ESCALATION_THRESHOLD
    rate_cap_per_hour: int = 50
    sources: frozenset[SourceType] = frozenset(SourceType)
    system_actor_id: str = "system@internal"

    model_config = {"frozen": True}


def ticket_severity_for(severity: IncidentSeverity) -> TicketSeverity:
    if severity == IncidentSeverity.CRITICAL:
        return TicketSeverity.P0
    if severity == IncidentSeverity.ERROR:
        return TicketSeverity.P1
    return TicketSeverity.P2


_RECORD_SOURCES = {
    SourceType.UPLOAD: FailureDomain.UPLOAD,
    SourceType.DOWNLOAD: FailureDomain.DOWNLOAD,
    SourceType.DERIVATIVE: FailureDomain.DERIVATIVE,
}


def failure_record_ref(incident: SystemIncident) -> Optional[tuple[FailureDomain, str]]:
    """(domain, record id) of the failure record behind an incident, if any.

    Job incidents point at their derivative record through metadata.
    """
    domain = _RECORD_SOURCES.get(incident.source_type)
    if domain is not None and incident.source_id:
        return domain, incident.source_id
    record_id = incident.metadata.get(IncidentKey.FAILURE_RECORD_ID)
    if incident.source_type == SourceType.JOB and record_id:
        return FailureDomain.DERIVATIVE, str(record_id)
    return None


class EscalationService:
    def __init__(
        self,
        tickets: TicketRepository,
        incidents: IncidentRepository,
        failure_records: FailureRecordRepository,
        assets: AssetRepository,
        activity: ActivitySink | None = None,
        policy: EscalationPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._tickets = tickets
        self._incidents = incidents
        self._failure_records = failure_records
        self._assets = assets
        self._activity = activity
        self._policy = policy or EscalationPolicy()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def policy(self) -> EscalationPolicy:
        return self._policy

    # Incident escalation

    def create_ticket(self, incident: SystemIncident) -> Ticket | None:
        """Open a ticket for an incident, or return the one it already has.

        Returns None when the incident is resolved, has no source id, or its
        source type is not an escalation source. Storage errors propagate.
        """
        return self._escalate_incident(incident, automatic=False).ticket

    def escalate(self, incident: SystemIncident) -> EscalationResult:
        """Automatic escalation of an incident. Never raises.

        Incidents backed by a failure record escalate through that record, so
        they share its threshold and its single ticket.
        """
        try:
            ref = failure_record_ref(incident)
            if ref is not None:
                record = self._failure_records.get(*ref)
                if record is None:
                    logger.warning(f"[{incident.id}] Failure record {ref[0].value}:{ref[1]} not found")
                    return EscalationResult(skipped_reason="missing_source")
                return self.create_ticket_if_needed(record, ai_summary=None)
            return self._escalate_incident(incident, automatic=True)
        except Exception as e:
            logger.exception(f"[{incident.id}] Ticket creation failed: {e}")
            return EscalationResult(created=False, error=str(e))

    def _escalate_incident(self, incident: SystemIncident, automatic: bool) -> EscalationResult:
        if incident.is_resolved:
            return EscalationResult(skipped_reason="resolved")
        if not incident.source_id:
            return EscalationResult(skipped_reason="missing_source")
        if incident.source_type not in self._policy.sources:
            logger.info(f"[{incident.id}] Source type {incident.source_type.value} does not escalate")
            return EscalationResult(skipped_reason="unrecognized_source")

        if incident.ticket_id:
            existing = self._tickets.get(incident.ticket_id)
            if existing is not None:
                return EscalationResult(ticket=existing, skipped_reason="already_escalated")

        ref = failure_record_ref(incident)
        record = self._failure_records.get(*ref) if ref else None
        existing = None
        if record is not None and record.escalation_ticket_id:
            existing = self._tickets.get(record.escalation_ticket_id)
        if existing is None:
            existing = self._tickets.find_open_for_source(incident.source_type.value, incident.source_id)
        if existing is not None:
            self._incidents.merge_metadata(incident.id, {IncidentKey.TICKET_ID: existing.id})
            return EscalationResult(ticket=existing, skipped_reason="already_escalated")

        if automatic and self._rate_limited():
            return self._suppressed(incident.tenant_id, incident.source_type.value, incident.source_id)

        asset = self._assets.get(incident.source_id) if incident.source_type.is_asset_backed else None
        ticket = self._tickets.create(self._incident_ticket(incident, asset, automatic))

        if record is not None and not self._failure_records.attach_ticket(record.domain, record.id, ticket.id):
            self._tickets.close(ticket.id, reason="duplicate escalation")
            winner = self._failure_records.get(record.domain, record.id)
            existing = (
                self._tickets.get(winner.escalation_ticket_id)
                if winner and winner.escalation_ticket_id
                else None
            )
            if existing is not None:
                self._incidents.merge_metadata(incident.id, {IncidentKey.TICKET_ID: existing.id})
            logger.info(f"[{incident.id}] Lost escalation race, closed duplicate ticket {ticket.id}")
            return EscalationResult(ticket=existing, skipped_reason="lost_race")

        self._incidents.merge_metadata(incident.id, {IncidentKey.TICKET_ID: ticket.id})

        logger.info(f"[{incident.id}] Created ticket {ticket.id} ({ticket.severity.value})")
        self._after_create(ticket.id, ticket.tenant_id, incident.source_type.value, incident.id, ticket.severity.value)
        return EscalationResult(created=True, ticket=ticket)

    def _incident_ticket(
        self, incident: SystemIncident, asset: Optional[Asset], automatic: bool
    ) -> NewTicket:
        if asset is not None and asset.title:
            subject = f"Asset processing: {asset.title}"
        else:
            subject = incident.title

        lines = [
            "Created from Operations Center incident.",
            "",
            f"Incident: {incident.title}",
        ]
        if incident.message:
            lines.append(f"Details: {incident.message}")
        lines.extend([
            "",
            f"Source: {incident.source_type.value} {incident.source_id}",
            f"Analysis status: {asset.analysis_status if asset else 'unknown'}",
            f"Thumbnail status: {asset.thumbnail_status.value if asset else 'unknown'}",
        ])

        severity = ticket_severity_for(incident.severity)
        return NewTicket(
            tenant_id=(asset.tenant_id if asset else None) or incident.tenant_id,
            severity=severity,
            subject=subject,
            description="\n".join(lines),
            source=TicketSource.OPERATIONS_INCIDENT,
            source_type=incident.source_type.value,
            source_id=incident.source_id,
            incident_id=incident.id,
            metadata={
                "asset_id": asset.id if asset else None,
                "incident_id": incident.id,
                "incident_title": incident.title,
                "analysis_status": asset.analysis_status if asset else "unknown",
                "thumbnail_status": asset.thumbnail_status.value if asset else None,
                "severity": severity.value,
                "auto_created": automatic,
            },
            created_by=self._policy.system_actor_id,
        )

    # Failure-record escalation

    def create_ticket_if_needed(
        self,
        record: FailureRecord,
        ai_summary: str | None,
        ai_severity: AISeverity | None = None,
        ai_recommendation: str | None = None,
    ) -> EscalationResult:
        """Open a ticket for a failure record once ``failure_count >= 3`` or a ticket exists.

        The ticket is attached with a compare-and-set on the record; a
        worker that loses the race closes its own ticket. Never raises.
        """
        try:
            current = self._failure_records.get(record.domain, record.id) or record

            if not current.needs_escalation(self._policy.failure_threshold):
                logger.debug(
                    f"[{record.id}] {record.domain.value} failure_count={current.failure_count}, below threshold"
                )
                return EscalationResult(skipped_reason="below_threshold")

            if current.escalation_ticket_id:
                existing = self._tickets.get(current.escalation_ticket_id)
                return EscalationResult(ticket=existing, skipped_reason="already_escalated")

            existing = self._tickets.find_open_for_source(current.domain.value, current.id)
            if existing is not None:
                self._failure_records.attach_ticket(current.domain, current.id, existing.id)
                return EscalationResult(ticket=existing, skipped_reason="already_escalated")

            if self._rate_limited():
                return self._suppressed(current.tenant_id, current.domain.value, current.id)

            ticket = self._tickets.create(
                self._failure_ticket(current, ai_summary, ai_severity, ai_recommendation)
            )

            if not self._failure_records.attach_ticket(current.domain, current.id, ticket.id):
                self._tickets.close(ticket.id, reason="duplicate escalation")
                winner = self._failure_records.get(current.domain, current.id)
                existing = (
                    self._tickets.get(winner.escalation_ticket_id)
                    if winner and winner.escalation_ticket_id
                    else None
                )
                logger.info(f"[{record.id}] Lost escalation race, closed duplicate ticket {ticket.id}")
                return EscalationResult(ticket=existing, skipped_reason="lost_race")

            logger.info(
                f"[{record.id}] Escalated {current.domain.value} failure "
                f"(count={current.failure_count}) to ticket {ticket.id}"
            )
            self._after_create(ticket.id, ticket.tenant_id, current.domain.value, None, ticket.severity.value)
            return EscalationResult(created=True, ticket=ticket)
        except Exception as e:
            logger.exception(f"[{record.id}] Escalation ticket creation failed: {e}")
            return EscalationResult(created=False, error=str(e))

    def _failure_ticket(
        self,
        record: FailureRecord,
        ai_summary: str | None,
        ai_severity: AISeverity | None,
        ai_recommendation: str | None,
    ) -> NewTicket:
        severity = TicketSeverity.P1 if ai_severity == AISeverity.SYSTEM else TicketSeverity.P2
        label = record.domain.value.capitalize()

        lines = [
            f"{label} failure escalated after {record.failure_count} failure(s).",
            "",
            f"Record: {record.domain.value} {record.id}",
            f"Reason: {record.failure_reason or 'unknown'}",
        ]
        if record.asset_id:
            lines.append(f"Asset ID: {record.asset_id}")
        if record.derivative_type:
            lines.append(
                f"Derivative: {record.derivative_type} "
                f"(processor={record.processor or 'unknown'}, codec={record.codec or 'unknown'})"
            )
        lines.append("")
        lines.append(f"AI summary: {ai_summary}" if ai_summary else "AI summary: unavailable")
        if ai_recommendation:
            lines.append(f"Recommendation: {ai_recommendation}")

        return NewTicket(
            tenant_id=record.tenant_id,
            severity=severity,
            subject=f"{label} failure: {record.failure_reason or 'unknown'}",
            description="\n".join(lines),
            source=TicketSource.FAILURE_ESCALATION,
            source_type=record.domain.value,
            source_id=record.id,
            metadata={
                "asset_id": record.asset_id,
                "failure_reason": record.failure_reason,
                "failure_count": record.failure_count,
                "ai_severity": ai_severity.value if ai_severity else None,
                "severity": severity.value,
                "auto_created": True,
            },
            created_by=self._policy.system_actor_id,
        )

    # Shared helpers

    def _rate_limited(self) -> bool:
        cap = self._policy.rate_cap_per_hour
        if cap <= 0:
            return False
        hour_start = self._clock().replace(minute=0, second=0, microsecond=0)
        return self._tickets.count_auto_created_since(hour_start) >= cap

    def _suppressed(self, tenant_id: str | None, source_type: str, source_id: str) -> EscalationResult:
        logger.warning(
            f"[{source_id}] Automatic ticket suppressed: "
            f"{self._policy.rate_cap_per_hour} tickets already created this hour"
        )
        if self._activity:
            self._activity.record(
                ActivityEvent.TICKET_SUPPRESSED,
                tenant_id,
                source_type,
                source_id,
                {"reason": "rate_cap"},
            )
        return EscalationResult(suppressed=True, skipped_reason="rate_cap")

    def _after_create(
        self,
        ticket_id: str,
        tenant_id: str | None,
        source_type: str,
        incident_id: str | None,
        severity: str,
    ) -> None:
        increment_counter(TICKETS_CREATED_COUNTER, {"source_type": source_type, "severity": severity})
        if self._activity:
            self._activity.record(
                ActivityEvent.TICKET_CREATED,
                tenant_id,
                "ticket",
                ticket_id,
                {"incident_id": incident_id, "source_type": source_type, "severity": severity},
            )
