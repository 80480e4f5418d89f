"""
Reliability module protocols.

Interfaces between the reliability services and their storage and
collaborators. Postgres and Celery implementations live in
``app.reliability.services``; tests substitute in-memory fakes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from assetflow_core.domain.assets import Asset, PipelineStage
from assetflow_core.domain.events import FailureReported
from assetflow_core.domain.failures import AISeverity, FailureDomain, FailureRecord
from assetflow_core.domain.incidents import (
    IncidentReport,
    IncidentSeverity,
    IncidentSummary,
    SourceType,
    SystemIncident,
)
from assetflow_core.domain.tickets import NewTicket, Ticket


@runtime_checkable
class AssetRepository(Protocol):
    """Asset persistence with optimistic concurrency on ``version``."""

    def get(self, asset_id: str) -> Asset | None:
        ...

    def save(self, asset: Asset) -> Asset:
        """Write the asset if its stored version still equals ``asset.version``.

        Returns the asset with the incremented version. Raises
        ConcurrentModificationError when another writer got there first.
        """
        ...

    def list_stuck(self, updated_before: datetime, limit: int) -> list[Asset]:
        """Live assets whose non-terminal cursor has not moved since ``updated_before``."""
        ...


@runtime_checkable
class IncidentRepository(Protocol):
    """Append/query store for system incidents."""

    def record(self, report: IncidentReport) -> tuple[SystemIncident, bool]:
        """Insert unless an unresolved incident shares the signature.

        Returns (incident, created). On a duplicate the existing incident is
        returned with its ``occurrences`` counter bumped.
        """
        ...

    def get(self, incident_id: str) -> SystemIncident | None:
        ...

    def increment_repair_attempts(self, incident_id: str) -> SystemIncident:
        ...

    def merge_metadata(self, incident_id: str, values: dict[str, Any]) -> SystemIncident | None:
        ...

    def mark_resolved(
        self, incident_id: str, auto_resolved: bool, resolved_at: datetime
    ) -> SystemIncident | None:
        """Resolve if still unresolved; returns None if it was already resolved."""
        ...

    def list_incidents(
        self,
        unresolved_only: bool = True,
        source_type: SourceType | None = None,
        source_id: str | None = None,
        tenant_id: str | None = None,
        severity: IncidentSeverity | None = None,
        limit: int = 100,
    ) -> list[SystemIncident]:
        """Incidents in triage order."""
        ...

    def summarize_unresolved(self, tenant_id: str | None = None) -> IncidentSummary:
        """Counts over every unresolved incident, optionally for one tenant."""
        ...


@runtime_checkable
class TicketRepository(Protocol):
    def create(self, ticket: NewTicket) -> Ticket:
        ...

    def get(self, ticket_id: str) -> Ticket | None:
        ...

    def find_open_for_source(self, source_type: str, source_id: str) -> Ticket | None:
        ...

    def close(self, ticket_id: str, reason: str) -> None:
        ...

    def count_auto_created_since(self, since: datetime) -> int:
        ...


@runtime_checkable
class FailureRecordRepository(Protocol):
    """Upload sessions, downloads and derivative failures behind one interface."""

    def get(self, domain: FailureDomain, record_id: str) -> FailureRecord | None:
        ...

    def find_for_asset(
        self,
        domain: FailureDomain,
        asset_id: str,
        derivative_type: str | None = None,
    ) -> FailureRecord | None:
        ...

    def record_failure(
        self,
        domain: FailureDomain,
        reason: str,
        *,
        tenant_id: str | None = None,
        asset_id: str | None = None,
        record_id: str | None = None,
        trace: str | None = None,
        derivative_type: str | None = None,
        processor: str | None = None,
        codec: str | None = None,
    ) -> FailureRecord:
        """Persist the reason and atomically increment ``failure_count``.

        Upload and download records are addressed by ``record_id`` (uploads
        may use ``asset_id``); derivative records are upserted per
        (asset_id, derivative_type).
        """
        ...

    def record_success(self, domain: FailureDomain, record_id: str) -> None:
        ...

    def attach_ticket(self, domain: FailureDomain, record_id: str, ticket_id: str) -> bool:
        """Set ``escalation_ticket_id`` only if it is still unset."""
        ...

    def store_triage(
        self,
        domain: FailureDomain,
        record_id: str,
        severity: AISeverity,
        summary: str | None,
        recommendation: str | None,
    ) -> None:
        ...

    def list_records(
        self,
        domain: FailureDomain,
        escalated: bool | None = None,
        tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[FailureRecord]:
        ...


@runtime_checkable
class ActivitySink(Protocol):
    """Fire-and-forget activity log; never read back by the reliability core."""

    def record(
        self,
        event_type: str,
        tenant_id: str | None,
        subject_type: str,
        subject_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        ...


@runtime_checkable
class PlanService(Protocol):
    def allows(self, tenant_id: str | None, feature: str) -> bool:
        ...


@runtime_checkable
class TextClassifier(Protocol):
    """Black-box text-in/text-out model used for failure triage."""

    def complete(self, prompt: str) -> str:
        ...


@runtime_checkable
class RetryDispatcher(Protocol):
    def dispatch(self, asset_id: str, stage: PipelineStage) -> None:
        """Enqueue the pipeline from ``stage`` onwards."""
        ...


@runtime_checkable
class FailureEventPublisher(Protocol):
    def publish(self, event: FailureReported) -> None:
        ...


@runtime_checkable
class ClassificationEnqueuer(Protocol):
    def enqueue(self, domain: FailureDomain, record_id: str) -> None:
        ...
