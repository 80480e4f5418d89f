"""
Operations module routes.

This module provides the admin API for reliability operations:
- Incident triage list and summary
- Failure records per domain
- Reliability metrics
- Incident actions: recover, resolve, ticket, retry
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from app.operations.authorization import (
    Action,
    Authorizer,
    Resource,
    authorize,
    get_authorizer,
    require_operations_access,
)
from app.operations.factory import get_metrics_service, get_query_service
from app.operations.schemas import (
    CreateTicketResponse,
    FailureRecordListResponse,
    FailureRecordResponse,
    IncidentListResponse,
    IncidentResponse,
    IncidentSummaryResponse,
    RecoveryResponse,
    ReliabilityMetricsResponse,
    ResolveResponse,
    RetryResponse,
    TicketResponse,
)
from app.operations.services.metrics import ReliabilityMetricsService
from app.operations.services.queries import OperationsQueryService
from app.reliability.factory import get_reliability_engine
from app.reliability.services.engine import ReliabilityEngine
from assetflow_core.domain.auth import Actor
from assetflow_core.domain.failures import FailureDomain
from assetflow_core.domain.incidents import IncidentSeverity, SourceType, SystemIncident

router = APIRouter(prefix="/operations", tags=["operations"])


def _scoped_tenant(actor: Actor, requested: Optional[str]) -> Optional[str]:
    """Admins may query any tenant (or all); everyone else sees their own."""
    if actor.is_admin:
        return requested
    if requested is not None and requested != actor.tenant_id:
        raise HTTPException(status_code=403, detail="Not allowed to read another tenant")
    if actor.tenant_id is None:
        raise HTTPException(status_code=403, detail="Actor has no tenant")
    return actor.tenant_id


def _load_incident(
    incident_id: str,
    actor: Actor,
    authorizer: Authorizer,
    queries: OperationsQueryService,
    action: Action,
) -> SystemIncident:
    incident = queries.get_incident(incident_id)
    if incident is None:
        raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
    authorize(actor, Resource(kind="incident", tenant_id=incident.tenant_id, action=action), authorizer)
    return incident


# ==============================================================================
# INCIDENTS
# ==============================================================================


@router.get("/incidents", response_model=IncidentListResponse, summary="List incidents in triage order")
def list_incidents(
    unresolved_only: bool = Query(True, description="Only unresolved incidents"),
    source_type: Optional[SourceType] = Query(None),
    source_id: Optional[str] = Query(None),
    severity: Optional[IncidentSeverity] = Query(None),
    tenant_id: Optional[str] = Query(None, description="Tenant filter (admins only)"),
    limit: int = Query(100, ge=1, le=1000),
    actor: Actor = Depends(require_operations_access(Action.READ)),
    queries: OperationsQueryService = Depends(get_query_service),
):
    incidents = queries.list_incidents(
        unresolved_only=unresolved_only,
        source_type=source_type,
        source_id=source_id,
        tenant_id=_scoped_tenant(actor, tenant_id),
        severity=severity,
        limit=limit,
    )
    return IncidentListResponse(
        incidents=[IncidentResponse.from_incident(incident) for incident in incidents],
        total=len(incidents),
    )


@router.get("/incidents/summary", response_model=IncidentSummaryResponse)
def incident_summary(
    tenant_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_operations_access(Action.READ)),
    queries: OperationsQueryService = Depends(get_query_service),
):
    return IncidentSummaryResponse(**queries.summary(_scoped_tenant(actor, tenant_id)))


@router.get("/incidents/{incident_id}", response_model=IncidentResponse)
def get_incident(
    incident_id: str,
    actor: Actor = Depends(require_operations_access(Action.READ)),
    authorizer: Authorizer = Depends(get_authorizer),
    queries: OperationsQueryService = Depends(get_query_service),
):
    incident = _load_incident(incident_id, actor, authorizer, queries, Action.READ)
    return IncidentResponse.from_incident(incident)


# ==============================================================================
# INCIDENT ACTIONS
# ==============================================================================


@router.post("/incidents/{incident_id}/recover", response_model=RecoveryResponse)
def recover_incident(
    incident_id: str,
    actor: Actor = Depends(require_operations_access(Action.WRITE)),
    authorizer: Authorizer = Depends(get_authorizer),
    queries: OperationsQueryService = Depends(get_query_service),
    engine: ReliabilityEngine = Depends(get_reliability_engine),
):
    """Reconcile the source, resolve on success, escalate if eligible."""
    incident = _load_incident(incident_id, actor, authorizer, queries, Action.WRITE)
    logger.info(f"[{incident_id}] Recovery requested by {actor.id}")
    result = engine.attempt_recovery(incident)
    return RecoveryResponse(
        incident_id=incident_id,
        resolved=result.resolved,
        retry_dispatched=result.retry_dispatched,
        escalated=result.escalated,
        changes=[change.describe() for change in result.changes],
    )


@router.post("/incidents/{incident_id}/resolve", response_model=ResolveResponse)
def resolve_incident(
    incident_id: str,
    actor: Actor = Depends(require_operations_access(Action.WRITE)),
    authorizer: Authorizer = Depends(get_authorizer),
    queries: OperationsQueryService = Depends(get_query_service),
    engine: ReliabilityEngine = Depends(get_reliability_engine),
):
    incident = _load_incident(incident_id, actor, authorizer, queries, Action.WRITE)
    logger.info(f"[{incident_id}] Manual resolve by {actor.id}")
    resolved = engine.resolve(incident, auto=False)
    return ResolveResponse(incident=IncidentResponse.from_incident(resolved))


@router.post("/incidents/{incident_id}/ticket", response_model=CreateTicketResponse)
def create_incident_ticket(
    incident_id: str,
    actor: Actor = Depends(require_operations_access(Action.WRITE)),
    authorizer: Authorizer = Depends(get_authorizer),
    queries: OperationsQueryService = Depends(get_query_service),
    engine: ReliabilityEngine = Depends(get_reliability_engine),
):
    """Open a support ticket for the incident, or return the one already linked."""
    incident = _load_incident(incident_id, actor, authorizer, queries, Action.WRITE)
    logger.info(f"[{incident_id}] Ticket requested by {actor.id}")
    ticket = engine.create_ticket(incident)
    return CreateTicketResponse(
        incident_id=incident_id,
        ticket=TicketResponse.from_ticket(ticket) if ticket else None,
    )


@router.post("/incidents/{incident_id}/retry", response_model=RetryResponse)
def retry_incident(
    incident_id: str,
    actor: Actor = Depends(require_operations_access(Action.WRITE)),
    authorizer: Authorizer = Depends(get_authorizer),
    queries: OperationsQueryService = Depends(get_query_service),
    engine: ReliabilityEngine = Depends(get_reliability_engine),
):
    incident = _load_incident(incident_id, actor, authorizer, queries, Action.WRITE)
    if incident.is_resolved:
        raise HTTPException(status_code=409, detail="Incident is already resolved")
    if not incident.retryable:
        raise HTTPException(status_code=409, detail="Incident is not retryable")
    logger.info(f"[{incident_id}] Retry requested by {actor.id}")
    return RetryResponse(incident_id=incident_id, dispatched=engine.dispatch_retry(incident))


# ==============================================================================
# FAILURE RECORDS & METRICS
# ==============================================================================


@router.get("/failures/{domain}", response_model=FailureRecordListResponse)
def list_failure_records(
    domain: FailureDomain,
    escalated: Optional[bool] = Query(None, description="Filter by escalation_ticket_id presence"),
    tenant_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    actor: Actor = Depends(require_operations_access(Action.READ)),
    queries: OperationsQueryService = Depends(get_query_service),
):
    records = queries.list_failure_records(
        domain, escalated=escalated, tenant_id=_scoped_tenant(actor, tenant_id), limit=limit
    )
    return FailureRecordListResponse(
        domain=domain.value,
        records=[FailureRecordResponse.from_record(record) for record in records],
        total=len(records),
    )


@router.get("/metrics", response_model=ReliabilityMetricsResponse)
def reliability_metrics(
    tenant_id: Optional[str] = Query(None),
    actor: Actor = Depends(require_operations_access(Action.READ)),
    metrics: ReliabilityMetricsService = Depends(get_metrics_service),
):
    return ReliabilityMetricsResponse(**metrics.get_all(_scoped_tenant(actor, tenant_id)))
