"""
Celery tasks for the reliability engine.

- handle_failure_reported: FailureReported subscriber
- classify_failure: failure classification bridge
- scan_stuck_assets: periodic stuck-asset scan (beat)
- attempt_recovery: background recovery of one incident
- generate_system_insight: periodic system reliability insight (beat)
- record_transfer_failure / record_transfer_success: upload and download
  outcomes reported by the host
"""

from __future__ import annotations

from loguru import logger

from app.reliability.factory import (
    get_classification_service,
    get_failure_subscriber,
    get_failure_tracker,
    get_insight_service,
    get_reliability_engine,
)
from app.workers.celery_app import celery_app
from assetflow_core.config import settings
from assetflow_core.domain.events import FailureReported
from assetflow_core.domain.exceptions import IncidentNotFoundError
from assetflow_core.domain.failures import FailureDomain
from assetflow_core.domain.tickets import EscalationResult
from assetflow_core.runtime.errors import RetryableError


def _summarize(result: EscalationResult) -> dict:
    return {
        "created": result.created,
        "suppressed": result.suppressed,
        "skipped_reason": result.skipped_reason,
        "error": result.error,
        "ticket_id": result.ticket.id if result.ticket else None,
    }


@celery_app.task(
    bind=True,
    name="assetflow.reliability.handle_failure_reported",
    max_retries=3,
    autoretry_for=(RetryableError,),
    retry_backoff=True,
)
def handle_failure_reported(self, event: dict) -> dict:
    """Decide between AI triage and a direct escalation check for a failure."""
    failure = FailureReported.model_validate(event)
    result = get_failure_subscriber().handle(failure)
    if result is None:
        return {"status": "deferred", "failure_record_id": failure.failure_record_id}
    return {"status": "checked", **_summarize(result)}


@celery_app.task(
    bind=True,
    name="assetflow.reliability.classify_failure",
    max_retries=2,
    autoretry_for=(RetryableError,),
    retry_backoff=True,
)
def classify_failure(self, domain: str, record_id: str) -> dict:
    """Triage a failure record and run the escalation check."""
    logger.info(f"[{record_id}] Classifying {domain} failure")
    result = get_classification_service().handle(FailureDomain(domain), record_id)
    return _summarize(result)


@celery_app.task(name="assetflow.reliability.scan_stuck_assets")
def scan_stuck_assets() -> dict:
    incidents = get_reliability_engine().scan_stuck_assets()
    return {"incidents": [incident.id for incident in incidents]}


@celery_app.task(name="assetflow.reliability.generate_system_insight")
def generate_system_insight() -> dict:
    if not settings.ENABLE_SYSTEM_INSIGHTS:
        logger.debug("System insights disabled")
        return {"status": "disabled"}
    insight = get_insight_service().analyze()
    return {"status": "recorded", **insight.model_dump(mode="json")}


@celery_app.task(name="assetflow.reliability.attempt_recovery")
def attempt_recovery(incident_id: str) -> dict:
    engine = get_reliability_engine()
    incident = engine.get_incident(incident_id)
    if incident is None:
        raise IncidentNotFoundError(f"Incident {incident_id} not found")
    result = engine.attempt_recovery(incident)
    return result.model_dump(mode="json")


@celery_app.task(
    bind=True,
    name="assetflow.reliability.record_transfer_failure",
    max_retries=3,
    autoretry_for=(RetryableError,),
    retry_backoff=True,
)
def record_transfer_failure(
    self,
    domain: str,
    reason: str,
    record_id: str | None = None,
    asset_id: str | None = None,
    tenant_id: str | None = None,
    trace: str | None = None,
) -> dict:
    """Record an upload or download failure: counter, incident, FailureReported."""
    record = get_failure_tracker().record_failure(
        FailureDomain(domain),
        reason,
        record_id=record_id,
        asset_id=asset_id,
        tenant_id=tenant_id,
        trace=trace,
    )
    return {
        "failure_record_id": record.id,
        "failure_reason": record.failure_reason,
        "failure_count": record.failure_count,
    }


@celery_app.task(name="assetflow.reliability.record_transfer_success")
def record_transfer_success(domain: str, record_id: str) -> dict:
    get_failure_tracker().record_success(FailureDomain(domain), record_id)
    logger.info(f"[{record_id}] {domain} succeeded")
    return {"failure_record_id": record_id, "recovered": True}
