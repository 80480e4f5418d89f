"""
Reliability module factory.

This module provides factory functions to create instances of reliability
services, handling dependency injection and configuration.
"""

from __future__ import annotations

from functools import lru_cache

from app.reliability.protocols import (
    ActivitySink,
    AssetRepository,
    FailureRecordRepository,
    IncidentRepository,
    PlanService,
    TicketRepository,
)
from app.reliability.services.activity import PostgresActivitySink
from app.reliability.services.asset_repository import PostgresAssetRepository
from app.reliability.services.classification import (
    FailureClassificationService,
    OpenAIFailureClassifier,
)
from app.reliability.services.engine import ReliabilityEngine
from app.reliability.services.escalation import EscalationPolicy, EscalationService
from app.reliability.services.events import FailureEventSubscriber
from app.reliability.services.failure_records import PostgresFailureRecordRepository
from app.reliability.services.failure_tracking import FailureTracker
from app.reliability.services.incident_store import PostgresIncidentStore
from app.reliability.services.insights import INSIGHT_SYSTEM_PROMPT, ReliabilityInsightService
from app.reliability.services.plans import PostgresPlanService
from app.reliability.services.reconciliation import ReconciliationService
from app.reliability.services.ticket_repository import PostgresTicketRepository
from app.workers.dispatch import (
    CeleryClassificationEnqueuer,
    CeleryFailureEventPublisher,
    CeleryRetryDispatcher,
)
from assetflow_core.config import settings
from assetflow_core.runtime.retry import RetryPolicy


@lru_cache()
def get_asset_repository() -> AssetRepository:
    return PostgresAssetRepository()


@lru_cache()
def get_incident_repository() -> IncidentRepository:
    return PostgresIncidentStore()


@lru_cache()
def get_ticket_repository() -> TicketRepository:
    return PostgresTicketRepository()


@lru_cache()
def get_failure_record_repository() -> FailureRecordRepository:
    return PostgresFailureRecordRepository(escalation_threshold=settings.ESCALATION_FAILURE_THRESHOLD)


@lru_cache()
def get_activity_sink() -> ActivitySink:
    return PostgresActivitySink()


@lru_cache()
def get_plan_service() -> PlanService:
    return PostgresPlanService()


@lru_cache()
def get_conflict_retry_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=settings.ASSET_WRITE_MAX_ATTEMPTS, base_delay=0.05, max_delay=1.0)


@lru_cache()
def get_reconciliation_service() -> ReconciliationService:
    return ReconciliationService(get_asset_repository(), retry_policy=get_conflict_retry_policy())


@lru_cache()
def get_escalation_service() -> EscalationService:
    """
    Get the escalation service instance.

    Wires up dependencies: tickets, incidents, failure records, assets, activity.
    """
    return EscalationService(
        tickets=get_ticket_repository(),
        incidents=get_incident_repository(),
        failure_records=get_failure_record_repository(),
        assets=get_asset_repository(),
        activity=get_activity_sink(),
        policy=EscalationPolicy(
            failure_threshold=settings.ESCALATION_FAILURE_THRESHOLD,
            rate_cap_per_hour=settings.TICKET_RATE_CAP_PER_HOUR,
            system_actor_id=settings.SYSTEM_ACTOR_ID,
        ),
    )


@lru_cache()
def get_reliability_engine() -> ReliabilityEngine:
    return ReliabilityEngine(
        incidents=get_incident_repository(),
        assets=get_asset_repository(),
        failure_records=get_failure_record_repository(),
        reconciliation=get_reconciliation_service(),
        escalation=get_escalation_service(),
        retry_dispatcher=CeleryRetryDispatcher(),
        activity=get_activity_sink(),
        escalation_threshold=settings.ESCALATION_FAILURE_THRESHOLD,
        stuck_after_minutes=settings.STUCK_ASSET_MINUTES,
        stuck_batch_size=settings.STUCK_SCAN_BATCH_SIZE,
    )


@lru_cache()
def get_classification_service() -> FailureClassificationService:
    return FailureClassificationService(
        failure_records=get_failure_record_repository(),
        classifier=OpenAIFailureClassifier(),
        escalation=get_escalation_service(),
        plans=get_plan_service(),
        activity=get_activity_sink(),
        trace_limit=settings.CLASSIFICATION_TRACE_MAX_CHARS,
        enabled=settings.ENABLE_AI_TRIAGE,
    )


@lru_cache()
def get_failure_subscriber() -> FailureEventSubscriber:
    return FailureEventSubscriber(
        failure_records=get_failure_record_repository(),
        classification=get_classification_service(),
        escalation=get_escalation_service(),
        enqueuer=CeleryClassificationEnqueuer(),
        classification_threshold=settings.CLASSIFICATION_FAILURE_THRESHOLD,
    )


@lru_cache()
def get_failure_tracker() -> FailureTracker:
    """Upload and download failure intake behind the transfer tasks."""
    return FailureTracker(
        failure_records=get_failure_record_repository(),
        engine=get_reliability_engine(),
        publisher=CeleryFailureEventPublisher(),
        trace_limit=settings.CLASSIFICATION_TRACE_MAX_CHARS,
    )


@lru_cache()
def get_insight_service() -> ReliabilityInsightService:
    return ReliabilityInsightService(
        assets=get_asset_repository(),
        incidents=get_incident_repository(),
        classifier=OpenAIFailureClassifier(system_prompt=INSIGHT_SYSTEM_PROMPT),
        activity=get_activity_sink(),
        stuck_after_minutes=settings.STUCK_ASSET_MINUTES,
    )
