"""
FailureReported subscriber.

Stage tasks publish a FailureReported event instead of dispatching follow-up
work themselves. The subscriber decides whether the failure goes through AI
triage first or straight to the escalation check.
"""

from __future__ import annotations

from loguru import logger

from app.reliability.protocols import ClassificationEnqueuer, FailureRecordRepository
from app.reliability.services.classification import FailureClassificationService
from app.reliability.services.escalation import EscalationService
from assetflow_core.domain.events import FailureReported
from assetflow_core.domain.failures import CLASSIFICATION_THRESHOLD
from assetflow_core.domain.tickets import EscalationResult


class FailureEventSubscriber:
    def __init__(
        self,
        failure_records: FailureRecordRepository,
        classification: FailureClassificationService,
        escalation: EscalationService,
        enqueuer: ClassificationEnqueuer,
        classification_threshold: int = CLASSIFICATION_THRESHOLD,
    ):
        self._failure_records = failure_records
        self._classification = classification
        self._escalation = escalation
        self._enqueuer = enqueuer
        self._classification_threshold = classification_threshold

    def handle(self, event: FailureReported) -> EscalationResult | None:
        """Returns the escalation result, or None when the decision was deferred to triage."""
        if event.domain is None or not event.failure_record_id:
            logger.debug(f"[{event.asset_id}] {event.stage} failure has no failure record, nothing to escalate")
            return None

        record = self._failure_records.get(event.domain, event.failure_record_id)
        if record is None:
            logger.warning(f"[{event.failure_record_id}] {event.domain.value} failure record not found")
            return None

        if (
            record.should_classify(self._classification_threshold)
            and self._classification.triage_allowed(record.tenant_id)
        ):
            self._enqueuer.enqueue(record.domain, record.id)
            logger.info(
                f"[{record.id}] Queued {record.domain.agent_id} "
                f"(reason={record.failure_reason}, count={record.failure_count})"
            )
            return None

        return self._escalation.create_ticket_if_needed(record, ai_summary=None)
