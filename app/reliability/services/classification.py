"""
Failure classification bridge.

Asks a text model to triage a failure record and hands the result to the
escalation service. The model is not bound to return valid JSON, so the
response is parsed leniently. Triage is advisory: whatever happens here,
``create_ticket_if_needed`` is still called.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel

from app.reliability.protocols import (
    ActivitySink,
    FailureRecordRepository,
    PlanService,
    TextClassifier,
)
from app.reliability.services.activity import ActivityEvent
from app.reliability.services.escalation import EscalationService
from app.reliability.services.plans import AI_FAILURE_TRIAGE
from assetflow_core.config import settings
from assetflow_core.domain.exceptions import ClassificationError
from assetflow_core.domain.failures import AISeverity, FailureDomain, FailureRecord
from assetflow_core.domain.tickets import EscalationResult
from assetflow_core.infrastructure.openai_client import get_openai_client

SEVERITY_PATTERN = re.compile(r'"severity"\s*:\s*"([^"]+)"', re.IGNORECASE)
SUMMARY_PATTERN = re.compile(r'"summary"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
RECOMMENDATION_PATTERN = re.compile(r'"recommendation"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
# "system" within a short window of "severity", in either order
SYSTEM_NEAR_SEVERITY = re.compile(r"severity.{0,40}?system|system.{0,40}?severity", re.IGNORECASE | re.DOTALL)
JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

SYSTEM_PROMPT = (
    "You triage failures in a digital asset processing pipeline. "
    "Respond with a single JSON object with keys: "
    '"severity" (one of "system", "warning", "data"), '
    '"summary" (one or two sentences for a support engineer), '
    '"recommendation" (the next action to take).'
)


class Classification(BaseModel):
    severity: AISeverity
    summary: Optional[str] = None
    recommendation: Optional[str] = None
    parsed: bool = True


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"')
    except json.JSONDecodeError:
        return value


def _coerce_severity(value: Any) -> Optional[AISeverity]:
    if not isinstance(value, str):
        return None
    try:
        return AISeverity(value.strip().lower())
    except ValueError:
        return None


def load_json_object(raw: str) -> Optional[dict[str, Any]]:
    match = JSON_OBJECT.search(raw)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_classification(raw: str | None) -> Classification:
    """Extract severity, summary and recommendation from a model response.

    Well-formed JSON is read directly; otherwise each field is pulled out
    with a regex. When no known severity can be read, ``system`` is assumed
    if the word appears near "severity", else ``warning``.
    """
    raw = raw or ""
    data = load_json_object(raw)

    if data is not None:
        severity = _coerce_severity(data.get("severity"))
        summary = data.get("summary") if isinstance(data.get("summary"), str) else None
        recommendation = (
            data.get("recommendation") if isinstance(data.get("recommendation"), str) else None
        )
    else:
        match = SEVERITY_PATTERN.search(raw)
        severity = _coerce_severity(match.group(1)) if match else None
        match = SUMMARY_PATTERN.search(raw)
        summary = _unescape(match.group(1)) if match else None
        match = RECOMMENDATION_PATTERN.search(raw)
        recommendation = _unescape(match.group(1)) if match else None

    if severity is not None:
        return Classification(severity=severity, summary=summary, recommendation=recommendation)

    fallback = AISeverity.SYSTEM if SYSTEM_NEAR_SEVERITY.search(raw) else AISeverity.WARNING
    return Classification(
        severity=fallback, summary=summary, recommendation=recommendation, parsed=False
    )


def build_prompt(record: FailureRecord, trace_limit: int = 2000) -> str:
    """Prompt with identifiers and a truncated trace. Never includes credentials or URLs."""
    lines = [
        f"Failure domain: {record.domain.value}",
        f"Record ID: {record.id}",
        f"Tenant ID: {record.tenant_id or 'unknown'}",
        f"Asset ID: {record.asset_id or 'n/a'}",
        f"Failure reason: {record.failure_reason or 'unknown'}",
        f"Failure count: {record.failure_count}",
    ]
    if record.last_failed_at:
        lines.append(f"Last failed at: {record.last_failed_at.isoformat()}")
    if record.domain == FailureDomain.DERIVATIVE:
        lines.append(f"Derivative type: {record.derivative_type or 'unknown'}")
        lines.append(f"Processor: {record.processor or 'unknown'}")
        lines.append(f"Codec: {record.codec or 'unknown'}")

    trace = (record.failure_trace or "")[:trace_limit]
    lines.append("")
    lines.append("Trace:")
    lines.append(trace or "(none)")
    return "\n".join(lines)


class OpenAIFailureClassifier:
    """TextClassifier backed by OpenAI chat completions."""

    def __init__(self, model: str | None = None, system_prompt: str = SYSTEM_PROMPT):
        self._model = model or settings.OPENAI_MODEL_ID
        self._system_prompt = system_prompt

    def complete(self, prompt: str) -> str:
        try:
            client = get_openai_client()
            response = client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": self._system_prompt},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
            )
        except Exception as e:
            raise ClassificationError(f"Classifier call failed: {e}") from e
        return response.choices[0].message.content or ""


class FailureClassificationService:
    def __init__(
        self,
        failure_records: FailureRecordRepository,
        classifier: TextClassifier,
        escalation: EscalationService,
        plans: PlanService,
        activity: ActivitySink | None = None,
        trace_limit: int = 2000,
        enabled: bool = True,
    ):
        self._failure_records = failure_records
        self._classifier = classifier
        self._escalation = escalation
        self._plans = plans
        self._activity = activity
        self._trace_limit = trace_limit
        self._enabled = enabled

    def triage_allowed(self, tenant_id: str | None) -> bool:
        return self._enabled and self._plans.allows(tenant_id, AI_FAILURE_TRIAGE)

    def handle(self, domain: FailureDomain, record_id: str) -> EscalationResult:
        """Classify the failure if the tenant's plan allows it, then escalate if needed."""
        record = self._failure_records.get(domain, record_id)
        if record is None:
            logger.warning(f"[{record_id}] {domain.value} failure record not found, skipping triage")
            return EscalationResult(skipped_reason="record_missing")

        classification = None
        if self.triage_allowed(record.tenant_id):
            classification = self._classify(record)

        return self._escalation.create_ticket_if_needed(
            record,
            ai_summary=classification.summary if classification else None,
            ai_severity=classification.severity if classification else None,
            ai_recommendation=classification.recommendation if classification else None,
        )

    def _classify(self, record: FailureRecord) -> Classification | None:
        try:
            raw = self._classifier.complete(build_prompt(record, self._trace_limit))
            classification = parse_classification(raw)
            self._failure_records.store_triage(
                record.domain,
                record.id,
                classification.severity,
                classification.summary,
                classification.recommendation,
            )
        except Exception as e:
            logger.warning(f"[{record.id}] Failure classification unavailable: {e}")
            return None

        logger.info(
            f"[{record.id}] {record.domain.agent_id} classified failure as "
            f"{classification.severity.value} (parsed={classification.parsed})"
        )
        if self._activity:
            self._activity.record(
                ActivityEvent.FAILURE_TRIAGED,
                record.tenant_id,
                record.domain.value,
                record.id,
                {
                    "agent_id": record.domain.agent_id,
                    "ai_severity": classification.severity.value,
                    "failure_count": record.failure_count,
                },
            )
        return classification
