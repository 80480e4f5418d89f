"""
System reliability insight.

A periodic health assessment for operators. The service snapshots stuck
assets and unresolved incidents, asks a text model for a short diagnosis and
appends the result to the activity log. It never opens tickets.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger
from pydantic import BaseModel, Field

from app.reliability.protocols import (
    ActivitySink,
    AssetRepository,
    IncidentRepository,
    TextClassifier,
)
from app.reliability.services.activity import ActivityEvent
from app.reliability.services.classification import load_json_object
from assetflow_core.domain.assets import Asset
from assetflow_core.domain.incidents import IncidentSummary, SystemIncident

SYSTEM_INSIGHT_AGENT_ID = "system_reliability_agent"
DEFAULT_INSIGHT_SUMMARY = "System reliability analysis completed."
MAX_SUMMARY_CHARS = 500

INSIGHT_SYSTEM_PROMPT = (
    "You assess the health of a digital asset processing pipeline for its operators. "
    "Respond with a single JSON object with keys: "
    '"summary" (two or three sentences), '
    '"severity" (one of "low", "medium", "high", "critical"), '
    '"root_causes" (array of strings), '
    '"recommendations" (array of three to five actionable strings).'
)


class InsightSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Checked in order when the response carries no usable severity.
_SEVERITY_KEYWORDS = [
    (InsightSeverity.CRITICAL, re.compile(r"\bcritical\b", re.IGNORECASE)),
    (InsightSeverity.HIGH, re.compile(r"\bhigh\b", re.IGNORECASE)),
    (InsightSeverity.LOW, re.compile(r"\blow\b", re.IGNORECASE)),
]


class HealthSnapshot(BaseModel):
    """What the insight is computed from."""

    taken_at: datetime
    stuck_after_minutes: int
    stuck_assets: list[Asset] = Field(default_factory=list)
    incidents: IncidentSummary = Field(default_factory=IncidentSummary)
    recent_incidents: list[SystemIncident] = Field(default_factory=list)


class ReliabilityInsight(BaseModel):
    summary: str
    severity: InsightSeverity
    root_causes: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    parsed: bool = True
    stuck_assets: int = 0
    unresolved_incidents: int = 0
    generated_at: Optional[datetime] = None


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def severity_from_text(text: str) -> InsightSeverity:
    for severity, pattern in _SEVERITY_KEYWORDS:
        if pattern.search(text):
            return severity
    return InsightSeverity.MEDIUM


def parse_insight(raw: str | None) -> ReliabilityInsight:
    """Read the model response leniently.

    Without a JSON object the raw text becomes the summary and the severity
    is taken from the first of critical, high or low mentioned in it,
    defaulting to medium.
    """
    raw = raw or ""
    data = load_json_object(raw)

    if data is None:
        return ReliabilityInsight(
            summary=raw.strip()[:MAX_SUMMARY_CHARS] or DEFAULT_INSIGHT_SUMMARY,
            severity=severity_from_text(raw),
            parsed=False,
        )

    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = DEFAULT_INSIGHT_SUMMARY

    try:
        severity = InsightSeverity(str(data.get("severity", "")).strip().lower())
        parsed = True
    except ValueError:
        severity = severity_from_text(raw)
        parsed = False

    return ReliabilityInsight(
        summary=summary.strip()[:MAX_SUMMARY_CHARS],
        severity=severity,
        root_causes=_string_list(data.get("root_causes")),
        recommendations=_string_list(data.get("recommendations")),
        parsed=parsed,
    )


def build_insight_prompt(snapshot: HealthSnapshot, sample_size: int = 5) -> str:
    """Counts plus a small sample of incidents and stuck assets. Identifiers only."""
    incidents = snapshot.incidents
    severity_counts = ", ".join(f"{name}={count}" for name, count in incidents.by_severity.items())
    lines = [
        "Analyze the following system health data and provide a concise reliability assessment.",
        "",
        "SYSTEM HEALTH DATA:",
        f"- Assets without pipeline progress for {snapshot.stuck_after_minutes}+ minutes: "
        f"{len(snapshot.stuck_assets)}",
        f"- Unresolved incidents: {incidents.unresolved} ({severity_counts or 'none'})",
        f"- Unresolved incidents requiring support: {incidents.requires_support}",
        f"- Unresolved incidents with a ticket: {incidents.with_ticket}",
    ]

    if snapshot.recent_incidents:
        lines.append("")
        lines.append("RECENT INCIDENTS (sample):")
        for incident in snapshot.recent_incidents[:sample_size]:
            lines.append(
                f"- [{incident.severity.value}] {incident.title} "
                f"({incident.source_type.value}, occurrences={incident.occurrences})"
            )
            if incident.message:
                lines.append(f"  Details: {incident.message[:150]}")

    if snapshot.stuck_assets:
        lines.append("")
        lines.append("STUCK ASSETS (sample):")
        for asset in snapshot.stuck_assets[:sample_size]:
            lines.append(
                f"- {asset.id} (analysis_status: {asset.analysis_status}, "
                f"thumbnail_status: {asset.thumbnail_status.value}, failures: {asset.failure_count})"
            )

    lines.append("")
    lines.append(
        "Respond as JSON with keys: summary, severity (low, medium, high or critical), "
        "root_causes (array), recommendations (array)."
    )
    return "\n".join(lines)


class ReliabilityInsightService:
    def __init__(
        self,
        assets: AssetRepository,
        incidents: IncidentRepository,
        classifier: TextClassifier,
        activity: ActivitySink | None = None,
        stuck_after_minutes: int = 30,
        stuck_sample_limit: int = 50,
        sample_size: int = 5,
        clock: Callable[[], datetime] | None = None,
    ):
        self._assets = assets
        self._incidents = incidents
        self._classifier = classifier
        self._activity = activity
        self._stuck_after_minutes = stuck_after_minutes
        self._stuck_sample_limit = stuck_sample_limit
        self._sample_size = sample_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def gather(self) -> HealthSnapshot:
        now = self._clock()
        return HealthSnapshot(
            taken_at=now,
            stuck_after_minutes=self._stuck_after_minutes,
            stuck_assets=self._assets.list_stuck(
                now - timedelta(minutes=self._stuck_after_minutes), self._stuck_sample_limit
            ),
            incidents=self._incidents.summarize_unresolved(),
            recent_incidents=self._incidents.list_incidents(unresolved_only=True, limit=self._sample_size),
        )

    def analyze(self) -> ReliabilityInsight:
        """Snapshot, classify and record one insight. Classifier errors propagate."""
        snapshot = self.gather()
        raw = self._classifier.complete(build_insight_prompt(snapshot, self._sample_size))
        insight = parse_insight(raw).model_copy(
            update={
                "stuck_assets": len(snapshot.stuck_assets),
                "unresolved_incidents": snapshot.incidents.unresolved,
                "generated_at": snapshot.taken_at,
            }
        )

        logger.info(
            f"System insight: severity={insight.severity.value} (parsed={insight.parsed}), "
            f"stuck={insight.stuck_assets}, unresolved={insight.unresolved_incidents}"
        )
        if self._activity:
            self._activity.record(
                ActivityEvent.SYSTEM_INSIGHT,
                None,
                "system",
                None,
                {
                    "agent_id": SYSTEM_INSIGHT_AGENT_ID,
                    "severity": insight.severity.value,
                    "summary": insight.summary,
                    "root_causes": insight.root_causes,
                    "recommendations": insight.recommendations,
                    "stuck_assets": insight.stuck_assets,
                    "unresolved_incidents": insight.unresolved_incidents,
                },
            )
        return insight
