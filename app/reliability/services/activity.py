"""
Activity event sink.

Appends reliability events to ``activity_events``. Recording is
fire-and-forget: a failed insert is logged and never reaches the caller.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from loguru import logger
from psycopg.types.json import Jsonb

from assetflow_core.infrastructure.postgres import get_db_connection


class ActivityEvent:
    INCIDENT_RECORDED = "system.incident.recorded"
    INCIDENT_RESOLVED = "system.incident.resolved"
    INCIDENT_RETRIED = "system.incident.retried"
    TICKET_CREATED = "system.ticket.created"
    TICKET_SUPPRESSED = "system.ticket.suppressed"
    FAILURE_TRIAGED = "ai.failure.triaged"
    SYSTEM_INSIGHT = "ai.system_insight"
    ASSET_STAGE_FAILED = "asset.stage.failed"
    ASSET_STAGE_COMPLETED = "asset.stage.completed"


# Allowlist of permitted metadata keys; failure traces stay out of the log.
ALLOWED_METADATA_KEYS = frozenset({
    "incident_id",
    "ticket_id",
    "asset_id",
    "stage",
    "severity",
    "ai_severity",
    "agent_id",
    "failure_reason",
    "failure_count",
    "source_type",
    "auto_resolved",
    "retryable",
    "domain",
    "reason",
    "summary",
    "root_causes",
    "recommendations",
    "stuck_assets",
    "unresolved_incidents",
})


class PostgresActivitySink:
    """ActivitySink writing to the ``activity_events`` table."""

    def _validate_metadata(self, metadata: dict[str, Any]) -> dict[str, Any]:
        if not metadata:
            return {}

        filtered = {}
        for key, value in metadata.items():
            if key in ALLOWED_METADATA_KEYS:
                filtered[key] = value
            else:
                logger.warning(f"Activity metadata key '{key}' not in allowlist, skipping")
        return filtered

    def record(
        self,
        event_type: str,
        tenant_id: Optional[str],
        subject_type: str,
        subject_id: Optional[str],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        safe_metadata = self._validate_metadata(metadata or {})
        try:
            with get_db_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    INSERT INTO activity_events
                    (id, tenant_id, event_type, subject_type, subject_id, metadata, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        str(uuid.uuid4()),
                        tenant_id,
                        event_type,
                        subject_type,
                        subject_id,
                        Jsonb(safe_metadata),
                        datetime.now(timezone.utc),
                    ),
                )
                conn.commit()
        except Exception as e:
            logger.error(f"Failed to record activity event {event_type} for {subject_type}:{subject_id}: {e}")
