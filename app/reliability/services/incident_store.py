"""
PostgreSQL incident store.

Incidents are appended and resolved, never deleted. At most one unresolved
incident exists per (source_type, source_id, unique_signature): the
``system_incidents_open_signature`` partial unique index rejects the second
insert and the duplicate report only bumps ``occurrences`` on the open row.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from psycopg.types.json import Jsonb

from assetflow_core.domain.exceptions import IncidentNotFoundError
from assetflow_core.domain.incidents import (
    INCIDENT_COLUMNS,
    IncidentKey,
    IncidentReport,
    IncidentSeverity,
    IncidentSummary,
    SourceType,
    SystemIncident,
)
from assetflow_core.infrastructure.postgres import get_db_connection
from assetflow_core.runtime.errors import ErrorCode, RetryableError

_COLUMNS = ", ".join(INCIDENT_COLUMNS)

_TRIAGE_ORDER = """
    CASE severity
        WHEN 'critical' THEN 0
        WHEN 'error' THEN 1
        WHEN 'warning' THEN 2
        ELSE 3
    END,
    detected_at DESC
"""


class PostgresIncidentStore:
    """IncidentRepository backed by the ``system_incidents`` table."""

    def record(self, report: IncidentReport) -> tuple[SystemIncident, bool]:
        now = datetime.now(timezone.utc)
        metadata: dict[str, Any] = {
            **report.metadata,
            IncidentKey.REPAIR_ATTEMPTS: 0,
            IncidentKey.OCCURRENCES: 1,
        }
        if report.unique_signature:
            metadata[IncidentKey.UNIQUE_SIGNATURE] = report.unique_signature

        with get_db_connection() as conn:
            cursor = conn.cursor()
            # An incident resolved between the two statements frees the slot; one
            # more insert attempt covers that window.
            for _ in range(2):
                cursor.execute(
                    f"""
                    INSERT INTO system_incidents (
                        id, source_type, source_id, tenant_id, severity, title, message,
                        metadata, retryable, requires_support, auto_resolved, detected_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, FALSE, %s)
                    ON CONFLICT (source_type, (COALESCE(source_id, '')), (metadata->>'unique_signature'))
                        WHERE resolved_at IS NULL AND (metadata->>'unique_signature') IS NOT NULL
                    DO NOTHING
                    RETURNING {_COLUMNS}
                    """,
                    (
                        str(uuid.uuid4()),
                        report.source_type.value,
                        report.source_id,
                        report.tenant_id,
                        report.severity.value,
                        report.title,
                        report.message,
                        Jsonb(metadata),
                        report.retryable,
                        report.requires_support,
                        now,
                    ),
                )
                row = cursor.fetchone()
                if row:
                    conn.commit()
                    return SystemIncident.from_db_row(row), True

                cursor.execute(
                    f"""
                    UPDATE system_incidents
                    SET metadata = jsonb_set(
                        jsonb_set(
                            metadata,
                            '{{occurrences}}',
                            to_jsonb(COALESCE((metadata->>'occurrences')::int, 1) + 1)
                        ),
                        '{{last_seen_at}}',
                        to_jsonb(%s::text)
                    )
                    WHERE source_type = %s
                      AND COALESCE(source_id, '') = COALESCE(%s, '')
                      AND metadata->>'unique_signature' = %s
                      AND resolved_at IS NULL
                    RETURNING {_COLUMNS}
                    """,
                    (
                        now.isoformat(),
                        report.source_type.value,
                        report.source_id,
                        report.unique_signature,
                    ),
                )
                row = cursor.fetchone()
                if row:
                    conn.commit()
                    return SystemIncident.from_db_row(row), False

        raise RetryableError(
            code=ErrorCode.CONCURRENT_MODIFICATION,
            message_safe=f"Could not record incident for signature {report.unique_signature}",
        )

    def get(self, incident_id: str) -> SystemIncident | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_COLUMNS} FROM system_incidents WHERE id = %s",
                (incident_id,),
            )
            row = cursor.fetchone()
        return SystemIncident.from_db_row(row) if row else None

    def increment_repair_attempts(self, incident_id: str) -> SystemIncident:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE system_incidents
                SET metadata = jsonb_set(
                    metadata,
                    '{{repair_attempts}}',
                    to_jsonb(COALESCE((metadata->>'repair_attempts')::int, 0) + 1)
                )
                WHERE id = %s
                RETURNING {_COLUMNS}
                """,
                (incident_id,),
            )
            row = cursor.fetchone()
            conn.commit()

        if not row:
            raise IncidentNotFoundError(incident_id)
        return SystemIncident.from_db_row(row)

    def merge_metadata(self, incident_id: str, values: dict[str, Any]) -> SystemIncident | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE system_incidents
                SET metadata = metadata || %s
                WHERE id = %s
                RETURNING {_COLUMNS}
                """,
                (Jsonb(values), incident_id),
            )
            row = cursor.fetchone()
            conn.commit()
        return SystemIncident.from_db_row(row) if row else None

    def mark_resolved(
        self, incident_id: str, auto_resolved: bool, resolved_at: datetime
    ) -> SystemIncident | None:
        extra = {IncidentKey.AUTO_RECOVERED: True} if auto_resolved else {}
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE system_incidents
                SET resolved_at = %s, auto_resolved = %s, metadata = metadata || %s
                WHERE id = %s AND resolved_at IS NULL
                RETURNING {_COLUMNS}
                """,
                (resolved_at, auto_resolved, Jsonb(extra), incident_id),
            )
            row = cursor.fetchone()
            conn.commit()

        if row:
            logger.info(f"[{incident_id}] Incident resolved (auto={auto_resolved})")
        return SystemIncident.from_db_row(row) if row else None

    def list_incidents(
        self,
        unresolved_only: bool = True,
        source_type: SourceType | None = None,
        source_id: str | None = None,
        tenant_id: str | None = None,
        severity: IncidentSeverity | None = None,
        limit: int = 100,
    ) -> list[SystemIncident]:
        clauses = []
        params: list[Any] = []
        if unresolved_only:
            clauses.append("resolved_at IS NULL")
        if source_type is not None:
            clauses.append("source_type = %s")
            params.append(source_type.value)
        if source_id is not None:
            clauses.append("source_id = %s")
            params.append(source_id)
        if tenant_id is not None:
            clauses.append("tenant_id = %s")
            params.append(tenant_id)
        if severity is not None:
            clauses.append("severity = %s")
            params.append(severity.value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_COLUMNS} FROM system_incidents {where} ORDER BY {_TRIAGE_ORDER} LIMIT %s",
                tuple(params),
            )
            rows = cursor.fetchall()
        return [SystemIncident.from_db_row(row) for row in rows]

    def summarize_unresolved(self, tenant_id: str | None = None) -> IncidentSummary:
        where = "WHERE resolved_at IS NULL"
        params: tuple = ()
        if tenant_id is not None:
            where += " AND tenant_id = %s"
            params = (tenant_id,)

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT severity, source_type, COUNT(*),
                       COUNT(*) FILTER (WHERE requires_support),
                       COUNT(*) FILTER (WHERE metadata->>'{IncidentKey.TICKET_ID}' IS NOT NULL)
                FROM system_incidents
                {where}
                GROUP BY severity, source_type
                """,
                params,
            )
            rows = cursor.fetchall()
        return IncidentSummary.from_groups(rows)
