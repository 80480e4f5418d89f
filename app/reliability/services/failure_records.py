"""
PostgreSQL failure-record repository.

Upload sessions, downloads and derivative failures live in separate tables
but share the failure-tracking columns. Counters are incremented in SQL and
the escalation ticket is attached with a compare-and-set, so concurrent
workers never lose an increment or attach two tickets.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from assetflow_core.domain.exceptions import FailureRecordNotFoundError
from assetflow_core.domain.failures import (
    ESCALATION_THRESHOLD,
    FAILURE_RECORD_COLUMNS,
    AISeverity,
    FailureDomain,
    FailureRecord,
)
from assetflow_core.infrastructure.postgres import get_db_connection

_DERIVATIVE_ONLY = ("derivative_type", "processor", "codec")


def _select_list(domain: FailureDomain) -> str:
    """Column list in FAILURE_RECORD_COLUMNS order; non-derivative tables yield NULLs."""
    columns = []
    for column in FAILURE_RECORD_COLUMNS:
        if column in _DERIVATIVE_ONLY and domain != FailureDomain.DERIVATIVE:
            columns.append(f"NULL AS {column}")
        else:
            columns.append(column)
    return ", ".join(columns)


class PostgresFailureRecordRepository:
    """FailureRecordRepository over upload_sessions, downloads and asset_derivative_failures."""

    def __init__(self, escalation_threshold: int = ESCALATION_THRESHOLD):
        self._threshold = escalation_threshold

    def get(self, domain: FailureDomain, record_id: str) -> FailureRecord | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_select_list(domain)} FROM {domain.table} WHERE id = %s AND deleted_at IS NULL",
                (record_id,),
            )
            row = cursor.fetchone()
        return FailureRecord.from_db_row(domain, row) if row else None

    def find_for_asset(
        self,
        domain: FailureDomain,
        asset_id: str,
        derivative_type: str | None = None,
    ) -> FailureRecord | None:
        query = f"SELECT {_select_list(domain)} FROM {domain.table} WHERE asset_id = %s AND deleted_at IS NULL"
        params: list[Any] = [asset_id]
        if domain == FailureDomain.DERIVATIVE and derivative_type is not None:
            query += " AND derivative_type = %s"
            params.append(derivative_type)
        query += " ORDER BY last_failed_at DESC NULLS LAST LIMIT 1"

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, tuple(params))
            row = cursor.fetchone()
        return FailureRecord.from_db_row(domain, row) if row else None

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
        now = datetime.now(timezone.utc)
        reason = domain.coerce_reason(reason)

        with get_db_connection() as conn:
            cursor = conn.cursor()
            if domain == FailureDomain.DERIVATIVE:
                cursor.execute(
                    f"""
                    INSERT INTO asset_derivative_failures AS f (
                        tenant_id, asset_id, derivative_type, processor, codec,
                        failure_reason, failure_count, last_failed_at, failure_trace
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, 1, %s, %s)
                    ON CONFLICT (asset_id, derivative_type) WHERE deleted_at IS NULL
                    DO UPDATE SET
                        failure_reason = EXCLUDED.failure_reason,
                        failure_count = f.failure_count + 1,
                        last_failed_at = EXCLUDED.last_failed_at,
                        failure_trace = EXCLUDED.failure_trace,
                        processor = COALESCE(EXCLUDED.processor, f.processor),
                        codec = COALESCE(EXCLUDED.codec, f.codec)
                    RETURNING {_select_list(domain)}
                    """,
                    (tenant_id, asset_id, derivative_type or "thumbnail", processor, codec, reason, now, trace),
                )
            else:
                key_column, key = ("id", record_id) if record_id else ("asset_id", asset_id)
                cursor.execute(
                    f"""
                    UPDATE {domain.table}
                    SET failure_reason = %s,
                        failure_count = COALESCE(failure_count, 0) + 1,
                        last_failed_at = %s,
                        failure_trace = %s
                    WHERE {key_column} = %s AND deleted_at IS NULL
                    RETURNING {_select_list(domain)}
                    """,
                    (reason, now, trace, key),
                )
            row = cursor.fetchone()
            conn.commit()

        if not row:
            raise FailureRecordNotFoundError(f"{domain.value}:{record_id or asset_id}")
        return FailureRecord.from_db_row(domain, row)

    def record_success(self, domain: FailureDomain, record_id: str) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE {domain.table} SET last_succeeded_at = %s WHERE id = %s",
                (datetime.now(timezone.utc), record_id),
            )
            conn.commit()

    def attach_ticket(self, domain: FailureDomain, record_id: str, ticket_id: str) -> bool:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE {domain.table}
                SET escalation_ticket_id = %s
                WHERE id = %s AND escalation_ticket_id IS NULL
                """,
                (ticket_id, record_id),
            )
            attached = cursor.rowcount == 1
            conn.commit()
        return attached

    def store_triage(
        self,
        domain: FailureDomain,
        record_id: str,
        severity: AISeverity,
        summary: str | None,
        recommendation: str | None,
    ) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE {domain.table}
                SET ai_severity = %s, ai_summary = %s, ai_recommendation = %s
                WHERE id = %s
                """,
                (severity.value, summary, recommendation, record_id),
            )
            conn.commit()

    def list_records(
        self,
        domain: FailureDomain,
        escalated: bool | None = None,
        tenant_id: str | None = None,
        limit: int = 100,
    ) -> list[FailureRecord]:
        clauses = ["deleted_at IS NULL", "failure_count > 0"]
        params: list[Any] = []
        if escalated is True:
            clauses.append("(escalation_ticket_id IS NOT NULL OR failure_count >= %s)")
            params.append(self._threshold)
        elif escalated is False:
            clauses.append("escalation_ticket_id IS NULL AND COALESCE(failure_count, 0) < %s")
            params.append(self._threshold)
        if tenant_id is not None:
            clauses.append("tenant_id = %s")
            params.append(tenant_id)
        params.append(limit)

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_select_list(domain)}
                FROM {domain.table}
                WHERE {' AND '.join(clauses)}
                ORDER BY last_failed_at DESC NULLS LAST
                LIMIT %s
                """,
                tuple(params),
            )
            rows = cursor.fetchall()
        return [FailureRecord.from_db_row(domain, row) for row in rows]
