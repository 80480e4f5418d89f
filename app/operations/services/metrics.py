"""
Reliability metrics over the incident log and the asset table.

- integrity: share of live assets without an unresolved asset/job incident
- mttr: mean time to resolve, in minutes
- recovery_success: share of resolved incidents that were auto-resolved
- ticket_escalation: unresolved incidents, and how many of them have a ticket
"""

from __future__ import annotations

from typing import Any, Optional

from loguru import logger

from assetflow_core.infrastructure.postgres import get_db_connection


def _percent(part: int, whole: int) -> Optional[float]:
    if whole <= 0:
        return None
    return round(100.0 * part / whole, 2)


class ReliabilityMetricsService:
    def get_all(self, tenant_id: str | None = None) -> dict[str, Any]:
        """All metric groups, optionally restricted to one tenant."""
        with get_db_connection() as conn:
            cursor = conn.cursor()
            metrics = {
                "integrity": self._integrity(cursor, tenant_id),
                "mttr": self._mttr(cursor, tenant_id),
                "recovery_success": self._recovery_success(cursor, tenant_id),
                "ticket_escalation": self._ticket_escalation(cursor, tenant_id),
            }
        logger.debug(f"Computed reliability metrics (tenant={tenant_id or 'all'})")
        return metrics

    @staticmethod
    def _tenant_clause(tenant_id: str | None, column: str = "tenant_id") -> tuple[str, tuple]:
        if tenant_id is None:
            return "", ()
        return f" AND {column} = %s", (tenant_id,)

    def _integrity(self, cursor, tenant_id: str | None) -> dict[str, Any]:
        clause, params = self._tenant_clause(tenant_id, "a.tenant_id")
        cursor.execute(
            f"""
            SELECT
                COUNT(*),
                COUNT(*) FILTER (WHERE EXISTS (
                    SELECT 1 FROM system_incidents i
                    WHERE i.source_type IN ('asset', 'job')
                      AND i.source_id = a.id::text
                      AND i.resolved_at IS NULL
                ))
            FROM assets a
            WHERE a.deleted_at IS NULL{clause}
            """,
            params,
        )
        total, affected = cursor.fetchone()
        rate = _percent(total - affected, total)
        return {
            "total_assets": total,
            "affected_assets": affected,
            "rate_percent": 100.0 if rate is None else rate,
        }

    def _mttr(self, cursor, tenant_id: str | None) -> dict[str, Any]:
        clause, params = self._tenant_clause(tenant_id)
        cursor.execute(
            f"""
            SELECT COUNT(*), AVG(EXTRACT(EPOCH FROM (resolved_at - detected_at)) / 60.0)
            FROM system_incidents
            WHERE resolved_at IS NOT NULL{clause}
            """,
            params,
        )
        resolved, avg_minutes = cursor.fetchone()
        return {
            "resolved_count": resolved,
            "mttr_minutes_avg": round(float(avg_minutes), 2) if avg_minutes is not None else None,
        }

    def _recovery_success(self, cursor, tenant_id: str | None) -> dict[str, Any]:
        clause, params = self._tenant_clause(tenant_id)
        cursor.execute(
            f"""
            SELECT COUNT(*), COUNT(*) FILTER (WHERE auto_resolved)
            FROM system_incidents
            WHERE resolved_at IS NOT NULL{clause}
            """,
            params,
        )
        resolved, auto_resolved = cursor.fetchone()
        return {
            "resolved_count": resolved,
            "auto_resolved_count": auto_resolved,
            "recovery_rate_percent": _percent(auto_resolved, resolved),
        }

    def _ticket_escalation(self, cursor, tenant_id: str | None) -> dict[str, Any]:
        clause, params = self._tenant_clause(tenant_id)
        cursor.execute(
            f"""
            SELECT COUNT(*), COUNT(*) FILTER (WHERE metadata ? 'ticket_id')
            FROM system_incidents
            WHERE resolved_at IS NULL{clause}
            """,
            params,
        )
        unresolved, escalated = cursor.fetchone()
        return {"unresolved_count": unresolved, "escalated_count": escalated}
