"""
Plan feature checks.

Billing is owned by the host application; the reliability core only asks
whether a tenant's plan includes a feature.
"""

from __future__ import annotations

from loguru import logger

from assetflow_core.infrastructure.postgres import get_db_connection

AI_FAILURE_TRIAGE = "ai_failure_triage"


class StaticPlanService:
    """Answers from a fixed feature set. Used when no billing backend is configured."""

    def __init__(self, features: frozenset[str] = frozenset({AI_FAILURE_TRIAGE})):
        self._features = features

    def allows(self, tenant_id: str | None, feature: str) -> bool:
        return feature in self._features


class PostgresPlanService:
    """Reads ``tenant_plan_features`` maintained by the billing service."""

    def allows(self, tenant_id: str | None, feature: str) -> bool:
        if tenant_id is None:
            return False
        try:
            with get_db_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    SELECT 1 FROM tenant_plan_features
                    WHERE tenant_id = %s AND feature = %s AND enabled IS TRUE
                    """,
                    (tenant_id, feature),
                )
                return cursor.fetchone() is not None
        except Exception as e:
            logger.warning(f"[{tenant_id}] Plan lookup for '{feature}' failed, treating as disabled: {e}")
            return False
