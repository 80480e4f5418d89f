"""
PostgreSQL asset repository.

Every write is a compare-and-swap on ``version``: the UPDATE only matches the
row the caller read, so concurrent stage completions and reconciliation
cannot overwrite each other's metadata changes.
"""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger
from psycopg.types.json import Jsonb

from assetflow_core.domain.assets import ANALYSIS_RANK, ASSET_COLUMNS, AnalysisStatus, Asset
from assetflow_core.domain.exceptions import ConcurrentModificationError
from assetflow_core.infrastructure.postgres import get_db_connection

_COLUMNS = ", ".join(ASSET_COLUMNS)

# Cursor values that should keep moving; complete and promotion_failed are at rest.
ACTIVE_ANALYSIS_STATUSES = tuple(
    value for value in ANALYSIS_RANK if value != AnalysisStatus.COMPLETE.value
)


class PostgresAssetRepository:
    """AssetRepository backed by the ``assets`` table."""

    def get(self, asset_id: str) -> Asset | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_COLUMNS} FROM assets WHERE id = %s", (asset_id,))
            row = cursor.fetchone()
        return Asset.from_db_row(row) if row else None

    def save(self, asset: Asset) -> Asset:
        now = datetime.now(timezone.utc)
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE assets
                SET status = %s,
                    thumbnail_status = %s,
                    metadata_status = %s,
                    tagging_status = %s,
                    promotion_status = %s,
                    analysis_status = %s,
                    metadata = %s,
                    failure_count = %s,
                    visibility_override = %s,
                    version = version + 1,
                    updated_at = %s
                WHERE id = %s AND version = %s
                RETURNING {_COLUMNS}
                """,
                (
                    asset.status.value,
                    asset.thumbnail_status.value,
                    asset.metadata_status.value,
                    asset.tagging_status.value,
                    asset.promotion_status.value,
                    asset.analysis_status,
                    Jsonb(asset.metadata),
                    asset.failure_count,
                    asset.visibility_override,
                    now,
                    asset.id,
                    asset.version,
                ),
            )
            row = cursor.fetchone()
            conn.commit()

        if not row:
            logger.debug(f"[{asset.id}] Version {asset.version} is stale")
            raise ConcurrentModificationError("asset", asset.id, asset.version)
        return Asset.from_db_row(row)

    def list_stuck(self, updated_before: datetime, limit: int) -> list[Asset]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_COLUMNS}
                FROM assets
                WHERE deleted_at IS NULL
                  AND analysis_status = ANY(%s)
                  AND updated_at < %s
                ORDER BY updated_at ASC
                LIMIT %s
                """,
                (list(ACTIVE_ANALYSIS_STATUSES), updated_before, limit),
            )
            rows = cursor.fetchall()
        return [Asset.from_db_row(row) for row in rows]
