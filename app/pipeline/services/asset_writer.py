"""
Read-modify-write helper for asset rows.
"""

from __future__ import annotations

from typing import Callable

from loguru import logger

from app.reliability.protocols import AssetRepository
from assetflow_core.domain.assets import Asset
from assetflow_core.runtime.retry import CONFLICT_RETRY_POLICY, RetryPolicy, sync_with_retry


class AssetWriter:
    """Applies a mutation to the latest version of an asset.

    The asset is re-read on every attempt and written with the repository's
    compare-and-swap; version conflicts are retried with backoff.
    """

    def __init__(self, assets: AssetRepository, retry_policy: RetryPolicy | None = None):
        self._assets = assets
        self._retry_policy = retry_policy or CONFLICT_RETRY_POLICY

    def get(self, asset_id: str) -> Asset | None:
        return self._assets.get(asset_id)

    def update(self, asset_id: str, mutate: Callable[[Asset], None]) -> Asset | None:
        """Returns the saved asset, or None if it is missing or deleted."""
        attempt = sync_with_retry(self._retry_policy)(self._update_once)
        return attempt(asset_id, mutate)

    def _update_once(self, asset_id: str, mutate: Callable[[Asset], None]) -> Asset | None:
        current = self._assets.get(asset_id)
        if current is None or current.is_deleted:
            logger.debug(f"[{asset_id}] Update skipped: asset missing or deleted")
            return None

        working = current.model_copy(deep=True)
        mutate(working)
        return self._assets.save(working)
