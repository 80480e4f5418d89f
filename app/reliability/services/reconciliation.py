"""
Asset state reconciliation.

Brings an asset's typed stage statuses, the ``analysis_status`` cursor, the
legacy metadata flags and the visibility status back in line with each
other. Planning is a pure function over a working copy; persisting goes
through the repository's compare-and-swap and is retried on version
conflicts.

Rules never move a stage or the cursor backward, and a malformed metadata
bag is treated as unknown: no flag is written and no success is inferred
from it.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from app.reliability.protocols import AssetRepository
from assetflow_core.domain.assets import (
    ANALYSIS_RANK,
    AnalysisStatus,
    Asset,
    AssetVisibility,
    FieldChange,
    MetadataFlag,
    PipelineStage,
    ReconcileResult,
    StageStatus,
    analysis_rank,
)
from assetflow_core.runtime.retry import CONFLICT_RETRY_POLICY, RetryPolicy, sync_with_retry


def resolve_visibility(asset: Asset) -> AssetVisibility:
    """The single place that decides visibility from processing state.

    - ``hidden`` is a user decision and is never changed.
    - A blocking failure without a human override makes a visible asset ``failed``.
    - A ``failed`` asset whose blocking failure has cleared becomes ``visible``.
    - With a malformed metadata bag the current status is kept.
    """
    if asset.status == AssetVisibility.HIDDEN:
        return AssetVisibility.HIDDEN
    if asset.flags is None:
        return asset.status
    if asset.has_blocking_failure and not asset.visibility_override:
        return AssetVisibility.FAILED
    return AssetVisibility.VISIBLE


class _Plan:
    """Working copy plus the list of changes applied to it."""

    def __init__(self, asset: Asset):
        self.asset = asset.model_copy(deep=True)
        self.changes: list[FieldChange] = []

    @property
    def flags(self) -> dict[str, Any] | None:
        return self.asset.flags

    def set_field(self, name: str, value: Any) -> None:
        old = getattr(self.asset, name)
        setattr(self.asset, name, value)
        self.changes.append(FieldChange(field=name, old=_plain(old), new=_plain(value)))

    def set_flag(self, key: str, value: Any) -> None:
        flags = self.flags
        old = flags.get(key)
        flags[key] = value
        self.changes.append(FieldChange(field=f"metadata.{key}", old=old, new=value))


def _plain(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def plan(asset: Asset) -> tuple[Asset, list[FieldChange]]:
    """Apply the inference rules to a copy of ``asset``; the input is not mutated."""
    p = _Plan(asset)
    _derive_thumbnail_state(p)
    _derive_metadata_state(p)
    _clear_stale_failure(p)
    _advance_analysis_status(p)

    visibility = resolve_visibility(p.asset)
    if visibility != p.asset.status:
        p.set_field("status", visibility)

    return p.asset, p.changes


def _derive_thumbnail_state(p: _Plan) -> None:
    flags = p.flags
    if flags is None:
        return
    asset = p.asset

    if (
        asset.thumbnail_status == StageStatus.COMPLETED
        and asset.has_derived_media()
        and not flags.get(MetadataFlag.THUMBNAILS_GENERATED)
    ):
        p.set_flag(MetadataFlag.THUMBNAILS_GENERATED, True)

    if (
        flags.get(MetadataFlag.THUMBNAILS_GENERATED)
        and asset.has_derived_media()
        and asset.thumbnail_status.is_open
    ):
        p.set_field("thumbnail_status", StageStatus.COMPLETED)


def _derive_metadata_state(p: _Plan) -> None:
    flags = p.flags
    if flags is None:
        return
    asset = p.asset

    if flags.get(MetadataFlag.METADATA_EXTRACTED) and asset.metadata_status.is_open:
        p.set_field("metadata_status", StageStatus.COMPLETED)

    if asset.metadata_status == StageStatus.COMPLETED and not flags.get(MetadataFlag.METADATA_EXTRACTED):
        p.set_flag(MetadataFlag.METADATA_EXTRACTED, True)


def _clear_stale_failure(p: _Plan) -> None:
    flags = p.flags
    if flags is None:
        return
    asset = p.asset

    if flags.get(MetadataFlag.PROCESSING_FAILED):
        try:
            failed_stage = PipelineStage(flags.get(MetadataFlag.FAILED_STAGE))
        except ValueError:
            failed_stage = None
        if failed_stage is not None and asset.stage_status(failed_stage) == StageStatus.COMPLETED:
            p.set_flag(MetadataFlag.PROCESSING_FAILED, False)

    if flags.get(MetadataFlag.PROMOTION_FAILED) and asset.promotion_status == StageStatus.COMPLETED:
        p.set_flag(MetadataFlag.PROMOTION_FAILED, False)


def _implied_analysis_status(asset: Asset) -> AnalysisStatus | None:
    if asset.flag(MetadataFlag.PIPELINE_COMPLETED_AT):
        return AnalysisStatus.COMPLETE
    if asset.flag(MetadataFlag.METADATA_EXTRACTED) or asset.metadata_status == StageStatus.COMPLETED:
        return AnalysisStatus.GENERATING_EMBEDDING
    if asset.thumbnail_status.is_done:
        return AnalysisStatus.EXTRACTING_METADATA
    return None


def _advance_analysis_status(p: _Plan) -> None:
    asset = p.asset
    cursor = asset.analysis_status

    if cursor == AnalysisStatus.PROMOTION_FAILED.value:
        if (
            asset.promotion_status == StageStatus.COMPLETED
            and asset.flag(MetadataFlag.PIPELINE_COMPLETED_AT)
        ):
            p.set_field("analysis_status", AnalysisStatus.COMPLETE.value)
        return

    current_rank = analysis_rank(cursor)
    if current_rank is None:
        # Unknown cursor strings are legacy drift; leave them alone.
        return

    implied = _implied_analysis_status(asset)
    if implied is not None and ANALYSIS_RANK[implied.value] > current_rank:
        p.set_field("analysis_status", implied.value)


class ReconciliationService:
    """Plans and persists reconciliation for one asset at a time."""

    def __init__(self, assets: AssetRepository, retry_policy: RetryPolicy | None = None):
        self._assets = assets
        self._retry_policy = retry_policy or CONFLICT_RETRY_POLICY

    def reconcile(self, asset: Asset | str) -> ReconcileResult:
        """Reconcile the persisted state of an asset.

        The asset is re-read on every attempt so that the plan is computed
        over the version being replaced. Does not create or resolve incidents.
        """
        asset_id = asset if isinstance(asset, str) else asset.id
        attempt = sync_with_retry(self._retry_policy)(self._reconcile_once)
        return attempt(asset_id)

    def _reconcile_once(self, asset_id: str) -> ReconcileResult:
        current = self._assets.get(asset_id)
        if current is None or current.is_deleted:
            logger.debug(f"[{asset_id}] Reconcile skipped: asset missing or deleted")
            return ReconcileResult(updated=False, asset=current)

        working, changes = plan(current)
        if not changes:
            return ReconcileResult(updated=False, asset=current)

        saved = self._assets.save(working)
        logger.info(
            f"[{asset_id}] Reconciled {len(changes)} field(s): "
            + ", ".join(change.describe() for change in changes)
        )
        return ReconcileResult(updated=True, changes=changes, asset=saved)
