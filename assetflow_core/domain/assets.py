"""
Domain models for assets under processing.

Each pipeline stage owns a typed StageStatus field. The free-form
``analysis_status`` cursor and the legacy ``metadata`` flags are kept for
existing readers and are brought back in line by reconciliation.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class AssetVisibility(str, Enum):
    """Whether the asset appears in end-user views. Says nothing about processing."""
    VISIBLE = "visible"
    HIDDEN = "hidden"
    FAILED = "failed"


class StageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_done(self) -> bool:
        return self in (StageStatus.COMPLETED, StageStatus.SKIPPED)

    @property
    def is_open(self) -> bool:
        return self in (StageStatus.PENDING, StageStatus.PROCESSING)


class PipelineStage(str, Enum):
    """Pipeline stages, in execution order."""
    THUMBNAIL = "thumbnail"
    METADATA = "metadata"
    AI_TAGGING = "ai_tagging"
    PROMOTION = "promotion"

    @property
    def status_field(self) -> str:
        return _STAGE_STATUS_FIELDS[self]

    @property
    def is_blocking(self) -> bool:
        """A blocking failure hides the asset; a non-blocking one preserves visibility."""
        return self in (PipelineStage.METADATA, PipelineStage.PROMOTION)

    @property
    def running_analysis_status(self) -> "AnalysisStatus":
        return _STAGE_RUNNING_CURSOR[self]


_STAGE_STATUS_FIELDS = {
    PipelineStage.THUMBNAIL: "thumbnail_status",
    PipelineStage.METADATA: "metadata_status",
    PipelineStage.AI_TAGGING: "tagging_status",
    PipelineStage.PROMOTION: "promotion_status",
}

PIPELINE_ORDER = [
    PipelineStage.THUMBNAIL,
    PipelineStage.METADATA,
    PipelineStage.AI_TAGGING,
    PipelineStage.PROMOTION,
]


class AnalysisStatus(str, Enum):
    """Known values of the coarse pipeline cursor."""
    UPLOADING = "uploading"
    GENERATING_THUMBNAILS = "generating_thumbnails"
    EXTRACTING_METADATA = "extracting_metadata"
    GENERATING_EMBEDDING = "generating_embedding"
    SCORING = "scoring"
    COMPLETE = "complete"
    # Side state, outside the linear progression
    PROMOTION_FAILED = "promotion_failed"


_STAGE_RUNNING_CURSOR = {
    PipelineStage.THUMBNAIL: AnalysisStatus.GENERATING_THUMBNAILS,
    PipelineStage.METADATA: AnalysisStatus.EXTRACTING_METADATA,
    PipelineStage.AI_TAGGING: AnalysisStatus.GENERATING_EMBEDDING,
    PipelineStage.PROMOTION: AnalysisStatus.SCORING,
}

ANALYSIS_RANK: dict[str, int] = {
    AnalysisStatus.UPLOADING.value: 0,
    AnalysisStatus.GENERATING_THUMBNAILS.value: 1,
    AnalysisStatus.EXTRACTING_METADATA.value: 2,
    AnalysisStatus.GENERATING_EMBEDDING.value: 3,
    AnalysisStatus.SCORING.value: 4,
    AnalysisStatus.COMPLETE.value: 5,
}


def analysis_rank(value: Any) -> Optional[int]:
    """Rank of a cursor value on the linear progression, None if unknown or side state."""
    if not isinstance(value, str):
        return None
    return ANALYSIS_RANK.get(value)


class MetadataFlag:
    """Keys of the legacy metadata bag."""
    PROCESSING_STARTED = "processing_started"
    PROCESSING_FAILED = "processing_failed"
    FAILED_STAGE = "failed_stage"
    METADATA_EXTRACTED = "metadata_extracted"
    THUMBNAILS_GENERATED = "thumbnails_generated"
    THUMBNAILS = "thumbnails"
    PREVIEW_THUMBNAILS = "preview_thumbnails"
    PIPELINE_COMPLETED_AT = "pipeline_completed_at"
    PROMOTION_FAILED = "promotion_failed"
    PROMOTION_FAILED_AT = "promotion_failed_at"
    PROMOTION_ERROR = "promotion_error"
    FAILURE_REASON = "failure_reason"
    FAILURE_ATTEMPTS = "failure_attempts"
    FAILURE_IS_RETRYABLE = "failure_is_retryable"
    FAILED_AT = "failed_at"
    AI_TAGGING_SKIPPED = "ai_tagging_skipped"

    DERIVED_MEDIA_KEYS = (THUMBNAILS, PREVIEW_THUMBNAILS)


ASSET_COLUMNS = (
    "id",
    "tenant_id",
    "brand_id",
    "title",
    "status",
    "thumbnail_status",
    "metadata_status",
    "tagging_status",
    "promotion_status",
    "analysis_status",
    "metadata",
    "failure_count",
    "visibility_override",
    "version",
    "created_at",
    "updated_at",
    "deleted_at",
)


class Asset(BaseModel):
    """One uploaded file under processing."""

    id: str
    tenant_id: str
    brand_id: Optional[str] = None
    title: Optional[str] = None
    status: AssetVisibility = AssetVisibility.VISIBLE
    thumbnail_status: StageStatus = StageStatus.PENDING
    metadata_status: StageStatus = StageStatus.PENDING
    tagging_status: StageStatus = StageStatus.PENDING
    promotion_status: StageStatus = StageStatus.PENDING
    analysis_status: Optional[str] = AnalysisStatus.UPLOADING.value
    # Legacy bag; may hold a non-dict value for rows written by old code.
    metadata: Any = Field(default_factory=dict)
    failure_count: int = 0
    visibility_override: bool = False
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def stage_status(self, stage: PipelineStage) -> StageStatus:
        return getattr(self, stage.status_field)

    def set_stage_status(self, stage: PipelineStage, status: StageStatus) -> None:
        setattr(self, stage.status_field, status)

    @property
    def flags(self) -> Optional[dict[str, Any]]:
        """The metadata bag if it is well-formed, else None."""
        return self.metadata if isinstance(self.metadata, dict) else None

    def flag(self, key: str, default: Any = None) -> Any:
        flags = self.flags
        if flags is None:
            return default
        return flags.get(key, default)

    def has_derived_media(self) -> bool:
        return any(self.flag(key) for key in MetadataFlag.DERIVED_MEDIA_KEYS)

    @property
    def has_blocking_failure(self) -> bool:
        return bool(self.flag(MetadataFlag.PROCESSING_FAILED))

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_db_row(cls, row: tuple) -> "Asset":
        """Construct Asset from a row selected with ASSET_COLUMNS."""
        data = dict(zip(ASSET_COLUMNS, row))
        data["id"] = str(data["id"])
        data["tenant_id"] = str(data["tenant_id"])
        if data.get("brand_id") is not None:
            data["brand_id"] = str(data["brand_id"])
        if data.get("metadata") is None:
            data["metadata"] = {}
        return cls(**data)


class FieldChange(BaseModel):
    """One field corrected by reconciliation."""
    field: str
    old: Any = None
    new: Any = None

    def describe(self) -> str:
        return f"{self.field}: {self.old!r} -> {self.new!r}"


class ReconcileResult(BaseModel):
    updated: bool = False
    changes: list[FieldChange] = Field(default_factory=list)
    # Asset state after the call (persisted version when updated)
    asset: Optional[Asset] = None
