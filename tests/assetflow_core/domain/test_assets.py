"""Unit tests for asset domain models."""

from assetflow_core.domain.assets import (
    AnalysisStatus,
    Asset,
    MetadataFlag,
    PipelineStage,
    StageStatus,
    analysis_rank,
)


class TestPipelineStage:
    def test_blocking_stages(self):
        """Metadata and promotion failures hide the asset; thumbnail and tagging do not."""
        assert PipelineStage.METADATA.is_blocking
        assert PipelineStage.PROMOTION.is_blocking
        assert not PipelineStage.THUMBNAIL.is_blocking
        assert not PipelineStage.AI_TAGGING.is_blocking

    def test_running_cursor(self):
        assert PipelineStage.THUMBNAIL.running_analysis_status == AnalysisStatus.GENERATING_THUMBNAILS
        assert PipelineStage.PROMOTION.running_analysis_status == AnalysisStatus.SCORING


class TestAnalysisRank:
    def test_linear_progression(self):
        assert analysis_rank("uploading") < analysis_rank("extracting_metadata") < analysis_rank("complete")

    def test_side_state_and_unknown_have_no_rank(self):
        assert analysis_rank(AnalysisStatus.PROMOTION_FAILED.value) is None
        assert analysis_rank("legacy_value") is None
        assert analysis_rank(None) is None
        assert analysis_rank(3) is None


class TestAsset:
    def test_stage_status_accessors(self):
        asset = Asset(id="a", tenant_id="t")

        asset.set_stage_status(PipelineStage.AI_TAGGING, StageStatus.SKIPPED)

        assert asset.tagging_status == StageStatus.SKIPPED
        assert asset.stage_status(PipelineStage.AI_TAGGING).is_done

    def test_malformed_metadata_has_no_flags(self):
        asset = Asset(id="a", tenant_id="t", metadata=["not", "a", "dict"])

        assert asset.flags is None
        assert asset.flag(MetadataFlag.PROCESSING_FAILED) is None
        assert asset.has_blocking_failure is False
        assert asset.has_derived_media() is False

    def test_derived_media(self):
        assert Asset(id="a", tenant_id="t", metadata={"thumbnails": {"small": "s.jpg"}}).has_derived_media()
        assert Asset(id="a", tenant_id="t", metadata={"preview_thumbnails": ["p.jpg"]}).has_derived_media()
        assert not Asset(id="a", tenant_id="t", metadata={"thumbnails": {}}).has_derived_media()

    def test_from_db_row_defaults_null_metadata(self):
        row = (
            "a", "t", None, "Title", "visible", "pending", "pending", "pending", "pending",
            "uploading", None, 0, False, 2, None, None, None,
        )

        asset = Asset.from_db_row(row)

        assert asset.metadata == {}
        assert asset.version == 2
        assert asset.title == "Title"
