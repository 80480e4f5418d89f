"""Tests for StageRunner."""

import pytest

from assetflow_core.domain.assets import AnalysisStatus, AssetVisibility, PipelineStage, StageStatus
from assetflow_core.domain.failures import FailureDomain
from assetflow_core.runtime.context import RunContext
from assetflow_core.runtime.errors import ErrorCode, TerminalError
from tests.app.reliability.fakes import FakeProcessor, FakeStack, make_asset

CTX = RunContext.for_worker(task_id="task-1", tenant_id="tenant-1", asset_id="asset-1", max_attempts=3)


def run_failing(stack, stage, exc):
    """Run a stage whose processor raises, then record the failure as the task would."""
    with pytest.raises(type(exc)):
        stack.runner.run("asset-1", stage, CTX)
    return stack.runner.handle_failure("asset-1", stage, exc, CTX)


class TestStageRunnerSuccess:
    def test_thumbnail_completes_and_advances_cursor(self):
        from app.pipeline.services.stage_runner import StageRunStatus

        processor = FakeProcessor(metadata={"thumbnails": ["thumb-256.jpg"]})
        stack = FakeStack(processors={PipelineStage.THUMBNAIL: processor})
        stack.assets.add(make_asset())

        result = stack.runner.run("asset-1", PipelineStage.THUMBNAIL, CTX)

        assert result.status == StageRunStatus.COMPLETED
        assert processor.calls[0][0] == "asset-1"
        asset = stack.assets.get("asset-1")
        assert asset.thumbnail_status == StageStatus.COMPLETED
        assert asset.metadata["thumbnails_generated"] is True
        assert asset.metadata["processing_started"] is True
        assert asset.analysis_status == AnalysisStatus.EXTRACTING_METADATA.value
        assert stack.activity.of_type("asset.stage.completed")[0]["metadata"] == {"stage": "thumbnail"}

    def test_processor_sees_processing_status(self):
        seen = []

        class RecordingProcessor(FakeProcessor):
            def run(self, asset, ctx):
                seen.append((asset.thumbnail_status, asset.analysis_status))
                return super().run(asset, ctx)

        stack = FakeStack(processors={PipelineStage.THUMBNAIL: RecordingProcessor()})
        stack.assets.add(make_asset())

        stack.runner.run("asset-1", PipelineStage.THUMBNAIL, CTX)

        assert seen == [(StageStatus.PROCESSING, AnalysisStatus.GENERATING_THUMBNAILS.value)]

    def test_skipped_output_marks_stage_skipped(self):
        from app.pipeline.services.stage_runner import StageRunStatus

        stack = FakeStack(processors={PipelineStage.METADATA: FakeProcessor(skipped=True)})
        stack.assets.add(make_asset(thumbnail_status=StageStatus.COMPLETED))

        result = stack.runner.run("asset-1", PipelineStage.METADATA, CTX)

        assert result.status == StageRunStatus.SKIPPED
        asset = stack.assets.get("asset-1")
        assert asset.metadata_status == StageStatus.SKIPPED
        assert "metadata_extracted" not in asset.metadata

    def test_promotion_completes_pipeline(self):
        stack = FakeStack(processors={PipelineStage.PROMOTION: FakeProcessor()})
        stack.assets.add(
            make_asset(
                thumbnail_status=StageStatus.COMPLETED,
                metadata_status=StageStatus.COMPLETED,
                tagging_status=StageStatus.COMPLETED,
                analysis_status=AnalysisStatus.GENERATING_EMBEDDING.value,
                metadata={"thumbnails": ["t.jpg"], "thumbnails_generated": True, "metadata_extracted": True},
            )
        )

        stack.runner.run("asset-1", PipelineStage.PROMOTION, CTX)

        asset = stack.assets.get("asset-1")
        assert asset.promotion_status == StageStatus.COMPLETED
        assert asset.analysis_status == AnalysisStatus.COMPLETE.value
        assert asset.metadata["pipeline_completed_at"] == "2026-03-02T12:30:00+00:00"

    def test_thumbnail_success_stamps_derivative_record(self):
        stack = FakeStack(processors={PipelineStage.THUMBNAIL: FakeProcessor(metadata={"thumbnails": ["t.jpg"]})})
        stack.assets.add(make_asset())
        stack.failure_handler.handle("asset-1", PipelineStage.THUMBNAIL, RuntimeError("crash"), CTX)

        stack.runner.run("asset-1", PipelineStage.THUMBNAIL, CTX)

        record = stack.failure_records.find_for_asset(FailureDomain.DERIVATIVE, "asset-1", "thumbnail")
        assert record.last_succeeded_at is not None


class TestStageRunnerGuards:
    def test_missing_asset(self):
        from app.pipeline.services.stage_runner import StageRunStatus

        stack = FakeStack(processors={PipelineStage.THUMBNAIL: FakeProcessor()})

        result = stack.runner.run("missing", PipelineStage.THUMBNAIL, CTX)

        assert result.status == StageRunStatus.MISSING

    def test_already_done_is_not_rerun(self):
        from app.pipeline.services.stage_runner import StageRunStatus

        processor = FakeProcessor()
        stack = FakeStack(processors={PipelineStage.THUMBNAIL: processor})
        stack.assets.add(make_asset(thumbnail_status=StageStatus.COMPLETED))

        result = stack.runner.run("asset-1", PipelineStage.THUMBNAIL, CTX)

        assert result.status == StageRunStatus.ALREADY_DONE
        assert processor.calls == []

    def test_blocked_by_other_failed_stage(self):
        from app.pipeline.services.stage_runner import StageRunStatus

        processor = FakeProcessor()
        stack = FakeStack(processors={PipelineStage.AI_TAGGING: processor})
        stack.assets.add(
            make_asset(
                metadata_status=StageStatus.FAILED,
                metadata={"processing_failed": True, "failed_stage": "metadata", "thumbnails": ["t.jpg"]},
            )
        )

        result = stack.runner.run("asset-1", PipelineStage.AI_TAGGING, CTX)

        assert result.status == StageRunStatus.BLOCKED
        assert processor.calls == []

    def test_ai_tagging_skipped_without_thumbnails(self):
        from app.pipeline.services.stage_runner import StageRunStatus

        processor = FakeProcessor()
        stack = FakeStack(processors={PipelineStage.AI_TAGGING: processor})
        stack.assets.add(make_asset(thumbnail_status=StageStatus.FAILED, metadata_status=StageStatus.COMPLETED))

        result = stack.runner.run("asset-1", PipelineStage.AI_TAGGING, CTX)

        assert result.status == StageRunStatus.SKIPPED
        assert processor.calls == []
        asset = stack.assets.get("asset-1")
        assert asset.tagging_status == StageStatus.SKIPPED
        assert asset.metadata["ai_tagging_skipped"] is True

    def test_ai_tagging_runs_with_derived_media(self):
        processor = FakeProcessor()
        stack = FakeStack(processors={PipelineStage.AI_TAGGING: processor})
        stack.assets.add(make_asset(thumbnail_status=StageStatus.FAILED, metadata={"preview_thumbnails": ["p.jpg"]}))

        stack.runner.run("asset-1", PipelineStage.AI_TAGGING, CTX)

        assert len(processor.calls) == 1

    def test_unconfigured_stage_raises_terminal(self):
        stack = FakeStack()
        stack.assets.add(make_asset())

        with pytest.raises(TerminalError) as exc_info:
            stack.runner.run("asset-1", PipelineStage.METADATA, CTX)

        assert exc_info.value.code == ErrorCode.STAGE_NOT_CONFIGURED
        assert stack.assets.get("asset-1").metadata_status == StageStatus.PENDING


class TestStageRunnerFailures:
    def test_processor_error_propagates_and_is_recorded(self):
        from app.pipeline.services.stage_runner import StageRunStatus

        stack = FakeStack(processors={PipelineStage.METADATA: FakeProcessor(error=ValueError("bad exif"))})
        stack.assets.add(make_asset(thumbnail_status=StageStatus.COMPLETED))

        result = run_failing(stack, PipelineStage.METADATA, ValueError("bad exif"))

        assert result.status == StageRunStatus.FAILED
        assert result.incident_id is not None
        assert stack.incidents.get(result.incident_id).stage == "metadata"

    def test_rerun_after_failure_clears_state_and_resolves_incident(self):
        processor = FakeProcessor(error=ValueError("bad exif"))
        stack = FakeStack(processors={PipelineStage.METADATA: processor})
        stack.assets.add(make_asset(thumbnail_status=StageStatus.COMPLETED, metadata={"thumbnails": ["t.jpg"]}))
        failed = run_failing(stack, PipelineStage.METADATA, ValueError("bad exif"))
        assert stack.assets.get("asset-1").status == AssetVisibility.FAILED

        processor.error = None
        stack.runner.run("asset-1", PipelineStage.METADATA, CTX)

        asset = stack.assets.get("asset-1")
        assert asset.metadata_status == StageStatus.COMPLETED
        assert asset.metadata["processing_failed"] is False
        assert asset.status == AssetVisibility.VISIBLE
        assert asset.analysis_status == AnalysisStatus.GENERATING_EMBEDDING.value
        incident = stack.incidents.get(failed.incident_id)
        assert incident.is_resolved
        assert incident.auto_resolved is True

    def test_promotion_retry_leaves_side_state(self):
        processor = FakeProcessor(error=RuntimeError("index write failed"))
        stack = FakeStack(processors={PipelineStage.PROMOTION: processor})
        stack.assets.add(
            make_asset(
                thumbnail_status=StageStatus.COMPLETED,
                metadata_status=StageStatus.COMPLETED,
                tagging_status=StageStatus.COMPLETED,
                analysis_status=AnalysisStatus.SCORING.value,
                metadata={"thumbnails": ["t.jpg"], "thumbnails_generated": True, "metadata_extracted": True},
            )
        )
        failed = run_failing(stack, PipelineStage.PROMOTION, RuntimeError("index write failed"))
        assert stack.assets.get("asset-1").analysis_status == AnalysisStatus.PROMOTION_FAILED.value

        processor.error = None
        stack.runner.run("asset-1", PipelineStage.PROMOTION, CTX)

        asset = stack.assets.get("asset-1")
        assert asset.analysis_status == AnalysisStatus.COMPLETE.value
        assert asset.metadata["promotion_failed"] is False
        assert stack.incidents.get(failed.incident_id).is_resolved

    def test_repeated_thumbnail_failures_open_one_ticket(self):
        stack = FakeStack(processors={PipelineStage.THUMBNAIL: FakeProcessor(error=RuntimeError("vips crashed"))})
        stack.assets.add(make_asset())

        for _ in range(4):
            run_failing(stack, PipelineStage.THUMBNAIL, RuntimeError("vips crashed"))
            stack.drain_events()

        asset = stack.assets.get("asset-1")
        assert asset.failure_count == 4
        assert asset.status == AssetVisibility.VISIBLE
        assert len(stack.tickets.tickets) == 1
        record = stack.failure_records.find_for_asset(FailureDomain.DERIVATIVE, "asset-1", "thumbnail")
        assert record.failure_count == 4
        assert record.processor == "FakeProcessor"
        assert record.escalation_ticket_id is not None
