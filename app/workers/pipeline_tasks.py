"""
Celery tasks for the asset processing pipeline.

Stages of one asset run as a Celery chain. A stage task never raises after
its failure has been recorded, so the chain moves on and the next stage
decides for itself whether it is blocked.
"""

from __future__ import annotations

from typing import Optional

from celery import chain
from loguru import logger

from app.pipeline.factory import get_stage_runner
from app.workers.celery_app import celery_app
from assetflow_core.domain.assets import PIPELINE_ORDER, PipelineStage
from assetflow_core.runtime.context import RunContext
from assetflow_core.runtime.errors import RetryableError
from assetflow_core.runtime.retry import DEFAULT_RETRY_POLICY

STAGE_MAX_RETRIES = 3


def stages_from(stage: PipelineStage) -> list[PipelineStage]:
    return PIPELINE_ORDER[PIPELINE_ORDER.index(stage):]


def dispatch_pipeline(
    asset_id: str,
    from_stage: PipelineStage = PipelineStage.THUMBNAIL,
    tenant_id: Optional[str] = None,
):
    """Enqueue the stage chain for an asset, starting at ``from_stage``."""
    stages = stages_from(from_stage)
    workflow = chain(*(run_stage.si(asset_id, stage.value, tenant_id) for stage in stages))
    result = workflow.apply_async()
    logger.info(f"[{asset_id}] Dispatched pipeline: {' -> '.join(s.value for s in stages)}")
    return result


@celery_app.task(
    bind=True,
    name="assetflow.pipeline.run_stage",
    max_retries=STAGE_MAX_RETRIES,
)
def run_stage(self, asset_id: str, stage: str, tenant_id: Optional[str] = None) -> dict:
    """
    Run one pipeline stage for an asset.

    Transient RetryableErrors are retried with backoff and only recorded as a
    failure on the final attempt; any other exception is recorded at once.

    Returns:
        dict: StageRunResult for the stage.
    """
    pipeline_stage = PipelineStage(stage)
    ctx = RunContext.for_worker(
        task_id=self.request.id,
        tenant_id=tenant_id,
        asset_id=asset_id,
        stage=stage,
        attempt=self.request.retries,
        max_attempts=self.max_retries + 1,
    )
    runner = get_stage_runner()

    try:
        result = runner.run(asset_id, pipeline_stage, ctx)
    except RetryableError as e:
        if not ctx.is_final_attempt:
            countdown = DEFAULT_RETRY_POLICY.calculate_delay(ctx.attempt)
            logger.warning(
                f"[{asset_id}] {stage} attempt {ctx.attempt + 1}/{ctx.max_attempts} hit a transient error, "
                f"retrying in {countdown:.1f}s: {e.message_safe}"
            )
            raise self.retry(exc=e, countdown=countdown)
        result = _record_failure(runner, asset_id, pipeline_stage, e, ctx)
    except Exception as e:
        result = _record_failure(runner, asset_id, pipeline_stage, e, ctx)

    return result.model_dump(mode="json")


def _record_failure(runner, asset_id: str, stage: PipelineStage, exc: Exception, ctx: RunContext):
    try:
        return runner.handle_failure(asset_id, stage, exc, ctx)
    except Exception as e:
        logger.exception(f"[{asset_id}] Could not record {stage.value} failure ({exc}): {e}")
        raise


@celery_app.task(name="assetflow.pipeline.start")
def start_pipeline(asset_id: str, tenant_id: Optional[str] = None, from_stage: str = "thumbnail") -> dict:
    """Entry point called on upload completion."""
    result = dispatch_pipeline(asset_id, PipelineStage(from_stage), tenant_id)
    return {"status": "dispatched", "asset_id": asset_id, "chain_id": result.id}
