"""
Registry of stage processors.

Processors are registered in code or loaded from the ``STAGE_PROCESSORS``
setting as ``"package.module:attribute"`` references. The attribute may be a
processor instance or a zero-argument factory.
"""

from __future__ import annotations

import importlib

from loguru import logger

from app.pipeline.protocols import StageProcessor
from assetflow_core.domain.assets import PipelineStage
from assetflow_core.runtime.errors import ErrorCode, TerminalError


class ProcessorRegistry:
    def __init__(self):
        self._processors: dict[PipelineStage, StageProcessor] = {}

    def register(self, stage: PipelineStage, processor: StageProcessor) -> None:
        if not isinstance(processor, StageProcessor):
            raise TypeError(f"{processor!r} does not implement StageProcessor")
        self._processors[stage] = processor
        logger.info(f"Registered {type(processor).__name__} for stage {stage.value}")

    def get(self, stage: PipelineStage) -> StageProcessor:
        processor = self._processors.get(stage)
        if processor is None:
            raise TerminalError(
                code=ErrorCode.STAGE_NOT_CONFIGURED,
                message_safe=f"No processor registered for stage {stage.value}",
            )
        return processor

    def stages(self) -> list[PipelineStage]:
        return list(self._processors)


def load_processor(reference: str) -> StageProcessor:
    """Resolve a ``module:attribute`` reference to a processor instance."""
    module_name, _, attribute = reference.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Invalid processor reference {reference!r}, expected 'module:attribute'")

    target = getattr(importlib.import_module(module_name), attribute)
    if isinstance(target, type) or (callable(target) and not isinstance(target, StageProcessor)):
        target = target()
    return target


def build_registry(references: dict[str, str]) -> ProcessorRegistry:
    registry = ProcessorRegistry()
    for stage_name, reference in references.items():
        try:
            stage = PipelineStage(stage_name)
        except ValueError:
            logger.warning(f"Ignoring processor for unknown stage {stage_name!r}")
            continue
        registry.register(stage, load_processor(reference))
    return registry
