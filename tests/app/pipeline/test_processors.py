"""Tests for the stage processor registry."""

import pytest

from assetflow_core.domain.assets import PipelineStage
from assetflow_core.runtime.errors import ErrorCode, TerminalError
from tests.app.reliability.fakes import FakeProcessor

PROCESSOR_REF = "tests.app.reliability.fakes:FakeProcessor"


class TestProcessorRegistry:
    def test_register_and_get(self):
        from app.pipeline.services.processors import ProcessorRegistry

        registry = ProcessorRegistry()
        processor = FakeProcessor()
        registry.register(PipelineStage.THUMBNAIL, processor)

        assert registry.get(PipelineStage.THUMBNAIL) is processor
        assert registry.stages() == [PipelineStage.THUMBNAIL]

    def test_register_rejects_non_processor(self):
        from app.pipeline.services.processors import ProcessorRegistry

        with pytest.raises(TypeError):
            ProcessorRegistry().register(PipelineStage.THUMBNAIL, object())

    def test_get_unregistered_stage(self):
        from app.pipeline.services.processors import ProcessorRegistry

        with pytest.raises(TerminalError) as exc_info:
            ProcessorRegistry().get(PipelineStage.PROMOTION)

        assert exc_info.value.code == ErrorCode.STAGE_NOT_CONFIGURED


class TestLoadProcessor:
    def test_class_reference_is_instantiated(self):
        from app.pipeline.services.processors import load_processor

        processor = load_processor(PROCESSOR_REF)

        assert isinstance(processor, FakeProcessor)

    @pytest.mark.parametrize("reference", ["tests.app.reliability.fakes", ":FakeProcessor", ""])
    def test_invalid_reference(self, reference):
        from app.pipeline.services.processors import load_processor

        with pytest.raises(ValueError):
            load_processor(reference)

    def test_build_registry_ignores_unknown_stages(self):
        from app.pipeline.services.processors import build_registry

        registry = build_registry({"thumbnail": PROCESSOR_REF, "transcode": PROCESSOR_REF})

        assert registry.stages() == [PipelineStage.THUMBNAIL]
