"""
Pipeline module protocols.

Stage processors do the actual media work (thumbnail rendering, metadata
extraction, tagging, promotion). They are registered by the host; the
pipeline only orchestrates them and reports their failures.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from assetflow_core.domain.assets import Asset
from assetflow_core.runtime.context import RunContext


class StageOutput(BaseModel):
    """What a processor hands back on success.

    Attributes:
        metadata: Keys merged into the asset's legacy metadata bag
            (e.g. ``thumbnails`` for the thumbnail stage).
        skipped: The processor decided the stage does not apply to this asset.
        processor: Name of the processor, recorded on derivative failures.
    """

    metadata: dict[str, Any] = Field(default_factory=dict)
    skipped: bool = False
    processor: Optional[str] = None


@runtime_checkable
class StageProcessor(Protocol):
    def run(self, asset: Asset, ctx: RunContext) -> StageOutput:
        """Process one stage for one asset.

        Raise RetryableError for transient infrastructure problems; any other
        exception is recorded as a stage failure.
        """
        ...
