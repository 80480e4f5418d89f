"""
Events exchanged between pipeline tasks and reliability subscribers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from .failures import FailureDomain


class FailureReported(BaseModel):
    """Published by a stage task after its failure has been recorded."""

    asset_id: Optional[str] = None
    tenant_id: Optional[str] = None
    stage: str
    failure_reason: str
    incident_id: Optional[str] = None
    domain: Optional[FailureDomain] = None
    failure_record_id: Optional[str] = None
    failure_trace: Optional[str] = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
