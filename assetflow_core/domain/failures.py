"""
Failure-tracking records for uploads, downloads and asset derivatives.

The three entities share one shape and one escalation predicate; the
``FailureDomain`` discriminator selects the table, the reason enum and the
classification agent.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

# Uniform across upload, download and derivative domains.
ESCALATION_THRESHOLD = 3
CLASSIFICATION_THRESHOLD = 2


class UploadFailureReason(str, Enum):
    TRANSFER_FAILED = "transfer_failed"
    FINALIZE_FAILED = "finalize_failed"
    THUMBNAIL_FAILED = "thumbnail_failed"
    TIMEOUT = "timeout"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    PERMISSION_ERROR = "permission_error"
    DISK_FULL = "disk_full"
    INVALID_FORMAT = "invalid_format"
    UNKNOWN = "unknown"


class DownloadFailureReason(str, Enum):
    ZIP_BUILD_FAILED = "zip_build_failed"
    STORAGE_MISSING = "storage_missing"
    STORAGE_READ_ERROR = "storage_read_error"
    TIMEOUT = "timeout"
    DISK_FULL = "disk_full"
    PERMISSION_ERROR = "permission_error"
    UNKNOWN = "unknown"


class DerivativeFailureReason(str, Enum):
    PROCESSOR_CRASH = "processor_crash"
    STORAGE_MISSING = "storage_missing"
    UNSUPPORTED_CODEC = "unsupported_codec"
    INVALID_FORMAT = "invalid_format"
    TIMEOUT = "timeout"
    DISK_FULL = "disk_full"
    PERMISSION_ERROR = "permission_error"
    UNKNOWN = "unknown"


class StageFailureReason(str, Enum):
    """Reasons written to the asset's ``failure_reason`` flag by stage tasks."""
    TIMEOUT = "timeout"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    STORAGE_MISSING = "storage_missing"
    DISK_FULL = "disk_full"
    PERMISSION_ERROR = "permission_error"
    INVALID_FORMAT = "invalid_format"
    PROCESSOR_CRASH = "processor_crash"
    PROMOTION_FAILED = "promotion_failed"
    UNKNOWN = "unknown"


class AISeverity(str, Enum):
    """Severity vocabulary returned by the failure classifier."""
    SYSTEM = "system"
    WARNING = "warning"
    DATA = "data"


class ReasonPolicy(BaseModel):
    retryable: bool
    requires_support: bool = False

    model_config = {"frozen": True}


REASON_POLICY: dict[str, ReasonPolicy] = {
    "timeout": ReasonPolicy(retryable=True),
    "storage_unavailable": ReasonPolicy(retryable=True),
    "storage_read_error": ReasonPolicy(retryable=True),
    "transfer_failed": ReasonPolicy(retryable=True),
    "finalize_failed": ReasonPolicy(retryable=True),
    "thumbnail_failed": ReasonPolicy(retryable=True),
    "zip_build_failed": ReasonPolicy(retryable=True),
    "processor_crash": ReasonPolicy(retryable=True),
    "promotion_failed": ReasonPolicy(retryable=True),
    # Retryable only after an operator frees space.
    "disk_full": ReasonPolicy(retryable=False, requires_support=True),
    "permission_error": ReasonPolicy(retryable=False, requires_support=True),
    "storage_missing": ReasonPolicy(retryable=False, requires_support=True),
    "invalid_format": ReasonPolicy(retryable=False),
    "unsupported_codec": ReasonPolicy(retryable=False),
    "unknown": ReasonPolicy(retryable=True),
}


def policy_for(reason: Optional[str]) -> ReasonPolicy:
    return REASON_POLICY.get(reason or "unknown", REASON_POLICY["unknown"])


class FailureDomain(str, Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DERIVATIVE = "derivative"

    @property
    def reason_enum(self) -> type[Enum]:
        return _DOMAIN_REASONS[self]

    @property
    def table(self) -> str:
        return _DOMAIN_TABLES[self]

    @property
    def agent_id(self) -> str:
        return _DOMAIN_AGENTS[self]

    @property
    def critical_reasons(self) -> frozenset[str]:
        return _CRITICAL_REASONS[self]

    def coerce_reason(self, value: Optional[str]) -> str:
        """Map a generic reason onto this domain's enum, falling back to unknown."""
        try:
            return self.reason_enum(value).value
        except ValueError:
            return "unknown"


_DOMAIN_REASONS = {
    FailureDomain.UPLOAD: UploadFailureReason,
    FailureDomain.DOWNLOAD: DownloadFailureReason,
    FailureDomain.DERIVATIVE: DerivativeFailureReason,
}

_DOMAIN_TABLES = {
    FailureDomain.UPLOAD: "upload_sessions",
    FailureDomain.DOWNLOAD: "downloads",
    FailureDomain.DERIVATIVE: "asset_derivative_failures",
}

_DOMAIN_AGENTS = {
    FailureDomain.UPLOAD: "upload_failure_analyzer",
    FailureDomain.DOWNLOAD: "download_zip_failure_analyzer",
    FailureDomain.DERIVATIVE: "asset_derivative_failure_analyzer",
}

_CRITICAL_REASONS = {
    FailureDomain.UPLOAD: frozenset({"transfer_failed", "finalize_failed", "thumbnail_failed"}),
    FailureDomain.DOWNLOAD: frozenset({"zip_build_failed", "storage_missing"}),
    FailureDomain.DERIVATIVE: frozenset({"processor_crash", "storage_missing"}),
}


FAILURE_RECORD_COLUMNS = (
    "id",
    "tenant_id",
    "asset_id",
    "failure_reason",
    "failure_count",
    "last_failed_at",
    "last_succeeded_at",
    "escalation_ticket_id",
    "failure_trace",
    "ai_severity",
    "ai_summary",
    "ai_recommendation",
    "derivative_type",
    "processor",
    "codec",
    "deleted_at",
)


class FailureRecord(BaseModel):
    """Shared shape of UploadSession, Download and AssetDerivativeFailure."""

    id: str
    domain: FailureDomain
    tenant_id: Optional[str] = None
    asset_id: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_count: int = 0
    last_failed_at: Optional[datetime] = None
    last_succeeded_at: Optional[datetime] = None
    escalation_ticket_id: Optional[str] = None
    failure_trace: Optional[str] = None
    ai_severity: Optional[AISeverity] = None
    ai_summary: Optional[str] = None
    ai_recommendation: Optional[str] = None
    # Derivative records only
    derivative_type: Optional[str] = None
    processor: Optional[str] = None
    codec: Optional[str] = None
    deleted_at: Optional[datetime] = None

    def needs_escalation(self, threshold: int = ESCALATION_THRESHOLD) -> bool:
        """The uniform escalation predicate."""
        return self.failure_count >= threshold or self.escalation_ticket_id is not None

    def should_classify(self, threshold: int = CLASSIFICATION_THRESHOLD) -> bool:
        return self.failure_count >= threshold or self.failure_reason in self.domain.critical_reasons

    @property
    def is_recovered(self) -> bool:
        """A success was recorded after the most recent failure."""
        if self.last_succeeded_at is None:
            return False
        return self.last_failed_at is None or self.last_succeeded_at >= self.last_failed_at

    @classmethod
    def from_db_row(cls, domain: FailureDomain, row: tuple) -> "FailureRecord":
        data = dict(zip(FAILURE_RECORD_COLUMNS, row))
        data["id"] = str(data["id"])
        for key in ("tenant_id", "asset_id", "escalation_ticket_id"):
            if data.get(key) is not None:
                data[key] = str(data[key])
        return cls(domain=domain, **data)
