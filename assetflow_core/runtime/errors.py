"""
Standardized error model with retry semantics.

Pipeline stages and repositories raise these
errors so that Celery retry configuration and the failure policy table can
tell transient infrastructure problems apart from domain failures.
"""

from __future__ import annotations

import uuid
from typing import Any


class ServiceError(Exception):
    """Service error carrying a machine-readable code and retry classification.

    Attributes:
        code: Error code for programmatic handling (see ErrorCode).
        message_safe: Message safe for logs, incidents and tickets.
        message_debug: Optional detailed message (stack excerpts, SQL).
        retryable: Whether the operation can be retried as-is.
        cause: Optional underlying exception.
        debug_id: Short identifier used to correlate logs and incidents.
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"ServiceError(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses (excludes debug info)."""
        return {
            "code": self.code,
            "message": self.message_safe,
            "debug_id": self.debug_id,
        }


class RetryableError(ServiceError):
    """Transient failure: storage timeouts, broker hiccups, version conflicts."""

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=True,
            cause=cause,
            debug_id=debug_id,
        )


class TerminalError(ServiceError):
    """Permanent failure: bad file format, missing permission, misconfiguration."""

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=False,
            cause=cause,
            debug_id=debug_id,
        )


class ErrorCode:
    """Standard error codes for common failure scenarios."""

    # Network/connectivity
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"

    # Storage
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    STORAGE_MISSING = "STORAGE_MISSING"
    DISK_FULL = "DISK_FULL"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Input
    INVALID_FORMAT = "INVALID_FORMAT"

    # Concurrency
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    # Pipeline
    STAGE_NOT_CONFIGURED = "STAGE_NOT_CONFIGURED"
