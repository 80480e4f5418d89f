"""
Service runtime layer for assetflow.

This package provides shared infrastructure for reliability:
- RunContext: Task-scoped context with correlation IDs
- ServiceError: Standardized errors with retry semantics
- RetryPolicy: Configurable in-process retry behavior
"""

from .context import RunContext
from .errors import ErrorCode, RetryableError, ServiceError, TerminalError
from .retry import CONFLICT_RETRY_POLICY, RetryPolicy, sync_with_retry

__all__ = [
    "RunContext",
    "ServiceError",
    "RetryableError",
    "TerminalError",
    "ErrorCode",
    "RetryPolicy",
    "CONFLICT_RETRY_POLICY",
    "sync_with_retry",
]
