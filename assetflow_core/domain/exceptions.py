"""
Standard exceptions for assetflow.

This module defines the hierarchy of domain exceptions. Errors that carry
retry semantics across task boundaries derive from the runtime error model.
"""

from assetflow_core.runtime.errors import ErrorCode, RetryableError


class AssetFlowError(Exception):
    """Base exception for all assetflow errors."""
    pass


class NotFoundError(AssetFlowError):
    """Referenced entity does not exist or is soft-deleted."""
    pass


class AssetNotFoundError(NotFoundError):
    pass


class IncidentNotFoundError(NotFoundError):
    pass


class FailureRecordNotFoundError(NotFoundError):
    pass


class ReliabilityError(AssetFlowError):
    """Base exception for reliability engine errors."""
    pass


class RetryNotAllowedError(ReliabilityError):
    """Retry was requested for an incident or record that cannot be retried."""
    pass


class EscalationError(ReliabilityError):
    """Ticket creation failed."""
    pass


class ClassificationError(AssetFlowError):
    """The failure classifier could not be invoked."""
    pass


class PermissionDeniedError(AssetFlowError):
    """Actor is not allowed to manage the resource."""
    pass


class ConcurrentModificationError(RetryableError):
    """Compare-and-swap write lost against a concurrent writer."""

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        super().__init__(
            code=ErrorCode.CONCURRENT_MODIFICATION,
            message_safe=f"{entity} {entity_id} changed concurrently (expected version {expected_version})",
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
