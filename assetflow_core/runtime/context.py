"""
Run-scoped context for pipeline and reliability operations.

RunContext carries the correlation id, tenant and asset identifiers and the
current attempt across stage processors and the reliability engine. It is
created once per Celery task invocation or per admin request.
"""

from __future__ import annotations

from pydantic import BaseModel


class RunContext(BaseModel):
    """Context flowing through one unit of pipeline work.

    Attributes:
        request_id: Correlation id (Celery task id or HTTP request id).
        tenant_id: Tenant owning the asset.
        asset_id: Asset being processed, if any.
        stage: Pipeline stage name, if running inside a stage task.
        attempt: Zero-based queue retry attempt.
        max_attempts: Attempts the queue will make before giving up.
        actor_id: Admin actor for manual actions.
    """

    request_id: str
    tenant_id: str | None = None
    asset_id: str | None = None
    stage: str | None = None
    attempt: int = 0
    max_attempts: int = 1
    actor_id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def for_worker(
        cls,
        task_id: str,
        tenant_id: str | None,
        asset_id: str,
        stage: str | None = None,
        attempt: int = 0,
        max_attempts: int = 1,
    ) -> "RunContext":
        """Create RunContext for a Celery task, using the task id for correlation."""
        return cls(
            request_id=task_id,
            tenant_id=tenant_id,
            asset_id=asset_id,
            stage=stage,
            attempt=attempt,
            max_attempts=max_attempts,
        )

    @classmethod
    def for_actor(cls, request_id: str, actor_id: str) -> "RunContext":
        """Create RunContext for an admin action."""
        return cls(request_id=request_id, actor_id=actor_id)

    @property
    def is_final_attempt(self) -> bool:
        """True when the queue will not retry this task again."""
        return self.attempt + 1 >= self.max_attempts

    def log_prefix(self) -> str:
        """Bracketed correlation prefix for log lines."""
        return f"[{self.asset_id or self.request_id}]"
