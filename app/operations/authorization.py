"""
Authorization for the operations surface.

The host application authenticates the caller and attaches an Actor to
``request.state.actor``. Every operations route then asks the Authorizer
whether that actor may act on the resource in question.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional, Protocol, runtime_checkable

from fastapi import Depends, HTTPException, Request

from assetflow_core.config import settings
from assetflow_core.domain.auth import Actor, Scope


class Action(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Resource:
    """What an operations request touches."""

    kind: str
    tenant_id: Optional[str] = None
    action: Action = Action.READ


@runtime_checkable
class Authorizer(Protocol):
    def can_manage(self, actor: Actor, resource: Resource) -> bool:
        ...


class ScopeAuthorizer:
    """Scope-based rules.

    - ``admin`` may do anything, in any tenant.
    - ``operations:read`` / ``operations:write`` apply to the actor's own tenant.
    - Resources without a tenant (system-wide) need ``admin``.
    """

    def can_manage(self, actor: Actor, resource: Resource) -> bool:
        if actor.is_admin:
            return True
        if resource.tenant_id is None or resource.tenant_id != actor.tenant_id:
            return False
        required = Scope.OPERATIONS_WRITE if resource.action == Action.WRITE else Scope.OPERATIONS_READ
        if actor.has_scope(required):
            return True
        # Write implies read
        return resource.action == Action.READ and actor.has_scope(Scope.OPERATIONS_WRITE)


@lru_cache()
def get_authorizer() -> Authorizer:
    return ScopeAuthorizer()


def _actor_from_headers(request: Request) -> Actor | None:
    actor_id = request.headers.get("X-Actor-Id")
    if not actor_id:
        return None
    scopes = request.headers.get("X-Actor-Scopes", "")
    return Actor(
        id=actor_id,
        tenant_id=request.headers.get("X-Tenant-Id") or None,
        scopes=frozenset(s.strip() for s in scopes.split(",") if s.strip()),
    )


def get_current_actor(request: Request) -> Actor:
    """Get the actor attached by the host, or from gateway headers when trusted.

    Raises:
        HTTPException: 401 if no actor can be resolved.
    """
    actor = getattr(request.state, "actor", None)
    if actor is None and settings.OPERATIONS_TRUST_ACTOR_HEADERS:
        actor = _actor_from_headers(request)
    if actor is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return actor


def authorize(
    actor: Actor,
    resource: Resource,
    authorizer: Authorizer,
) -> None:
    """Raise 403 unless the actor may manage the resource."""
    if not authorizer.can_manage(actor, resource):
        raise HTTPException(
            status_code=403,
            detail=f"Not allowed to {resource.action.value} {resource.kind}",
        )


def require_operations_access(action: Action = Action.READ):
    """Dependency factory: the actor needs the operations scope for ``action`` in some tenant.

    Per-resource tenant checks happen in the route once the resource is loaded.
    """

    def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        required = Scope.OPERATIONS_WRITE if action == Action.WRITE else Scope.OPERATIONS_READ
        allowed = actor.has_scope(required) or (
            action == Action.READ and actor.has_scope(Scope.OPERATIONS_WRITE)
        )
        if not allowed:
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions. Required scope: {required.value}",
            )
        return actor

    return _check
