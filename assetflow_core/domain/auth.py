"""
Authorization domain models.

- Scope: Permission scopes for the operations surface
- Actor: Identity performing an admin action
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Scope(str, Enum):
    """Authorization scopes for operations access."""

    OPERATIONS_READ = "operations:read"
    OPERATIONS_WRITE = "operations:write"
    ADMIN = "admin"  # Full access, across tenants


@dataclass(frozen=True)
class Actor:
    """Authenticated identity, resolved by the host application."""

    id: str
    tenant_id: str | None = None
    scopes: frozenset[str] = field(default_factory=frozenset)

    def has_scope(self, scope: str | Scope) -> bool:
        """True if the actor has the scope or the admin scope."""
        scope_str = scope.value if isinstance(scope, Scope) else scope
        return scope_str in self.scopes or Scope.ADMIN.value in self.scopes

    @property
    def is_admin(self) -> bool:
        return Scope.ADMIN.value in self.scopes
