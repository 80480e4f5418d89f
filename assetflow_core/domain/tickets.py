"""
Domain models for support tickets opened by escalation.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class TicketStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING_ON_SUPPORT = "waiting_on_support"
    WAITING_ON_USER = "waiting_on_user"
    BLOCKED = "blocked"
    RESOLVED = "resolved"
    CLOSED = "closed"


OPEN_TICKET_STATUSES = frozenset({
    TicketStatus.OPEN,
    TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_ON_SUPPORT,
    TicketStatus.WAITING_ON_USER,
    TicketStatus.BLOCKED,
})


class TicketSeverity(str, Enum):
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class TicketSource(str, Enum):
    OPERATIONS_INCIDENT = "operations_incident"
    FAILURE_ESCALATION = "failure_escalation"


TICKET_COLUMNS = (
    "id",
    "tenant_id",
    "type",
    "status",
    "severity",
    "subject",
    "description",
    "assigned_team",
    "source",
    "source_type",
    "source_id",
    "incident_id",
    "metadata",
    "created_by",
    "created_at",
)


class Ticket(BaseModel):
    id: str
    tenant_id: Optional[str] = None
    type: str = "internal"
    status: TicketStatus = TicketStatus.OPEN
    severity: TicketSeverity = TicketSeverity.P2
    subject: str
    description: str = ""
    assigned_team: str = "engineering"
    source: TicketSource
    source_type: Optional[str] = None
    source_id: Optional[str] = None
    incident_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_TICKET_STATUSES

    @classmethod
    def from_db_row(cls, row: tuple) -> "Ticket":
        data = dict(zip(TICKET_COLUMNS, row))
        data["id"] = str(data["id"])
        data["metadata"] = data.get("metadata") or {}
        for key in ("tenant_id", "source_id", "incident_id"):
            if data.get(key) is not None:
                data[key] = str(data[key])
        return cls(**data)


class NewTicket(BaseModel):
    """Ticket fields supplied by the escalation service before insert."""
    tenant_id: Optional[str] = None
    severity: TicketSeverity
    subject: str
    description: str
    source: TicketSource
    source_type: Optional[str] = None
    source_id: Optional[str] = None
    incident_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None


class EscalationResult(BaseModel):
    """Outcome of a non-raising escalation attempt."""
    created: bool = False
    ticket: Optional[Ticket] = None
    error: Optional[str] = None
    suppressed: bool = False
    skipped_reason: Optional[str] = None
