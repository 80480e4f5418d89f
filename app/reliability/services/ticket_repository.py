"""
PostgreSQL support ticket repository.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from psycopg.types.json import Jsonb

from assetflow_core.domain.tickets import (
    OPEN_TICKET_STATUSES,
    TICKET_COLUMNS,
    NewTicket,
    Ticket,
    TicketStatus,
)
from assetflow_core.infrastructure.postgres import get_db_connection

_COLUMNS = ", ".join(TICKET_COLUMNS)


class PostgresTicketRepository:
    """TicketRepository backed by the ``tickets`` table."""

    def create(self, ticket: NewTicket) -> Ticket:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO tickets (
                    id, tenant_id, type, status, severity, subject, description,
                    assigned_team, source, source_type, source_id, incident_id,
                    metadata, created_by, created_at
                )
                VALUES (%s, %s, 'internal', %s, %s, %s, %s, 'engineering', %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_COLUMNS}
                """,
                (
                    str(uuid.uuid4()),
                    ticket.tenant_id,
                    TicketStatus.OPEN.value,
                    ticket.severity.value,
                    ticket.subject,
                    ticket.description,
                    ticket.source.value,
                    ticket.source_type,
                    ticket.source_id,
                    ticket.incident_id,
                    Jsonb(ticket.metadata),
                    ticket.created_by,
                    datetime.now(timezone.utc),
                ),
            )
            row = cursor.fetchone()
            conn.commit()
        return Ticket.from_db_row(row)

    def get(self, ticket_id: str) -> Ticket | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {_COLUMNS} FROM tickets WHERE id = %s", (ticket_id,))
            row = cursor.fetchone()
        return Ticket.from_db_row(row) if row else None

    def find_open_for_source(self, source_type: str, source_id: str) -> Ticket | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_COLUMNS}
                FROM tickets
                WHERE type = 'internal'
                  AND source_type = %s
                  AND source_id = %s
                  AND status = ANY(%s)
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (source_type, source_id, [status.value for status in OPEN_TICKET_STATUSES]),
            )
            row = cursor.fetchone()
        return Ticket.from_db_row(row) if row else None

    def close(self, ticket_id: str, reason: str) -> None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE tickets
                SET status = %s, metadata = metadata || %s
                WHERE id = %s
                """,
                (TicketStatus.CLOSED.value, Jsonb({"closed_reason": reason}), ticket_id),
            )
            conn.commit()

    def count_auto_created_since(self, since: datetime) -> int:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT COUNT(*)
                FROM tickets
                WHERE created_at >= %s
                  AND (metadata->>'auto_created')::boolean IS TRUE
                """,
                (since,),
            )
            row = cursor.fetchone()
        return int(row[0]) if row else 0
