"""Tests for PostgresTicketRepository."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from assetflow_core.domain.tickets import NewTicket, TicketSeverity, TicketSource, TicketStatus

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_postgres():
    """Provides mock PostgreSQL connection and cursor."""
    with patch("app.reliability.services.ticket_repository.get_db_connection") as mock_get_conn:
        mock_conn = MagicMock()
        mock_cursor = MagicMock()
        mock_conn.cursor.return_value = mock_cursor
        mock_conn.__enter__ = MagicMock(return_value=mock_conn)
        mock_conn.__exit__ = MagicMock(return_value=False)
        mock_get_conn.return_value = mock_conn
        yield {"connection": mock_conn, "cursor": mock_cursor}


def _row(status="open"):
    return (
        "ticket-1", "tenant-1", "internal", status, "P1", "Upload failure: timeout", "desc",
        "engineering", "failure_escalation", "upload", "up-1", None, {"auto_created": True}, "system@internal", NOW,
    )


class TestPostgresTicketRepository:
    def test_create_inserts_open_ticket(self, mock_postgres):
        from app.reliability.services.ticket_repository import PostgresTicketRepository

        mock_postgres["cursor"].fetchone.return_value = _row()

        ticket = PostgresTicketRepository().create(
            NewTicket(
                tenant_id="tenant-1",
                severity=TicketSeverity.P1,
                subject="Upload failure: timeout",
                description="desc",
                source=TicketSource.FAILURE_ESCALATION,
                source_type="upload",
                source_id="up-1",
                metadata={"auto_created": True},
            )
        )

        assert ticket.id == "ticket-1"
        assert ticket.is_open
        params = mock_postgres["cursor"].execute.call_args[0][1]
        assert params[2] == "open"
        assert params[3] == "P1"
        mock_postgres["connection"].commit.assert_called_once()

    def test_find_open_for_source_filters_statuses(self, mock_postgres):
        from app.reliability.services.ticket_repository import PostgresTicketRepository

        mock_postgres["cursor"].fetchone.return_value = None

        assert PostgresTicketRepository().find_open_for_source("upload", "up-1") is None
        params = mock_postgres["cursor"].execute.call_args[0][1]
        assert "closed" not in params[2]
        assert "resolved" not in params[2]
        assert "open" in params[2]

    def test_close_records_reason(self, mock_postgres):
        from app.reliability.services.ticket_repository import PostgresTicketRepository

        PostgresTicketRepository().close("ticket-1", reason="duplicate escalation")

        params = mock_postgres["cursor"].execute.call_args[0][1]
        assert params[0] == TicketStatus.CLOSED.value
        assert params[1].obj == {"closed_reason": "duplicate escalation"}

    def test_count_auto_created_since(self, mock_postgres):
        from app.reliability.services.ticket_repository import PostgresTicketRepository

        mock_postgres["cursor"].fetchone.return_value = (7,)

        assert PostgresTicketRepository().count_auto_created_since(NOW) == 7
