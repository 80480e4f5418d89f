"""Tests for PostgresIncidentStore."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from assetflow_core.domain.incidents import IncidentReport, IncidentSeverity, SourceType

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_postgres():
    """Provides mock PostgreSQL connection and cursor."""
    with patch("app.reliability.services.incident_store.get_db_connection") as mock_get_conn:
        mock_conn = MagicMock()
        mock_cursor = MagicMock()
        mock_conn.cursor.return_value = mock_cursor
        mock_conn.__enter__ = MagicMock(return_value=mock_conn)
        mock_conn.__exit__ = MagicMock(return_value=False)
        mock_get_conn.return_value = mock_conn
        yield {"connection": mock_conn, "cursor": mock_cursor}


def _row(incident_id="inc-1", metadata=None, resolved_at=None):
    return (
        incident_id,
        "asset",
        "X",
        "tenant-1",
        "warning",
        "Asset stuck",
        None,
        metadata if metadata is not None else {"unique_signature": "stuck:X", "occurrences": 1},
        True,
        False,
        False,
        NOW,
        resolved_at,
    )


def _report():
    return IncidentReport(
        source_type=SourceType.ASSET,
        source_id="X",
        tenant_id="tenant-1",
        severity=IncidentSeverity.WARNING,
        title="Asset stuck",
        retryable=True,
        unique_signature="stuck:X",
    )


class TestRecord:
    def test_insert_wins(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore

        mock_postgres["cursor"].fetchone.return_value = _row()

        incident, created = PostgresIncidentStore().record(_report())

        assert created is True
        assert incident.id == "inc-1"
        sql = mock_postgres["cursor"].execute.call_args[0][0]
        assert "ON CONFLICT" in sql
        assert "DO NOTHING" in sql
        mock_postgres["connection"].commit.assert_called_once()

    def test_conflict_bumps_existing(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore

        mock_postgres["cursor"].fetchone.side_effect = [
            None,
            _row(metadata={"unique_signature": "stuck:X", "occurrences": 2}),
        ]

        incident, created = PostgresIncidentStore().record(_report())

        assert created is False
        assert incident.occurrences == 2
        update_sql = mock_postgres["cursor"].execute.call_args_list[1][0][0]
        assert "occurrences" in update_sql
        assert "resolved_at IS NULL" in update_sql

    def test_insert_metadata_carries_signature(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore

        mock_postgres["cursor"].fetchone.return_value = _row()

        PostgresIncidentStore().record(_report())

        params = mock_postgres["cursor"].execute.call_args[0][1]
        metadata = params[7].obj
        assert metadata["unique_signature"] == "stuck:X"
        assert metadata["repair_attempts"] == 0
        assert metadata["occurrences"] == 1

    def test_raises_when_slot_keeps_changing(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore
        from assetflow_core.runtime.errors import RetryableError

        mock_postgres["cursor"].fetchone.return_value = None

        with pytest.raises(RetryableError):
            PostgresIncidentStore().record(_report())
        assert mock_postgres["cursor"].execute.call_count == 4


class TestQueries:
    def test_get_returns_none_when_missing(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore

        mock_postgres["cursor"].fetchone.return_value = None

        assert PostgresIncidentStore().get("missing") is None

    def test_mark_resolved_only_unresolved(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore

        mock_postgres["cursor"].fetchone.return_value = _row(resolved_at=NOW)

        resolved = PostgresIncidentStore().mark_resolved("inc-1", True, NOW)

        assert resolved.is_resolved
        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "resolved_at IS NULL" in sql
        assert params[2].obj == {"auto_recovered": True}

    def test_increment_repair_attempts_missing_raises(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore
        from assetflow_core.domain.exceptions import IncidentNotFoundError

        mock_postgres["cursor"].fetchone.return_value = None

        with pytest.raises(IncidentNotFoundError):
            PostgresIncidentStore().increment_repair_attempts("missing")

    def test_list_incidents_builds_filters_in_triage_order(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore

        mock_postgres["cursor"].fetchall.return_value = [_row("a"), _row("b")]

        incidents = PostgresIncidentStore().list_incidents(
            source_type=SourceType.ASSET, tenant_id="tenant-1", severity=IncidentSeverity.WARNING, limit=10
        )

        assert [incident.id for incident in incidents] == ["a", "b"]
        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "resolved_at IS NULL" in sql
        assert "WHEN 'critical' THEN 0" in sql
        assert params == ("asset", "tenant-1", "warning", 10)

    def test_list_all_has_no_where_clause(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore

        mock_postgres["cursor"].fetchall.return_value = []

        PostgresIncidentStore().list_incidents(unresolved_only=False)

        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "WHERE" not in sql
        assert params == (100,)


class TestSummarizeUnresolved:
    def test_counts_are_grouped_in_sql(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore

        mock_postgres["cursor"].fetchall.return_value = [
            ("critical", "job", 7000, 7000, 12),
            ("warning", "asset", 40, 0, 0),
            ("warning", "job", 3, 0, 1),
        ]

        summary = PostgresIncidentStore().summarize_unresolved("tenant-1")

        assert summary.unresolved == 7043
        assert summary.by_severity == {"critical": 7000, "error": 0, "warning": 43, "info": 0}
        assert summary.by_source_type == {"job": 7003, "asset": 40}
        assert summary.requires_support == 7000
        assert summary.with_ticket == 13
        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "GROUP BY severity, source_type" in sql
        assert "LIMIT" not in sql
        assert params == ("tenant-1",)

    def test_empty_table(self, mock_postgres):
        from app.reliability.services.incident_store import PostgresIncidentStore

        mock_postgres["cursor"].fetchall.return_value = []

        summary = PostgresIncidentStore().summarize_unresolved()

        assert summary.unresolved == 0
        assert summary.by_severity == {"critical": 0, "error": 0, "warning": 0, "info": 0}
        sql, params = mock_postgres["cursor"].execute.call_args[0]
        assert "tenant_id" not in sql
        assert params == ()
