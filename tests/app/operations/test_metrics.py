"""Tests for ReliabilityMetricsService."""

from unittest.mock import MagicMock, patch

import pytest


@pytest.fixture
def mock_postgres():
    """Mock PostgreSQL connection for metrics queries."""
    with patch("app.operations.services.metrics.get_db_connection") as mock_conn:
        mock_connection = MagicMock()
        mock_cursor = MagicMock()
        mock_connection.cursor.return_value = mock_cursor
        mock_conn.return_value.__enter__ = MagicMock(return_value=mock_connection)
        mock_conn.return_value.__exit__ = MagicMock(return_value=False)
        yield mock_cursor


class TestReliabilityMetricsService:
    def test_get_all(self, mock_postgres):
        from app.operations.services.metrics import ReliabilityMetricsService

        mock_postgres.fetchone.side_effect = [
            (200, 5),
            (8, 42.123),
            (8, 6),
            (5, 2),
        ]

        metrics = ReliabilityMetricsService().get_all()

        assert metrics == {
            "integrity": {"total_assets": 200, "affected_assets": 5, "rate_percent": 97.5},
            "mttr": {"resolved_count": 8, "mttr_minutes_avg": 42.12},
            "recovery_success": {"resolved_count": 8, "auto_resolved_count": 6, "recovery_rate_percent": 75.0},
            "ticket_escalation": {"unresolved_count": 5, "escalated_count": 2},
        }
        assert mock_postgres.execute.call_count == 4
        for call in mock_postgres.execute.call_args_list:
            assert call[0][1] == ()

    def test_empty_tables(self, mock_postgres):
        from app.operations.services.metrics import ReliabilityMetricsService

        mock_postgres.fetchone.side_effect = [(0, 0), (0, None), (0, 0), (0, 0)]

        metrics = ReliabilityMetricsService().get_all()

        assert metrics["integrity"]["rate_percent"] == 100.0
        assert metrics["mttr"]["mttr_minutes_avg"] is None
        assert metrics["recovery_success"]["recovery_rate_percent"] is None

    def test_tenant_filter(self, mock_postgres):
        from app.operations.services.metrics import ReliabilityMetricsService

        mock_postgres.fetchone.side_effect = [(10, 0), (0, None), (0, 0), (0, 0)]

        ReliabilityMetricsService().get_all("tenant-1")

        integrity_sql, integrity_params = mock_postgres.execute.call_args_list[0][0]
        assert "AND a.tenant_id = %s" in integrity_sql
        assert integrity_params == ("tenant-1",)
        for call in mock_postgres.execute.call_args_list[1:]:
            assert "AND tenant_id = %s" in call[0][0]
            assert call[0][1] == ("tenant-1",)
