"""Unit tests for RunContext."""

import pytest

from assetflow_core.runtime.context import RunContext


class TestRunContext:
    """Tests for RunContext creation and helpers."""

    def test_for_worker(self):
        """Should carry task id, tenant, asset and attempt."""
        ctx = RunContext.for_worker(
            task_id="task-1", tenant_id="tenant-1", asset_id="asset-1", stage="thumbnail", attempt=1, max_attempts=4
        )

        assert ctx.request_id == "task-1"
        assert ctx.tenant_id == "tenant-1"
        assert ctx.asset_id == "asset-1"
        assert ctx.stage == "thumbnail"
        assert ctx.is_final_attempt is False

    def test_final_attempt(self):
        ctx = RunContext.for_worker(task_id="t", tenant_id=None, asset_id="a", attempt=3, max_attempts=4)

        assert ctx.is_final_attempt is True

    def test_single_attempt_is_final(self):
        assert RunContext(request_id="r").is_final_attempt is True

    def test_for_actor(self):
        ctx = RunContext.for_actor("req-9", "admin-1")

        assert ctx.actor_id == "admin-1"
        assert ctx.asset_id is None

    def test_is_frozen(self):
        ctx = RunContext(request_id="r")
        with pytest.raises(Exception):
            ctx.attempt = 2

    def test_log_prefix_prefers_asset(self):
        assert RunContext(request_id="r", asset_id="asset-1").log_prefix() == "[asset-1]"
        assert RunContext(request_id="r").log_prefix() == "[r]"
