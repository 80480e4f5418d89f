"""Unit tests for RetryPolicy and sync_with_retry."""

from unittest.mock import MagicMock, patch

import pytest

from assetflow_core.runtime.errors import ErrorCode, RetryableError, TerminalError
from assetflow_core.runtime.retry import (
    CONFLICT_RETRY_POLICY,
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    sync_with_retry,
)


class TestRetryPolicy:
    """Tests for RetryPolicy configuration."""

    def test_default_values(self):
        """Should have sensible defaults."""
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.max_delay == 60.0
        assert policy.exponential_base == 2.0
        assert policy.jitter is True

    def test_conflict_policy_is_short(self):
        """Version conflict retries should back off quickly."""
        assert CONFLICT_RETRY_POLICY.max_attempts == 5
        assert CONFLICT_RETRY_POLICY.max_delay <= 1.0

    def test_is_frozen(self):
        """Should be immutable."""
        with pytest.raises(Exception):
            DEFAULT_RETRY_POLICY.max_attempts = 10


class TestCalculateDelay:
    """Tests for delay calculation."""

    def test_exponential_backoff(self):
        policy = RetryPolicy(base_delay=1.0, exponential_base=2.0, jitter=False)

        assert policy.calculate_delay(0) == 1.0
        assert policy.calculate_delay(1) == 2.0
        assert policy.calculate_delay(2) == 4.0

    def test_max_delay_caps_backoff(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=False)

        assert policy.calculate_delay(10) == 5.0

    def test_jitter_adds_at_most_a_quarter(self):
        policy = RetryPolicy(base_delay=4.0, jitter=True)

        for _ in range(20):
            delay = policy.calculate_delay(0)
            assert 4.0 <= delay <= 5.0


class TestSyncWithRetry:
    """Tests for the synchronous retry decorator."""

    @patch("assetflow_core.runtime.retry.time.sleep")
    def test_retries_retryable_error_then_succeeds(self, mock_sleep):
        calls = MagicMock(
            side_effect=[
                RetryableError(code=ErrorCode.CONCURRENT_MODIFICATION, message_safe="conflict"),
                "saved",
            ]
        )

        @sync_with_retry(RetryPolicy(max_attempts=3, jitter=False))
        def save():
            return calls()

        assert save() == "saved"
        assert calls.call_count == 2
        mock_sleep.assert_called_once_with(1.0)

    @patch("assetflow_core.runtime.retry.time.sleep")
    def test_raises_after_max_attempts(self, mock_sleep):
        error = RetryableError(code=ErrorCode.TIMEOUT, message_safe="timeout")
        calls = MagicMock(side_effect=error)

        @sync_with_retry(RetryPolicy(max_attempts=3, jitter=False))
        def fetch():
            return calls()

        with pytest.raises(RetryableError):
            fetch()
        assert calls.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("assetflow_core.runtime.retry.time.sleep")
    def test_terminal_error_not_retried(self, mock_sleep):
        calls = MagicMock(side_effect=TerminalError(code=ErrorCode.INVALID_FORMAT, message_safe="bad"))

        @sync_with_retry()
        def parse():
            return calls()

        with pytest.raises(TerminalError):
            parse()
        assert calls.call_count == 1
        mock_sleep.assert_not_called()

    @patch("assetflow_core.runtime.retry.time.sleep")
    def test_unexpected_error_not_retried(self, mock_sleep):
        @sync_with_retry()
        def explode():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            explode()
        mock_sleep.assert_not_called()
