"""
Tests for Royalty Ledger Retry Logic with Exponential Backoff.

Tests:
- RetryConfig configuration
- RetryStats statistics tracking
- calculate_delay function
- retry_with_backoff decorator
- retry_call function
"""

import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from retry import (
    DEFAULT_RETRYABLE,
    RetryConfig,
    RetryStats,
    calculate_delay,
    is_retryable_exception,
    retry_call,
    retry_with_backoff,
)
from royalty_exceptions import BusyError, ConcurrencyConflictError, ConfigurationError


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_defaults(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay == 0.05
        assert config.retryable_exceptions == DEFAULT_RETRYABLE

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "7")
        monkeypatch.setenv("RETRY_BASE_DELAY", "0.5")
        monkeypatch.setenv("RETRY_JITTER", "0")

        config = RetryConfig.from_env()
        assert config.max_retries == 7
        assert config.base_delay == 0.5
        assert config.jitter == 0.0


class TestRetryStats:
    """Tests for RetryStats."""

    def test_record_attempt(self):
        stats = RetryStats()
        stats.record_attempt(delay=0.1, error="busy")
        stats.record_attempt()

        assert stats.attempts == 2
        assert stats.retries == 1
        assert stats.total_delay == pytest.approx(0.1)
        assert stats.last_error == "busy"


class TestCalculateDelay:
    """Tests for calculate_delay."""

    def test_exponential_growth(self):
        assert calculate_delay(0, 1.0, 2.0, 100.0, 0) == 1.0
        assert calculate_delay(3, 1.0, 2.0, 100.0, 0) == 8.0

    def test_capped(self):
        assert calculate_delay(10, 1.0, 2.0, 5.0, 0) == 5.0

    def test_jitter_bounds(self):
        for _ in range(50):
            delay = calculate_delay(0, 1.0, 2.0, 10.0, 0.1)
            assert 0.9 <= delay <= 1.1


class TestIsRetryable:
    """Tests for is_retryable_exception."""

    def test_lock_errors_retryable(self):
        assert is_retryable_exception(BusyError(["t1"], 1.0), DEFAULT_RETRYABLE)
        assert is_retryable_exception(ConcurrencyConflictError("t1", 1, 2), DEFAULT_RETRYABLE)

    def test_client_errors_not_retryable(self):
        assert not is_retryable_exception(ConfigurationError("bad"), DEFAULT_RETRYABLE)


@patch("retry.time.sleep")
class TestRetryWithBackoff:
    """Tests for the retry_with_backoff decorator."""

    def test_success_first_try(self, mock_sleep):
        @retry_with_backoff(max_retries=3)
        def op():
            return "ok"

        assert op() == "ok"
        mock_sleep.assert_not_called()

    def test_retries_busy_then_succeeds(self, mock_sleep):
        calls = []

        @retry_with_backoff(max_retries=3, base_delay=0.01, jitter=0)
        def op():
            calls.append(1)
            if len(calls) < 3:
                raise BusyError(["t1"], 0.5)
            return "ok"

        assert op() == "ok"
        assert len(calls) == 3
        assert mock_sleep.call_count == 2

    def test_gives_up_after_max(self, mock_sleep):
        @retry_with_backoff(max_retries=2, base_delay=0.01)
        def op():
            raise ConcurrencyConflictError("t1", 1, 2)

        with pytest.raises(ConcurrencyConflictError):
            op()
        assert mock_sleep.call_count == 2

    def test_non_retryable_raised_immediately(self, mock_sleep):
        @retry_with_backoff(max_retries=5)
        def op():
            raise ConfigurationError("bad")

        with pytest.raises(ConfigurationError):
            op()
        mock_sleep.assert_not_called()

    def test_on_retry_callback(self, mock_sleep):
        seen = []
        attempts = []

        @retry_with_backoff(max_retries=2, jitter=0, on_retry=lambda n, e, d: seen.append(n))
        def op():
            attempts.append(1)
            if len(attempts) == 1:
                raise BusyError(["t1"], 0.5)
            return "ok"

        op()
        assert seen == [1]

    def test_preserves_name(self, mock_sleep):
        @retry_with_backoff()
        def distribute_royalties():
            return None

        assert distribute_royalties.__name__ == "distribute_royalties"


@patch("retry.time.sleep")
class TestRetryCall:
    """Tests for retry_call."""

    def test_passes_arguments(self, mock_sleep):
        assert retry_call(lambda a, b=0: a + b, args=(1,), kwargs={"b": 2}) == 3

    def test_fills_stats(self, mock_sleep):
        attempts = []

        def op():
            attempts.append(1)
            if len(attempts) == 1:
                raise BusyError(["t1"], 0.5)
            return "done"

        stats = RetryStats()
        assert retry_call(op, config=RetryConfig(jitter=0), stats=stats) == "done"
        assert stats.attempts == 2
        assert stats.retries == 1
