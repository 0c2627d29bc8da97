"""
Tests for coachflow.tools.retry
=================================

Backoff is ``min(base_delay * multiplier ** attempt, max_delay)`` with no
jitter, so delays are asserted exactly.
"""

import pytest

from coachflow.core.config import RetryConfig
from coachflow.core.exceptions import ToolTimeoutError
from coachflow.tools.retry import calculate_delay, is_retryable, should_retry


class TestCalculateDelay:
    @pytest.mark.parametrize("attempt,expected", [(0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0)])
    def test_exponential_growth(self, attempt, expected) -> None:
        config = RetryConfig(base_delay=1.0, backoff_multiplier=2.0, max_delay=100.0)
        assert calculate_delay(config, attempt) == expected

    def test_capped_at_max_delay(self) -> None:
        config = RetryConfig(base_delay=1.0, backoff_multiplier=2.0, max_delay=5.0)
        assert calculate_delay(config, 10) == 5.0

    def test_zero_base_delay(self) -> None:
        assert calculate_delay(RetryConfig(base_delay=0.0), 3) == 0.0


class TestIsRetryable:
    def test_matches_substring_case_insensitively(self) -> None:
        config = RetryConfig()
        assert is_retryable(config, RuntimeError("Network unreachable"))
        assert is_retryable(config, "RATE LIMIT exceeded")

    def test_non_matching_error(self) -> None:
        assert not is_retryable(RetryConfig(), ValueError("bad input"))

    def test_tool_timeout_is_retryable_by_default(self) -> None:
        assert is_retryable(RetryConfig(), ToolTimeoutError("echo", 1.0))

    def test_custom_patterns(self) -> None:
        config = RetryConfig(retryable_errors=["exercise_not_found"])
        assert is_retryable(config, "exercise_not_found: squat")
        assert not is_retryable(config, "timeout")


class TestShouldRetry:
    def test_respects_budget(self) -> None:
        config = RetryConfig(max_retries=2)
        assert should_retry(config, "timeout", 0)
        assert should_retry(config, "timeout", 1)
        assert not should_retry(config, "timeout", 2)

    def test_zero_retries(self) -> None:
        assert not should_retry(RetryConfig(max_retries=0), "timeout", 0)

    def test_non_retryable_never_retried(self) -> None:
        assert not should_retry(RetryConfig(max_retries=5), "bad input", 0)
