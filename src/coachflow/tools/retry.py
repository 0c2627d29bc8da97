"""
coachflow.tools.retry - Retry Policy
======================================

Pure functions over a ``RetryConfig``. The executor asks two questions
after a failed attempt:

    1. Is this error worth retrying?   → is_retryable()
    2. How long should we wait?        → calculate_delay()

Backoff Formula (no jitter, so delays are reproducible in tests):

    delay = min(base_delay * backoff_multiplier ** attempt, max_delay)

    RetryConfig()            attempt 0 → 1.0s
                             attempt 1 → 2.0s
                             attempt 2 → 4.0s
                             attempt 3 → 8.0s
                             attempt 4 → 10.0s  (capped)

Retryability is a case-insensitive substring match of the error message
against ``retryable_errors``. "Network unreachable" matches "network";
"Invalid API key" matches nothing and fails fast.
"""

from __future__ import annotations

from typing import Union

from coachflow.core.config import RetryConfig


def calculate_delay(config: RetryConfig, attempt: int) -> float:
    """Backoff delay in seconds before retrying after ``attempt``.

    Args:
        config: Retry settings for the tool.
        attempt: Zero-based index of the attempt that just failed.

    Returns:
        The delay, never larger than ``config.max_delay``.

    Example:
        >>> calculate_delay(RetryConfig(), 2)
        4.0
    """
    delay = config.base_delay * (config.backoff_multiplier ** attempt)
    return min(delay, config.max_delay)


def is_retryable(config: RetryConfig, error: Union[BaseException, str]) -> bool:
    """Check whether an error message looks transient.

    Args:
        config: Retry settings holding the ``retryable_errors`` substrings.
        error: The exception raised by the tool, or its message.

    Returns:
        True if any configured substring occurs in the message.
    """
    message = str(error).lower()
    return any(pattern.lower() in message for pattern in config.retryable_errors)


def should_retry(config: RetryConfig, error: Union[BaseException, str], attempt: int) -> bool:
    """Combine the retry budget with the retryability check.

    ``attempt`` is the zero-based index of the attempt that just failed;
    retrying stops once it reaches ``max_retries``.
    """
    return attempt < config.max_retries and is_retryable(config, error)
