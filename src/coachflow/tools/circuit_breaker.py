"""
coachflow.tools.circuit_breaker - Per-Tool Circuit Breaker
============================================================

When a tool keeps failing (the AI provider is down, an API key expired),
retrying every call only adds latency. The circuit breaker counts
consecutive failures per tool and, past a threshold, rejects calls
immediately until a reset timeout has elapsed.

State Machine:
    ┌────────┐   failure_threshold    ┌────────┐
    │ CLOSED │ ─────────────────────> │  OPEN  │
    │        │                         │(reject │
    │        │                         │  all)  │
    └────────┘                         └────┬───┘
         ^                                  │ reset_timeout elapsed
         │ trial succeeds                   v
         │                             ┌─────────┐
         └──────────────────────────── │HALF-OPEN│ ──(trial fails)──> OPEN
                                       │ 1 trial │
                                       └─────────┘

Monitoring Window:
    In CLOSED state a failure that arrives more than ``monitoring_window``
    seconds after the previous one restarts the count at 1. Only failures
    clustered inside the window trip the breaker.

Concurrency:
    Methods are synchronous and never await, so on a single event loop
    each call is atomic. HALF-OPEN admits exactly one trial; concurrent
    callers are rejected until the trial reports back.

Time Source:
    Elapsed time is measured with an injectable monotonic clock (defaults
    to ``time.monotonic``). Tests pass a fake clock to step through the
    reset timeout without sleeping.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import structlog

from coachflow.core.config import CircuitBreakerConfig
from coachflow.core.enums import CircuitBreakerState

logger = structlog.get_logger()


class CircuitBreaker:
    """Failure-counting gate in front of a single tool.

    Attributes:
        name: Tool the breaker protects (used in log events).
        config: Thresholds (failure_threshold, reset_timeout, monitoring_window).

    Example:
        >>> breaker = CircuitBreaker("create_workout", CircuitBreakerConfig(failure_threshold=3))
        >>> if breaker.allow_request():
        ...     try:
        ...         await tool.execute(params, ctx)
        ...         breaker.record_success()
        ...     except Exception:
        ...         breaker.record_failure()
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state: CircuitBreakerState = CircuitBreakerState.CLOSED
        self._failures: int = 0
        # Monotonic timestamp of the most recent failure.
        self._last_failure_time: Optional[float] = None
        # True while the single HALF-OPEN trial call is outstanding.
        self._trial_in_flight: bool = False

        self._logger = logger.bind(component="circuit_breaker", tool_name=name)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> CircuitBreakerState:
        """Current state, applying the OPEN → HALF-OPEN timeout transition."""
        self._maybe_half_open()
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def last_failure_time(self) -> Optional[float]:
        return self._last_failure_time

    # =========================================================================
    # Gate
    # =========================================================================

    def allow_request(self) -> bool:
        """Decide whether a call may proceed, claiming the trial if needed.

        Decision Logic:
            - CLOSED:    always allowed
            - OPEN:      rejected until reset_timeout elapses, then the
                         breaker moves to HALF-OPEN (see below)
            - HALF-OPEN: the first caller becomes the trial; others are
                         rejected until it reports success or failure

        Returns:
            True if the caller may invoke the tool.
        """
        self._maybe_half_open()

        if self._state == CircuitBreakerState.CLOSED:
            return True

        if self._state == CircuitBreakerState.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            self._logger.info("circuit_breaker_trial_admitted")
            return True

        return False

    def is_open(self) -> bool:
        """Read-only check: True when a call would currently be rejected."""
        self._maybe_half_open()
        if self._state == CircuitBreakerState.OPEN:
            return True
        return self._state == CircuitBreakerState.HALF_OPEN and self._trial_in_flight

    def release_trial(self) -> None:
        """Give back an unused HALF-OPEN trial (e.g., the call was cancelled)."""
        self._trial_in_flight = False

    # =========================================================================
    # Outcome Recording
    # =========================================================================

    def record_success(self) -> None:
        """Reset the failure count and close the circuit."""
        previous = self._state
        self._failures = 0
        self._state = CircuitBreakerState.CLOSED
        self._trial_in_flight = False

        if previous != CircuitBreakerState.CLOSED:
            self._logger.info("circuit_breaker_closed", previous_state=previous.value)

    def record_failure(self) -> None:
        """Count a failure; open the circuit at the threshold or after a failed trial."""
        now = self._clock()

        if (
            self._state == CircuitBreakerState.CLOSED
            and self._last_failure_time is not None
            and now - self._last_failure_time > self.config.monitoring_window
        ):
            self._failures = 0

        self._failures += 1
        self._last_failure_time = now

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._state = CircuitBreakerState.OPEN
            self._trial_in_flight = False
            self._logger.warning(
                "circuit_breaker_reopened",
                reason="trial_failed",
                failures=self._failures,
            )
        elif self._state == CircuitBreakerState.CLOSED and self._failures >= self.config.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self._logger.warning(
                "circuit_breaker_opened",
                failures=self._failures,
                failure_threshold=self.config.failure_threshold,
                reset_timeout=self.config.reset_timeout,
            )

    def reset(self) -> None:
        """Force the breaker back to a fresh CLOSED state."""
        self._state = CircuitBreakerState.CLOSED
        self._failures = 0
        self._last_failure_time = None
        self._trial_in_flight = False

    # =========================================================================
    # Introspection
    # =========================================================================

    def next_retry_time(self) -> Optional[datetime]:
        """Wall-clock time at which an OPEN breaker will admit a trial.

        Returns:
            A UTC datetime, or None when the breaker is not OPEN.
        """
        if self.state != CircuitBreakerState.OPEN or self._last_failure_time is None:
            return None
        remaining = self._last_failure_time + self.config.reset_timeout - self._clock()
        return datetime.now(timezone.utc) + timedelta(seconds=max(remaining, 0.0))

    def to_dict(self) -> dict[str, Any]:
        """Snapshot for metrics endpoints and logs."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self._failures,
            "last_failure_time": self._last_failure_time,
            "failure_threshold": self.config.failure_threshold,
            "reset_timeout": self.config.reset_timeout,
        }

    # =========================================================================
    # Internal
    # =========================================================================

    def _maybe_half_open(self) -> None:
        if self._state != CircuitBreakerState.OPEN or self._last_failure_time is None:
            return
        elapsed = self._clock() - self._last_failure_time
        if elapsed >= self.config.reset_timeout:
            self._state = CircuitBreakerState.HALF_OPEN
            self._trial_in_flight = False
            self._logger.info(
                "circuit_breaker_half_open",
                elapsed_seconds=round(elapsed, 2),
                reset_timeout=self.config.reset_timeout,
            )

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self._state.value!r}, failures={self._failures})"
