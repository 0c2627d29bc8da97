"""
Tests for coachflow.tools.executor
====================================

These tests drive the ToolExecutor pipeline end to end:

    lookup → validate → circuit breaker → attempts (timeout, retry) → fallback

The ``runtime`` fixture uses zero-delay retries (max_retries=2) and a fake
breaker clock, so no test sleeps for backoff.
"""

import asyncio

import pytest

from coachflow.core.config import CircuitBreakerConfig, RetryConfig
from coachflow.core.enums import ErrorCategory
from coachflow.core.models import ToolResult, ToolResultMetadata, ValidationResult
from coachflow.tools import executor as executor_module
from coachflow.tools.cancellation import CancellationToken
from coachflow.tools.executor import ToolExecutor
from coachflow.tools.registry import ToolDefinition
from coachflow.tools.runtime import ToolRuntime


class FlakyTool:
    """Fails with ``error`` for the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int = 0, error: str = "temporary glitch") -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self, params, context):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(self.error)
        return {"value": params.get("value"), "calls": self.calls}


def register(runtime, name, execute, **kwargs) -> None:
    runtime.register_tool(ToolDefinition(name=name, description=name, execute=execute, **kwargs))


# =============================================================================
# Test: Success Path
# =============================================================================
class TestSuccessfulExecution:
    async def test_first_attempt_success(self, runtime, executor, tool_context) -> None:
        register(runtime, "echo", FlakyTool())

        result = await executor.execute_tool("echo", {"value": 42}, tool_context)

        assert result.success
        assert result.data["value"] == 42
        assert result.metadata.tool_name == "echo"
        assert result.metadata.retry_count == 0
        assert result.metadata.confidence is None
        assert result.metadata.execution_time >= 0
        assert runtime.get_metrics("echo").success_count == 1

    async def test_context_is_passed_to_tool(self, runtime, executor, tool_context) -> None:
        seen = {}

        async def capture(params, context):
            seen["session_id"] = context.session_id
            return None

        register(runtime, "capture", capture)
        await executor.execute_tool("capture", {}, tool_context)
        assert seen["session_id"] == "sess-1"


# =============================================================================
# Test: Lookup and Validation
# =============================================================================
class TestLookupAndValidation:
    async def test_unknown_tool(self, runtime, executor, tool_context) -> None:
        register(runtime, "echo", FlakyTool())

        result = await executor.execute_tool("missing", {}, tool_context)

        assert not result.success
        assert result.error.code == "TOOL_NOT_FOUND"
        assert result.error.category == ErrorCategory.VALIDATION
        assert result.error.recoverable is False
        assert result.error.details["available_tools"] == ["echo"]

    async def test_invalid_parameters_skip_execution(self, runtime, executor, tool_context) -> None:
        tool = FlakyTool()
        register(
            runtime,
            "echo",
            tool,
            validator=lambda params: ValidationResult.invalid("value is required"),
        )

        result = await executor.execute_tool("echo", {}, tool_context)

        assert result.error.code == "INVALID_PARAMETERS"
        assert result.error.recoverable is True
        assert result.error.details["errors"] == ["value is required"]
        assert tool.calls == 0

    async def test_async_validator(self, runtime, executor, tool_context) -> None:
        async def validator(params):
            return ValidationResult.ok(["value is unusual"])

        register(runtime, "echo", FlakyTool(), validator=validator)

        result = await executor.execute_tool("echo", {"value": 1}, tool_context)
        assert result.success

    async def test_raising_validator_counts_as_invalid(self, runtime, executor, tool_context) -> None:
        def validator(params):
            raise KeyError("value")

        register(runtime, "echo", FlakyTool(), validator=validator)

        result = await executor.execute_tool("echo", {}, tool_context)
        assert result.error.code == "INVALID_PARAMETERS"
        assert "KeyError" in result.error.message


# =============================================================================
# Test: Retry
# =============================================================================
class TestRetry:
    async def test_retryable_errors_are_retried(self, runtime, executor, tool_context) -> None:
        tool = FlakyTool(failures=2)
        register(runtime, "echo", tool)

        result = await executor.execute_tool("echo", {"value": 1}, tool_context)

        assert result.success
        assert tool.calls == 3
        assert result.metadata.retry_count == 2
        metrics = runtime.get_metrics("echo")
        assert metrics.failure_count == 2
        assert metrics.success_count == 1

    async def test_non_retryable_error_fails_immediately(self, runtime, executor, tool_context) -> None:
        tool = FlakyTool(failures=10, error="invalid exercise")
        register(runtime, "echo", tool)

        result = await executor.execute_tool("echo", {}, tool_context)

        assert not result.success
        assert tool.calls == 1
        assert result.error.code == "EXECUTION_FAILED"
        assert result.error.category == ErrorCategory.EXECUTION
        assert result.error.recoverable is False
        assert result.error.details["attempts"] == 1
        assert result.error.details["error_type"] == "RuntimeError"
        assert result.error.details["original_error"] == "invalid exercise"

    async def test_retries_exhausted(self, runtime, executor, tool_context) -> None:
        tool = FlakyTool(failures=10)
        register(runtime, "echo", tool)

        result = await executor.execute_tool("echo", {}, tool_context)

        assert tool.calls == 3
        assert result.error.code == "EXECUTION_FAILED"
        assert result.metadata.retry_count == 2

    async def test_tool_retry_config_overrides_default(self, runtime, executor, tool_context) -> None:
        tool = FlakyTool(failures=10)
        register(runtime, "echo", tool, retry_config=RetryConfig(max_retries=0, base_delay=0.0))

        await executor.execute_tool("echo", {}, tool_context)
        assert tool.calls == 1

    async def test_backoff_delays_double_between_attempts(
        self, runtime, executor, tool_context, monkeypatch
    ) -> None:
        real_sleep = asyncio.sleep
        delays = []

        async def recording_sleep(delay, *args, **kwargs):
            delays.append(delay)
            await real_sleep(0)

        monkeypatch.setattr(executor_module.asyncio, "sleep", recording_sleep)
        tool = FlakyTool(failures=10, error="network error")
        register(
            runtime,
            "echo",
            tool,
            retry_config=RetryConfig(max_retries=3, base_delay=1.0, max_delay=10.0),
        )

        result = await executor.execute_tool("echo", {}, tool_context)

        assert delays == [1.0, 2.0, 4.0]
        assert tool.calls == 4
        assert result.metadata.retry_count == 3


# =============================================================================
# Test: Timeout
# =============================================================================
class TestTimeout:
    async def test_slow_tool_times_out(self, runtime, executor, tool_context) -> None:
        async def slow(params, context):
            await asyncio.sleep(5)

        register(runtime, "slow", slow, timeout=0.05, retry_config=RetryConfig(max_retries=0))

        result = await executor.execute_tool("slow", {}, tool_context)

        assert result.error.code == "EXECUTION_FAILED"
        assert result.error.details["error_type"] == "ToolTimeoutError"
        assert "timeout" in result.error.message

    async def test_timeouts_are_retried(self, runtime, executor, tool_context) -> None:
        calls = []

        async def slow_then_fast(params, context):
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(5)
            return "done"

        register(runtime, "slow", slow_then_fast, timeout=0.05)

        result = await executor.execute_tool("slow", {}, tool_context)

        assert result.success
        assert result.data == "done"
        assert result.metadata.retry_count == 1


# =============================================================================
# Test: Fallback
# =============================================================================
class TestFallback:
    async def test_fallback_after_exhausted_retries(self, runtime, executor, tool_context) -> None:
        async def always_fails(params, context):
            raise RuntimeError("temporary outage")

        received = {}

        async def fallback(params, error):
            received["error"] = str(error)
            return {"value": "fallback"}

        register(
            runtime,
            "echo",
            always_fails,
            fallback=fallback,
            retry_config=RetryConfig(max_retries=2, base_delay=0.0),
        )

        result = await executor.execute_tool("echo", {}, tool_context)

        assert result.success
        assert result.data["value"] == "fallback"
        assert result.metadata.tool_name == "echo_fallback"
        assert result.is_fallback
        assert result.metadata.confidence == 0.5
        assert result.metadata.retry_count == 2
        assert received["error"] == "temporary outage"

    async def test_fallback_not_used_on_validation_failure(self, runtime, executor, tool_context) -> None:
        fallback_calls = []

        async def fallback(params, error):
            fallback_calls.append(error)
            return "fallback"

        register(
            runtime,
            "echo",
            FlakyTool(),
            validator=lambda params: ValidationResult.invalid("nope"),
            fallback=fallback,
        )

        result = await executor.execute_tool("echo", {}, tool_context)
        assert not result.success
        assert fallback_calls == []

    async def test_failing_fallback_reports_original_error(self, runtime, executor, tool_context) -> None:
        async def fallback(params, error):
            raise RuntimeError("fallback broke too")

        register(runtime, "echo", FlakyTool(failures=10, error="bad input"), fallback=fallback)

        result = await executor.execute_tool("echo", {}, tool_context)

        assert result.error.code == "EXECUTION_FAILED"
        assert result.error.message == "bad input"

    async def test_fallback_returning_failed_result(self, runtime, executor, tool_context) -> None:
        async def fallback(params, error):
            return ToolResult(success=False, metadata=ToolResultMetadata(tool_name="echo"))

        register(runtime, "echo", FlakyTool(failures=10, error="bad input"), fallback=fallback)

        result = await executor.execute_tool("echo", {}, tool_context)
        assert result.error.code == "EXECUTION_FAILED"

    async def test_fallback_returning_successful_result_is_unwrapped(self, runtime, executor, tool_context) -> None:
        async def fallback(params, error):
            return ToolResult(success=True, data=[1, 2], metadata=ToolResultMetadata(tool_name="x"))

        register(runtime, "echo", FlakyTool(failures=10, error="bad input"), fallback=fallback)

        result = await executor.execute_tool("echo", {}, tool_context)
        assert result.data == [1, 2]
        assert result.metadata.tool_name == "echo_fallback"


# =============================================================================
# Test: Circuit Breaker Integration
# =============================================================================
class TestCircuitBreakerIntegration:
    async def test_open_circuit_rejects_calls(self, runtime, executor, tool_context, clock) -> None:
        tool = FlakyTool(failures=2, error="bad input")
        register(
            runtime,
            "echo",
            tool,
            circuit_breaker_config=CircuitBreakerConfig(failure_threshold=2, reset_timeout=60.0),
        )

        await executor.execute_tool("echo", {}, tool_context)
        await executor.execute_tool("echo", {}, tool_context)
        rejected = await executor.execute_tool("echo", {}, tool_context)

        assert rejected.error.code == "CIRCUIT_BREAKER_OPEN"
        assert rejected.error.category == ErrorCategory.CIRCUIT_BREAKER
        assert rejected.error.recoverable is True
        assert rejected.error.details["next_retry_at"] is not None
        assert tool.calls == 2

    async def test_trial_call_after_reset_timeout_closes_circuit(self, runtime, executor, tool_context, clock) -> None:
        tool = FlakyTool(failures=2, error="bad input")
        register(
            runtime,
            "echo",
            tool,
            circuit_breaker_config=CircuitBreakerConfig(failure_threshold=2, reset_timeout=60.0),
        )
        await executor.execute_tool("echo", {}, tool_context)
        await executor.execute_tool("echo", {}, tool_context)

        clock.advance(60.0)
        trial = await executor.execute_tool("echo", {"value": 7}, tool_context)

        assert trial.success
        assert runtime.get_breaker("echo").state == "closed"

    async def test_fallback_still_applies_when_breaker_opens_mid_call(self, runtime, executor, tool_context) -> None:
        async def fallback(params, error):
            return "cached"

        register(
            runtime,
            "echo",
            FlakyTool(failures=10),
            fallback=fallback,
            circuit_breaker_config=CircuitBreakerConfig(failure_threshold=1),
        )

        result = await executor.execute_tool("echo", {}, tool_context)
        assert result.data == "cached"
        assert runtime.get_breaker("echo").state == "open"

    async def test_tool_without_breaker_config_is_always_invoked(self, tool_context, clock) -> None:
        bare_runtime = ToolRuntime(
            default_retry_config=RetryConfig(max_retries=0, base_delay=0.0, max_delay=0.0),
            clock=clock,
        )
        tool = FlakyTool(failures=100, error="service down")
        register(bare_runtime, "echo", tool)
        bare_executor = ToolExecutor(bare_runtime)

        for _ in range(8):
            result = await bare_executor.execute_tool("echo", {}, tool_context)
            assert result.error.code == "EXECUTION_FAILED"
            assert result.error.category != ErrorCategory.CIRCUIT_BREAKER

        assert tool.calls == 8
        assert bare_runtime.get_breaker("echo") is None
        assert bare_runtime.snapshot()["echo"]["circuit_breaker"] is None

    async def test_task_cancelled_in_half_open_frees_the_trial_call(
        self, runtime, executor, tool_context, clock
    ) -> None:
        started = asyncio.Event()
        state = {"calls": 0, "healthy": False}

        async def gated(params, context):
            state["calls"] += 1
            if state["calls"] == 1:
                raise RuntimeError("bad input")
            if not state["healthy"]:
                started.set()
                await asyncio.Event().wait()
            return "ok"

        register(
            runtime,
            "echo",
            gated,
            circuit_breaker_config=CircuitBreakerConfig(failure_threshold=1, reset_timeout=10.0),
        )
        await executor.execute_tool("echo", {}, tool_context)
        assert runtime.get_breaker("echo").state == "open"

        clock.advance(10.0)
        task = asyncio.create_task(executor.execute_tool("echo", {}, tool_context))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        state["healthy"] = True
        result = await executor.execute_tool("echo", {}, tool_context)

        assert result.success
        assert result.data == "ok"
        assert runtime.get_breaker("echo").state == "closed"


# =============================================================================
# Test: Cancellation
# =============================================================================
class TestCancellation:
    async def test_cancelled_before_start(self, runtime, executor, tool_context) -> None:
        tool = FlakyTool()
        fallback_calls = []

        async def fallback(params, error):
            fallback_calls.append(error)

        register(runtime, "echo", tool, fallback=fallback)
        token = CancellationToken()
        token.cancel("user left")

        result = await executor.execute_tool("echo", {}, tool_context, token)

        assert result.error.code == "EXECUTION_CANCELLED"
        assert result.error.recoverable is True
        assert result.error.details["reason"] == "user left"
        assert tool.calls == 0
        assert fallback_calls == []

    async def test_cancel_in_flight_attempt(self, runtime, executor, tool_context) -> None:
        async def slow(params, context):
            await asyncio.sleep(5)

        register(runtime, "slow", slow)
        token = CancellationToken()

        async def cancel_soon():
            await asyncio.sleep(0.02)
            token.cancel("superseded")

        result, _ = await asyncio.gather(
            executor.execute_tool("slow", {}, tool_context, token),
            cancel_soon(),
        )

        assert result.error.code == "EXECUTION_CANCELLED"
        assert runtime.get_metrics("slow").failure_count == 0

    async def test_cancel_during_backoff(self, runtime, executor, tool_context) -> None:
        tool = FlakyTool(failures=10)
        register(runtime, "echo", tool, retry_config=RetryConfig(max_retries=3, base_delay=5.0))
        token = CancellationToken()

        async def cancel_soon():
            await asyncio.sleep(0.02)
            token.cancel()

        result, _ = await asyncio.gather(
            executor.execute_tool("echo", {}, tool_context, token),
            cancel_soon(),
        )

        assert result.error.code == "EXECUTION_CANCELLED"
        assert tool.calls == 1
        assert result.metadata.retry_count == 0

    async def test_uncancelled_token_does_not_interfere(self, runtime, executor, tool_context) -> None:
        register(runtime, "echo", FlakyTool(failures=1))

        result = await executor.execute_tool("echo", {"value": 3}, tool_context, CancellationToken())

        assert result.success
        assert result.metadata.retry_count == 1
