"""
Tests for coachflow.tools.registry and coachflow.tools.runtime
================================================================
"""

import pytest
from pydantic import ValidationError

from coachflow.core.config import CircuitBreakerConfig, RetryConfig
from coachflow.core.exceptions import ToolRegistrationError
from coachflow.tools.registry import ToolDefinition, ToolMetrics, ToolRegistry
from coachflow.tools.runtime import ToolRuntime


async def echo(params, context):
    return params


def make_definition(name="echo", **kwargs) -> ToolDefinition:
    return ToolDefinition(name=name, description="Echo", execute=echo, **kwargs)


# =============================================================================
# Test: ToolDefinition
# =============================================================================
class TestToolDefinition:
    def test_name_required(self) -> None:
        with pytest.raises(ValidationError):
            ToolDefinition(name="", execute=echo)

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            make_definition(timeout=0)

    def test_is_frozen(self) -> None:
        definition = make_definition()
        with pytest.raises(ValidationError):
            definition.name = "other"


# =============================================================================
# Test: ToolRegistry
# =============================================================================
class TestToolRegistry:
    def test_register_and_get(self) -> None:
        registry = ToolRegistry()
        registry.register(make_definition())
        assert "echo" in registry
        assert len(registry) == 1
        assert registry.get("echo").description == "Echo"

    def test_duplicate_rejected(self) -> None:
        registry = ToolRegistry()
        registry.register(make_definition())
        with pytest.raises(ToolRegistrationError) as exc_info:
            registry.register(make_definition())
        assert exc_info.value.error_code == "DUPLICATE_TOOL"

    def test_replace(self) -> None:
        registry = ToolRegistry()
        registry.register(make_definition())
        registry.register(ToolDefinition(name="echo", description="New", execute=echo), replace=True)
        assert registry.get("echo").description == "New"

    def test_unregister(self) -> None:
        registry = ToolRegistry()
        registry.register(make_definition())
        assert registry.unregister("echo")
        assert not registry.unregister("echo")
        assert registry.get("echo") is None

    def test_names_sorted(self) -> None:
        registry = ToolRegistry()
        for name in ("zeta", "alpha", "mid"):
            registry.register(make_definition(name))
        assert registry.names() == ["alpha", "mid", "zeta"]


# =============================================================================
# Test: ToolMetrics
# =============================================================================
class TestToolMetrics:
    def test_empty_metrics(self) -> None:
        metrics = ToolMetrics("echo")
        assert metrics.success_rate == 1.0
        assert metrics.average_execution_time == 0.0

    def test_rates_and_averages(self) -> None:
        metrics = ToolMetrics("echo")
        metrics.record_success(0.2)
        metrics.record_success(0.4)
        metrics.record_failure(RuntimeError("boom"))
        assert metrics.total_calls == 3
        assert metrics.success_rate == pytest.approx(2 / 3)
        assert metrics.average_execution_time == pytest.approx(0.3)
        assert list(metrics.recent_errors) == ["boom"]

    def test_recent_errors_bounded(self) -> None:
        metrics = ToolMetrics("echo", max_recent_errors=2)
        for i in range(5):
            metrics.record_failure(f"e{i}")
        assert list(metrics.recent_errors) == ["e3", "e4"]


# =============================================================================
# Test: ToolRuntime
# =============================================================================
class TestToolRuntime:
    def test_register_creates_breaker_and_metrics(self) -> None:
        runtime = ToolRuntime(default_circuit_breaker_config=CircuitBreakerConfig())
        runtime.register_tool(make_definition())
        assert runtime.available_tools() == ["echo"]
        assert runtime.get_breaker("echo").name == "echo"
        assert runtime.get_metrics("echo").total_calls == 0

    def test_tool_specific_breaker_config(self) -> None:
        runtime = ToolRuntime()
        runtime.register_tool(make_definition(circuit_breaker_config=CircuitBreakerConfig(failure_threshold=1)))
        assert runtime.get_breaker("echo").config.failure_threshold == 1

    def test_no_breaker_without_config(self) -> None:
        runtime = ToolRuntime()
        runtime.register_tool(make_definition())
        assert runtime.get_breaker("echo") is None
        assert runtime.get_metrics("echo").total_calls == 0

    def test_tool_config_wins_over_runtime_default(self) -> None:
        runtime = ToolRuntime(default_circuit_breaker_config=CircuitBreakerConfig(failure_threshold=9))
        runtime.register_tool(make_definition(circuit_breaker_config=CircuitBreakerConfig(failure_threshold=2)))
        runtime.register_tool(make_definition("plain"))
        assert runtime.get_breaker("echo").config.failure_threshold == 2
        assert runtime.get_breaker("plain").config.failure_threshold == 9

    def test_replace_resets_breaker(self) -> None:
        runtime = ToolRuntime(default_circuit_breaker_config=CircuitBreakerConfig())
        runtime.register_tool(make_definition())
        runtime.get_breaker("echo").record_failure()
        runtime.register_tool(make_definition(), replace=True)
        assert runtime.get_breaker("echo").failures == 0

    def test_defaults_and_overrides(self) -> None:
        default_retry = RetryConfig(max_retries=1)
        runtime = ToolRuntime(default_retry_config=default_retry, default_timeout=7.0)
        plain = make_definition()
        custom = make_definition("custom", retry_config=RetryConfig(max_retries=4), timeout=2.0)
        assert runtime.retry_config_for(plain) is default_retry
        assert runtime.retry_config_for(custom).max_retries == 4
        assert runtime.timeout_for(plain) == 7.0
        assert runtime.timeout_for(custom) == 2.0

    def test_unregister_drops_state(self) -> None:
        runtime = ToolRuntime()
        runtime.register_tool(make_definition())
        assert runtime.unregister_tool("echo")
        assert runtime.get_tool("echo") is None
        assert runtime.available_tools() == []

    def test_snapshot(self) -> None:
        runtime = ToolRuntime()
        runtime.register_tool(make_definition())
        runtime.register_tool(make_definition("guarded", circuit_breaker_config=CircuitBreakerConfig()))
        snapshot = runtime.snapshot()
        assert snapshot["echo"]["metrics"]["success_count"] == 0
        assert snapshot["guarded"]["circuit_breaker"]["state"] == "closed"
        assert snapshot["echo"]["circuit_breaker"] is None
