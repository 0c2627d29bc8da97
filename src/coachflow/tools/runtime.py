"""
coachflow.tools.runtime - Tool Runtime
========================================

The ``ToolRuntime`` owns everything that is shared by all tool invocations
in a process: the registry, one circuit breaker per tool and one metrics
record per tool. It is constructed once (usually by the CoachFlow facade)
and injected into the ToolExecutor and ToolChainExecutor.

    ToolRuntime
        ├── registry:  ToolRegistry              name → ToolDefinition
        ├── breakers:  {name: CircuitBreaker}    only for tools with a breaker config
        ├── metrics:   {name: ToolMetrics}       created on registration
        ├── default_retry_config                 used when a tool has none
        └── default_timeout                      used when a tool has none

A tool gets a circuit breaker only when it declares a ``circuit_breaker_config``
or the runtime is given a ``default_circuit_breaker_config``; other tools are
never short-circuited. Breakers and metrics are per tool, not per session: a
provider outage seen in one conversation protects every other conversation too.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

import structlog

from coachflow.core.config import CircuitBreakerConfig, RetryConfig
from coachflow.tools.circuit_breaker import CircuitBreaker
from coachflow.tools.registry import ToolDefinition, ToolMetrics, ToolRegistry

logger = structlog.get_logger()


class ToolRuntime:
    """Registry plus per-tool resilience state.

    Args:
        default_retry_config: Retry settings for tools that declare none.
        default_circuit_breaker_config: Breaker thresholds for tools that
            declare none. None (the default) leaves such tools without a
            breaker.
        default_timeout: Per-attempt timeout in seconds for tools that
            declare none.
        clock: Monotonic clock handed to every circuit breaker.

    Example:
        >>> runtime = ToolRuntime(default_timeout=10.0)
        >>> runtime.register_tool(echo_tool)
        >>> runtime.get_breaker("echo") is None
        True
    """

    def __init__(
        self,
        default_retry_config: Optional[RetryConfig] = None,
        default_circuit_breaker_config: Optional[CircuitBreakerConfig] = None,
        default_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = ToolRegistry()
        self.default_retry_config = default_retry_config or RetryConfig()
        self.default_circuit_breaker_config = default_circuit_breaker_config
        self.default_timeout = default_timeout
        self._clock = clock

        self._breakers: dict[str, CircuitBreaker] = {}
        self._metrics: dict[str, ToolMetrics] = {}

        self._logger = logger.bind(component="tool_runtime")

    # =========================================================================
    # Registration
    # =========================================================================

    def register_tool(self, definition: ToolDefinition, replace: bool = False) -> None:
        """Register a tool and create its metrics (and breaker, if configured).

        Re-registering with ``replace=True`` swaps the definition and starts
        the tool with a fresh breaker and fresh metrics.

        Raises:
            ToolRegistrationError: If the name is already registered and
                ``replace`` is False.
        """
        self.registry.register(definition, replace=replace)
        self._breakers.pop(definition.name, None)
        breaker_config = definition.circuit_breaker_config or self.default_circuit_breaker_config
        if breaker_config is not None:
            self._breakers[definition.name] = CircuitBreaker(definition.name, breaker_config, clock=self._clock)
        self._metrics[definition.name] = ToolMetrics(definition.name)

        self._logger.info(
            "tool_registered",
            tool_name=definition.name,
            has_validator=definition.validator is not None,
            has_fallback=definition.fallback is not None,
            has_circuit_breaker=breaker_config is not None,
        )

    def unregister_tool(self, name: str) -> bool:
        removed = self.registry.unregister(name)
        self._breakers.pop(name, None)
        self._metrics.pop(name, None)
        return removed

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_tool(self, name: str) -> Optional[ToolDefinition]:
        return self.registry.get(name)

    def available_tools(self) -> list[str]:
        return self.registry.names()

    def get_breaker(self, name: str) -> Optional[CircuitBreaker]:
        """Return the tool's breaker, or None if it was registered without one."""
        return self._breakers.get(name)

    def get_metrics(self, name: str) -> ToolMetrics:
        """Return the tool's metrics record, creating an empty one if missing."""
        metrics = self._metrics.get(name)
        if metrics is None:
            metrics = ToolMetrics(name)
            self._metrics[name] = metrics
        return metrics

    def retry_config_for(self, definition: ToolDefinition) -> RetryConfig:
        return definition.retry_config or self.default_retry_config

    def timeout_for(self, definition: ToolDefinition) -> float:
        return definition.timeout if definition.timeout is not None else self.default_timeout

    def snapshot(self) -> dict[str, Any]:
        """Metrics and breaker state for every registered tool."""
        snapshot: dict[str, Any] = {}
        for name in self.available_tools():
            breaker = self.get_breaker(name)
            snapshot[name] = {
                "metrics": self.get_metrics(name).to_dict(),
                "circuit_breaker": breaker.to_dict() if breaker is not None else None,
            }
        return snapshot
