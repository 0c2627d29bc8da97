"""
coachflow.tools.registry - Tool Definitions and Registry
==========================================================

A ``ToolDefinition`` describes something the assistant can do: its name,
a parameter schema for the AI provider, the async function that does the
work and optional hooks for validation and graceful degradation.

    ToolDefinition
        ├── execute(params, context)            → data          (required)
        ├── validator(params)                   → ValidationResult
        ├── fallback(params, error)             → data | ToolResult
        ├── retry_config / circuit_breaker_config
        └── timeout                             (seconds, per attempt)

Definitions are frozen once created and shared read-only by every session.
The ``ToolRegistry`` maps names to definitions; ``ToolMetrics`` accumulates
per-tool success and failure counts.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from coachflow.core.config import CircuitBreakerConfig, RetryConfig
from coachflow.core.exceptions import ToolRegistrationError
from coachflow.core.models import ToolExecutionContext, ToolResult, ValidationResult

ToolFunction = Callable[[dict[str, Any], ToolExecutionContext], Awaitable[Any]]
ToolValidator = Callable[[dict[str, Any]], Union[ValidationResult, Awaitable[ValidationResult]]]
ToolFallback = Callable[[dict[str, Any], BaseException], Awaitable[Union[Any, ToolResult]]]


# =============================================================================
# Tool Definition
# =============================================================================
class ToolDefinition(BaseModel):
    """Immutable description of a callable tool.

    Attributes:
        name: Unique tool name (registry key).
        description: What the tool does, for the AI provider's tool list.
        parameters: JSON-schema-like description of accepted parameters.
        execute: Async implementation ``(params, context) -> data``.
        validator: Optional sync or async ``(params) -> ValidationResult``.
        fallback: Optional async ``(params, last_error) -> data`` used once
            retries are exhausted.
        retry_config: Overrides the runtime's default retry settings.
        circuit_breaker_config: Gives the tool its own breaker. Without it the
            tool has a breaker only if the runtime sets a default.
        timeout: Per-attempt timeout in seconds; the runtime default
            applies when None.

    Example:
        >>> async def echo(params, ctx):
        ...     return {"value": params["value"]}
        >>> ToolDefinition(name="echo", description="Echo a value", execute=echo)
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    execute: ToolFunction
    validator: Optional[ToolValidator] = None
    fallback: Optional[ToolFallback] = None
    retry_config: Optional[RetryConfig] = None
    circuit_breaker_config: Optional[CircuitBreakerConfig] = None
    timeout: Optional[float] = Field(default=None, gt=0.0)


# =============================================================================
# Tool Metrics
# =============================================================================
class ToolMetrics:
    """Running success/failure statistics for one tool.

    Only the last ``max_recent_errors`` error messages are kept.
    """

    def __init__(self, tool_name: str, max_recent_errors: int = 10) -> None:
        self.tool_name = tool_name
        self.success_count: int = 0
        self.failure_count: int = 0
        self.total_execution_time: float = 0.0
        self.last_success_at: Optional[datetime] = None
        self.last_failure_at: Optional[datetime] = None
        self.recent_errors: deque[str] = deque(maxlen=max_recent_errors)

    @property
    def total_calls(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        """Fraction of successful attempts; 1.0 before any attempt."""
        if self.total_calls == 0:
            return 1.0
        return self.success_count / self.total_calls

    @property
    def average_execution_time(self) -> float:
        if self.success_count == 0:
            return 0.0
        return self.total_execution_time / self.success_count

    def record_success(self, execution_time: float) -> None:
        self.success_count += 1
        self.total_execution_time += execution_time
        self.last_success_at = datetime.now(timezone.utc)

    def record_failure(self, error: Union[BaseException, str]) -> None:
        self.failure_count += 1
        self.recent_errors.append(str(error))
        self.last_failure_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "success_rate": self.success_rate,
            "average_execution_time": self.average_execution_time,
            "recent_errors": list(self.recent_errors),
        }


# =============================================================================
# Tool Registry
# =============================================================================
class ToolRegistry:
    """Name → ToolDefinition lookup.

    Example:
        >>> registry = ToolRegistry()
        >>> registry.register(echo_tool)
        >>> registry.get("echo").description
        'Echo a value'
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, definition: ToolDefinition, replace: bool = False) -> None:
        """Add a tool.

        Raises:
            ToolRegistrationError: If the name is taken and ``replace`` is False.
        """
        if definition.name in self._tools and not replace:
            raise ToolRegistrationError(
                message=f"Tool '{definition.name}' is already registered",
                tool_name=definition.name,
                error_code="DUPLICATE_TOOL",
            )
        self._tools[definition.name] = definition

    def unregister(self, name: str) -> bool:
        """Remove a tool. Returns False if it was not registered."""
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
