"""
coachflow.tools - Resilient Tool Execution
============================================

    - registry:        ToolDefinition, ToolRegistry, ToolMetrics
    - runtime:         ToolRuntime (registry + breakers + metrics per tool)
    - retry:           backoff and retryable-error classification
    - circuit_breaker: CircuitBreaker (closed / open / half-open)
    - cancellation:    CancellationToken
    - executor:        ToolExecutor (validate → breaker → retry → fallback)
    - chain:           ToolChainExecutor, ToolChainResult
    - builtin:         the default coaching tools

Usage:
    >>> runtime = ToolRuntime()
    >>> runtime.register_tool(ToolDefinition(name="echo", description="Echo", execute=echo))
    >>> result = await ToolExecutor(runtime).execute_tool("echo", {"value": 1}, context)
"""

from coachflow.tools.builtin import FALLBACK_RESPONSE, build_builtin_tools, extract_json
from coachflow.tools.cancellation import CancellationToken
from coachflow.tools.chain import ToolChainExecutor, ToolChainResult
from coachflow.tools.circuit_breaker import CircuitBreaker
from coachflow.tools.executor import ToolExecutor
from coachflow.tools.registry import ToolDefinition, ToolMetrics, ToolRegistry
from coachflow.tools.retry import calculate_delay, is_retryable, should_retry
from coachflow.tools.runtime import ToolRuntime

__all__ = [
    "ToolDefinition",
    "ToolRegistry",
    "ToolMetrics",
    "ToolRuntime",
    "CircuitBreaker",
    "CancellationToken",
    "ToolExecutor",
    "ToolChainExecutor",
    "ToolChainResult",
    "calculate_delay",
    "is_retryable",
    "should_retry",
    "build_builtin_tools",
    "extract_json",
    "FALLBACK_RESPONSE",
]
