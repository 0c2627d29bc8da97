"""
coachflow.tools.chain - Dependency-Aware Tool Chains
======================================================

Executes a list of ``ToolCall``s whose ``dependencies`` name other tools in
the same chain. Calls run in batches: every call whose dependencies have
all succeeded is launched together, the batch is awaited, and the loop
repeats.

    calls: A, B(dep A), C(dep A), D(dep B, C)

    batch 1:  A
    batch 2:  B, C        (concurrently)
    batch 3:  D

Deadlock:
    If nothing is ready and nothing is running while calls remain, those
    calls can never start (a dependency failed, is missing from the chain,
    or the dependencies form a cycle). The chain stops and the returned
    ``ToolChainResult`` carries a DEPENDENCY_DEADLOCK error listing the
    unresolved calls.

Results are keyed by tool name; if two calls share a name the later one
wins.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from coachflow.core.enums import ErrorCategory
from coachflow.core.models import ToolCall, ToolError, ToolExecutionContext, ToolResult
from coachflow.tools.cancellation import CancellationToken
from coachflow.tools.executor import ToolExecutor

logger = structlog.get_logger()


# =============================================================================
# Chain Result
# =============================================================================
class ToolChainResult(BaseModel):
    """Outcome of a tool chain.

    Behaves like a read-only mapping of tool name → ToolResult for the calls
    that actually ran.

    Attributes:
        results: Results of the calls that ran, keyed by tool name.
        batches: Tool names launched in each iteration, in order.
        unresolved: Calls that never started.
        cancelled: True if a CancellationToken stopped the chain.
        error: DEPENDENCY_DEADLOCK or EXECUTION_CANCELLED when the chain
            stopped early, otherwise None.

    Example:
        >>> chain = await chain_executor.execute_tool_chain(calls, ctx)
        >>> chain["search_exercises"].success
        True
        >>> chain.deadlocked
        False
    """

    results: dict[str, ToolResult] = Field(default_factory=dict)
    batches: list[list[str]] = Field(default_factory=list)
    unresolved: list[str] = Field(default_factory=list)
    cancelled: bool = False
    error: Optional[ToolError] = None

    @property
    def deadlocked(self) -> bool:
        return self.error is not None and self.error.code == "DEPENDENCY_DEADLOCK"

    @property
    def all_succeeded(self) -> bool:
        """True when every call ran and succeeded."""
        return self.error is None and all(result.success for result in self.results.values())

    def failed(self) -> dict[str, ToolResult]:
        return {name: result for name, result in self.results.items() if not result.success}

    def data(self) -> dict[str, Any]:
        """Tool name → data for successful calls."""
        return {name: result.data for name, result in self.results.items() if result.success}

    def get(self, name: str, default: Optional[ToolResult] = None) -> Optional[ToolResult]:
        return self.results.get(name, default)

    def keys(self) -> list[str]:
        return list(self.results.keys())

    def items(self) -> list[tuple[str, ToolResult]]:
        return list(self.results.items())

    def __getitem__(self, name: str) -> ToolResult:
        return self.results[name]

    def __contains__(self, name: object) -> bool:
        return name in self.results

    def __len__(self) -> int:
        return len(self.results)


# =============================================================================
# Chain Executor
# =============================================================================
class ToolChainExecutor:
    """Runs ToolCalls in dependency order, concurrently where possible.

    Args:
        executor: The ToolExecutor used for every call.
    """

    def __init__(self, executor: ToolExecutor) -> None:
        self.executor = executor
        self._logger = logger.bind(component="tool_chain")

    async def execute_tool_chain(
        self,
        calls: list[ToolCall],
        context: ToolExecutionContext,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ToolChainResult:
        """Execute ``calls`` honouring their dependencies.

        Each call sees ``context.previous_results`` extended with every
        result gathered so far in this chain.

        Args:
            calls: Calls to run. Order only matters for tie-breaking.
            context: Base execution context.
            cancel_token: Stops the chain before the next batch launches.

        Returns:
            A ToolChainResult. Never raises for tool or dependency failures.
        """
        log = self._logger.bind(session_id=context.session_id, call_count=len(calls))
        chain = ToolChainResult()
        pending: list[ToolCall] = list(calls)

        while pending:
            if cancel_token is not None and cancel_token.cancelled:
                chain.cancelled = True
                chain.unresolved = [call.name for call in pending]
                chain.error = ToolError(
                    code="EXECUTION_CANCELLED",
                    message=f"Tool chain cancelled: {cancel_token.reason}",
                    details={"unresolved": chain.unresolved},
                    recoverable=True,
                    category=ErrorCategory.EXECUTION,
                )
                log.info("tool_chain_cancelled", unresolved=chain.unresolved)
                return chain

            ready = [call for call in pending if self._dependencies_met(call, chain.results)]
            if not ready:
                chain.unresolved = [call.name for call in pending]
                chain.error = self._deadlock_error(pending, chain.results)
                log.warning(
                    "tool_chain_deadlock",
                    unresolved=chain.unresolved,
                    blocked_by=chain.error.details["blocked_by"],
                )
                return chain

            launched = {id(call) for call in ready}
            pending = [call for call in pending if id(call) not in launched]
            batch_context = context.model_copy(
                update={"previous_results": list(context.previous_results) + list(chain.results.values())}
            )
            batch_names = [call.name for call in ready]
            chain.batches.append(batch_names)
            log.debug("tool_chain_batch_started", batch=batch_names)

            batch_results = await asyncio.gather(
                *(
                    self.executor.execute_tool(call.name, call.parameters, batch_context, cancel_token)
                    for call in ready
                )
            )

            for call, result in zip(ready, batch_results):
                if call.name in chain.results:
                    log.warning("tool_chain_duplicate_name", tool_name=call.name)
                chain.results[call.name] = result

        log.info(
            "tool_chain_completed",
            batches=len(chain.batches),
            failed=sorted(chain.failed()),
        )
        return chain

    @staticmethod
    def _dependencies_met(call: ToolCall, results: dict[str, ToolResult]) -> bool:
        return all(dep in results and results[dep].success for dep in call.dependencies)

    @staticmethod
    def _deadlock_error(pending: list[ToolCall], results: dict[str, ToolResult]) -> ToolError:
        blocked_by = {
            call.name: [
                dep for dep in call.dependencies if dep not in results or not results[dep].success
            ]
            for call in pending
        }
        failed_dependencies = sorted(
            {dep for deps in blocked_by.values() for dep in deps if dep in results}
        )
        return ToolError(
            code="DEPENDENCY_DEADLOCK",
            message=(
                "Tool chain cannot make progress; unresolved calls: "
                + ", ".join(call.name for call in pending)
            ),
            details={
                "unresolved": [call.name for call in pending],
                "blocked_by": blocked_by,
                "failed_dependencies": failed_dependencies,
            },
            recoverable=False,
            suggested_action="Check that every dependency is part of the chain and succeeds",
            category=ErrorCategory.VALIDATION,
        )
