"""
coachflow.tools.executor - Resilient Tool Executor
====================================================

Runs one tool invocation and always returns a ``ToolResult``. Failures are
data: the caller inspects ``result.success`` rather than catching
exceptions.

Execution Pipeline:
    execute_tool(name, params, context)
        │
        ├─ 1. Lookup ──────────── unknown  → TOOL_NOT_FOUND        (validation)
        ├─ 2. Validate ────────── invalid  → INVALID_PARAMETERS    (validation)
        ├─ 3. Circuit breaker ─── open     → CIRCUIT_BREAKER_OPEN  (circuit_breaker)
        │       (skipped, with no outcome recording, for tools without a breaker)
        │
        ├─ 4. Attempt loop (attempt = 0 .. max_retries)
        │       ├─ run execute() under the timeout
        │       ├─ success → record success, return result
        │       └─ failure → record failure
        │             ├─ retryable and budget left → sleep backoff, retry
        │             └─ otherwise → leave the loop
        │
        ├─ 5. Fallback (if defined) ─ success → "<name>_fallback", confidence 0.5
        └─ 6. EXECUTION_FAILED                                     (execution)

    A CancellationToken may fire at any point after validation; the
    executor then returns EXECUTION_CANCELLED without calling the fallback.

Side Effects:
    Only per-tool metrics and circuit breaker state in the ToolRuntime.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Optional

import structlog

from coachflow.core.enums import CircuitBreakerState, ErrorCategory
from coachflow.core.exceptions import ToolCancelledError, ToolTimeoutError
from coachflow.core.models import (
    ToolError,
    ToolExecutionContext,
    ToolResult,
    ToolResultMetadata,
    ValidationResult,
)
from coachflow.tools.cancellation import CancellationToken
from coachflow.tools.registry import ToolDefinition
from coachflow.tools.retry import calculate_delay, should_retry
from coachflow.tools.runtime import ToolRuntime

logger = structlog.get_logger()

FALLBACK_CONFIDENCE = 0.5


class ToolExecutor:
    """Executes registered tools with validation, breaking, retry and fallback.

    Args:
        runtime: The shared ToolRuntime (registry, breakers, metrics).

    Example:
        >>> executor = ToolExecutor(runtime)
        >>> result = await executor.execute_tool(
        ...     "create_workout",
        ...     {"duration_minutes": 30},
        ...     ToolExecutionContext(session_id="s1", user_id="u1"),
        ... )
        >>> result.success, result.metadata.retry_count
        (True, 0)
    """

    def __init__(self, runtime: ToolRuntime) -> None:
        self.runtime = runtime
        self._logger = logger.bind(component="tool_executor")

    async def execute_tool(
        self,
        tool_name: str,
        parameters: dict[str, Any],
        context: ToolExecutionContext,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ToolResult:
        """Run one tool invocation end to end.

        Args:
            tool_name: Registered tool name.
            parameters: Parameters passed unchanged to validator, tool and fallback.
            context: Session, user and prior results for the tool.
            cancel_token: Optional token that aborts retries and in-flight attempts.

        Returns:
            A ToolResult. Never raises for tool-level failures.
        """
        started = time.perf_counter()
        log = self._logger.bind(tool_name=tool_name, session_id=context.session_id)

        # --- Step 1: Lookup ---
        definition = self.runtime.get_tool(tool_name)
        if definition is None:
            available = self.runtime.available_tools()
            log.warning("tool_not_found", available_tools=available)
            return self._failure(
                tool_name,
                started,
                ToolError(
                    code="TOOL_NOT_FOUND",
                    message=f"Tool '{tool_name}' not found",
                    details={"available_tools": available},
                    recoverable=False,
                    suggested_action="Use one of the available tools",
                    category=ErrorCategory.VALIDATION,
                ),
            )

        # --- Step 2: Validate ---
        if definition.validator is not None:
            validation = await self._validate(definition, parameters)
            if not validation.is_valid:
                log.info("tool_parameters_invalid", errors=validation.errors)
                return self._failure(
                    tool_name,
                    started,
                    ToolError(
                        code="INVALID_PARAMETERS",
                        message=f"Invalid parameters: {'; '.join(validation.errors)}",
                        details={"errors": validation.errors, "warnings": validation.warnings},
                        recoverable=True,
                        suggested_action="Correct the parameters and try again",
                        category=ErrorCategory.VALIDATION,
                    ),
                )
            if validation.warnings:
                log.info("tool_parameter_warnings", warnings=validation.warnings)

        # --- Step 3: Circuit breaker ---
        breaker = self.runtime.get_breaker(tool_name)
        if breaker is not None and not breaker.allow_request():
            next_retry = breaker.next_retry_time()
            log.warning("tool_circuit_open", failures=breaker.failures)
            return self._failure(
                tool_name,
                started,
                ToolError(
                    code="CIRCUIT_BREAKER_OPEN",
                    message=f"Circuit breaker is open for tool '{tool_name}'",
                    details={"next_retry_at": next_retry.isoformat() if next_retry else None},
                    recoverable=True,
                    suggested_action="Wait before calling this tool again",
                    category=ErrorCategory.CIRCUIT_BREAKER,
                ),
            )

        # True while this call holds the HALF-OPEN trial and has not reported back.
        holds_trial = breaker is not None and breaker.state == CircuitBreakerState.HALF_OPEN

        # --- Step 4: Attempt loop ---
        retry_config = self.runtime.retry_config_for(definition)
        timeout = self.runtime.timeout_for(definition)
        metrics = self.runtime.get_metrics(tool_name)
        last_error: Optional[BaseException] = None
        attempts = 0

        try:
            for attempt in range(retry_config.max_retries + 1):
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()

                attempts = attempt + 1
                attempt_started = time.perf_counter()
                try:
                    data = await self._run_attempt(definition, parameters, context, timeout, cancel_token)
                except ToolCancelledError:
                    raise
                except Exception as exc:
                    last_error = exc
                    metrics.record_failure(exc)
                    if breaker is not None:
                        breaker.record_failure()
                        holds_trial = False
                    log.warning(
                        "tool_attempt_failed",
                        attempt=attempt,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )

                    if not should_retry(retry_config, exc, attempt):
                        break

                    delay = calculate_delay(retry_config, attempt)
                    log.info("tool_retry_scheduled", attempt=attempt, delay_seconds=delay)
                    if cancel_token is not None:
                        await cancel_token.sleep(delay)
                    elif delay > 0:
                        await asyncio.sleep(delay)
                    continue

                metrics.record_success(time.perf_counter() - attempt_started)
                if breaker is not None:
                    breaker.record_success()
                    holds_trial = False
                log.info("tool_executed", attempt=attempt)
                return ToolResult(
                    success=True,
                    data=data,
                    metadata=ToolResultMetadata(
                        tool_name=tool_name,
                        execution_time=time.perf_counter() - started,
                        retry_count=attempt,
                    ),
                )
        except asyncio.CancelledError:
            if holds_trial:
                breaker.release_trial()
            log.info("tool_execution_task_cancelled", attempts=attempts)
            raise
        except ToolCancelledError as exc:
            if holds_trial:
                breaker.release_trial()
            log.info("tool_execution_cancelled", attempts=attempts, reason=exc.details.get("reason"))
            return self._failure(
                tool_name,
                started,
                ToolError(
                    code="EXECUTION_CANCELLED",
                    message=exc.message,
                    details={"attempts": attempts, **exc.details},
                    recoverable=True,
                    suggested_action="Re-issue the request if it is still needed",
                    category=ErrorCategory.EXECUTION,
                ),
                retry_count=max(attempts - 1, 0),
            )

        retries_consumed = max(attempts - 1, 0)

        # --- Step 5: Fallback ---
        if definition.fallback is not None and last_error is not None:
            try:
                fallback_data = await definition.fallback(parameters, last_error)
                if isinstance(fallback_data, ToolResult):
                    if not fallback_data.success:
                        raise RuntimeError(
                            fallback_data.error.message if fallback_data.error else "fallback returned failure"
                        )
                    fallback_data = fallback_data.data
            except Exception as fallback_exc:
                log.warning("tool_fallback_failed", error=str(fallback_exc))
            else:
                log.info("tool_fallback_used", retry_count=retries_consumed, original_error=str(last_error))
                return ToolResult(
                    success=True,
                    data=fallback_data,
                    metadata=ToolResultMetadata(
                        tool_name=f"{tool_name}_fallback",
                        execution_time=time.perf_counter() - started,
                        retry_count=retries_consumed,
                        confidence=FALLBACK_CONFIDENCE,
                    ),
                )

        # --- Step 6: Give up ---
        log.error("tool_execution_failed", attempts=attempts, error=str(last_error))
        return self._failure(
            tool_name,
            started,
            ToolError(
                code="EXECUTION_FAILED",
                message=str(last_error),
                details={
                    "original_error": str(last_error),
                    "error_type": type(last_error).__name__,
                    "attempts": attempts,
                },
                recoverable=False,
                suggested_action="Try again later or rephrase the request",
                category=ErrorCategory.EXECUTION,
            ),
            retry_count=retries_consumed,
        )

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    async def _validate(self, definition: ToolDefinition, parameters: dict[str, Any]) -> ValidationResult:
        """Run the tool's validator; a validator that raises counts as invalid."""
        try:
            outcome = definition.validator(parameters)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:
            return ValidationResult.invalid(f"Validator raised {type(exc).__name__}: {exc}")
        return outcome

    async def _run_attempt(
        self,
        definition: ToolDefinition,
        parameters: dict[str, Any],
        context: ToolExecutionContext,
        timeout: float,
        cancel_token: Optional[CancellationToken],
    ) -> Any:
        """Run ``execute`` once, bounded by the timeout and the cancel token."""
        if cancel_token is None:
            try:
                return await asyncio.wait_for(definition.execute(parameters, context), timeout=timeout)
            except asyncio.TimeoutError:
                raise ToolTimeoutError(definition.name, timeout) from None

        work = asyncio.ensure_future(definition.execute(parameters, context))
        waiter = asyncio.ensure_future(cancel_token.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        cancel_token.raise_if_cancelled()
        raise ToolTimeoutError(definition.name, timeout)

    @staticmethod
    def _failure(
        tool_name: str,
        started: float,
        error: ToolError,
        retry_count: int = 0,
    ) -> ToolResult:
        return ToolResult(
            success=False,
            error=error,
            metadata=ToolResultMetadata(
                tool_name=tool_name,
                execution_time=time.perf_counter() - started,
                retry_count=retry_count,
            ),
        )
