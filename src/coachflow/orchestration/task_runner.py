"""
coachflow.orchestration.task_runner - Multi-Step Task Execution
=================================================================

Drives a task from start to finish: installs it in the conversation state,
runs each step's tool calls through the ToolChainExecutor and records the
outcome of every step back into the state.

Architecture:
    ┌───────────────────────────────────────────────────────────────┐
    │                          TaskRunner                            │
    │                                                               │
    │  StepPlans ──→ start_task ──→ Step Loop ──→ TaskRunReport     │
    │                                                               │
    │  Step "find"   ──→ [ToolChainExecutor] ──→ search_exercises   │
    │  Step "build"  ──→ [ToolChainExecutor] ──→ create_workout     │
    │    (depends on "find"; skipped if "find" did not complete)   │
    └───────────────────────────────────────────────────────────────┘

Step Execution Flow:
    1. Skip the step if one of its dependencies did not complete (or, with
       ``stop_on_step_failure``, if any earlier step failed).
    2. Mark it IN_PROGRESS with the planned calls as input.
    3. Build a ToolExecutionContext from the current state: AI context
       text, profile snapshot and every result produced so far in the task.
    4. Run the chain. All calls succeeded → COMPLETED with the data per
       tool. Otherwise → FAILED with a short error description.
    5. Append a ``tool_result`` system message summarizing the step.

    A cancelled token fails the task with TASK_CANCELLED; its unfinished
    steps become SKIPPED.

Usage:
    >>> runner = TaskRunner(state_manager, chain_executor)
    >>> report = await runner.run_task(
    ...     "sess-1",
    ...     TaskType.WORKOUT_CREATION,
    ...     [
    ...         StepPlan(name="find", tool_calls=[ToolCall(name="search_exercises", parameters={"query": "legs"})]),
    ...         StepPlan(name="build", tool_calls=[ToolCall(name="create_workout")], dependencies=["find"]),
    ...     ],
    ... )
    >>> report.task.status
    <TaskStatus.COMPLETED: 'completed'>
"""

from __future__ import annotations

from typing import Optional

import structlog
from pydantic import BaseModel, Field

from coachflow.core.enums import MessageRole, MessageSource, StepStatus, TaskStatus, TaskType
from coachflow.core.exceptions import StateManagerError
from coachflow.core.models import ToolCall, ToolExecutionContext, ToolResult
from coachflow.core.state import ConversationMessage, MessageMetadata, TaskContext, TaskError
from coachflow.orchestration.state_manager import ConversationStateManager
from coachflow.orchestration.task_state_machine import StepSpec, StepUpdate
from coachflow.tools.cancellation import CancellationToken
from coachflow.tools.chain import ToolChainExecutor, ToolChainResult

logger = structlog.get_logger()


# =============================================================================
# Plan and Report
# =============================================================================
class StepPlan(BaseModel):
    """One step of a task and the tool calls that carry it out.

    Attributes:
        name: Step name, unique within the task.
        description: Human-readable description.
        tool_calls: Calls run as one chain when the step executes.
        dependencies: Names of earlier steps that must complete first.
    """

    name: str = Field(min_length=1)
    description: Optional[str] = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)


class TaskRunReport(BaseModel):
    """Outcome of ``TaskRunner.run_task``.

    Attributes:
        task: Final copy of the task as stored in the conversation state.
        step_results: Chain result per executed step name. Skipped steps
            have no entry.
        cancelled: True if a CancellationToken stopped the run.
    """

    task: TaskContext
    step_results: dict[str, ToolChainResult] = Field(default_factory=dict)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.task.status == TaskStatus.COMPLETED


# =============================================================================
# Runner
# =============================================================================
class TaskRunner:
    """Runs multi-step tasks against a session's conversation state.

    The runner holds no state of its own between runs; everything it does
    is recorded through the ConversationStateManager.

    Args:
        state_manager: Owner of the session state.
        chain_executor: Runs the tool calls of each step.
        stop_on_step_failure: Skip every step after the first failure
            instead of only the steps that depend on it.
    """

    def __init__(
        self,
        state_manager: ConversationStateManager,
        chain_executor: ToolChainExecutor,
        stop_on_step_failure: bool = False,
    ) -> None:
        self._state_manager = state_manager
        self._chain_executor = chain_executor
        self._stop_on_step_failure = stop_on_step_failure
        self._logger = logger.bind(component="task_runner")

    async def run_task(
        self,
        session_id: str,
        task_type: TaskType,
        steps: list[StepPlan],
        cancel_token: Optional[CancellationToken] = None,
    ) -> TaskRunReport:
        """Start a task for ``session_id`` and execute its steps in order.

        Args:
            session_id: An initialized session.
            task_type: Kind of task being run.
            steps: Step plans; dependencies may only name earlier steps.
            cancel_token: Checked before each step and passed to the chain.

        Returns:
            A TaskRunReport. Tool failures are recorded, not raised.

        Raises:
            StateManagerError: INVALID_TASK_PLAN for duplicate step names or
                dependencies on unknown or later steps, or any state error.
        """
        self._check_plan(session_id, steps)

        task = await self._state_manager.start_task(
            session_id,
            task_type,
            [StepSpec(name=plan.name, description=plan.description) for plan in steps],
        )
        log = self._logger.bind(session_id=session_id, task_id=task.task_id)
        log.info("task_run_started", task_type=TaskType(task_type).value, step_count=len(steps))

        report_results: dict[str, ToolChainResult] = {}
        previous_results: list[ToolResult] = []
        step_status: dict[str, StepStatus] = {}
        cancelled = False

        for plan, step in zip(steps, task.steps):
            if cancel_token is not None and cancel_token.cancelled:
                cancelled = True
                break

            skip_reason = self._skip_reason(plan, step_status)
            if skip_reason is not None:
                await self._state_manager.update_task_step(
                    session_id,
                    step.step_id,
                    StepUpdate(status=StepStatus.SKIPPED, error=skip_reason),
                )
                step_status[plan.name] = StepStatus.SKIPPED
                log.info("task_step_skipped", step=plan.name, reason=skip_reason)
                continue

            await self._state_manager.update_task_step(
                session_id,
                step.step_id,
                StepUpdate(
                    status=StepStatus.IN_PROGRESS,
                    input=[call.model_dump() for call in plan.tool_calls],
                ),
            )

            context = self._build_context(session_id, task.task_id, step.step_id, previous_results)
            chain = await self._chain_executor.execute_tool_chain(plan.tool_calls, context, cancel_token)
            report_results[plan.name] = chain
            previous_results.extend(chain.results.values())

            if chain.cancelled or (cancel_token is not None and cancel_token.cancelled):
                cancelled = True
                break

            if chain.all_succeeded:
                await self._state_manager.update_task_step(
                    session_id,
                    step.step_id,
                    StepUpdate(status=StepStatus.COMPLETED, output=chain.data()),
                )
                step_status[plan.name] = StepStatus.COMPLETED
                log.info("task_step_completed", step=plan.name, tools=chain.keys())
            else:
                error_text = self._describe_failure(chain)
                await self._state_manager.update_task_step(
                    session_id,
                    step.step_id,
                    StepUpdate(status=StepStatus.FAILED, output=chain.data(), error=error_text),
                )
                step_status[plan.name] = StepStatus.FAILED
                log.warning("task_step_failed", step=plan.name, error=error_text)

            await self._record_step_message(session_id, task.task_id, plan, chain)

        if cancelled:
            reason = cancel_token.reason if cancel_token is not None else None
            await self._state_manager.fail_task(
                session_id,
                TaskError(
                    code="TASK_CANCELLED",
                    message=f"Task cancelled: {reason}" if reason else "Task cancelled",
                    recoverable=True,
                    suggested_action="Start the task again",
                ),
            )
            log.info("task_run_cancelled", reason=reason)

        final = self._state_manager.get_current_task(session_id)
        log.info("task_run_finished", status=final.status.value if final else None)
        return TaskRunReport(task=final, step_results=report_results, cancelled=cancelled)

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    @staticmethod
    def _check_plan(session_id: str, steps: list[StepPlan]) -> None:
        seen: set[str] = set()
        for plan in steps:
            if plan.name in seen:
                raise StateManagerError(
                    message=f"Duplicate step name: {plan.name}",
                    session_id=session_id,
                    error_code="INVALID_TASK_PLAN",
                    details={"step": plan.name},
                )
            missing = [dep for dep in plan.dependencies if dep not in seen]
            if missing:
                raise StateManagerError(
                    message=f"Step '{plan.name}' depends on unknown or later steps: {', '.join(missing)}",
                    session_id=session_id,
                    error_code="INVALID_TASK_PLAN",
                    details={"step": plan.name, "dependencies": missing},
                )
            seen.add(plan.name)

    def _skip_reason(self, plan: StepPlan, step_status: dict[str, StepStatus]) -> Optional[str]:
        blocked = [dep for dep in plan.dependencies if step_status.get(dep) != StepStatus.COMPLETED]
        if blocked:
            return f"Dependencies not completed: {', '.join(blocked)}"
        if self._stop_on_step_failure and StepStatus.FAILED in step_status.values():
            return "An earlier step failed"
        return None

    def _build_context(
        self,
        session_id: str,
        task_id: str,
        step_id: str,
        previous_results: list[ToolResult],
    ) -> ToolExecutionContext:
        state = self._state_manager.get_state(session_id)
        return ToolExecutionContext(
            session_id=session_id,
            user_id=state.user_id,
            task_id=task_id,
            step_id=step_id,
            conversation_context=self._state_manager.get_context_for_ai(session_id),
            user_profile=state.context.user_profile,
            previous_results=list(previous_results),
        )

    @staticmethod
    def _describe_failure(chain: ToolChainResult) -> str:
        if chain.error is not None:
            return f"{chain.error.code}: {chain.error.message}"
        return "; ".join(
            f"{name}: {result.error.code if result.error else 'UNKNOWN_ERROR'}"
            for name, result in chain.failed().items()
        )

    async def _record_step_message(
        self,
        session_id: str,
        task_id: str,
        plan: StepPlan,
        chain: ToolChainResult,
    ) -> None:
        outcomes = [
            f"{name}: {'ok' if result.success else result.error.message if result.error else 'failed'}"
            for name, result in chain.items()
        ]
        if chain.error is not None:
            outcomes.append(chain.error.message)
        confidences = [r.metadata.confidence for _, r in chain.items() if r.metadata.confidence is not None]

        await self._state_manager.add_message(
            session_id,
            ConversationMessage(
                role=MessageRole.SYSTEM,
                content=f"Step '{plan.name}' results:\n" + "\n".join(outcomes),
                metadata=MessageMetadata(
                    task_id=task_id,
                    tool_calls=chain.keys(),
                    confidence=min(confidences) if confidences else None,
                    source=MessageSource.TOOL_RESULT,
                ),
            ),
        )
