"""
coachflow.orchestration.task_state_machine - Task Step State Machine
======================================================================

Decides which step transitions are legal and derives a task's aggregate
status from its steps. The ConversationStateManager routes every step
update through here before persisting it.

Step Transitions:
    ┌─────────┐        ┌─────────────┐        ┌───────────┐
    │ PENDING │ ─────→ │ IN_PROGRESS │ ─────→ │ COMPLETED │  (terminal)
    └─────────┘        └─────────────┘        └───────────┘
       │  ↑                 │    │
       │  │ retry           │    └──────────→ ┌─────────┐
       │  │                 ↓                 │ SKIPPED │  (terminal)
       │  └──────────── ┌────────┐            └─────────┘
       └──────────────→ │ FAILED │
                        └────────┘

    PENDING may jump straight to any status. Updating a step to the
    status it already has is always allowed (e.g., to attach output).
    Leaving FAILED counts as a retry and increments the step's
    ``retry_count``.

Timestamps:
    - entering IN_PROGRESS stamps ``started_at``
    - COMPLETED stamps ``completed_at``; every other status clears it

Derived Task Status:
    - no steps                                 → PENDING
    - every step COMPLETED or SKIPPED          → COMPLETED
    - any step IN_PROGRESS                     → IN_PROGRESS
    - any step FAILED and none PENDING         → FAILED
    - any step past PENDING                    → IN_PROGRESS
    - otherwise                                → PENDING

    ``current_step`` is the first PENDING or IN_PROGRESS step, or the last
    step once none remain.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from coachflow.core.enums import StepStatus, TaskStatus, TaskType
from coachflow.core.exceptions import StateManagerError
from coachflow.core.state import TaskContext, TaskError, TaskStep, generate_task_id, make_step_id


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Inputs
# =============================================================================
class StepSpec(BaseModel):
    """A step as requested by the caller of ``start_task``."""

    name: str
    description: Optional[str] = None
    input: Optional[Any] = None


class StepUpdate(BaseModel):
    """Partial update for one step. Only fields that are set are applied."""

    status: Optional[StepStatus] = None
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None


_TERMINAL = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})

ALLOWED_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset(StepStatus),
    StepStatus.IN_PROGRESS: frozenset(
        {StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.PENDING}
    ),
    StepStatus.FAILED: frozenset({StepStatus.PENDING, StepStatus.IN_PROGRESS}),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.SKIPPED: frozenset(),
}


class TaskStateMachine:
    """Stateless rules for building tasks and applying step updates.

    All methods return new TaskContext objects; inputs are never mutated.

    Example:
        >>> task = TaskStateMachine.build_task(TaskType.WORKOUT_CREATION, [
        ...     StepSpec(name="analyze_request"),
        ...     StepSpec(name="generate_workout"),
        ... ])
        >>> task = TaskStateMachine.apply_step_update(
        ...     task, task.steps[0].step_id, StepUpdate(status=StepStatus.IN_PROGRESS)
        ... )
        >>> task.status
        <TaskStatus.IN_PROGRESS: 'in_progress'>
    """

    @staticmethod
    def can_transition(current: StepStatus, target: StepStatus) -> bool:
        return current == target or target in ALLOWED_TRANSITIONS[current]

    # =========================================================================
    # Task Construction
    # =========================================================================

    @staticmethod
    def build_task(
        task_type: TaskType,
        steps: list[Union[StepSpec, dict[str, Any]]],
        max_retries: int = 3,
        task_id: Optional[str] = None,
    ) -> TaskContext:
        """Create a PENDING task with step ids ``{task_id}_step_{i}``."""
        task_id = task_id or generate_task_id()
        specs = [spec if isinstance(spec, StepSpec) else StepSpec.model_validate(spec) for spec in steps]
        return TaskContext(
            task_id=task_id,
            type=task_type,
            status=TaskStatus.PENDING,
            steps=[
                TaskStep(
                    step_id=make_step_id(task_id, index),
                    name=spec.name,
                    description=spec.description,
                    input=spec.input,
                )
                for index, spec in enumerate(specs)
            ],
            current_step=0,
            max_retries=max_retries,
        )

    # =========================================================================
    # Step Updates
    # =========================================================================

    @classmethod
    def apply_step_update(
        cls,
        task: TaskContext,
        step_id: str,
        update: Union[StepUpdate, dict[str, Any]],
        session_id: Optional[str] = None,
    ) -> TaskContext:
        """Apply a partial step update and re-derive the task status.

        Raises:
            StateManagerError: STEP_NOT_FOUND or INVALID_TRANSITION.
        """
        if not isinstance(update, StepUpdate):
            update = StepUpdate.model_validate(update)

        index = task.find_step(step_id)
        if index is None:
            raise StateManagerError(
                message=f"Step '{step_id}' not found in task '{task.task_id}'",
                session_id=session_id,
                error_code="STEP_NOT_FOUND",
                details={"task_id": task.task_id, "step_id": step_id},
            )

        step = task.steps[index]
        changes = {field: getattr(update, field) for field in update.model_fields_set}
        target = changes.pop("status", None) or step.status
        now = _now()

        if not cls.can_transition(step.status, target):
            raise StateManagerError(
                message=f"Invalid step transition {step.status.value} → {target.value}",
                session_id=session_id,
                error_code="INVALID_TRANSITION",
                details={
                    "task_id": task.task_id,
                    "step_id": step_id,
                    "from": step.status.value,
                    "to": target.value,
                },
            )

        if step.status == StepStatus.FAILED and target != StepStatus.FAILED:
            changes["retry_count"] = step.retry_count + 1
            changes.setdefault("error", None)

        if target == StepStatus.IN_PROGRESS and step.status != StepStatus.IN_PROGRESS:
            changes["started_at"] = changes.get("started_at") or now

        if target == StepStatus.COMPLETED:
            changes["completed_at"] = step.completed_at or now
        else:
            changes["completed_at"] = None

        changes["status"] = target
        steps = list(task.steps)
        steps[index] = step.model_copy(update=changes)
        return cls.refresh(task.model_copy(update={"steps": steps}))

    # =========================================================================
    # Derivation
    # =========================================================================

    @staticmethod
    def derive_status(steps: list[TaskStep]) -> TaskStatus:
        if not steps:
            return TaskStatus.PENDING
        statuses = [step.status for step in steps]
        if all(status in _TERMINAL for status in statuses):
            return TaskStatus.COMPLETED
        if StepStatus.IN_PROGRESS in statuses:
            return TaskStatus.IN_PROGRESS
        if StepStatus.FAILED in statuses and StepStatus.PENDING not in statuses:
            return TaskStatus.FAILED
        if any(status != StepStatus.PENDING for status in statuses):
            return TaskStatus.IN_PROGRESS
        return TaskStatus.PENDING

    @staticmethod
    def derive_current_step(steps: list[TaskStep]) -> int:
        for index, step in enumerate(steps):
            if step.status in (StepStatus.PENDING, StepStatus.IN_PROGRESS):
                return index
        return max(len(steps) - 1, 0)

    @classmethod
    def refresh(cls, task: TaskContext) -> TaskContext:
        """Recompute status, current_step, completed_at and the failure error."""
        status = cls.derive_status(task.steps)
        # An explicit fail_task() sticks until retry_task() clears the error.
        if task.status == TaskStatus.FAILED and task.error is not None and task.error.code != "STEP_FAILED":
            status = TaskStatus.FAILED
        updates: dict[str, Any] = {
            "status": status,
            "current_step": cls.derive_current_step(task.steps),
            "completed_at": (task.completed_at or _now()) if status == TaskStatus.COMPLETED else None,
        }

        if status == TaskStatus.FAILED and task.error is None:
            failed = [step for step in task.steps if step.status == StepStatus.FAILED]
            updates["error"] = TaskError(
                code="STEP_FAILED",
                message=failed[0].error or f"Step '{failed[0].name}' failed",
                details={"failed_steps": [step.step_id for step in failed]},
                recoverable=task.retry_count < task.max_retries,
                suggested_action="Retry the task" if task.retry_count < task.max_retries else None,
            )
        elif status != TaskStatus.FAILED and task.error is not None and task.error.code == "STEP_FAILED":
            updates["error"] = None

        return task.model_copy(update=updates)

    # =========================================================================
    # Task-Level Operations
    # =========================================================================

    @classmethod
    def retry_task(cls, task: TaskContext, session_id: Optional[str] = None) -> TaskContext:
        """Reset FAILED and SKIPPED steps to PENDING and consume one task retry.

        Raises:
            StateManagerError: TASK_NOT_FAILED if the task has not failed,
                TASK_RETRY_EXHAUSTED if the retry budget is spent.
        """
        if task.status != TaskStatus.FAILED:
            raise StateManagerError(
                message=f"Task '{task.task_id}' is {task.status.value}, only failed tasks can be retried",
                session_id=session_id,
                error_code="TASK_NOT_FAILED",
                details={"task_id": task.task_id, "status": task.status.value},
            )
        if task.retry_count >= task.max_retries:
            raise StateManagerError(
                message=f"Task '{task.task_id}' exhausted its {task.max_retries} retries",
                session_id=session_id,
                error_code="TASK_RETRY_EXHAUSTED",
                details={"task_id": task.task_id, "retry_count": task.retry_count},
            )

        steps = [
            step.model_copy(
                update={
                    "status": StepStatus.PENDING,
                    "error": None,
                    "completed_at": None,
                    "retry_count": step.retry_count + (1 if step.status == StepStatus.FAILED else 0),
                }
            )
            if step.status in (StepStatus.FAILED, StepStatus.SKIPPED)
            else step
            for step in task.steps
        ]
        return cls.refresh(
            task.model_copy(update={"steps": steps, "retry_count": task.retry_count + 1, "error": None})
        )

    @staticmethod
    def fail_task(task: TaskContext, error: TaskError) -> TaskContext:
        """Mark the whole task FAILED with ``error``.

        Steps still PENDING or IN_PROGRESS are marked SKIPPED so that the
        derived status stays consistent.
        """
        steps = [
            step.model_copy(update={"status": StepStatus.SKIPPED, "completed_at": None})
            if step.status in (StepStatus.PENDING, StepStatus.IN_PROGRESS)
            else step
            for step in task.steps
        ]
        return task.model_copy(
            update={
                "steps": steps,
                "status": TaskStatus.FAILED,
                "error": error,
                "completed_at": None,
                "current_step": TaskStateMachine.derive_current_step(steps),
            }
        )
