"""
coachflow.core.state - Conversation State Models
==================================================

The dynamic, per-session state tracked by the ConversationStateManager.
One ``ConversationState`` exists per active chat session; it is persisted
through a storage adapter and only ever handed to callers as a copy.

State Tree:
    ConversationState
        ├── session_id / user_id
        ├── context: ConversationContext
        │     ├── user_profile: UserProfile          (snapshot at init)
        │     ├── conversation_history: [Message]    (≤ history_limit, FIFO)
        │     ├── current_task: TaskContext | None   (at most one)
        │     │     └── steps: [TaskStep]
        │     ├── workout_context: WorkoutContext | None
        │     └── preferences: UserPreferences
        └── metadata: StateMetadata
              ├── created_at / last_updated
              ├── version        (starts at 1, +1 per mutation)
              └── flags

Invariants (enforced by the state manager, not by these models):
    - len(conversation_history) <= history_limit, oldest evicted first
    - metadata.version increases by exactly 1 per mutation
    - TaskStep.completed_at is set iff TaskStep.status == COMPLETED

Usage:
    >>> state = ConversationState(session_id="sess-1", user_id="user-1")
    >>> state.context.user_profile.fitness_level
    'beginner'
"""

from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from coachflow.core.enums import (
    MessageRole,
    MessageSource,
    StepStatus,
    TaskStatus,
    TaskType,
    WorkoutStatus,
)


# =============================================================================
# Helper Functions
# =============================================================================
_ID_ALPHABET = string.ascii_lowercase + string.digits


def _now() -> datetime:
    """Get the current UTC timestamp."""
    return datetime.now(timezone.utc)


def _generate_prefixed_id(prefix: str) -> str:
    """Build an id of the form ``{prefix}_{epoch_ms}_{9 random chars}``.

    The millisecond timestamp keeps ids roughly sortable by creation time;
    the random suffix separates ids minted within the same millisecond.
    """
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def generate_message_id() -> str:
    """Generate a conversation message id (``msg_...``)."""
    return _generate_prefixed_id("msg")


def generate_task_id() -> str:
    """Generate a task id (``task_...``)."""
    return _generate_prefixed_id("task")


def make_step_id(task_id: str, index: int) -> str:
    """Step ids are derived from the owning task and the step's position."""
    return f"{task_id}_step_{index}"


# =============================================================================
# User Profile
# =============================================================================
# A snapshot of who the user is, taken when the session state is created.
# The defaults describe a new user who has not finished onboarding.
# =============================================================================
class ProfilePreferences(BaseModel):
    """How the assistant should talk to this user."""

    communication_style: str = Field(default="motivational")
    detail_level: str = Field(default="detailed")
    workout_complexity: str = Field(default="beginner")


class UserProfile(BaseModel):
    """Fitness profile snapshot used to personalize tool calls.

    Attributes:
        fitness_level: Self-reported level (beginner, intermediate, advanced).
        goals: Training goals, e.g. ["strength", "weight_loss"].
        preferred_workout_types: e.g. ["bodyweight", "hiit"].
        available_equipment: Equipment the user has access to.
        workout_frequency: Free text such as "2-3 times per week".
        time_per_workout: Free text such as "30-45 minutes".
        injuries: Known injuries or limitations.
        preferences: Communication preferences.
    """

    fitness_level: str = Field(default="beginner")
    goals: list[str] = Field(default_factory=lambda: ["general_fitness"])
    preferred_workout_types: list[str] = Field(default_factory=lambda: ["bodyweight"])
    available_equipment: list[str] = Field(default_factory=lambda: ["bodyweight"])
    workout_frequency: str = Field(default="2-3 times per week")
    time_per_workout: str = Field(default="30-45 minutes")
    injuries: list[str] = Field(default_factory=list)
    preferences: ProfilePreferences = Field(default_factory=ProfilePreferences)


# =============================================================================
# User Preferences
# =============================================================================
class NotificationPreferences(BaseModel):
    workout_reminders: bool = True
    progress_updates: bool = True
    motivational_messages: bool = True


class UIPreferences(BaseModel):
    theme: str = Field(default="auto", pattern="^(light|dark|auto)$")
    compact_mode: bool = False


class UserPreferences(BaseModel):
    """Locale, notification and display preferences for the session."""

    language: str = Field(default="en")
    timezone: str = Field(default="UTC")
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    ui: UIPreferences = Field(default_factory=UIPreferences)


# =============================================================================
# Workout Context
# =============================================================================
class CurrentWorkout(BaseModel):
    """The workout the conversation is currently about."""

    id: str
    name: str
    exercises: list[dict[str, Any]] = Field(default_factory=list)
    status: WorkoutStatus = Field(default=WorkoutStatus.PLANNING)


class ExercisePreferences(BaseModel):
    preferred_exercises: list[str] = Field(default_factory=list)
    avoided_exercises: list[str] = Field(default_factory=list)
    target_muscle_groups: list[str] = Field(default_factory=list)


class WorkoutContext(BaseModel):
    """Workout-related memory carried across turns.

    Attributes:
        current_workout: The workout being planned or performed, if any.
        recent_workouts: Short list of recently generated workouts.
        workout_history: Longer record of completed workouts.
        preferences: Exercise likes, dislikes and targets.
    """

    current_workout: Optional[CurrentWorkout] = None
    recent_workouts: list[dict[str, Any]] = Field(default_factory=list)
    workout_history: list[dict[str, Any]] = Field(default_factory=list)
    preferences: ExercisePreferences = Field(default_factory=ExercisePreferences)


# =============================================================================
# Task Tracking
# =============================================================================
# A task is an ordered list of steps. Step transitions are checked by the
# TaskStateMachine; the task's own status is derived from its steps.
#
#   task_1700000000000_k3j9x0a2b
#       ├── task_..._step_0  analyze_request   COMPLETED
#       ├── task_..._step_1  generate_workout  IN_PROGRESS   ← current_step
#       └── task_..._step_2  format_response   PENDING
# =============================================================================
class TaskError(BaseModel):
    """Structured failure attached to a task.

    Attributes:
        code: Machine-readable code (e.g., "STEP_FAILED", "TASK_CANCELLED").
        message: Human-readable description.
        details: Extra context.
        recoverable: Whether retrying the task makes sense.
        suggested_action: Hint for the caller or the user.
        timestamp: When the error was recorded.
    """

    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    recoverable: bool = False
    suggested_action: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class TaskStep(BaseModel):
    """One unit of work within a task."""

    step_id: str
    name: str
    description: Optional[str] = None
    status: StepStatus = Field(default=StepStatus.PENDING)
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    retry_count: int = Field(default=0, ge=0)


class TaskContext(BaseModel):
    """A multi-step task running inside a conversation.

    Attributes:
        task_id: Unique id (``task_{epoch_ms}_{random}``).
        type: What kind of work the task performs.
        status: Derived from the steps by the TaskStateMachine.
        steps: Ordered steps.
        current_step: Index of the first step that is not finished.
        retry_count: Task-level retries consumed so far.
        max_retries: Task-level retry budget.
        started_at: When the task was created.
        completed_at: When the task reached COMPLETED.
        error: Last task-level error, if any.
    """

    task_id: str = Field(default_factory=generate_task_id)
    type: TaskType
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    steps: list[TaskStep] = Field(default_factory=list)
    current_step: int = Field(default=0, ge=0)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)
    started_at: datetime = Field(default_factory=_now)
    completed_at: Optional[datetime] = None
    error: Optional[TaskError] = None

    def find_step(self, step_id: str) -> Optional[int]:
        """Return the index of ``step_id`` or None."""
        for index, step in enumerate(self.steps):
            if step.step_id == step_id:
                return index
        return None


# =============================================================================
# Conversation Messages
# =============================================================================
class MessageMetadata(BaseModel):
    """Provenance of a conversation message."""

    task_id: Optional[str] = None
    tool_calls: Optional[list[str]] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    source: MessageSource = Field(default=MessageSource.USER_INPUT)


class ConversationMessage(BaseModel):
    """A single entry in the conversation history.

    Example:
        >>> ConversationMessage(role=MessageRole.USER, content="Plan me a leg day")
    """

    id: str = Field(default_factory=generate_message_id)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=_now)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)


# =============================================================================
# Conversation State
# =============================================================================
class ConversationContext(BaseModel):
    """Everything the assistant knows about the ongoing conversation."""

    user_profile: UserProfile = Field(default_factory=UserProfile)
    conversation_history: list[ConversationMessage] = Field(default_factory=list)
    current_task: Optional[TaskContext] = None
    workout_context: Optional[WorkoutContext] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)


class StateMetadata(BaseModel):
    """Bookkeeping for optimistic versioning and auditing."""

    created_at: datetime = Field(default_factory=_now)
    last_updated: datetime = Field(default_factory=_now)
    version: int = Field(default=1, ge=1)
    flags: set[str] = Field(default_factory=set)


class ConversationState(BaseModel):
    """Complete state of one chat session.

    Attributes:
        session_id: The session this state belongs to.
        user_id: The user who owns the session.
        context: Profile, history, task, workout and preferences.
        metadata: Timestamps, version and flags.
    """

    session_id: str
    user_id: str
    context: ConversationContext = Field(default_factory=ConversationContext)
    metadata: StateMetadata = Field(default_factory=StateMetadata)

    @property
    def version(self) -> int:
        return self.metadata.version

    @property
    def current_task(self) -> Optional[TaskContext]:
        return self.context.current_task
