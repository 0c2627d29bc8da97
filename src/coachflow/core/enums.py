"""
coachflow.core.enums - Type-Safe Enumerations
===============================================

Every enumeration used across CoachFlow lives here. All of them inherit from
both ``str`` and ``Enum`` so they serialize to plain strings in JSON and can
be compared directly against string literals:

    >>> StepStatus.COMPLETED == "completed"
    True

Layer Mapping:
    ┌─────────────────────────────────────────────────────────────────┐
    │  TOOL LAYER                                                     │
    │    ErrorCategory: How a ToolError should be handled             │
    │    CircuitBreakerState: closed / open / half-open               │
    ├─────────────────────────────────────────────────────────────────┤
    │  CONVERSATION STATE                                             │
    │    TaskType, TaskStatus, StepStatus: multi-step task tracking   │
    │    MessageRole, MessageSource: conversation history entries     │
    │    WorkoutStatus: the workout currently being discussed         │
    ├─────────────────────────────────────────────────────────────────┤
    │  EVENTS                                                         │
    │    StateEventType: lifecycle notifications on the event bus     │
    └─────────────────────────────────────────────────────────────────┘
"""

from enum import Enum


# =============================================================================
# Task Type Enumeration
# =============================================================================
# The kinds of multi-step work the assistant runs on behalf of a user.
# =============================================================================
class TaskType(str, Enum):
    """Kind of multi-step task tracked in a conversation.

    Usage:
        >>> TaskType("workout_creation")
        <TaskType.WORKOUT_CREATION: 'workout_creation'>
    """

    WORKOUT_CREATION = "workout_creation"   # Build a workout plan for the user
    EXERCISE_SEARCH = "exercise_search"     # Look up exercises matching a query
    GENERAL_CHAT = "general_chat"           # Free-form coaching conversation


# =============================================================================
# Task Status Enumeration
# =============================================================================
# A task's status is DERIVED from its steps (see TaskStateMachine):
#
#   PENDING ──→ IN_PROGRESS ──→ COMPLETED
#                    │
#                    └──────→ FAILED ──(retry_task)──→ IN_PROGRESS
# =============================================================================
class TaskStatus(str, Enum):
    """Aggregate lifecycle status of a task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Lifecycle status of a single task step.

    COMPLETED and SKIPPED are terminal. FAILED may go back to PENDING or
    IN_PROGRESS when the step is retried.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Conversation Message Enumerations
# =============================================================================
class MessageRole(str, Enum):
    """Who authored a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageSource(str, Enum):
    """Where a conversation message came from."""

    USER_INPUT = "user_input"           # Typed by the user
    AI_RESPONSE = "ai_response"         # Generated by the AI provider
    TOOL_RESULT = "tool_result"         # Summary of a step's tool results
    SYSTEM_MESSAGE = "system_message"   # Internal notices


class WorkoutStatus(str, Enum):
    """Status of the workout currently under discussion."""

    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"


# =============================================================================
# Error Category Enumeration
# =============================================================================
# Decides what the executor does with a failure:
#
#   VALIDATION      → never retried, returned immediately
#   EXECUTION       → retried if the message looks transient, then fallback
#   TIMEOUT         → an execution failure that is always transient
#   CIRCUIT_BREAKER → rejected without attempting the tool
#   UNKNOWN         → anything we could not classify
# =============================================================================
class ErrorCategory(str, Enum):
    """Classification of a tool error."""

    VALIDATION = "validation"
    EXECUTION = "execution"
    TIMEOUT = "timeout"
    CIRCUIT_BREAKER = "circuit_breaker"
    UNKNOWN = "unknown"


class CircuitBreakerState(str, Enum):
    """States of a per-tool circuit breaker.

    CLOSED:    Calls pass through; failures are counted.
    OPEN:      Calls are rejected until the reset timeout elapses.
    HALF_OPEN: One trial call is admitted; its outcome decides.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


# =============================================================================
# State Event Enumeration
# =============================================================================
# Published on the EventBus by the ConversationStateManager so that other
# components (UI bridges, analytics, tests) can observe state changes
# without holding a reference to the manager.
# =============================================================================
class StateEventType(str, Enum):
    """Lifecycle notifications emitted by the state manager."""

    STATE_INITIALIZED = "state_initialized"
    STATE_UPDATED = "state_updated"
    TASK_STARTED = "task_started"
    TASK_STEP_UPDATED = "task_step_updated"
    STATE_DELETED = "state_deleted"
