"""
coachflow.orchestration - Conversation State and Tasks
========================================================

    - event_bus:          StateEvent, EventBus, InMemoryEventBus
    - task_state_machine: step transitions and derived task status
    - state_manager:      ConversationStateManager
    - task_runner:        TaskRunner, StepPlan, TaskRunReport
"""

from coachflow.orchestration.event_bus import EventBus, InMemoryEventBus, StateEvent
from coachflow.orchestration.state_manager import ConversationStateManager
from coachflow.orchestration.task_runner import StepPlan, TaskRunner, TaskRunReport
from coachflow.orchestration.task_state_machine import (
    ALLOWED_TRANSITIONS,
    StepSpec,
    StepUpdate,
    TaskStateMachine,
)

__all__ = [
    "StateEvent",
    "EventBus",
    "InMemoryEventBus",
    "TaskStateMachine",
    "StepSpec",
    "StepUpdate",
    "ALLOWED_TRANSITIONS",
    "ConversationStateManager",
    "TaskRunner",
    "StepPlan",
    "TaskRunReport",
]
