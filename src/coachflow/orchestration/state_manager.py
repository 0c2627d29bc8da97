"""
coachflow.orchestration.state_manager - Conversation State Manager
====================================================================

Owns the lifecycle of one ``ConversationState`` per chat session: creating
it with a profile snapshot, appending messages to a bounded history,
tracking at most one multi-step task and rendering a compact context text
for the AI provider.

Architecture:
    ┌──────────────┐   add_message / start_task   ┌──────────────────────┐
    │  Chat turn   │ ───────────────────────────→ │ ConversationState    │
    │  TaskRunner  │   update_task_step ...       │ Manager              │
    └──────────────┘                              │  ├─ per-session Lock │
                                                  │  └─ read cache       │
                                                  └─────────┬────────────┘
                                     load / save            │      publish
                               ┌────────────────────────────┤──────────────┐
                               ↓                            │              ↓
                     ┌──────────────────────┐               │     ┌──────────────┐
                     │ StateStorageAdapter  │               │     │   EventBus   │
                     │  (authoritative)     │               │     └──────────────┘
                     └──────────────────────┘

Mutation Protocol (every write goes through ``_mutate``):
    1. acquire the session's asyncio.Lock
    2. reject sessions this manager never initialized, then load the
       stored copy and adopt it if its version is newer than the cache
    3. apply the change to a deep copy
    4. version += 1, last_updated = now
    5. save through the adapter, then update the cache
    6. release the lock, publish STATE_UPDATED (plus any specific event)

    Two logically concurrent turns on the same session are therefore
    serialized, and no version increment is lost.

Callers only ever receive deep copies of the state.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from coachflow.core.enums import StateEventType, StepStatus, TaskType
from coachflow.core.exceptions import StateManagerError
from coachflow.core.state import (
    ConversationContext,
    ConversationMessage,
    ConversationState,
    TaskContext,
    TaskError,
    UserProfile,
    generate_message_id,
)
from coachflow.infrastructure.state_store import StateStorageAdapter
from coachflow.orchestration.event_bus import EventBus, StateEvent
from coachflow.orchestration.task_state_machine import StepSpec, StepUpdate, TaskStateMachine

logger = structlog.get_logger()

ProfileLoader = Callable[[str], Awaitable[Optional[Union[UserProfile, dict[str, Any]]]]]

_CONTEXT_FIELDS = frozenset(ConversationContext.model_fields)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStateManager:
    """Per-session conversation state with versioned, serialized updates.

    Args:
        storage: Adapter holding the authoritative state.
        event_bus: Where lifecycle events are published (optional).
        profile_loader: Async ``(user_id) -> UserProfile | dict | None`` used
            when a new state is created. Failures fall back to defaults.
        history_limit: Maximum messages kept per session.
        context_message_count: Recent messages included in the AI context.
        task_max_retries: Retry budget given to new tasks.

    Example:
        >>> manager = ConversationStateManager(InMemoryStateStorage(), InMemoryEventBus())
        >>> state = await manager.initialize_state("sess-1", "user-1")
        >>> await manager.add_message("sess-1", {"role": "user", "content": "Leg day?"})
        >>> manager.get_state("sess-1").metadata.version
        2
    """

    def __init__(
        self,
        storage: StateStorageAdapter,
        event_bus: Optional[EventBus] = None,
        profile_loader: Optional[ProfileLoader] = None,
        history_limit: int = 50,
        context_message_count: int = 5,
        task_max_retries: int = 3,
    ) -> None:
        self.storage = storage
        self.event_bus = event_bus
        self.profile_loader = profile_loader
        self.history_limit = history_limit
        self.context_message_count = context_message_count
        self.task_max_retries = task_max_retries

        # Read cache: session_id → last state this process saw.
        self._cache: dict[str, ConversationState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

        self._logger = logger.bind(component="state_manager")

    # =========================================================================
    # Initialization and Reads
    # =========================================================================

    async def initialize_state(self, session_id: str, user_id: str) -> ConversationState:
        """Restore a session's state from storage or create a new one.

        New states get a profile from ``profile_loader`` (or defaults) and are
        persisted immediately at version 1. Restored states are validated:
        over-long histories are trimmed and step timestamps repaired.

        Raises:
            StateManagerError: If storage fails.
        """
        async with self._lock_for(session_id):
            try:
                stored = await self.storage.load_state(session_id)
                created = stored is None
                if stored is None:
                    profile = await self._load_profile(user_id)
                    state = ConversationState(
                        session_id=session_id,
                        user_id=user_id,
                        context=ConversationContext(user_profile=profile),
                    )
                    await self.storage.save_state(state)
                else:
                    state, repaired = self._validate_and_migrate(stored, user_id)
                    if repaired:
                        await self.storage.save_state(state)
            except StateManagerError:
                raise
            except Exception as exc:
                raise StateManagerError(
                    message="Failed to initialize conversation state",
                    session_id=session_id,
                    error_code="STATE_INIT_FAILED",
                    details={"cause": str(exc), "cause_type": type(exc).__name__},
                ) from exc

            self._cache[session_id] = state

        self._logger.info(
            "state_initialized",
            session_id=session_id,
            user_id=user_id,
            created=created,
            version=state.metadata.version,
        )
        await self._publish(
            StateEventType.STATE_INITIALIZED,
            state,
            payload={"created": created},
        )
        return state.model_copy(deep=True)

    def get_state(self, session_id: str) -> Optional[ConversationState]:
        """Copy of the cached state, or None if this process has not seen it."""
        state = self._cache.get(session_id)
        return state.model_copy(deep=True) if state is not None else None

    def get_current_task(self, session_id: str) -> Optional[TaskContext]:
        state = self._cache.get(session_id)
        if state is None or state.context.current_task is None:
            return None
        return state.context.current_task.model_copy(deep=True)

    # =========================================================================
    # Context Updates
    # =========================================================================

    async def update_state(self, session_id: str, updates: dict[str, Any]) -> ConversationState:
        """Merge ``updates`` into the session's context.

        Keys must be ConversationContext fields (user_profile,
        conversation_history, current_task, workout_context, preferences).

        Raises:
            StateManagerError: NOT_INITIALIZED, UNKNOWN_FIELD or INVALID_UPDATE.
        """
        unknown = sorted(set(updates) - _CONTEXT_FIELDS)
        if unknown:
            raise StateManagerError(
                message=f"Unknown context fields: {', '.join(unknown)}",
                session_id=session_id,
                error_code="UNKNOWN_FIELD",
                details={"fields": unknown},
            )

        def apply(state: ConversationState) -> ConversationState:
            merged = {name: getattr(state.context, name) for name in _CONTEXT_FIELDS}
            merged.update(updates)
            try:
                state.context = ConversationContext.model_validate(merged)
            except ValidationError as exc:
                raise StateManagerError(
                    message="Invalid context update",
                    session_id=session_id,
                    error_code="INVALID_UPDATE",
                    details={"errors": exc.errors(include_url=False)},
                ) from exc
            self._trim_history(state)
            return state

        return await self._mutate(session_id, apply, payload={"fields": sorted(updates)})

    async def add_message(
        self,
        session_id: str,
        message: Union[ConversationMessage, dict[str, Any]],
    ) -> ConversationMessage:
        """Append a message with a freshly assigned id.

        The history keeps only the most recent ``history_limit`` messages.

        Returns:
            The stored message (with its id).
        """
        if isinstance(message, ConversationMessage):
            stored = message.model_copy(update={"id": generate_message_id()})
        else:
            stored = ConversationMessage.model_validate({**message, "id": generate_message_id()})

        def apply(state: ConversationState) -> ConversationState:
            state.context.conversation_history.append(stored)
            self._trim_history(state)
            return state

        await self._mutate(
            session_id,
            apply,
            payload={"fields": ["conversation_history"], "message_id": stored.id},
        )
        return stored.model_copy(deep=True)

    async def add_flag(self, session_id: str, flag: str) -> ConversationState:
        def apply(state: ConversationState) -> ConversationState:
            state.metadata.flags.add(flag)
            return state

        return await self._mutate(session_id, apply, payload={"flag": flag})

    # =========================================================================
    # Task Operations
    # =========================================================================

    async def start_task(
        self,
        session_id: str,
        task_type: TaskType,
        steps: list[Union[StepSpec, dict[str, Any]]],
    ) -> TaskContext:
        """Install a new PENDING task, replacing any previous one.

        Step ids are ``{task_id}_step_{index}``.

        Returns:
            A copy of the new task.
        """
        task = TaskStateMachine.build_task(
            TaskType(task_type), steps, max_retries=self.task_max_retries
        )

        def apply(state: ConversationState) -> ConversationState:
            state.context.current_task = task
            return state

        state = await self._mutate(session_id, apply, payload={"fields": ["current_task"]})
        self._logger.info(
            "task_started",
            session_id=session_id,
            task_id=task.task_id,
            task_type=task.type.value,
            step_count=len(task.steps),
        )
        await self._publish(
            StateEventType.TASK_STARTED,
            state,
            task_id=task.task_id,
            payload={"task_type": task.type.value, "step_count": len(task.steps)},
        )
        return task.model_copy(deep=True)

    async def update_task_step(
        self,
        session_id: str,
        step_id: str,
        update: Union[StepUpdate, dict[str, Any]],
    ) -> TaskContext:
        """Apply a partial step update through the TaskStateMachine.

        Raises:
            StateManagerError: NO_ACTIVE_TASK, STEP_NOT_FOUND or
                INVALID_TRANSITION.
        """

        def apply(state: ConversationState) -> ConversationState:
            task = self._require_task(state)
            state.context.current_task = TaskStateMachine.apply_step_update(
                task, step_id, update, session_id=session_id
            )
            return state

        state = await self._mutate(session_id, apply, payload={"fields": ["current_task"]})
        task = state.context.current_task
        step = task.steps[task.find_step(step_id)]
        self._logger.debug(
            "task_step_updated",
            session_id=session_id,
            step_id=step_id,
            status=step.status.value,
            task_status=task.status.value,
        )
        await self._publish(
            StateEventType.TASK_STEP_UPDATED,
            state,
            task_id=task.task_id,
            step_id=step_id,
            payload={"status": step.status.value, "task_status": task.status.value},
        )
        return task.model_copy(deep=True)

    async def retry_task(self, session_id: str) -> TaskContext:
        """Reset the failed task's failed and skipped steps to PENDING.

        Raises:
            StateManagerError: NO_ACTIVE_TASK, TASK_NOT_FAILED or
                TASK_RETRY_EXHAUSTED.
        """

        def apply(state: ConversationState) -> ConversationState:
            task = self._require_task(state)
            state.context.current_task = TaskStateMachine.retry_task(task, session_id=session_id)
            return state

        state = await self._mutate(session_id, apply, payload={"fields": ["current_task"]})
        task = state.context.current_task
        self._logger.info(
            "task_retried",
            session_id=session_id,
            task_id=task.task_id,
            retry_count=task.retry_count,
        )
        return task.model_copy(deep=True)

    async def fail_task(self, session_id: str, error: Union[TaskError, dict[str, Any]]) -> TaskContext:
        """Mark the active task FAILED; unfinished steps become SKIPPED."""
        task_error = error if isinstance(error, TaskError) else TaskError.model_validate(error)

        def apply(state: ConversationState) -> ConversationState:
            task = self._require_task(state)
            state.context.current_task = TaskStateMachine.fail_task(task, task_error)
            return state

        state = await self._mutate(session_id, apply, payload={"fields": ["current_task"]})
        task = state.context.current_task
        self._logger.warning(
            "task_failed",
            session_id=session_id,
            task_id=task.task_id,
            code=task_error.code,
        )
        return task.model_copy(deep=True)

    async def clear_task(self, session_id: str) -> ConversationState:
        def apply(state: ConversationState) -> ConversationState:
            state.context.current_task = None
            return state

        return await self._mutate(session_id, apply, payload={"fields": ["current_task"]})

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete_state(self, session_id: str) -> bool:
        """Delete the session from storage and the cache.

        The session lock is kept, so calls already queued on it stay
        serialized with any re-initialization of the same session id.
        """
        async with self._lock_for(session_id):
            cached = self._cache.pop(session_id, None)
            deleted = await self.storage.delete_state(session_id)

        if self.event_bus is not None and (deleted or cached is not None):
            await self.event_bus.publish(
                StateEvent(
                    type=StateEventType.STATE_DELETED,
                    session_id=session_id,
                    user_id=cached.user_id if cached else None,
                )
            )
        return deleted

    # =========================================================================
    # AI Context
    # =========================================================================

    def get_context_for_ai(self, session_id: str) -> str:
        """Render the session as plain text for the AI provider.

        Format::

            User Profile:
            - Fitness Level: beginner
            - Goals: strength, endurance
            - Equipment: dumbbells
            - Workout Frequency: 3 times per week

            Current Task: workout_creation (in_progress)
            Progress: Step 2/3

            Current Workout: Upper Body Blast (planning)

            Recent Conversation:
            user: Can you make it harder?

        Sections after the profile appear only when they have content.

        Returns:
            The context text, or "" for an unknown session.
        """
        state = self._cache.get(session_id)
        if state is None:
            return ""

        context = state.context
        profile = context.user_profile
        lines = [
            "User Profile:",
            f"- Fitness Level: {profile.fitness_level}",
            f"- Goals: {', '.join(profile.goals)}",
            f"- Equipment: {', '.join(profile.available_equipment)}",
            f"- Workout Frequency: {profile.workout_frequency}",
        ]
        text = "\n".join(lines) + "\n"

        task = context.current_task
        if task is not None:
            text += f"\nCurrent Task: {task.type.value} ({task.status.value})\n"
            text += f"Progress: Step {task.current_step + 1}/{len(task.steps)}\n"

        workout = context.workout_context.current_workout if context.workout_context else None
        if workout is not None:
            text += f"\nCurrent Workout: {workout.name} ({workout.status.value})\n"

        recent = context.conversation_history[-self.context_message_count:] if self.context_message_count else []
        if recent:
            text += "\nRecent Conversation:\n"
            for message in recent:
                text += f"{message.role.value}: {message.content}\n"

        return text

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _mutate(
        self,
        session_id: str,
        apply: Callable[[ConversationState], ConversationState],
        payload: Optional[dict[str, Any]] = None,
    ) -> ConversationState:
        """Run one serialized read-modify-write cycle (see module docstring)."""
        async with self._lock_for(session_id):
            current = await self._authoritative_state(session_id)
            updated = apply(current.model_copy(deep=True))
            updated.metadata.version = current.metadata.version + 1
            updated.metadata.last_updated = _now()
            await self.storage.save_state(updated)
            self._cache[session_id] = updated

        self._logger.debug("state_updated", session_id=session_id, version=updated.metadata.version)
        await self._publish(StateEventType.STATE_UPDATED, updated, payload=payload)
        return updated.model_copy(deep=True)

    async def _authoritative_state(self, session_id: str) -> ConversationState:
        cached = self._cache.get(session_id)
        # Sessions must be initialized (or restored) through this manager.
        if cached is None:
            raise StateManagerError(
                message=f"State not found for session: {session_id}",
                session_id=session_id,
                error_code="NOT_INITIALIZED",
            )

        stored = await self.storage.load_state(session_id)
        if stored is None:
            self._logger.warning(
                "stored_state_missing",
                session_id=session_id,
                cached_version=cached.metadata.version,
            )
            return cached
        if stored.metadata.version > cached.metadata.version:
            self._logger.info(
                "cache_refreshed_from_storage",
                session_id=session_id,
                cached_version=cached.metadata.version,
                stored_version=stored.metadata.version,
            )
            self._cache[session_id] = stored
            return stored
        return cached

    def _require_task(self, state: ConversationState) -> TaskContext:
        if state.context.current_task is None:
            raise StateManagerError(
                message=f"No active task found for session: {state.session_id}",
                session_id=state.session_id,
                error_code="NO_ACTIVE_TASK",
            )
        return state.context.current_task

    def _trim_history(self, state: ConversationState) -> None:
        history = state.context.conversation_history
        if len(history) > self.history_limit:
            state.context.conversation_history = history[-self.history_limit:]

    async def _load_profile(self, user_id: str) -> UserProfile:
        if self.profile_loader is None:
            return UserProfile()
        try:
            raw = await self.profile_loader(user_id)
            if raw is None:
                return UserProfile()
            if isinstance(raw, UserProfile):
                return raw.model_copy(deep=True)
            return UserProfile.model_validate(raw)
        except Exception as exc:
            self._logger.warning(
                "profile_load_failed",
                user_id=user_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        return UserProfile()

    def _validate_and_migrate(
        self,
        state: ConversationState,
        user_id: str,
    ) -> tuple[ConversationState, bool]:
        """Repair a restored state. Returns the state and whether it changed."""
        repaired = False

        if state.user_id != user_id:
            self._logger.warning(
                "state_user_mismatch",
                session_id=state.session_id,
                stored_user_id=state.user_id,
                requested_user_id=user_id,
            )

        if len(state.context.conversation_history) > self.history_limit:
            self._trim_history(state)
            repaired = True

        task = state.context.current_task
        if task is not None:
            steps = []
            for step in task.steps:
                if step.status == StepStatus.COMPLETED and step.completed_at is None:
                    step = step.model_copy(update={"completed_at": state.metadata.last_updated})
                    repaired = True
                elif step.status != StepStatus.COMPLETED and step.completed_at is not None:
                    step = step.model_copy(update={"completed_at": None})
                    repaired = True
                steps.append(step)
            if repaired:
                state.context.current_task = TaskStateMachine.refresh(
                    task.model_copy(update={"steps": steps})
                )

        return state, repaired

    async def _publish(
        self,
        event_type: StateEventType,
        state: ConversationState,
        task_id: Optional[str] = None,
        step_id: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            StateEvent(
                type=event_type,
                session_id=state.session_id,
                user_id=state.user_id,
                version=state.metadata.version,
                task_id=task_id,
                step_id=step_id,
                payload=payload or {},
            )
        )
