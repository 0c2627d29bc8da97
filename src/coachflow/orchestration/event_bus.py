"""
coachflow.orchestration.event_bus - State Lifecycle Events
============================================================

The ConversationStateManager announces every state change on an
``EventBus`` instead of calling listener objects directly. Anything that
wants to react (a websocket bridge pushing task progress to the UI,
analytics, tests) subscribes to the bus.

    ConversationStateManager ──publish(StateEvent)──→ EventBus
                                                        │
                       ┌────────────────────────────────┼──────────────┐
                       ↓                                ↓              ↓
               subscriber (all types)     subscriber (TASK_STEP_UPDATED) ...

Delivery Semantics:
    - Subscribers run concurrently via ``asyncio.gather``.
    - A failing subscriber is logged; it never affects other subscribers
      and never surfaces to the publisher.
    - Delivery is in-process and at-most-once.
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from coachflow.core.enums import StateEventType

logger = structlog.get_logger()


# =============================================================================
# State Event
# =============================================================================
class StateEvent(BaseModel):
    """A single lifecycle notification.

    Attributes:
        event_id: Unique id for de-duplication.
        type: What happened.
        session_id: Session whose state changed.
        user_id: Owner of the session.
        version: State version after the change (0 for deletions).
        task_id: Active task, for task events.
        step_id: Affected step, for TASK_STEP_UPDATED.
        payload: Event-specific extras (e.g., the new step status).
        timestamp: When the event was emitted.
    """

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    type: StateEventType
    session_id: str
    user_id: Optional[str] = None
    version: int = 0
    task_id: Optional[str] = None
    step_id: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


EventCallback = Callable[[StateEvent], Union[None, Awaitable[None]]]


# =============================================================================
# Abstract Base Class: EventBus
# =============================================================================
class EventBus(ABC):
    """Contract for publishing and subscribing to StateEvents."""

    @abstractmethod
    async def publish(self, event: StateEvent) -> None:
        """Deliver ``event`` to every matching subscriber."""

    @abstractmethod
    def subscribe(
        self,
        callback: EventCallback,
        event_type: Optional[StateEventType] = None,
    ) -> str:
        """Register ``callback`` for one event type, or all types when None.

        Returns:
            A subscription id for ``unsubscribe``.
        """

    @abstractmethod
    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns False if the id is unknown."""


# =============================================================================
# In-Memory Implementation
# =============================================================================
class InMemoryEventBus(EventBus):
    """Single-process event bus with a bounded history.

    Args:
        max_history: How many recent events to keep for inspection.

    Example:
        >>> bus = InMemoryEventBus()
        >>> async def on_step(event: StateEvent) -> None:
        ...     print(event.step_id, event.payload["status"])
        >>> bus.subscribe(on_step, StateEventType.TASK_STEP_UPDATED)
    """

    def __init__(self, max_history: int = 200) -> None:
        # subscription_id → (event_type or None for all, callback)
        self._subscriptions: dict[str, tuple[Optional[StateEventType], EventCallback]] = {}
        self._history: deque[StateEvent] = deque(maxlen=max_history)
        self._published_count: int = 0
        self._logger = logger.bind(component="event_bus", impl="in_memory")

    @property
    def published_count(self) -> int:
        return self._published_count

    @property
    def history(self) -> list[StateEvent]:
        """Recent events, oldest first."""
        return list(self._history)

    def events_for(
        self,
        session_id: str,
        event_type: Optional[StateEventType] = None,
    ) -> list[StateEvent]:
        return [
            event
            for event in self._history
            if event.session_id == session_id and (event_type is None or event.type == event_type)
        ]

    def subscribe(
        self,
        callback: EventCallback,
        event_type: Optional[StateEventType] = None,
    ) -> str:
        subscription_id = str(uuid4())
        self._subscriptions[subscription_id] = (event_type, callback)
        self._logger.debug(
            "event_subscribed",
            subscription_id=subscription_id,
            event_type=event_type.value if event_type else "*",
        )
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    async def publish(self, event: StateEvent) -> None:
        self._history.append(event)
        self._published_count += 1

        callbacks = [
            callback
            for event_type, callback in list(self._subscriptions.values())
            if event_type is None or event_type == event.type
        ]

        if callbacks:
            results = await asyncio.gather(
                *(self._invoke(callback, event) for callback in callbacks),
                return_exceptions=True,
            )
            for index, result in enumerate(results):
                if isinstance(result, Exception):
                    self._logger.error(
                        "subscriber_callback_error",
                        event_type=event.type.value,
                        session_id=event.session_id,
                        error=str(result),
                        callback_index=index,
                    )

        self._logger.debug(
            "event_published",
            event_type=event.type.value,
            session_id=event.session_id,
            version=event.version,
            subscriber_count=len(callbacks),
        )

    async def clear(self) -> None:
        """Drop all subscriptions and history."""
        self._subscriptions.clear()
        self._history.clear()
        self._published_count = 0

    @staticmethod
    async def _invoke(callback: EventCallback, event: StateEvent) -> None:
        outcome = callback(event)
        if inspect.isawaitable(outcome):
            await outcome
