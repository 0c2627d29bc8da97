"""
Tests for coachflow.orchestration.event_bus
=============================================
"""

from coachflow.core.enums import StateEventType
from coachflow.orchestration.event_bus import InMemoryEventBus, StateEvent


def make_event(event_type=StateEventType.STATE_UPDATED, session_id="s1", version=2) -> StateEvent:
    return StateEvent(type=event_type, session_id=session_id, user_id="u1", version=version)


class TestStateEvent:
    def test_defaults(self) -> None:
        event = StateEvent(type=StateEventType.STATE_DELETED, session_id="s1")
        assert event.version == 0
        assert event.payload == {}
        assert event.event_id
        assert event.timestamp.tzinfo is not None


class TestSubscriptions:
    async def test_async_subscriber_receives_event(self, event_bus) -> None:
        received = []

        async def handler(event):
            received.append(event)

        event_bus.subscribe(handler)
        event = make_event()
        await event_bus.publish(event)

        assert received == [event]

    async def test_sync_subscriber(self, event_bus) -> None:
        received = []
        event_bus.subscribe(received.append)
        await event_bus.publish(make_event())
        assert len(received) == 1

    async def test_type_filter(self, event_bus) -> None:
        received = []
        event_bus.subscribe(received.append, StateEventType.TASK_STARTED)

        await event_bus.publish(make_event(StateEventType.STATE_UPDATED))
        await event_bus.publish(make_event(StateEventType.TASK_STARTED))

        assert [event.type for event in received] == [StateEventType.TASK_STARTED]

    async def test_unsubscribe(self, event_bus) -> None:
        received = []
        subscription_id = event_bus.subscribe(received.append)

        assert event_bus.unsubscribe(subscription_id)
        assert not event_bus.unsubscribe(subscription_id)
        await event_bus.publish(make_event())
        assert received == []

    async def test_failing_subscriber_is_isolated(self, event_bus) -> None:
        received = []

        async def broken(event):
            raise RuntimeError("subscriber bug")

        event_bus.subscribe(broken)
        event_bus.subscribe(received.append)

        await event_bus.publish(make_event())

        assert len(received) == 1
        assert event_bus.published_count == 1


class TestHistory:
    async def test_history_and_filtering(self, event_bus) -> None:
        await event_bus.publish(make_event(session_id="s1"))
        await event_bus.publish(make_event(StateEventType.TASK_STARTED, session_id="s1"))
        await event_bus.publish(make_event(session_id="s2"))

        assert event_bus.published_count == 3
        assert len(event_bus.events_for("s1")) == 2
        assert len(event_bus.events_for("s1", StateEventType.TASK_STARTED)) == 1

    async def test_history_is_bounded(self) -> None:
        bus = InMemoryEventBus(max_history=2)
        for version in range(1, 5):
            await bus.publish(make_event(version=version))
        assert [event.version for event in bus.history] == [3, 4]
        assert bus.published_count == 4

    async def test_clear(self, event_bus) -> None:
        received = []
        event_bus.subscribe(received.append)
        await event_bus.publish(make_event())

        await event_bus.clear()
        await event_bus.publish(make_event())

        assert len(received) == 1
        assert event_bus.published_count == 1
