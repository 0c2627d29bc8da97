"""
End-to-End Integration Tests for CoachFlow
============================================

These tests drive the full stack from the facade down to file storage with
real components wired together (only the AI provider is the mock).

Test Scenarios:
    1. Workout creation: search → build task with persisted state
    2. Session restore across facade instances
    3. Provider outage: built-in tools degrade to fallbacks
    4. Task retry after a failed step
    5. Event flow for a task run
"""

from __future__ import annotations

import pytest

from coachflow.core.config import CoachFlowConfig, StateStoreConfig
from coachflow.core.enums import MessageSource, StateEventType, StepStatus, TaskStatus, TaskType
from coachflow.core.models import ToolCall
from coachflow.facade import CoachFlow
from coachflow.infrastructure.state_store import FileStateStorage
from coachflow.integrations.llm.mock import MockLLMProvider
from coachflow.orchestration.task_runner import StepPlan
from coachflow.tools.builtin import FALLBACK_RESPONSE
from coachflow.tools.registry import ToolDefinition

SESSION = "chat-42"
USER = "athlete-7"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def file_config(tmp_path):
    return CoachFlowConfig(state_store=StateStoreConfig(backend="file", directory=str(tmp_path / "state")))


@pytest.fixture
def mock_provider():
    return MockLLMProvider()


def workout_steps() -> list[StepPlan]:
    return [
        StepPlan(
            name="find_exercises",
            tool_calls=[ToolCall(name="search_exercises", parameters={"query": "upper body"})],
        ),
        StepPlan(
            name="build_workout",
            tool_calls=[
                ToolCall(name="create_workout", parameters={"name": "Upper Body Blast", "duration_minutes": 40})
            ],
            dependencies=["find_exercises"],
        ),
    ]


# =============================================================================
# Scenario 1: Workout Creation
# =============================================================================
class TestWorkoutCreation:
    async def test_full_flow_persists_to_disk(self, file_config, mock_provider, tmp_path) -> None:
        async with CoachFlow(file_config, llm_provider=mock_provider) as coach:
            await coach.start_session(SESSION, USER)
            await coach.add_user_message(SESSION, "I want to train my upper body")

            report = await coach.run_task(SESSION, TaskType.WORKOUT_CREATION, workout_steps())

            assert report.succeeded
            workout = report.task.steps[1].output["create_workout"]
            assert workout["name"] == "Upper Body Blast"
            assert workout["duration_minutes"] == 40
            assert len(workout["exercises"]) == 4

            # The build step saw the search results.
            build_prompt = mock_provider.call_history[-1]["prompt"]
            assert "Prefer these exercises: Push-up, Incline Push-up" in build_prompt
            assert "user: I want to train my upper body" in build_prompt

            await coach.add_assistant_message(
                SESSION, f"Here is {workout['name']}!", task_id=report.task.task_id, confidence=0.9
            )

        stored = await FileStateStorage(str(tmp_path / "state")).load_state(SESSION)
        assert stored.context.current_task.status == TaskStatus.COMPLETED
        sources = [m.metadata.source for m in stored.context.conversation_history]
        assert sources == [
            MessageSource.USER_INPUT,
            MessageSource.TOOL_RESULT,
            MessageSource.TOOL_RESULT,
            MessageSource.AI_RESPONSE,
        ]

    async def test_events_for_task_run(self, mock_provider) -> None:
        async with CoachFlow(llm_provider=mock_provider) as coach:
            await coach.start_session(SESSION, USER)
            await coach.run_task(SESSION, TaskType.WORKOUT_CREATION, workout_steps())

            types = [event.type for event in coach.event_bus.events_for(SESSION)]

        assert types[0] == StateEventType.STATE_INITIALIZED
        assert StateEventType.TASK_STARTED in types
        assert types.count(StateEventType.TASK_STEP_UPDATED) == 4


# =============================================================================
# Scenario 2: Session Restore
# =============================================================================
class TestSessionRestore:
    async def test_state_survives_restart(self, file_config) -> None:
        async with CoachFlow(file_config) as first:
            await first.start_session(SESSION, USER)
            await first.add_user_message(SESSION, "Remember me")
            version = first.state_manager.get_state(SESSION).metadata.version

        async with CoachFlow(file_config) as second:
            state = await second.start_session(SESSION, USER)

        assert state.metadata.version == version
        assert state.context.conversation_history[-1].content == "Remember me"

    async def test_two_instances_share_versions(self, file_config) -> None:
        async with CoachFlow(file_config) as first, CoachFlow(file_config) as second:
            await first.start_session(SESSION, USER)
            await second.start_session(SESSION, USER)

            await first.add_user_message(SESSION, "from first")
            await second.add_user_message(SESSION, "from second")

            state = second.state_manager.get_state(SESSION)

        assert state.metadata.version == 3
        assert [m.content for m in state.context.conversation_history] == ["from first", "from second"]


# =============================================================================
# Scenario 3: Provider Outage
# =============================================================================
class TestProviderOutage:
    async def test_builtin_tools_fall_back(self, mock_provider) -> None:
        mock_provider.set_should_fail(True, "provider exploded")

        async with CoachFlow(llm_provider=mock_provider) as coach:
            await coach.start_session(SESSION, USER)

            reply = await coach.execute_tool(SESSION, "general_response", {"message": "Hi coach"})
            search = await coach.execute_tool(SESSION, "search_exercises", {"query": "legs"})
            workout = await coach.execute_tool(SESSION, "create_workout", {"duration_minutes": 20})

        assert reply.success and reply.is_fallback
        assert reply.data == {"response": FALLBACK_RESPONSE}
        assert reply.metadata.confidence == 0.5
        assert search.data["exercises"] == []
        assert workout.data["name"] == "Quick Bodyweight Workout"
        assert workout.data["duration_minutes"] == 20
        assert workout.metadata.tool_name == "create_workout_fallback"

    async def test_task_completes_on_fallbacks(self, mock_provider) -> None:
        mock_provider.set_should_fail(True, "provider exploded")

        async with CoachFlow(llm_provider=mock_provider) as coach:
            await coach.start_session(SESSION, USER)
            report = await coach.run_task(SESSION, TaskType.WORKOUT_CREATION, workout_steps())
            history = coach.state_manager.get_state(SESSION).context.conversation_history

        assert report.succeeded
        assert history[-1].metadata.confidence == 0.5


# =============================================================================
# Scenario 4: Retry After Failure
# =============================================================================
class TestTaskRetry:
    async def test_retry_failed_task(self, mock_provider) -> None:
        calls = {"count": 0}

        async def flaky_log(params, context):
            calls["count"] += 1
            if calls["count"] == 1:
                raise RuntimeError("tracker rejected the entry")
            return {"logged": True}

        async with CoachFlow(llm_provider=mock_provider) as coach:
            coach.register_tool(ToolDefinition(name="log_workout", execute=flaky_log))
            await coach.start_session(SESSION, USER)

            report = await coach.run_task(
                SESSION,
                TaskType.WORKOUT_CREATION,
                [StepPlan(name="log", tool_calls=[ToolCall(name="log_workout")])],
            )
            assert report.task.status == TaskStatus.FAILED

            task = await coach.state_manager.retry_task(SESSION)
            assert task.steps[0].status == StepStatus.PENDING

            task = await coach.state_manager.update_task_step(
                SESSION, task.steps[0].step_id, {"status": "completed", "output": {"logged": True}}
            )

        assert task.status == TaskStatus.COMPLETED
        assert task.retry_count == 1
