"""
Tests for coachflow.facade - CoachFlow Top-Level Facade
=========================================================

What's Being Tested:
    - Initialization and shutdown lifecycle
    - Async context manager (async with)
    - Built-in and custom tool registration
    - Sessions and messages through the facade
    - Tool and chain execution with session context
    - Task runs from StepPlans or dicts
    - Error handling (uninitialized access, unknown sessions)

All tests use in-memory storage and the MockLLMProvider.
"""

import pytest

from coachflow.core.config import CoachFlowConfig
from coachflow.core.enums import MessageRole, MessageSource, TaskStatus, TaskType
from coachflow.core.exceptions import StateManagerError, ToolRegistrationError
from coachflow.core.models import ToolCall
from coachflow.facade import CoachFlow
from coachflow.infrastructure.state_store import InMemoryStateStorage
from coachflow.integrations.llm.mock import MockLLMProvider
from coachflow.orchestration.task_runner import StepPlan
from coachflow.tools.registry import ToolDefinition

SESSION = "sess-1"
USER = "user-1"


@pytest.fixture
def provider():
    return MockLLMProvider()


@pytest.fixture
async def coach(provider):
    flow = CoachFlow(CoachFlowConfig(), llm_provider=provider)
    await flow.initialize()
    yield flow
    await flow.shutdown()


# =============================================================================
# Test: Lifecycle
# =============================================================================
class TestLifecycle:
    async def test_initialize_and_shutdown(self) -> None:
        flow = CoachFlow()
        assert not flow.is_initialized

        await flow.initialize()
        await flow.initialize()
        assert flow.is_initialized

        await flow.shutdown()
        assert not flow.is_initialized

    async def test_context_manager(self) -> None:
        async with CoachFlow() as flow:
            assert flow.is_initialized
        assert not flow.is_initialized

    async def test_uninitialized_access_raises(self) -> None:
        flow = CoachFlow()
        with pytest.raises(RuntimeError, match="not been initialized"):
            await flow.start_session(SESSION, USER)

    def test_components_wired(self) -> None:
        storage = InMemoryStateStorage()
        flow = CoachFlow(storage=storage)

        assert flow.state_manager.storage is storage
        assert flow.state_manager.event_bus is flow.event_bus
        assert isinstance(flow.llm_provider, MockLLMProvider)
        assert flow.config.state_store.backend == "memory"
        assert "tools=3" in repr(flow)


# =============================================================================
# Test: Tools
# =============================================================================
class TestTools:
    def test_builtin_tools_registered(self) -> None:
        flow = CoachFlow()
        assert flow.runtime.available_tools() == ["create_workout", "general_response", "search_exercises"]

    def test_builtin_tools_optional(self) -> None:
        assert CoachFlow(register_builtin_tools=False).runtime.available_tools() == []

    def test_register_custom_tool(self) -> None:
        async def water(params, context):
            return {"litres": 2.5}

        flow = CoachFlow()
        flow.register_tool(ToolDefinition(name="hydration", execute=water))

        assert "hydration" in flow.runtime.available_tools()
        with pytest.raises(ToolRegistrationError):
            flow.register_tool(ToolDefinition(name="hydration", execute=water))

    async def test_execute_tool_uses_session_context(self, coach) -> None:
        seen = {}

        async def capture(params, context):
            seen["user_id"] = context.user_id
            seen["conversation"] = context.conversation_context
            return "ok"

        coach.register_tool(ToolDefinition(name="capture", execute=capture))
        await coach.start_session(SESSION, USER)
        await coach.add_user_message(SESSION, "My knees hurt")

        result = await coach.execute_tool(SESSION, "capture")

        assert result.success
        assert seen["user_id"] == USER
        assert "user: My knees hurt" in seen["conversation"]

    async def test_execute_tool_unknown_session(self, coach) -> None:
        with pytest.raises(StateManagerError) as exc_info:
            await coach.execute_tool("ghost", "general_response", {"message": "hi"})
        assert exc_info.value.error_code == "NOT_INITIALIZED"

    async def test_search_exercises(self, coach) -> None:
        await coach.start_session(SESSION, USER)

        result = await coach.execute_tool(SESSION, "search_exercises", {"query": "chest"})

        assert result.success
        assert [e["name"] for e in result.data["exercises"]] == ["Push-up", "Incline Push-up"]

    async def test_execute_chain_from_dicts(self, coach, provider) -> None:
        await coach.start_session(SESSION, USER)

        chain = await coach.execute_tool_chain(
            SESSION,
            [
                {"name": "search_exercises", "parameters": {"query": "chest"}},
                ToolCall(name="create_workout", parameters={"focus": "chest"}, dependencies=["search_exercises"]),
            ],
        )

        assert chain.all_succeeded
        assert chain.batches == [["search_exercises"], ["create_workout"]]
        assert chain["create_workout"].data["name"] == "Full Body Starter"
        assert "Prefer these exercises: Push-up, Incline Push-up" in provider.call_history[-1]["prompt"]

    async def test_tool_metrics(self, coach) -> None:
        await coach.start_session(SESSION, USER)
        await coach.execute_tool(SESSION, "search_exercises", {"query": "legs"})

        metrics = coach.get_tool_metrics()

        assert set(metrics) == {"create_workout", "general_response", "search_exercises"}
        assert metrics["search_exercises"]["circuit_breaker"] is None
        assert metrics["create_workout"]["circuit_breaker"]["state"] == "closed"


# =============================================================================
# Test: Sessions and Messages
# =============================================================================
class TestSessions:
    async def test_messages(self, coach) -> None:
        await coach.start_session(SESSION, USER)

        user = await coach.add_user_message(SESSION, "Plan my week")
        reply = await coach.add_assistant_message(SESSION, "Sure!", confidence=0.9)

        assert user.role == MessageRole.USER
        assert user.metadata.source == MessageSource.USER_INPUT
        assert reply.role == MessageRole.ASSISTANT
        assert reply.metadata.source == MessageSource.AI_RESPONSE
        assert reply.metadata.confidence == 0.9
        assert coach.state_manager.get_state(SESSION).metadata.version == 3
        assert "assistant: Sure!" in coach.get_context_for_ai(SESSION)

    async def test_end_session(self, coach) -> None:
        await coach.start_session(SESSION, USER)

        assert await coach.end_session(SESSION)
        assert coach.get_context_for_ai(SESSION) == ""


# =============================================================================
# Test: Tasks
# =============================================================================
class TestTasks:
    async def test_run_task(self, coach) -> None:
        await coach.start_session(SESSION, USER)

        report = await coach.run_task(
            SESSION,
            TaskType.WORKOUT_CREATION,
            [
                {"name": "find", "tool_calls": [{"name": "search_exercises", "parameters": {"query": "legs"}}]},
                StepPlan(
                    name="build",
                    tool_calls=[ToolCall(name="create_workout", parameters={"duration_minutes": 45})],
                    dependencies=["find"],
                ),
            ],
        )

        assert report.succeeded
        assert report.task.status == TaskStatus.COMPLETED
        workout = report.task.steps[1].output["create_workout"]
        assert workout["duration_minutes"] == 45
        assert workout["workout_id"].startswith("workout_")

    async def test_run_task_invalid_step(self, coach) -> None:
        await coach.start_session(SESSION, USER)
        with pytest.raises(ValueError):
            await coach.run_task(SESSION, TaskType.GENERAL_CHAT, [{"name": ""}])
