"""
coachflow.facade - CoachFlow Top-Level Facade
===============================================

The single entry point that wires the tool layer, the conversation state
layer and the AI provider together.

    ┌──────────────────────────────────────────────────┐
    │                CoachFlow (Facade)                 │
    │                                                   │
    │  ┌─────────────────────────────────────────────┐ │
    │  │         Orchestration Layer                  │ │
    │  │  TaskRunner, ConversationStateManager,      │ │
    │  │  TaskStateMachine, EventBus                 │ │
    │  └─────────────────────┬───────────────────────┘ │
    │                        │                          │
    │  ┌─────────────────────▼───────────────────────┐ │
    │  │              Tool Layer                      │ │
    │  │  ToolChainExecutor, ToolExecutor,           │ │
    │  │  ToolRuntime (registry, breakers, metrics)  │ │
    │  └─────────────────────┬───────────────────────┘ │
    │                        │                          │
    │  ┌─────────────────────▼───────────────────────┐ │
    │  │   Infrastructure / Integration Layers        │ │
    │  │  StateStorageAdapter, BaseLLMProvider        │ │
    │  └─────────────────────────────────────────────┘ │
    └──────────────────────────────────────────────────┘

Usage:
    >>> async with CoachFlow() as coach:
    ...     await coach.start_session("sess-1", "user-1")
    ...     await coach.add_user_message("sess-1", "Build me a leg workout")
    ...     report = await coach.run_task(
    ...         "sess-1",
    ...         TaskType.WORKOUT_CREATION,
    ...         [StepPlan(name="build", tool_calls=[ToolCall(name="create_workout")])],
    ...     )
"""

from __future__ import annotations

from typing import Any, Optional, Union

import structlog

from coachflow.core.config import CoachFlowConfig
from coachflow.core.enums import MessageRole, MessageSource, TaskType
from coachflow.core.exceptions import StateManagerError
from coachflow.core.models import ToolCall, ToolExecutionContext, ToolResult
from coachflow.core.state import ConversationMessage, ConversationState, MessageMetadata
from coachflow.infrastructure.state_store import StateStorageAdapter, create_state_storage
from coachflow.integrations.llm.base import BaseLLMProvider
from coachflow.integrations.llm.factory import create_llm_provider
from coachflow.orchestration.event_bus import EventBus, InMemoryEventBus
from coachflow.orchestration.state_manager import ConversationStateManager, ProfileLoader
from coachflow.orchestration.task_runner import StepPlan, TaskRunner, TaskRunReport
from coachflow.tools.builtin import build_builtin_tools
from coachflow.tools.cancellation import CancellationToken
from coachflow.tools.chain import ToolChainExecutor, ToolChainResult
from coachflow.tools.executor import ToolExecutor
from coachflow.tools.registry import ToolDefinition
from coachflow.tools.runtime import ToolRuntime

logger = structlog.get_logger()


class CoachFlow:
    """Top-level facade for the CoachFlow tool and conversation runtime.

    Lifecycle:
        1. ``CoachFlow(config)``: build every component
        2. ``await initialize()``: connect storage
        3. ``start_session`` / ``add_user_message`` / ``run_task`` ...
        4. ``await shutdown()``: disconnect storage

    Args:
        config: Configuration. Defaults to CoachFlowConfig() (environment
            variables applied).
        storage: State storage adapter. Defaults to the backend named by
            ``config.state_store``.
        event_bus: Event bus for state events. Defaults to InMemoryEventBus.
        llm_provider: AI provider for the built-in tools. Defaults to the
            provider named by ``config.llm``.
        profile_loader: Async ``(user_id) -> profile`` for new sessions.
        register_builtin_tools: Register create_workout, search_exercises
            and general_response.
    """

    def __init__(
        self,
        config: Optional[CoachFlowConfig] = None,
        *,
        storage: Optional[StateStorageAdapter] = None,
        event_bus: Optional[EventBus] = None,
        llm_provider: Optional[BaseLLMProvider] = None,
        profile_loader: Optional[ProfileLoader] = None,
        register_builtin_tools: bool = True,
    ) -> None:
        self._config = config or CoachFlowConfig()

        # --- Infrastructure / Integration ---
        self._storage = storage or create_state_storage(self._config.state_store)
        self._llm_provider = llm_provider or create_llm_provider(self._config.llm)

        # --- Tool Layer ---
        self._runtime = ToolRuntime(
            default_retry_config=self._config.retry,
            default_timeout=self._config.tool_timeout_seconds,
        )
        self._executor = ToolExecutor(self._runtime)
        self._chain_executor = ToolChainExecutor(self._executor)

        # --- Orchestration Layer ---
        self._event_bus = event_bus or InMemoryEventBus()
        self._state_manager = ConversationStateManager(
            storage=self._storage,
            event_bus=self._event_bus,
            profile_loader=profile_loader,
            history_limit=self._config.history_limit,
            context_message_count=self._config.context_message_count,
            task_max_retries=self._config.task_max_retries,
        )
        self._task_runner = TaskRunner(
            self._state_manager,
            self._chain_executor,
            stop_on_step_failure=self._config.stop_on_step_failure,
        )

        if register_builtin_tools:
            for definition in build_builtin_tools(self._llm_provider):
                self._runtime.register_tool(definition)

        self._initialized = False
        self._logger = logger.bind(component="coachflow")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> CoachFlowConfig:
        return self._config

    @property
    def runtime(self) -> ToolRuntime:
        return self._runtime

    @property
    def executor(self) -> ToolExecutor:
        return self._executor

    @property
    def chain_executor(self) -> ToolChainExecutor:
        return self._chain_executor

    @property
    def state_manager(self) -> ConversationStateManager:
        return self._state_manager

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def task_runner(self) -> TaskRunner:
        return self._task_runner

    @property
    def llm_provider(self) -> BaseLLMProvider:
        return self._llm_provider

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # Lifecycle Management
    # =========================================================================

    async def initialize(self) -> None:
        """Connect the storage adapter. Idempotent."""
        if self._initialized:
            self._logger.debug("coachflow_already_initialized")
            return

        await self._storage.connect()
        self._initialized = True
        self._logger.info(
            "coachflow_initialized",
            environment=self._config.environment,
            tools=self._runtime.available_tools(),
        )

    async def shutdown(self) -> None:
        """Disconnect the storage adapter. Idempotent."""
        if not self._initialized:
            self._logger.debug("coachflow_not_initialized_skipping_shutdown")
            return

        await self._storage.disconnect()
        self._initialized = False
        self._logger.info("coachflow_shutdown_complete")

    async def __aenter__(self) -> CoachFlow:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    # =========================================================================
    # Tools
    # =========================================================================

    def register_tool(self, definition: ToolDefinition, replace: bool = False) -> None:
        """Register a tool with the runtime.

        Raises:
            ToolRegistrationError: If the name is taken and ``replace`` is False.
        """
        self._runtime.register_tool(definition, replace=replace)

    async def execute_tool(
        self,
        session_id: str,
        tool_name: str,
        parameters: Optional[dict[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ToolResult:
        """Run one tool with a context built from the session's state."""
        self._ensure_initialized()
        context = self._context_for(session_id)
        return await self._executor.execute_tool(tool_name, parameters or {}, context, cancel_token)

    async def execute_tool_chain(
        self,
        session_id: str,
        calls: list[Union[ToolCall, dict[str, Any]]],
        cancel_token: Optional[CancellationToken] = None,
    ) -> ToolChainResult:
        """Run a dependency-ordered chain with a context built from the session."""
        self._ensure_initialized()
        context = self._context_for(session_id)
        tool_calls = [call if isinstance(call, ToolCall) else ToolCall.model_validate(call) for call in calls]
        return await self._chain_executor.execute_tool_chain(tool_calls, context, cancel_token)

    def get_tool_metrics(self) -> dict[str, Any]:
        """Breaker state and execution metrics per registered tool."""
        return self._runtime.snapshot()

    # =========================================================================
    # Sessions and Conversation
    # =========================================================================

    async def start_session(self, session_id: str, user_id: str) -> ConversationState:
        """Create or restore the state for ``session_id``."""
        self._ensure_initialized()
        return await self._state_manager.initialize_state(session_id, user_id)

    async def end_session(self, session_id: str) -> bool:
        self._ensure_initialized()
        return await self._state_manager.delete_state(session_id)

    async def add_user_message(self, session_id: str, content: str) -> ConversationMessage:
        self._ensure_initialized()
        return await self._state_manager.add_message(
            session_id,
            ConversationMessage(
                role=MessageRole.USER,
                content=content,
                metadata=MessageMetadata(source=MessageSource.USER_INPUT),
            ),
        )

    async def add_assistant_message(
        self,
        session_id: str,
        content: str,
        task_id: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> ConversationMessage:
        self._ensure_initialized()
        return await self._state_manager.add_message(
            session_id,
            ConversationMessage(
                role=MessageRole.ASSISTANT,
                content=content,
                metadata=MessageMetadata(
                    task_id=task_id,
                    confidence=confidence,
                    source=MessageSource.AI_RESPONSE,
                ),
            ),
        )

    def get_context_for_ai(self, session_id: str) -> str:
        return self._state_manager.get_context_for_ai(session_id)

    # =========================================================================
    # Tasks
    # =========================================================================

    async def run_task(
        self,
        session_id: str,
        task_type: TaskType,
        steps: list[Union[StepPlan, dict[str, Any]]],
        cancel_token: Optional[CancellationToken] = None,
    ) -> TaskRunReport:
        """Run a multi-step task for the session (see TaskRunner)."""
        self._ensure_initialized()
        plans = [step if isinstance(step, StepPlan) else StepPlan.model_validate(step) for step in steps]
        report = await self._task_runner.run_task(session_id, task_type, plans, cancel_token)
        self._logger.info(
            "task_run_reported",
            session_id=session_id,
            task_id=report.task.task_id,
            status=report.task.status.value,
            cancelled=report.cancelled,
        )
        return report

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _context_for(self, session_id: str) -> ToolExecutionContext:
        state = self._state_manager.get_state(session_id)
        if state is None:
            raise StateManagerError(
                message=f"State not found for session: {session_id}",
                session_id=session_id,
                error_code="NOT_INITIALIZED",
            )
        task = state.context.current_task
        return ToolExecutionContext(
            session_id=session_id,
            user_id=state.user_id,
            task_id=task.task_id if task is not None else None,
            conversation_context=self._state_manager.get_context_for_ai(session_id),
            user_profile=state.context.user_profile,
        )

    def _ensure_initialized(self) -> None:
        """Raises RuntimeError if ``initialize()`` has not been called."""
        if not self._initialized:
            raise RuntimeError(
                "CoachFlow has not been initialized. "
                "Call await coach.initialize() or use 'async with CoachFlow() as coach:'"
            )

    def __repr__(self) -> str:
        return f"CoachFlow(initialized={self._initialized}, tools={len(self._runtime.available_tools())})"
