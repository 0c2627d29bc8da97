"""
Shared Test Fixtures for CoachFlow
====================================

Fixtures are organized by layer:

    1. Configuration fixtures
    2. Tool fixtures (runtime, executor, chain executor, fake clock)
    3. Orchestration fixtures (event bus, storage, state manager)
    4. Integration fixtures (mock AI provider)
"""

from __future__ import annotations

import pytest

from coachflow.core.config import CircuitBreakerConfig, CoachFlowConfig, RetryConfig
from coachflow.core.models import ToolExecutionContext
from coachflow.infrastructure.state_store import InMemoryStateStorage
from coachflow.integrations.llm.mock import MockLLMProvider
from coachflow.orchestration.event_bus import InMemoryEventBus
from coachflow.orchestration.state_manager import ConversationStateManager
from coachflow.tools.chain import ToolChainExecutor
from coachflow.tools.executor import ToolExecutor
from coachflow.tools.runtime import ToolRuntime


# =============================================================================
# Helpers
# =============================================================================
class FakeClock:
    """Manually advanced monotonic clock for circuit breaker tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def config():
    """CoachFlow configuration with defaults."""
    return CoachFlowConfig()


@pytest.fixture
def fast_retry():
    """Retry settings with no backoff delay."""
    return RetryConfig(max_retries=2, base_delay=0.0, max_delay=0.0)


# =============================================================================
# Tools
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def runtime(fast_retry, clock):
    """ToolRuntime with zero-delay retries and a fake breaker clock."""
    return ToolRuntime(
        default_retry_config=fast_retry,
        default_circuit_breaker_config=CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0),
        default_timeout=5.0,
        clock=clock,
    )


@pytest.fixture
def executor(runtime):
    return ToolExecutor(runtime)


@pytest.fixture
def chain_executor(executor):
    return ToolChainExecutor(executor)


@pytest.fixture
def tool_context():
    """Minimal execution context."""
    return ToolExecutionContext(session_id="sess-1", user_id="user-1")


# =============================================================================
# Orchestration
# =============================================================================

@pytest.fixture
def event_bus():
    """Fresh InMemoryEventBus."""
    return InMemoryEventBus()


@pytest.fixture
def storage():
    """Fresh InMemoryStateStorage."""
    return InMemoryStateStorage()


@pytest.fixture
def state_manager(storage, event_bus):
    """ConversationStateManager over in-memory storage and event bus."""
    return ConversationStateManager(storage, event_bus)


# =============================================================================
# Integrations
# =============================================================================

@pytest.fixture
def mock_llm():
    """Fresh MockLLMProvider."""
    return MockLLMProvider()
