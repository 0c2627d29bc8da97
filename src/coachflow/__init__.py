"""
CoachFlow - Resilient Tool Execution for a Fitness Assistant
==============================================================

CoachFlow runs the tools behind a conversational fitness coach and keeps
the state of every chat session:

    Tool Layer          - retry with backoff, circuit breakers, timeouts,
                          fallbacks, dependency-ordered tool chains
    Orchestration Layer - versioned conversation state, multi-step tasks,
                          state events

Quick Start:
    >>> from coachflow import CoachFlow
    >>> async with CoachFlow() as coach:
    ...     await coach.start_session("sess-1", "user-1")
    ...     result = await coach.execute_tool("sess-1", "general_response", {"message": "Hi!"})
"""

# =============================================================================
# Package Version
# =============================================================================
__version__ = "0.1.0"

# =============================================================================
# Package-Level Exports
# =============================================================================
# For specific components, import from submodules directly:
#   from coachflow.core.config import CoachFlowConfig
#   from coachflow.tools import ToolDefinition, ToolExecutor
#   from coachflow.orchestration import StepPlan
# =============================================================================
from coachflow.facade import CoachFlow

__all__ = ["CoachFlow", "__version__"]
