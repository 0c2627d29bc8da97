"""
coachflow.core.models - Tool Invocation Models
================================================

The data that flows through the tool layer. Every tool call, whether made
directly through the ToolExecutor or as part of a chain, is described by
these models:

    ToolCall              → What to invoke (name, parameters, dependencies)
    ToolExecutionContext  → Who is asking and what happened before
    ValidationResult      → Outcome of a tool's parameter validator
    ToolResult            → What came back (always returned, never raised)
        ├── ToolError           (when success is False)
        └── ToolResultMetadata  (timing, retries, confidence)

Data Flow:
    ┌──────────────┐  ToolCall + Context   ┌──────────────┐
    │  Chain /     │ ────────────────────→ │    Tool      │
    │  TaskRunner  │                       │  Executor    │
    │              │ ←──────────────────── │              │
    └──────────────┘      ToolResult       └──────────────┘
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from coachflow.core.enums import ErrorCategory
from coachflow.core.state import UserProfile


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Validation Result
# =============================================================================
class ValidationResult(BaseModel):
    """Outcome of a tool's parameter validator.

    Attributes:
        is_valid: Whether the parameters may be passed to the tool.
        errors: Problems that block execution.
        warnings: Problems that are reported but do not block execution.
    """

    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, warnings: Optional[list[str]] = None) -> ValidationResult:
        return cls(is_valid=True, warnings=warnings or [])

    @classmethod
    def invalid(cls, *errors: str) -> ValidationResult:
        return cls(is_valid=False, errors=list(errors))


# =============================================================================
# Tool Error
# =============================================================================
# Error codes produced by the executor and chain:
#
#   TOOL_NOT_FOUND        validation       not recoverable
#   INVALID_PARAMETERS    validation       recoverable (fix the input)
#   CIRCUIT_BREAKER_OPEN  circuit_breaker  recoverable (wait)
#   EXECUTION_FAILED      execution        not recoverable
#   EXECUTION_CANCELLED   execution        recoverable (re-issue)
#   DEPENDENCY_DEADLOCK   validation       not recoverable (fix the chain)
# =============================================================================
class ToolError(BaseModel):
    """Structured description of a tool failure."""

    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    recoverable: bool = False
    suggested_action: Optional[str] = None
    category: ErrorCategory = Field(default=ErrorCategory.UNKNOWN)


# =============================================================================
# Tool Result
# =============================================================================
class ToolResultMetadata(BaseModel):
    """Execution bookkeeping attached to every ToolResult.

    Attributes:
        tool_name: Tool that produced the result; ``<name>_fallback`` when
            the data came from the tool's fallback.
        execution_time: Wall time in seconds across all attempts.
        retry_count: Retries consumed (0 when the first attempt succeeded).
        timestamp: When the result was produced.
        confidence: Set to 0.5 for fallback results.
    """

    tool_name: str
    execution_time: float = Field(default=0.0, ge=0.0)
    retry_count: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=_now)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class ToolResult(BaseModel):
    """Outcome of one tool invocation.

    Tool failures are data: callers inspect ``success`` instead of catching
    exceptions.

    Example:
        >>> result = await executor.execute_tool("search_exercises", {"query": "push"}, ctx)
        >>> if result.success:
        ...     print(result.data)
        ... else:
        ...     print(result.error.code, result.error.category)
    """

    success: bool
    data: Any = None
    error: Optional[ToolError] = None
    metadata: ToolResultMetadata

    @property
    def tool_name(self) -> str:
        return self.metadata.tool_name

    @property
    def is_fallback(self) -> bool:
        return self.metadata.tool_name.endswith("_fallback")


# =============================================================================
# Execution Context
# =============================================================================
class ToolExecutionContext(BaseModel):
    """Ambient information handed to every tool implementation.

    Attributes:
        session_id: Chat session the call belongs to.
        user_id: User the call is made for.
        task_id: Active task, if the call is part of one.
        step_id: Active step, if the call is part of one.
        conversation_context: Text built by
            ``ConversationStateManager.get_context_for_ai``.
        user_profile: Profile snapshot.
        previous_results: Results produced earlier in the same chain or task.
    """

    session_id: str
    user_id: str
    task_id: Optional[str] = None
    step_id: Optional[str] = None
    conversation_context: str = ""
    user_profile: UserProfile = Field(default_factory=UserProfile)
    previous_results: list[ToolResult] = Field(default_factory=list)


# =============================================================================
# Tool Call
# =============================================================================
class ToolCall(BaseModel):
    """A request to run one tool inside a chain.

    ``dependencies`` name other tools in the same chain; a call only starts
    once every dependency has produced a successful result.

    Example:
        >>> ToolCall(name="create_workout", parameters={"duration_minutes": 30},
        ...          dependencies=["search_exercises"])
    """

    name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    dependencies: list[str] = Field(default_factory=list)
