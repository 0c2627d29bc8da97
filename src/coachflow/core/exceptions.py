"""
coachflow.core.exceptions - Custom Exception Hierarchy
========================================================

Structured exceptions for CoachFlow. Each one carries a machine-readable
``error_code`` and a ``details`` dict so that log lines and API responses
can be built without parsing message strings.

Exception Hierarchy:
    CoachFlowError (base)
        ├── ConfigurationError     - Invalid config, missing required values
        ├── StateManagerError      - Conversation-state invariant violations
        │     └── StateStorageError  - Persistence adapter failures
        ├── ToolRegistrationError  - Duplicate or malformed tool definitions
        ├── ToolTimeoutError       - A single tool attempt exceeded its timeout
        └── ToolCancelledError     - A cancellation token fired mid-execution

Raised vs. Returned:
    Tool failures are *data*: the ToolExecutor converts every failure into
    a ``ToolResult`` with ``success=False``. ToolTimeoutError and
    ToolCancelledError only travel inside the executor's retry loop.
    State-manager failures, on the other hand, are raised to the caller.

Usage:
    >>> from coachflow.core.exceptions import StateManagerError
    >>> raise StateManagerError(
    ...     message="No active task",
    ...     session_id="sess-1",
    ...     error_code="NO_ACTIVE_TASK",
    ... )
"""

from __future__ import annotations

from typing import Any, Optional


# =============================================================================
# Base Exception
# =============================================================================
class CoachFlowError(Exception):
    """Base exception for all CoachFlow errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable code in UPPER_SNAKE_CASE
            (e.g., "TASK_NOT_FOUND", "INVALID_TRANSITION").
        details: Additional debugging context.

    Example:
        >>> try:
        ...     await manager.update_task_step("sess-1", "x_step_9", update)
        ... except CoachFlowError as e:
        ...     logger.error(e.message, **e.to_dict())
    """

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize this exception for structured logs and API payloads.

        Returns:
            Dictionary with error_type, message, error_code, and details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


# =============================================================================
# Configuration Error
# =============================================================================
class ConfigurationError(CoachFlowError):
    """Raised when CoachFlow configuration is invalid or inconsistent.

    Example:
        >>> raise ConfigurationError(
        ...     message="Unsupported state store backend",
        ...     details={"backend": "redis"},
        ... )
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# State Manager Errors
# =============================================================================
# Raised by the ConversationStateManager and TaskStateMachine. These are
# caller bugs or storage problems, so they are never retried automatically.
# =============================================================================
class StateManagerError(CoachFlowError):
    """Raised when a conversation-state operation cannot be applied.

    Common Causes:
        - Updating a session that was never initialized
        - Updating a step when the session has no active task
        - Referring to a step id that does not exist
        - An illegal step transition (e.g., completed → in_progress)

    Attributes:
        session_id: The session the operation targeted, if known.
    """

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        error_code: str = "STATE_MANAGER_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if session_id:
            enriched_details["session_id"] = session_id

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.session_id = session_id


class StateStorageError(StateManagerError):
    """Raised by storage adapters when a load, save or delete fails."""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        error_code: str = "STATE_STORAGE_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            session_id=session_id,
            error_code=error_code,
            details=details,
        )


# =============================================================================
# Tool Errors
# =============================================================================
class ToolRegistrationError(CoachFlowError):
    """Raised when a tool cannot be registered (e.g., duplicate name).

    Attributes:
        tool_name: Name of the offending tool.
    """

    def __init__(
        self,
        message: str,
        tool_name: str,
        error_code: str = "TOOL_REGISTRATION_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["tool_name"] = tool_name

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.tool_name = tool_name


class ToolTimeoutError(CoachFlowError):
    """Raised when a single tool attempt exceeds its timeout.

    The message always contains the word "timeout" so that the default
    retry configuration classifies it as transient.
    """

    def __init__(
        self,
        tool_name: str,
        timeout: float,
        error_code: str = "TOOL_TIMEOUT",
    ) -> None:
        super().__init__(
            message=f"Tool execution timeout after {timeout}s",
            error_code=error_code,
            details={"tool_name": tool_name, "timeout": timeout},
        )
        self.tool_name = tool_name
        self.timeout = timeout


class ToolCancelledError(CoachFlowError):
    """Raised when a CancellationToken fires while work is in flight."""

    def __init__(
        self,
        message: str = "Operation cancelled",
        error_code: str = "EXECUTION_CANCELLED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)
