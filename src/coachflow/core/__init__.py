"""
coachflow.core - Foundation Layer
=================================

Plain data structures and configuration shared by every other CoachFlow
package:

    - config:      CoachFlowConfig, RetryConfig, CircuitBreakerConfig, ...
    - enums:       TaskType, StepStatus, ErrorCategory, StateEventType, ...
    - exceptions:  CoachFlowError hierarchy
    - state:       ConversationState and its nested models
    - models:      ToolCall, ToolResult, ToolExecutionContext, ...

Dependency Rule:
    core/ depends on nothing else in the coachflow package.
"""

from coachflow.core.config import (
    CircuitBreakerConfig,
    CoachFlowConfig,
    LLMConfig,
    RetryConfig,
    StateStoreConfig,
)
from coachflow.core.enums import (
    CircuitBreakerState,
    ErrorCategory,
    MessageRole,
    MessageSource,
    StateEventType,
    StepStatus,
    TaskStatus,
    TaskType,
    WorkoutStatus,
)
from coachflow.core.exceptions import (
    CoachFlowError,
    ConfigurationError,
    StateManagerError,
    StateStorageError,
    ToolCancelledError,
    ToolRegistrationError,
    ToolTimeoutError,
)
from coachflow.core.models import (
    ToolCall,
    ToolError,
    ToolExecutionContext,
    ToolResult,
    ToolResultMetadata,
    ValidationResult,
)
from coachflow.core.state import (
    ConversationContext,
    ConversationMessage,
    ConversationState,
    MessageMetadata,
    StateMetadata,
    TaskContext,
    TaskError,
    TaskStep,
    UserPreferences,
    UserProfile,
    WorkoutContext,
)

__all__ = [
    # Config
    "CoachFlowConfig",
    "RetryConfig",
    "CircuitBreakerConfig",
    "StateStoreConfig",
    "LLMConfig",
    # Enums
    "TaskType",
    "TaskStatus",
    "StepStatus",
    "MessageRole",
    "MessageSource",
    "WorkoutStatus",
    "ErrorCategory",
    "CircuitBreakerState",
    "StateEventType",
    # Exceptions
    "CoachFlowError",
    "ConfigurationError",
    "StateManagerError",
    "StateStorageError",
    "ToolRegistrationError",
    "ToolTimeoutError",
    "ToolCancelledError",
    # Tool models
    "ToolCall",
    "ToolError",
    "ToolExecutionContext",
    "ToolResult",
    "ToolResultMetadata",
    "ValidationResult",
    # State models
    "ConversationState",
    "ConversationContext",
    "ConversationMessage",
    "MessageMetadata",
    "StateMetadata",
    "TaskContext",
    "TaskError",
    "TaskStep",
    "UserPreferences",
    "UserProfile",
    "WorkoutContext",
]
