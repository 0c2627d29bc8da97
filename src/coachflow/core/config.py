"""
coachflow.core.config - Configuration Management
==================================================

Configuration for CoachFlow. Values are resolved with the following priority
(highest first):

    1. Explicit constructor arguments
    2. Environment variables (prefixed with COACHFLOW_)
    3. YAML configuration file (coachflow.yaml)
    4. Default values defined in the models below

Configuration Tree:
    CoachFlowConfig
        ├── RetryConfig          → ToolRuntime default retry behaviour
        ├── StateStoreConfig     → storage adapter selection
        ├── LLMConfig            → AI provider used by the built-in tools
        └── (other settings)     → executor timeout, history limits, ...

    CircuitBreakerConfig is not part of the settings tree; it is attached
    per tool on a ToolDefinition (or passed to the ToolRuntime as a default).

Environment Variables:
    COACHFLOW_LOG_LEVEL=DEBUG
    COACHFLOW_TOOL_TIMEOUT_SECONDS=10
    COACHFLOW_RETRY__MAX_RETRIES=5
    COACHFLOW_STATE_STORE__BACKEND=file
    COACHFLOW_LLM__PROVIDER=mock
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


# =============================================================================
# Retry Configuration
# =============================================================================
# Exponential backoff without jitter:
#
#   delay(attempt) = min(base_delay * backoff_multiplier ** attempt, max_delay)
#
#   attempt:   0     1     2     3
#   delay:    1.0s  2.0s  4.0s  8.0s   (defaults, capped at 10.0s)
#
# An error is retried only when its message contains one of
# `retryable_errors` (case-insensitive substring match).
# =============================================================================
class RetryConfig(BaseModel):
    """Retry behaviour for a tool.

    Attributes:
        max_retries: Retries allowed after the first attempt. With the
            default of 3 a tool is attempted at most 4 times.
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound on any single backoff delay, in seconds.
        backoff_multiplier: Growth factor applied per attempt.
        retryable_errors: Substrings that mark an error message as transient.
    """

    max_retries: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Retries allowed after the first attempt",
    )
    base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial backoff delay in seconds",
    )
    max_delay: float = Field(
        default=10.0,
        ge=0.0,
        description="Maximum backoff delay in seconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Multiplier applied to the delay after each attempt",
    )
    retryable_errors: list[str] = Field(
        default_factory=lambda: ["timeout", "network", "temporary", "rate limit"],
        description="Case-insensitive substrings marking an error as transient",
    )


# =============================================================================
# Circuit Breaker Configuration
# =============================================================================
class CircuitBreakerConfig(BaseModel):
    """Thresholds for a per-tool circuit breaker.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        reset_timeout: Seconds the circuit stays open before a trial call
            is admitted (half-open).
        monitoring_window: Seconds within which failures count as
            consecutive. A failure arriving later than this after the
            previous one restarts the count.
    """

    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Failures before the circuit opens",
    )
    reset_timeout: float = Field(
        default=60.0,
        ge=0.0,
        description="Seconds to wait in OPEN before allowing a trial",
    )
    monitoring_window: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds within which failures are counted together",
    )


# =============================================================================
# State Store Configuration
# =============================================================================
class StateStoreConfig(BaseModel):
    """Which storage adapter backs conversation state.

    Attributes:
        backend: "memory" keeps state in-process (tests, development);
            "file" writes one JSON document per session under `directory`.
        directory: Root directory for the file backend.
    """

    backend: Literal["memory", "file"] = Field(
        default="memory",
        description="Storage backend: 'memory' or 'file'",
    )
    directory: str = Field(
        default=".coachflow/state",
        description="Directory used by the file backend",
    )


# =============================================================================
# LLM Configuration
# =============================================================================
class LLMConfig(BaseModel):
    """Configuration for the AI provider used by the built-in tools.

    Supported Providers:
        - "mock": Deterministic provider for tests and local development.

    Attributes:
        provider: Provider name resolved by ``create_llm_provider``.
        model: Model identifier within the provider.
        api_key: Authentication key (None for the mock provider).
        temperature: Sampling temperature.
        max_tokens: Maximum tokens per response.
        api_base_url: Custom endpoint for proxies or self-hosted models.
    """

    provider: str = Field(default="mock", description="AI provider name")
    model: str = Field(default="gpt-4", description="Model identifier")
    api_key: Optional[str] = Field(default=None, description="API key")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1, le=128000)
    api_base_url: Optional[str] = Field(default=None)


# =============================================================================
# Main Configuration
# =============================================================================
# Environment Variable Mapping:
#   COACHFLOW_HISTORY_LIMIT          → config.history_limit
#   COACHFLOW_RETRY__BASE_DELAY      → config.retry.base_delay
#   COACHFLOW_STATE_STORE__DIRECTORY → config.state_store.directory
# =============================================================================
class CoachFlowConfig(BaseSettings):
    """Top-level configuration for CoachFlow.

    Attributes:
        environment: Deployment environment.
        log_level: Logging level name.
        tool_timeout_seconds: Default per-attempt timeout for tools that do
            not declare their own.
        history_limit: Maximum messages kept in a conversation history.
        context_message_count: Messages included in the AI context text.
        task_max_retries: Task-level retry budget for new tasks.
        stop_on_step_failure: When True the TaskRunner skips every remaining
            step of a task after one fails. By default only steps that
            depend on the failed step are skipped.
        retry: Default retry behaviour for tools (see RetryConfig).
        state_store: Storage adapter selection (see StateStoreConfig).
        llm: AI provider configuration (see LLMConfig).

    Example:
        >>> config = CoachFlowConfig(
        ...     tool_timeout_seconds=5.0,
        ...     retry=RetryConfig(base_delay=0.0),
        ... )
    """

    # -------------------------------------------------------------------------
    # General Settings
    # -------------------------------------------------------------------------
    environment: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )

    # -------------------------------------------------------------------------
    # Tool Execution
    # -------------------------------------------------------------------------
    tool_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Default per-attempt tool timeout in seconds",
    )

    # -------------------------------------------------------------------------
    # Conversation State
    # -------------------------------------------------------------------------
    history_limit: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum conversation messages retained per session",
    )
    context_message_count: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Recent messages included in the AI context text",
    )
    task_max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Task-level retry budget",
    )
    stop_on_step_failure: bool = Field(
        default=False,
        description="Skip remaining task steps after a step fails",
    )

    # -------------------------------------------------------------------------
    # Nested Configurations
    # -------------------------------------------------------------------------
    retry: RetryConfig = Field(default_factory=RetryConfig)
    state_store: StateStoreConfig = Field(default_factory=StateStoreConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    model_config = {
        "env_prefix": "COACHFLOW_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }


# =============================================================================
# Configuration Loader
# =============================================================================
def load_config(path: Optional[str] = None) -> CoachFlowConfig:
    """Load configuration from a YAML file and/or environment variables.

    Args:
        path: Path to a YAML file. If None, ``coachflow.yaml`` in the
            current directory is used when present; otherwise only
            defaults and environment variables apply.

    Returns:
        A validated CoachFlowConfig.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
    """
    if path is None:
        default_path = Path("coachflow.yaml")
        if default_path.exists():
            path = str(default_path)

    yaml_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(config_path) as f:
            raw_data = yaml.safe_load(f)
            if isinstance(raw_data, dict):
                yaml_data = raw_data

    return CoachFlowConfig(**yaml_data)


def get_default_config() -> CoachFlowConfig:
    """Create a CoachFlowConfig from defaults and environment variables."""
    return CoachFlowConfig()
