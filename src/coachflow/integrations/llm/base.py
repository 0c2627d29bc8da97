"""
coachflow.integrations.llm.base - Abstract AI Provider Interface
==================================================================

Tools never talk to a model vendor directly; they call a ``BaseLLMProvider``.
That keeps the built-in tools testable with the MockLLMProvider and lets a
deployment swap vendors through ``LLMConfig.provider``.

    ┌────────────────┐      generate()      ┌──────────────────┐
    │ create_workout │ ───────────────────→ │ BaseLLMProvider  │
    │ (tool)         │ ←── LLMResponse ──── │  (abstract)      │
    └────────────────┘                      └────────┬─────────┘
                                                     │
                                              ┌──────▼──────┐
                                              │    Mock     │
                                              └─────────────┘

Provider exceptions propagate to the ToolExecutor, which classifies them
for retry by message text ("timeout", "rate limit", ...).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from coachflow.core.config import LLMConfig


class LLMUsage(BaseModel):
    """Token counts for one provider call."""

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)


class LLMResponse(BaseModel):
    """Provider-independent response.

    Attributes:
        content: Generated text.
        model: Model that produced it.
        usage: Token counts.
        finish_reason: "stop", "length" or "error".
        metadata: Provider-specific extras.
        created_at: When the response was produced (UTC).
    """

    content: str
    model: str
    usage: LLMUsage = Field(default_factory=LLMUsage)
    finish_reason: str = Field(default="stop")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BaseLLMProvider(ABC):
    """Base class for AI providers.

    Subclasses implement ``generate`` and ``generate_with_system``.
    """

    def __init__(self, config: LLMConfig) -> None:
        self._config = config

    @property
    def provider_name(self) -> str:
        return self._config.provider

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def temperature(self) -> float:
        return self._config.temperature

    @property
    def max_tokens(self) -> int:
        return self._config.max_tokens

    @property
    def config(self) -> LLMConfig:
        return self._config

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate text for a single prompt.

        Raises:
            Exception: Provider-specific failures (network, rate limit, ...).
        """

    @abstractmethod
    async def generate_with_system(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate text with a separate system instruction."""

    async def validate(self) -> bool:
        """Whether the provider is usable with its current configuration."""
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider={self.provider_name!r}, model={self.model!r})"
