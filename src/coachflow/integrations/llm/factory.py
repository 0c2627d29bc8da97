"""
coachflow.integrations.llm.factory - AI Provider Factory
==========================================================

Maps ``LLMConfig.provider`` to a concrete BaseLLMProvider.

Example:
    >>> provider = create_llm_provider(LLMConfig(provider="mock"))
    >>> type(provider).__name__
    'MockLLMProvider'
"""

from __future__ import annotations

from coachflow.core.config import LLMConfig
from coachflow.integrations.llm.base import BaseLLMProvider


def create_llm_provider(config: LLMConfig) -> BaseLLMProvider:
    """Create the provider named by ``config.provider``.

    Raises:
        ValueError: If the provider name is not recognized.
    """
    provider_name = config.provider.lower()

    if provider_name == "mock":
        from coachflow.integrations.llm.mock import MockLLMProvider

        return MockLLMProvider(config)

    raise ValueError(
        f"Unknown LLM provider: '{provider_name}'. Available providers: 'mock'."
    )
