"""
coachflow.integrations.llm - AI Providers
===========================================

    - BaseLLMProvider: contract every provider implements
    - MockLLMProvider: deterministic provider for tests and local runs

Usage:
    >>> from coachflow.integrations.llm import create_llm_provider
    >>> provider = create_llm_provider(config.llm)
"""

from coachflow.integrations.llm.base import BaseLLMProvider, LLMResponse, LLMUsage
from coachflow.integrations.llm.mock import MockLLMProvider
from coachflow.integrations.llm.factory import create_llm_provider

__all__ = [
    "BaseLLMProvider",
    "LLMResponse",
    "LLMUsage",
    "MockLLMProvider",
    "create_llm_provider",
]
