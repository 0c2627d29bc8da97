"""
coachflow.integrations.llm.mock - Mock AI Provider
====================================================

A deterministic provider for tests and local development. No network, no
API key.

How It Works:
    1. If ``set_should_fail`` is active, raise RuntimeError with the
       configured message (optionally only for the next N calls, which is
       handy for exercising the executor's retry loop).
    2. Otherwise return the next queued response, if any.
    3. Otherwise return a smart default chosen from the prompt text:
         "workout plan"     → JSON workout
         "exercise search"  → JSON list of exercises
         anything else      → a short coaching reply

Usage:
    >>> provider = MockLLMProvider(LLMConfig(provider="mock"))
    >>> provider.queue_response('{"name": "Leg Day", "exercises": []}')
    >>> (await provider.generate("Create a workout plan")).content
    '{"name": "Leg Day", "exercises": []}'
    >>> provider.set_should_fail(True, "network unreachable", times=2)
"""

from __future__ import annotations

import json
from collections import deque
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from coachflow.core.config import LLMConfig
from coachflow.integrations.llm.base import BaseLLMProvider, LLMResponse, LLMUsage

logger = structlog.get_logger()


class MockLLMProvider(BaseLLMProvider):
    """Queue-driven provider with call tracking and failure injection.

    Args:
        config: LLM configuration (only ``model`` is used).
        default_response: Reply used when no smart default applies.
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        default_response: str = "Great question! Consistency beats intensity, so let's build a routine you can keep.",
    ) -> None:
        super().__init__(config or LLMConfig(provider="mock"))
        self._response_queue: deque[LLMResponse] = deque()
        self._call_history: list[dict[str, Any]] = []
        self._default_response = default_response
        self._should_fail: bool = False
        self._failure_message: str = "Mock LLM API error"
        # None means "fail until switched off"; an int counts down.
        self._failures_remaining: Optional[int] = None
        self._logger = logger.bind(component="mock_llm_provider")

    # =========================================================================
    # Test Helpers
    # =========================================================================

    @property
    def call_history(self) -> list[dict[str, Any]]:
        return self._call_history

    @property
    def call_count(self) -> int:
        return len(self._call_history)

    @property
    def queue_size(self) -> int:
        return len(self._response_queue)

    def queue_response(self, content: str, finish_reason: str = "stop") -> None:
        """Queue a text response; queued responses are returned FIFO."""
        self._response_queue.append(
            LLMResponse(
                content=content,
                model=self.model,
                usage=self._estimate_usage(content),
                finish_reason=finish_reason,
                metadata={"source": "queue"},
            )
        )

    def queue_llm_response(self, response: LLMResponse) -> None:
        self._response_queue.append(response)

    def clear_queue(self) -> None:
        self._response_queue.clear()

    def clear_history(self) -> None:
        self._call_history.clear()

    def set_should_fail(
        self,
        should_fail: bool,
        message: str = "Mock LLM API error",
        times: Optional[int] = None,
    ) -> None:
        """Make calls raise RuntimeError(message).

        Args:
            should_fail: Enable or disable failure injection.
            message: Exception message (include "timeout" or "network" to
                make the failure retryable under the default retry config).
            times: Fail only the next ``times`` calls, then recover.
        """
        self._should_fail = should_fail
        self._failure_message = message
        self._failures_remaining = times if should_fail else None

    # =========================================================================
    # Provider Interface
    # =========================================================================

    async def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        self._record_call("generate", prompt=prompt, temperature=temperature, max_tokens=max_tokens)
        self._maybe_fail()
        if self._response_queue:
            return self._response_queue.popleft()
        return self._generate_smart_default(prompt)

    async def generate_with_system(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        self._record_call(
            "generate_with_system",
            system_prompt=system_prompt,
            prompt=user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        self._maybe_fail()
        if self._response_queue:
            return self._response_queue.popleft()
        return self._generate_smart_default(f"{system_prompt}\n{user_prompt}")

    def get_available_models(self) -> list[str]:
        return ["mock-model"]

    # =========================================================================
    # Internal
    # =========================================================================

    def _record_call(self, method: str, **fields: Any) -> None:
        self._call_history.append(
            {"method": method, "timestamp": datetime.now(timezone.utc), **fields}
        )
        self._logger.debug("mock_llm_call", method=method, queue_size=len(self._response_queue))

    def _maybe_fail(self) -> None:
        if not self._should_fail:
            return
        if self._failures_remaining is not None:
            self._failures_remaining -= 1
            if self._failures_remaining <= 0:
                self._should_fail = False
                self._failures_remaining = None
        raise RuntimeError(self._failure_message)

    def _generate_smart_default(self, prompt: str) -> LLMResponse:
        prompt_lower = prompt.lower()
        if "workout plan" in prompt_lower:
            content = self._mock_workout_response()
        elif "exercise search" in prompt_lower:
            content = self._mock_exercise_response()
        else:
            content = self._default_response

        return LLMResponse(
            content=content,
            model=self.model,
            usage=self._estimate_usage(content),
            finish_reason="stop",
            metadata={"source": "smart_default"},
        )

    @staticmethod
    def _mock_workout_response() -> str:
        return json.dumps(
            {
                "name": "Full Body Starter",
                "duration_minutes": 30,
                "exercises": [
                    {"name": "Bodyweight Squat", "sets": 3, "reps": 12},
                    {"name": "Push-up", "sets": 3, "reps": 10},
                    {"name": "Glute Bridge", "sets": 3, "reps": 15},
                    {"name": "Plank", "sets": 3, "duration_seconds": 30},
                ],
            }
        )

    @staticmethod
    def _mock_exercise_response() -> str:
        return json.dumps(
            [
                {"name": "Push-up", "muscle_groups": ["chest", "triceps"], "equipment": "bodyweight"},
                {"name": "Incline Push-up", "muscle_groups": ["chest"], "equipment": "bodyweight"},
            ]
        )

    @staticmethod
    def _estimate_usage(text: str) -> LLMUsage:
        # Roughly four characters per token.
        estimated_tokens = max(1, len(text) // 4)
        return LLMUsage(
            prompt_tokens=estimated_tokens,
            completion_tokens=estimated_tokens,
            total_tokens=estimated_tokens * 2,
        )
