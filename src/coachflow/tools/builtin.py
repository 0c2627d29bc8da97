"""
coachflow.tools.builtin - Built-In Coaching Tools
===================================================

The tools every CoachFlow deployment registers by default. Each one asks
the AI provider for structured output and degrades gracefully through a
fallback when the provider is unavailable.

    create_workout     → {"workout_id", "name", "type", "duration_minutes", "exercises"}
    search_exercises   → {"query", "exercises"}
    general_response   → {"response"}

``create_workout`` reads the exercises found by a preceding
``search_exercises`` call from ``context.previous_results``, so the two
chain naturally:

    [ToolCall("search_exercises", {"query": "chest"}),
     ToolCall("create_workout", {"focus": "chest"}, dependencies=["search_exercises"])]
"""

from __future__ import annotations

import json
import re
import time
from typing import Any

from coachflow.core.config import CircuitBreakerConfig, RetryConfig
from coachflow.core.models import ToolExecutionContext, ValidationResult
from coachflow.integrations.llm.base import BaseLLMProvider
from coachflow.tools.registry import ToolDefinition

FALLBACK_RESPONSE = (
    "I'm having some technical difficulties right now, but I'm here to help with your "
    "fitness journey! Could you try rephrasing your request?"
)

_BODYWEIGHT_TEMPLATE = [
    {"name": "Bodyweight Squat", "sets": 3, "reps": 12},
    {"name": "Push-up", "sets": 3, "reps": 8},
    {"name": "Reverse Lunge", "sets": 3, "reps": 10},
    {"name": "Plank", "sets": 3, "duration_seconds": 30},
]

_PROVIDER_RETRY = RetryConfig(
    max_retries=3,
    base_delay=1.0,
    max_delay=5.0,
    backoff_multiplier=2.0,
    retryable_errors=["timeout", "network", "temporary", "rate limit"],
)

_WORKOUT_BREAKER = CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0, monitoring_window=300.0)

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


def extract_json(text: str) -> Any:
    """Parse the first JSON object or array embedded in ``text``.

    Providers often wrap JSON in prose or code fences; whichever of ``{`` or
    ``[`` appears first decides what is extracted.

    Raises:
        ValueError: If no parseable JSON is found.
    """
    obj_start, arr_start = text.find("{"), text.find("[")
    patterns = [_OBJECT_RE, _ARRAY_RE]
    if arr_start != -1 and (obj_start == -1 or arr_start < obj_start):
        patterns.reverse()
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                continue
    raise ValueError("Could not parse JSON from provider response")


def _profile_summary(context: ToolExecutionContext) -> str:
    profile = context.user_profile
    summary = (
        f"Fitness level: {profile.fitness_level}. "
        f"Goals: {', '.join(profile.goals)}. "
        f"Equipment: {', '.join(profile.available_equipment)}. "
        f"Time per workout: {profile.time_per_workout}."
    )
    if profile.injuries:
        summary += f" Injuries to work around: {', '.join(profile.injuries)}."
    return summary


def _found_exercises(context: ToolExecutionContext) -> list[dict[str, Any]]:
    for result in reversed(context.previous_results):
        if result.success and isinstance(result.data, dict) and isinstance(result.data.get("exercises"), list):
            if result.tool_name.startswith("search_exercises"):
                return result.data["exercises"]
    return []


# =============================================================================
# create_workout
# =============================================================================
def _validate_workout(params: dict[str, Any]) -> ValidationResult:
    errors: list[str] = []
    warnings: list[str] = []

    duration = params.get("duration_minutes")
    if duration is not None:
        if isinstance(duration, bool) or not isinstance(duration, int):
            errors.append("duration_minutes must be an integer")
        elif not 5 <= duration <= 180:
            errors.append("duration_minutes must be between 5 and 180")

    exercises = params.get("exercises")
    if exercises is not None and not isinstance(exercises, list):
        errors.append("exercises must be a list")

    if not params.get("name"):
        warnings.append("No workout name given; one will be generated")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def _make_create_workout(llm: BaseLLMProvider):
    async def create_workout(params: dict[str, Any], context: ToolExecutionContext) -> dict[str, Any]:
        duration = params.get("duration_minutes", 30)
        focus = params.get("focus", "full body")
        candidates = params.get("exercises") or _found_exercises(context)

        prompt = (
            f"Create a workout plan focused on {focus} lasting {duration} minutes.\n"
            f"{_profile_summary(context)}\n"
        )
        if candidates:
            prompt += "Prefer these exercises: " + ", ".join(
                str(e.get("name", e)) if isinstance(e, dict) else str(e) for e in candidates
            ) + "\n"
        if context.conversation_context:
            prompt += f"\nConversation so far:\n{context.conversation_context}\n"
        prompt += 'Respond with JSON: {"name": str, "exercises": [{"name", "sets", "reps"}]}'

        response = await llm.generate(prompt)
        plan = extract_json(response.content)
        if not isinstance(plan, dict) or not isinstance(plan.get("exercises"), list):
            raise ValueError("Provider returned a workout without an exercise list")

        return {
            "workout_id": f"workout_{int(time.time() * 1000)}",
            "name": params.get("name") or plan.get("name") or "Custom Workout",
            "type": params.get("type", "general"),
            "duration_minutes": duration,
            "exercises": plan["exercises"],
        }

    return create_workout


async def _workout_fallback(params: dict[str, Any], error: BaseException) -> dict[str, Any]:
    return {
        "workout_id": f"workout_{int(time.time() * 1000)}",
        "name": params.get("name") or "Quick Bodyweight Workout",
        "type": params.get("type", "general"),
        "duration_minutes": params.get("duration_minutes", 30),
        "exercises": [dict(exercise) for exercise in _BODYWEIGHT_TEMPLATE],
        "note": "Generated from a standard template",
    }


# =============================================================================
# search_exercises
# =============================================================================
def _validate_search(params: dict[str, Any]) -> ValidationResult:
    query = params.get("query")
    if not isinstance(query, str) or not query.strip():
        return ValidationResult.invalid("query must be a non-empty string")
    return ValidationResult.ok()


def _make_search_exercises(llm: BaseLLMProvider):
    async def search_exercises(params: dict[str, Any], context: ToolExecutionContext) -> dict[str, Any]:
        query = params["query"].strip()
        limit = int(params.get("limit", 10))
        prompt = (
            f"Exercise search: {query}\n"
            f"{_profile_summary(context)}\n"
            "Respond with a JSON array of objects with name, muscle_groups and equipment."
        )
        response = await llm.generate(prompt)
        found = extract_json(response.content)
        if isinstance(found, dict):
            found = found.get("exercises", [])
        if not isinstance(found, list):
            raise ValueError("Provider returned exercises in an unexpected format")
        return {"query": query, "exercises": found[:limit]}

    return search_exercises


async def _search_fallback(params: dict[str, Any], error: BaseException) -> dict[str, Any]:
    return {
        "query": params.get("query", ""),
        "exercises": [],
        "note": "Exercise search is temporarily unavailable",
    }


# =============================================================================
# general_response
# =============================================================================
def _validate_message(params: dict[str, Any]) -> ValidationResult:
    message = params.get("message")
    if not isinstance(message, str) or not message.strip():
        return ValidationResult.invalid("message must be a non-empty string")
    return ValidationResult.ok()


def _make_general_response(llm: BaseLLMProvider):
    async def general_response(params: dict[str, Any], context: ToolExecutionContext) -> dict[str, Any]:
        system_prompt = (
            "You are a supportive fitness coach. "
            f"Communication style: {context.user_profile.preferences.communication_style}.\n"
            f"{context.conversation_context}"
        )
        response = await llm.generate_with_system(system_prompt, params["message"])
        return {"response": response.content.strip()}

    return general_response


async def _general_fallback(params: dict[str, Any], error: BaseException) -> dict[str, Any]:
    return {"response": FALLBACK_RESPONSE}


# =============================================================================
# Registry Helper
# =============================================================================
def build_builtin_tools(llm: BaseLLMProvider) -> list[ToolDefinition]:
    """Create the default tool set bound to ``llm``."""
    return [
        ToolDefinition(
            name="create_workout",
            description="Create a personalized workout plan",
            parameters={
                "name": {"type": "string"},
                "type": {"type": "string"},
                "focus": {"type": "string"},
                "duration_minutes": {"type": "integer", "minimum": 5, "maximum": 180},
                "exercises": {"type": "array"},
            },
            execute=_make_create_workout(llm),
            validator=_validate_workout,
            fallback=_workout_fallback,
            retry_config=_PROVIDER_RETRY,
            circuit_breaker_config=_WORKOUT_BREAKER,
        ),
        ToolDefinition(
            name="search_exercises",
            description="Find exercises matching a query",
            parameters={
                "query": {"type": "string", "required": True},
                "limit": {"type": "integer", "minimum": 1},
            },
            execute=_make_search_exercises(llm),
            validator=_validate_search,
            fallback=_search_fallback,
            retry_config=_PROVIDER_RETRY,
        ),
        ToolDefinition(
            name="general_response",
            description="Answer a general fitness question",
            parameters={"message": {"type": "string", "required": True}},
            execute=_make_general_response(llm),
            validator=_validate_message,
            fallback=_general_fallback,
            retry_config=_PROVIDER_RETRY,
        ),
    ]
