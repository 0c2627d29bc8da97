"""
Custom Tool Example - Registering Your Own Tool
=================================================

A tool is a ToolDefinition wrapping an async ``(params, context) -> data``
function. Optionally it carries:

    validator  - checks parameters before any attempt
    fallback   - produces degraded data once retries are exhausted
    retry_config / circuit_breaker_config / timeout - per-tool overrides

In this example we build a ``log_water_intake`` tool whose backing service
is flaky: the first two attempts fail with a "temporary" error and the
executor's retry loop absorbs them.

Usage:
    python examples/custom_tool.py
"""

from __future__ import annotations

import asyncio
from typing import Any

from coachflow import CoachFlow
from coachflow.core.config import RetryConfig
from coachflow.core.models import ToolExecutionContext, ValidationResult
from coachflow.tools.registry import ToolDefinition

_attempts = {"count": 0}


async def log_water_intake(params: dict[str, Any], context: ToolExecutionContext) -> dict[str, Any]:
    _attempts["count"] += 1
    if _attempts["count"] < 3:
        raise ConnectionError("temporary failure talking to the hydration tracker")
    return {"user_id": context.user_id, "litres": params["litres"]}


def validate_intake(params: dict[str, Any]) -> ValidationResult:
    litres = params.get("litres")
    if not isinstance(litres, (int, float)) or litres <= 0:
        return ValidationResult.invalid("litres must be a positive number")
    return ValidationResult.ok()


async def main() -> None:
    async with CoachFlow() as coach:
        coach.register_tool(
            ToolDefinition(
                name="log_water_intake",
                description="Record how much water the user drank",
                execute=log_water_intake,
                validator=validate_intake,
                retry_config=RetryConfig(max_retries=3, base_delay=0.1, max_delay=0.5),
            )
        )
        await coach.start_session("demo-session", "demo-user")

        bad = await coach.execute_tool("demo-session", "log_water_intake", {"litres": -1})
        print(f"Invalid call : {bad.error.code} {bad.error.details['errors']}")

        good = await coach.execute_tool("demo-session", "log_water_intake", {"litres": 1.5})
        print(f"Valid call   : success={good.success} retries={good.metadata.retry_count} data={good.data}")

        metrics = coach.get_tool_metrics()["log_water_intake"]
        print(f"Metrics      : {metrics}")


if __name__ == "__main__":
    asyncio.run(main())
