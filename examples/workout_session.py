"""
Workout Session Example - One Chat Session End to End
=======================================================

This example walks through a short coaching conversation:

    1. Start a session (state is created and persisted).
    2. Record the user's request.
    3. Run a two-step workout-creation task: search exercises, then build
       a workout from what the search found.
    4. Record the coach's reply and print the AI context text.

The MockLLMProvider answers with canned JSON, so no API key is needed.

Usage:
    python examples/workout_session.py
"""

from __future__ import annotations

import asyncio

from coachflow import CoachFlow
from coachflow.core.enums import TaskType
from coachflow.core.models import ToolCall
from coachflow.orchestration.task_runner import StepPlan


async def main() -> None:
    """Run one workout-creation task and print the outcome."""
    async with CoachFlow() as coach:
        await coach.start_session("demo-session", "demo-user")
        await coach.add_user_message("demo-session", "Can you put together an upper body workout?")

        report = await coach.run_task(
            "demo-session",
            TaskType.WORKOUT_CREATION,
            [
                StepPlan(
                    name="find_exercises",
                    tool_calls=[ToolCall(name="search_exercises", parameters={"query": "upper body"})],
                ),
                StepPlan(
                    name="build_workout",
                    tool_calls=[ToolCall(name="create_workout", parameters={"duration_minutes": 30})],
                    dependencies=["find_exercises"],
                ),
            ],
        )

        print("Workout Creation Task")
        print("-" * 40)
        print(f"Status : {report.task.status.value}")
        for step in report.task.steps:
            print(f"  {step.name:<15} {step.status.value}")

        if report.succeeded:
            workout = report.task.steps[-1].output["create_workout"]
            print()
            print(f"Workout: {workout['name']} ({workout['duration_minutes']} min)")
            for exercise in workout["exercises"]:
                print(f"  - {exercise['name']}")

            await coach.add_assistant_message(
                "demo-session",
                f"Here's your {workout['name']} workout!",
                task_id=report.task.task_id,
            )

        print()
        print("AI Context")
        print("-" * 40)
        print(coach.get_context_for_ai("demo-session"))


if __name__ == "__main__":
    asyncio.run(main())
