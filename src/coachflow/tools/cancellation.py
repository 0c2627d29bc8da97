"""
coachflow.tools.cancellation - Cooperative Cancellation
=========================================================

A ``CancellationToken`` lets a caller abandon an in-flight tool call, chain
or task (the user closed the chat, a newer message superseded the turn).
The executor checks the token before each attempt and races it against
tool execution and backoff sleeps.

Usage:
    >>> token = CancellationToken()
    >>> task = asyncio.create_task(executor.execute_tool("create_workout", params, ctx, token))
    >>> token.cancel("user left the conversation")
    >>> (await task).error.code
    'EXECUTION_CANCELLED'
"""

from __future__ import annotations

import asyncio
from typing import Optional

from coachflow.core.exceptions import ToolCancelledError


class CancellationToken:
    """One-shot cancellation signal shared between a caller and its workers."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token. Later calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise ToolCancelledError if the token has fired."""
        if self._event.is_set():
            raise ToolCancelledError(
                message=f"Operation cancelled: {self.reason}",
                details={"reason": self.reason},
            )

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds unless the token fires first.

        Raises:
            ToolCancelledError: If the token fires before the delay elapses.
        """
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()
