"""Helpers for side effects that must never abort the primary request path.

Two flavours:

- ``best_effort(...)`` awaits a coroutine and logs (never raises) on failure.
  Used for audit writes and bookkeeping that should still happen inline.
- ``BestEffortTasks.spawn(...)`` schedules a detached task (typing indicators)
  and keeps a strong reference until it finishes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

from src.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def best_effort(
    coro: Coroutine[Any, Any, T], *, operation: str, **log_fields: Any
) -> T | None:
    """Await ``coro``; on any exception log it and return None."""
    try:
        return await coro
    except Exception as e:
        logger.warning(
            "Best-effort operation failed",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
            **log_fields,
        )
        return None


class BestEffortTasks:
    """Tracks fire-and-forget tasks so they are not garbage collected mid-flight."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, operation: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(best_effort(coro, operation=operation), name=operation)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for all in-flight tasks. Used at shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
