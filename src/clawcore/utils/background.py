"""
Fire-and-forget task tracking.

Memory logging, fact extraction, pruning and reflection run off the request
path. Their failures are logged and never reach the caller.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from .logging import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    """
    Set of in-flight background coroutines.

    ``spawn()`` never blocks and never raises on behalf of the coroutine.
    ``drain()`` returns once every task, including ones spawned while
    draining, has finished.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "background_task_failed",
                task=task.get_name(),
                error_type=type(exc).__name__,
                error=str(exc),
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for all background work, following tasks spawned along the way."""

        async def _wait_all() -> None:
            while self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

        if timeout is None:
            await _wait_all()
        else:
            await asyncio.wait_for(_wait_all(), timeout=timeout)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
