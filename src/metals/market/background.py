"""Fire-and-forget work that must never block or fail a response.

Price-log writes and calibration runs are submitted here instead of being
left as unawaited coroutines. The runner holds a reference to every task
and logs failures; outstanding work is drained on shutdown.
"""

import asyncio
from collections.abc import Awaitable

from metals.logging import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    """Owns detached asyncio tasks and their error handling."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def failed(self) -> int:
        return self._failed

    def submit(self, name: str, coro: Awaitable[object]) -> asyncio.Task:  # type: ignore[type-arg]
        """Schedule `coro` to run detached; exceptions are logged, never raised."""
        task = asyncio.ensure_future(self._run(name, coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, coro: Awaitable[object]) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.debug("background_task_cancelled", task=name)
            raise
        except Exception:
            self._failed += 1
            logger.warning("background_task_failed", task=name, exc_info=True)

    async def drain(self, timeout: float | None = 5.0) -> None:
        """Wait for outstanding tasks; cancel whatever is still running after `timeout`."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("background_tasks_cancelled", count=len(pending))
        logger.debug("background_tasks_drained", completed=len(done))
