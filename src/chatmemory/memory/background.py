"""Bounded-concurrency queue for best-effort background writes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable

logger = logging.getLogger(__name__)


@dataclass
class BackgroundConfig:
    """Configuration for background work."""
    max_concurrency: int = 8
    drain_timeout: float = 30.0


class BackgroundTaskQueue:
    """Runs coroutines as tasks, at most ``max_concurrency`` at a time.

    Failures are logged and counted, never raised to the submitter.
    Tasks submitted with the same ``key`` run one after another, in
    submission order.
    """

    def __init__(self, config: BackgroundConfig | None = None):
        self.config = config or BackgroundConfig()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrency)
        self._tasks: set[asyncio.Task] = set()
        self._tails: dict[str, asyncio.Task] = {}
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Awaitable[Any], name: str = "background", key: str | None = None) -> asyncio.Task:
        """Schedule ``coro``. Must be called from a running event loop."""
        previous = self._tails.get(key) if key is not None else None
        task = asyncio.create_task(self._run(coro, name, previous), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        if key is not None:
            self._tails[key] = task
            task.add_done_callback(lambda t: self._release_tail(key, t))
        return task

    def _release_tail(self, key: str, task: asyncio.Task) -> None:
        if self._tails.get(key) is task:
            del self._tails[key]

    async def _run(self, coro: Awaitable[Any], name: str, previous: asyncio.Task | None = None) -> Any:
        if previous is not None:
            await asyncio.wait([previous])

        async with self._semaphore:
            try:
                result = await coro
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.warning("Background task %s failed: %s", name, e, exc_info=True)
                return None
            self.completed += 1
            return result

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for every outstanding task, including ones submitted meanwhile."""
        timeout = self.config.drain_timeout if timeout is None else timeout
        while self._tasks:
            tasks = list(self._tasks)
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning("%d background tasks still running after %.1fs", len(pending), timeout)
                return

    async def shutdown(self) -> None:
        """Drain, then cancel anything still running."""
        await self.drain()
        for task in list(self._tasks):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def get_stats(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "completed": self.completed,
            "failed": self.failed,
        }
