"""
CareCompanion — Background job runner.

Detached post-reply work (Twin/Risk recompute, memory storage) runs here as
named asyncio tasks. Each job gets exactly one attempt: a failure is logged
once and dropped, never retried and never propagated to the turn that
scheduled it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class BackgroundRunner:
    """Runs fire-and-forget jobs while holding strong task references."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self.failures = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, job: JobFactory) -> asyncio.Task:
        """Schedule *job* on the running loop and return its task."""
        task = asyncio.create_task(self._run(name, job), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name: str, job: JobFactory) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            logger.info("Background job '%s' cancelled", name)
            raise
        except Exception as exc:
            self.failures += 1
            logger.error("Background job '%s' failed: %s", name, exc, exc_info=True)
        else:
            logger.debug("Background job '%s' finished", name)

    async def drain(self) -> None:
        """Wait for every outstanding job (tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
