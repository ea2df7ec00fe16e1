"""
Background jobs run inside the API process.

PeriodicTask runs an async job every ``interval`` seconds until stopped.
A failing run is logged and the loop carries on.

Usage:
    task = PeriodicTask("reconciler", 86400, reconciler.sweep)
    task.start()
    # ... later ...
    await task.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:

    def __init__(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[Any]],
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval = interval
        self._job = job
        self._run_immediately = run_immediately
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("%s started (interval: %ss)", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("%s stopped", self.name)

    async def run_once(self) -> Any:
        try:
            return await self._job()
        except Exception:
            logger.exception("%s run failed", self.name)
            return None

    async def _run(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)


async def evict_expired(metadata, counters) -> int:
    """One TTL eviction pass over metadata records and rate counters."""
    return await metadata.evict_expired() + await counters.evict_expired()
