"""PeriodicTask runs a coroutine on a fixed interval in a background task."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Calls *job* every *interval_seconds* until stopped.

    Each run is a discrete unit of work: an exception in one run is logged
    and the loop carries on with the next interval.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self._job = job
        self._interval = interval_seconds
        self._run_immediately = run_immediately
        self._task: asyncio.Task | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop. Called from the FastAPI lifespan."""
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def run_once(self) -> Any:
        try:
            return await self._job()
        except Exception:
            logger.exception("%s run failed", self.name)
            return None
        finally:
            self.runs += 1

    async def run_forever(self) -> None:
        await self._loop()

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self._interval)
        while True:
            await self.run_once()
            await asyncio.sleep(self._interval)
