import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from hybridview import settings
from hybridview.registry import ViewRegistry

logger = logging.getLogger(__name__)

REFRESH_JOB_NAME = "refresh_hybrid_views"


class RecurringJob:
    """Run `job` every `interval` seconds until stopped.

    The job fires again at the next interval whether or not the work it started has finished,
    and a failing run is logged without stopping the loop.
    """

    def __init__(
        self, name: str, interval: float, job: Callable[[], Awaitable[Any] | Any]
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.job = job
        self.runs = 0
        self._task: asyncio.Task | None = None

    async def run_once(self) -> None:
        start = time.monotonic()
        try:
            result = self.job()
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                await result
        except Exception:
            logger.exception("Job %s failed", self.name)
        else:
            logger.info("Job %s ran in %.2fs", self.name, time.monotonic() - start)
        finally:
            self.runs += 1

    async def run_forever(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name=self.name)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


def refresh_job(registry: ViewRegistry, interval: float = settings.REFRESH_INTERVAL) -> RecurringJob:
    return RecurringJob(REFRESH_JOB_NAME, interval, registry.refresh_all)
