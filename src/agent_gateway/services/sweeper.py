from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]


class PeriodicSweeper:
    """Runs a housekeeping job on a fixed interval inside the event loop.

    The first run happens one interval after ``start()``. Job failures are
    logged and the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        interval_sec: float,
        job: Callable[[], Any],
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._name = name
        self._interval = max(0.0, float(interval_sec))
        self._job = job
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self.runs = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run_loop(), name=f"sweeper-{self._name}")

    async def stop(self) -> None:
        self._stopped.set()
        task = self._task
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self) -> Any:
        result = self._job()
        if asyncio.iscoroutine(result):
            result = await result
        self.runs += 1
        return result

    async def _run_loop(self) -> None:
        while not self._stopped.is_set():
            await self._sleep(self._interval)
            if self._stopped.is_set():
                break
            try:
                await self.run_once()
            except Exception:
                logger.exception("%s sweep failed", self._name)
