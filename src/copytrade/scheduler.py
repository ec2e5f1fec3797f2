"""Cancellable periodic background tasks."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs an async job every `interval` seconds until stopped.

    Errors inside the job are logged and the loop continues; stop() wakes the
    loop immediately instead of waiting out the interval.

    Example:
        >>> task = PeriodicTask("reconcile", 300, reconciler.run_once)
        >>> task.start()
        >>> ...
        >>> await task.stop()
    """

    def __init__(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[object]],
        run_immediately: bool = False,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.job = job
        self.run_immediately = run_immediately
        self.run_count = 0
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """
        Schedule the loop on the running event loop.

        Returns:
            asyncio.Task that can be awaited or cancelled
        """
        if self.is_running:
            return self._task
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"periodic-{self.name}")
        logger.info(f"Periodic task '{self.name}' started (every {self.interval}s)")
        return self._task

    async def stop(self) -> None:
        """Stop the loop and wait for it to finish."""
        if self._task is None:
            return
        self._shutdown_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Periodic task '{self.name}' stopped after {self.run_count} runs")

    async def _run(self) -> None:
        if not self.run_immediately:
            if await self._wait_interval():
                return

        while not self._shutdown_event.is_set():
            try:
                await self.job()
                self.last_error = None
            except Exception as e:
                self.last_error = str(e)
                logger.error(f"Periodic task '{self.name}' failed: {e}", exc_info=True)
            self.run_count += 1

            if await self._wait_interval():
                return

    async def _wait_interval(self) -> bool:
        """Sleep one interval. Returns True if shutdown was requested."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False
