"""Cancellable recurring background tasks."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RecurringTask:
    """Runs ``callback`` every ``interval`` seconds on the running event loop.

    ``interval`` may be a callable so the period can change between runs
    (the facade's poll interval follows the market session). A failing
    callback is logged and the loop keeps going.

    Lifecycle:
        handle = RecurringTask("cache-sweep", 60.0, cache.sweep).start()
        # ... app runs ...
        await handle.cancel()
    """

    def __init__(
        self,
        name: str,
        interval: float | Callable[[], float],
        callback: Callable[[], Awaitable[object] | object],
    ) -> None:
        self.name = name
        self._interval = interval
        self._callback = callback
        self._task: asyncio.Task | None = None

    @property
    def interval(self) -> float:
        return self._interval() if callable(self._interval) else self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> RecurringTask:
        """Schedule the loop. Returns self so the caller can keep the handle."""
        if self.running:
            return self
        self._task = asyncio.create_task(self._run_loop(), name=self.name)
        logger.info("Started %s (every %.1fs)", self.name, self.interval)
        return self

    async def cancel(self) -> None:
        """Stop the loop and wait for it to finish. Safe to call multiple times."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            logger.info("Stopped %s", self.name)
        self._task = None

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s run failed", self.name)
