"""Coalesce bursts of record changes into a single autosave.

notify() (re)starts the timer; the callback runs once when the timer
expires without another notify.  flush() runs a pending callback now,
cancel() drops it.  Callback failures are logged, never raised into
the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ChangeDebouncer:
    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self.delay = delay
        self._callback = callback
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def notify(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self) -> None:
        """Run a pending callback immediately and wait for it."""
        if self._timer is None:
            return
        self.cancel()
        await self._run()

    async def wait(self) -> None:
        """Wait for a callback already started by the timer, if any."""
        if self._task is not None and not self._task.done():
            await asyncio.shield(self._task)

    def _fire(self) -> None:
        self._timer = None
        self._task = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Debounced callback failed")
