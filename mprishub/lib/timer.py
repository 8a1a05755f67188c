"""Repeating asyncio timer owned by whoever created it.

The owner cancels it explicitly (``cancel()``) when its scope ends; nothing
is tied to the lifetime of a UI element.  ``reset()`` restarts the phase so
the next tick fires a full interval from now.

Usage:
    timer = Interval(1.0, self._poll_position)
    timer.start()
    timer.reset()
    timer.cancel()
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class Interval:

    def __init__(self, seconds: float, callback: Callable[[], Awaitable[None]]):
        if seconds <= 0:
            raise ValueError("Interval must be positive")
        self.seconds = seconds
        self._callback = callback
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.active:
            return
        self._task = asyncio.ensure_future(self._run())

    def reset(self):
        self.cancel()
        self.start()

    def cancel(self):
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run(self):
        while True:
            await asyncio.sleep(self.seconds)
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Interval callback failed")
