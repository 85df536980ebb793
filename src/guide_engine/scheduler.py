# scheduler.py
# Single-flight re-evaluation scheduler.
#
# request() marks the engine dirty. One consumer task waits out the
# coalescing window, clears the flag and drains. Requests that arrive while
# a drain is running cause exactly one trailing drain, never a concurrent one.

import asyncio
from typing import Awaitable, Callable

from guide_engine import display


class ReevaluationScheduler:
    def __init__(self, drain: Callable[[], Awaitable[None]], window: float = 0.15):
        self._drain = drain
        self.window = window
        self._dirty = False
        self._task: asyncio.Task | None = None
        self.drain_count = 0

    @property
    def pending(self) -> bool:
        return self._dirty or self._task is not None

    def request(self) -> None:
        self._dirty = True
        if self._task is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No loop: nothing can drain. The flag is consumed by the next flush().
                return
            self._task = loop.create_task(self._consume())

    async def _consume(self) -> None:
        try:
            while self._dirty:
                await asyncio.sleep(self.window)
                self._dirty = False
                self.drain_count += 1
                try:
                    await self._drain()
                except Exception as e:
                    display.check_exception("reactive-check", str(e))
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    async def flush(self) -> None:
        """Wait until no request is outstanding."""
        while self._task is not None or self._dirty:
            if self._task is None:
                self._task = asyncio.get_running_loop().create_task(self._consume())
            await self._task

    def cancel(self) -> None:
        self._dirty = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
