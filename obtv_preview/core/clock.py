"""Clock abstraction used for every timer and timeout in the preview core.

Production code runs on :class:`MonotonicClock`. Tests drive the scheduler
with a virtual clock that implements the same three primitives, which keeps
cycle timing and capture timeouts deterministic.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Awaitable, TypeVar

T = TypeVar("T")


class Clock(ABC):
    """Source of time, delays and timeouts."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds (monotonic, arbitrary origin)."""

    @abstractmethod
    async def sleep(self, delay: float) -> None:
        """Suspend the caller for ``delay`` seconds."""

    async def wait_for(self, awaitable: Awaitable[T], timeout: float) -> T:
        """Await ``awaitable`` for at most ``timeout`` seconds.

        Raises ``asyncio.TimeoutError`` when the deadline passes first; the
        wrapped awaitable is cancelled in that case.
        """
        task = asyncio.ensure_future(awaitable)
        timer = asyncio.ensure_future(self.sleep(timeout))
        try:
            await asyncio.wait({task, timer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            timer.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise asyncio.TimeoutError()


class MonotonicClock(Clock):
    """Real-time clock backed by the running event loop."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))

    async def wait_for(self, awaitable: Awaitable[T], timeout: float) -> T:
        return await asyncio.wait_for(awaitable, timeout)


__all__ = ["Clock", "MonotonicClock"]
