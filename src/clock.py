"""
Clock abstraction for backoff and poll scheduling.

Production code uses the asyncio event loop clock. Tests substitute a
virtual clock that advances instantly.
"""

import asyncio
from typing import Optional, Protocol


class Clock(Protocol):
    """Source of time and non-blocking sleeps."""

    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class AsyncioClock:
    """Clock backed by the running event loop."""

    def monotonic(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


async def wait(
    clock: Clock, seconds: float, stop_event: Optional[asyncio.Event] = None
) -> bool:
    """
    Sleep on the clock, waking early if stop_event is set.

    Returns:
        True if the full delay elapsed, False if interrupted by stop_event.
    """
    if stop_event is None:
        await clock.sleep(seconds)
        return True
    if stop_event.is_set():
        return False

    sleeper = asyncio.ensure_future(clock.sleep(seconds))
    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, stopper):
            if not task.done():
                task.cancel()
    return not stop_event.is_set()
