"""
Clock - injectable time source.

Everything that reads the time or sleeps goes through a Clock so tests can
drive TTLs, cooldowns and backoff deterministically.

now() is monotonic and only meaningful as a difference: TTLs, cooldowns,
backoff. timestamp() is wall-clock epoch seconds for anything persisted or
shown to people, such as offline operation timestamps.
"""

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float: ...

    def timestamp(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Clock backed by time.monotonic(), time.time() and asyncio.sleep()."""

    def now(self) -> float:
        return time.monotonic()

    def timestamp(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
