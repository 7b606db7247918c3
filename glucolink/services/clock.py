"""
Time source used by every component that reads or waits on time.

Tests swap in a fake clock so token TTLs, spacing and backoff can be checked
without real timers.
"""

import asyncio
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """
    Two readings of time plus an awaitable sleep.

    - now(): wall-clock epoch seconds, only for timestamps that are persisted
    - monotonic(): never steps backwards, for intervals kept in memory
    """

    @abstractmethod
    def now(self) -> float: ...

    @abstractmethod
    def monotonic(self) -> float: ...

    @abstractmethod
    async def sleep(self, seconds: float) -> None: ...


class SystemClock(Clock):
    def now(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
