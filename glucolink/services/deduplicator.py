"""
SingleFlight - At most one fetch attempt in flight at a time.

When several callers ask for data while an attempt is running, they all
attach to that attempt and receive its result (or its exception).
"""

import asyncio
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Mutex-guarded slot holding the current attempt.

    Usage:
        flight = SingleFlight()

        readings = await flight.run(fetch_readings)
    """

    def __init__(self, debug: bool = False):
        self._task: asyncio.Task[T] | None = None
        self._lock = asyncio.Lock()
        self._debug = debug
        self._stats = SingleFlightStats()

    @property
    def in_flight(self) -> bool:
        return self._task is not None

    async def run(self, request_fn: Callable[[], Awaitable[T]]) -> T:
        """
        Start request_fn, or join the attempt already running.

        Args:
            request_fn: Async function to execute if nothing is in flight

        Returns:
            Result of the attempt this caller ran or joined
        """
        async with self._lock:
            if self._task is not None:
                self._stats.joined += 1
                self._log("JOIN: attaching to in-flight attempt")
                task = self._task
            else:
                self._stats.started += 1
                self._log("NEW: starting attempt")
                task = asyncio.create_task(self._execute_and_release(request_fn))
                self._task = task

        # A cancelled caller must not cancel the attempt others are waiting on
        return await asyncio.shield(task)

    async def _execute_and_release(self, request_fn: Callable[[], Awaitable[T]]) -> T:
        """Execute the attempt and clear the slot exactly once."""
        try:
            return await request_fn()
        finally:
            async with self._lock:
                if self._task is asyncio.current_task():
                    self._task = None
                self._log("DONE: attempt finished")

    async def cancel(self) -> bool:
        """Cancel the in-flight attempt, if any."""
        async with self._lock:
            task, self._task = self._task, None
        if task is None:
            return False
        task.cancel()
        self._log("CANCEL: attempt cancelled")
        return True

    def get_stats(self) -> "SingleFlightStats":
        """Get single-flight statistics."""
        self._stats.in_flight = 1 if self._task is not None else 0
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[SingleFlight] {message}")


class SingleFlightStats:
    """Statistics for single-flight de-duplication."""

    def __init__(self):
        self.started: int = 0  # Attempts actually run
        self.joined: int = 0  # Callers that attached to a running attempt
        self.in_flight: int = 0

    @property
    def join_rate(self) -> float:
        total = self.started + self.joined
        if total == 0:
            return 0.0
        return self.joined / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started": self.started,
            "joined": self.joined,
            "in_flight": self.in_flight,
            "join_rate": f"{self.join_rate:.2%}",
        }
