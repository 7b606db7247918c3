"""
Throttler - Spaces upstream requests and escalates delay after failures.

States:
- IDLE: No request waiting
- WAITING: A caller is sleeping until its turn

Backoff:
- Each failure doubles the backoff from initial_backoff, capped at max_backoff
- Past failure_threshold consecutive failures, each extra failure adds
  failure_penalty seconds before the normal spacing wait
- Any success resets the failure count and the backoff
- "Reset" means the count restarts: the backoff held after a success is
  initial_backoff, and the first failure after it doubles that to
  initial_backoff * 2, same as the first failure ever
- Spacing is measured on the monotonic clock, so wall-clock steps do not
  stretch or skip a wait
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from glucolink.services.clock import Clock, SystemClock


class ThrottleMode(str, Enum):
    """Throttler states."""

    IDLE = "IDLE"
    WAITING = "WAITING"


@dataclass
class ThrottlerConfig:
    """Configuration for the throttler."""

    min_request_interval: float = 30.0  # Seconds between any two requests
    initial_backoff: float = 1.0
    max_backoff: float = 15 * 60.0
    failure_threshold: int = 3  # Failures before the extra penalty applies
    failure_penalty: float = 5.0  # Seconds per failure above the threshold


@dataclass
class ThrottleState:
    """Mutable throttle bookkeeping, carried across request cycles."""

    last_request_at: float | None = None
    consecutive_failures: int = 0
    current_backoff: float = 1.0
    mode: ThrottleMode = ThrottleMode.IDLE
    total_requests: int = 0
    total_failures: int = 0
    total_backoffs: int = 0


class Throttler:
    """
    Process-wide request gate shared by the authenticator and the fetcher.

    Usage:
        throttler = Throttler()

        await throttler.wait_turn()
        try:
            result = await make_request()
            throttler.record_outcome(True)
        except RateLimitError as e:
            throttler.record_outcome(False)
            await throttler.backoff(e.retry_after)
    """

    def __init__(
        self,
        config: ThrottlerConfig | None = None,
        clock: Clock | None = None,
    ):
        self.config = config or ThrottlerConfig()
        self._clock = clock or SystemClock()
        self._state = ThrottleState(current_backoff=self.config.initial_backoff)
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ThrottleState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._state.consecutive_failures

    @property
    def current_backoff(self) -> float:
        return self._state.current_backoff

    def penalty_delay(self) -> float:
        """Extra delay imposed once failures exceed the threshold."""
        excess = self._state.consecutive_failures - self.config.failure_threshold
        if excess <= 0:
            return 0.0
        return excess * self.config.failure_penalty

    def time_until_turn(self) -> float:
        """Seconds a caller arriving now would sleep for spacing alone."""
        if self._state.last_request_at is None:
            return 0.0
        next_allowed = self._state.last_request_at + self.config.min_request_interval
        return max(0.0, next_allowed - self._clock.monotonic())

    async def wait_turn(self) -> float:
        """
        Block until this caller may issue an upstream request.

        Waiters are served one at a time, so two requests are never closer
        than min_request_interval.

        Returns:
            Total seconds slept
        """
        async with self._lock:
            self._state.mode = ThrottleMode.WAITING
            slept = 0.0
            try:
                penalty = self.penalty_delay()
                if penalty > 0:
                    logger.warning(
                        f"Throttler: {self._state.consecutive_failures} consecutive "
                        f"failures, adding {penalty:.1f}s penalty"
                    )
                    await self._clock.sleep(penalty)
                    slept += penalty

                delay = self.time_until_turn()
                if delay > 0:
                    logger.debug(f"Throttler: waiting {delay:.1f}s for next turn")
                    await self._clock.sleep(delay)
                    slept += delay

                self._state.last_request_at = self._clock.monotonic()
                self._state.total_requests += 1
            finally:
                self._state.mode = ThrottleMode.IDLE
            return slept

    def record_outcome(self, success: bool) -> None:
        """Record the outcome of the request that last took a turn."""
        if success:
            if self._state.consecutive_failures:
                logger.info(
                    f"Throttler: recovered after "
                    f"{self._state.consecutive_failures} failures"
                )
            self._state.consecutive_failures = 0
            self._state.current_backoff = self.config.initial_backoff
            return

        self._state.consecutive_failures += 1
        self._state.total_failures += 1
        self._state.current_backoff = min(
            self.config.initial_backoff * 2**self._state.consecutive_failures,
            self.config.max_backoff,
        )
        logger.debug(
            f"Throttler: failure #{self._state.consecutive_failures}, "
            f"backoff now {self._state.current_backoff:.1f}s"
        )

    async def backoff(self, retry_after: float | None = None) -> float:
        """Sleep the current backoff, or longer if the server asked for it."""
        delay = max(self._state.current_backoff, retry_after or 0.0)
        self._state.total_backoffs += 1
        logger.warning(f"Throttler: backing off for {delay:.1f}s")
        await self._clock.sleep(delay)
        return delay

    def reset(self) -> None:
        """Forget failures and spacing."""
        self._state = ThrottleState(current_backoff=self.config.initial_backoff)
        logger.info("Throttler manually reset")

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        return {
            "mode": self._state.mode.value,
            "consecutive_failures": self._state.consecutive_failures,
            "current_backoff": self._state.current_backoff,
            "penalty_delay": self.penalty_delay(),
            "time_until_turn": self.time_until_turn(),
            "total_requests": self._state.total_requests,
            "total_failures": self._state.total_failures,
            "total_backoffs": self._state.total_backoffs,
        }
