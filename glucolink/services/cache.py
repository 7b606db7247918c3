"""
PersistentCache - Durable store for the last good reading set.

Features:
- Single key holding {"readings": [...], "timestamp": <epoch ms>}
- Whole-value replacement, never partial updates
- Newer entries are never overwritten by older ones
- Freshness is judged by the caller from CacheEntry.age()
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import ValidationError

from glucolink.exceptions import CacheError
from glucolink.models import CacheEntry, Reading
from glucolink.services.clock import Clock, SystemClock
from glucolink.services.storage import KeyValueStore

CACHE_KEY = "glucose_readings"


class PersistentCache:
    """
    Cache of the most recent validated readings.

    Usage:
        cache = PersistentCache(FileStore("~/.cache/glucolink"))

        entry = await cache.read()
        if entry and entry.is_fresh(clock.now(), 240):
            return list(entry.readings)

        await cache.write(readings)
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock | None = None,
        key: str = CACHE_KEY,
        debug: bool = False,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._key = key
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def read(self) -> CacheEntry | None:
        """
        Load the cached entry.

        Returns None when nothing is cached.

        Raises:
            CacheError: If the store fails or the document is corrupt
        """
        entry = await self._load()
        if entry is None:
            self._stats.misses += 1
            self._log("MISS")
        else:
            self._stats.hits += 1
            self._log(f"HIT: {len(entry.readings)} readings")
        return entry

    async def write(
        self,
        readings: Sequence[Reading],
        fetched_at: float | None = None,
    ) -> bool:
        """
        Replace the cached entry.

        Args:
            readings: Validated, non-empty readings in chronological order
            fetched_at: Fetch time in epoch seconds (defaults to now)

        Returns:
            False if a newer entry was already stored and was kept

        Raises:
            CacheError: If readings are empty or the store fails
        """
        if not readings:
            raise CacheError("Refusing to cache an empty reading set")

        fetched_at = self._clock.now() if fetched_at is None else fetched_at
        document = {
            "readings": [r.model_dump(mode="json") for r in readings],
            "timestamp": int(fetched_at * 1000),
        }

        async with self._lock:
            try:
                current = await self._load()
            except CacheError as e:
                logger.warning(f"Overwriting unreadable cache entry: {e}")
                current = None

            # An entry stamped in the future is left over from a clock step, not newer
            now = self._clock.now()
            if current is not None and fetched_at < current.fetched_at <= now:
                self._stats.rejected += 1
                self._log("SKIP: stored entry is newer")
                return False

            try:
                await self._store.set(self._key, document)
            except (OSError, TypeError, ValueError) as e:
                raise CacheError(f"Failed to write cache: {e}") from e

            self._stats.writes += 1
            self._log(f"SET: {len(readings)} readings")
            return True

    async def clear(self) -> None:
        """Remove the cached entry entirely."""
        async with self._lock:
            try:
                removed = await self._store.delete(self._key)
            except OSError as e:
                raise CacheError(f"Failed to clear cache: {e}") from e
            self._log(f"CLEAR: {'removed' if removed else 'nothing cached'}")

    async def close(self) -> None:
        """Release the underlying store."""
        await self._store.close()

    async def _load(self) -> CacheEntry | None:
        try:
            document = await self._store.get(self._key)
        except (OSError, ValueError) as e:
            raise CacheError(f"Failed to read cache: {e}") from e

        if document is None:
            return None

        try:
            readings = tuple(
                Reading.model_validate(item) for item in document["readings"]
            )
            fetched_at = float(document["timestamp"]) / 1000.0
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise CacheError(f"Corrupt cache entry: {e}") from e

        if not readings:
            raise CacheError("Corrupt cache entry: no readings")
        return CacheEntry(readings=readings, fetched_at=fetched_at)

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[PersistentCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    rejected: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "writes": self.writes,
            "rejected": self.rejected,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
