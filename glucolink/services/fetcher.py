"""
GlucoseFetcher - Single-flight orchestrator over auth, throttling and cache.

Decides per call whether to serve the cache, kick a background refresh or
run (or join) the one upstream fetch. Callers only see an error when the
credentials are bad or no usable data exists at all.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from glucolink.datasource.libreview import LibreLinkUpClient, parse_graph_data
from glucolink.exceptions import (
    CacheError,
    InvalidCredentialsError,
    RateLimitError,
    ServiceError,
    TokenExpiredError,
)
from glucolink.models import CacheEntry, Reading
from glucolink.services.auth import Authenticator
from glucolink.services.cache import PersistentCache
from glucolink.services.clock import Clock, SystemClock
from glucolink.services.deduplicator import SingleFlight
from glucolink.services.storage import FileStore, KeyValueStore
from glucolink.services.throttler import Throttler, ThrottlerConfig
from glucolink.settings import Settings, global_settings

T = TypeVar("T")


@dataclass
class FetcherConfig:
    """Freshness and fallback windows, in seconds."""

    cache_fresh_window: float = 4 * 60.0
    refresh_ahead: float = 60.0  # Background refresh when this close to stale
    error_grace_multiplier: float = 3.0
    rate_limit_grace_multiplier: float = 2.0
    max_rate_limit_retries: int | None = None  # None retries until success
    graph_days: int = 1

    @property
    def error_grace_window(self) -> float:
        return self.cache_fresh_window * self.error_grace_multiplier

    @property
    def rate_limit_grace_window(self) -> float:
        return self.cache_fresh_window * self.rate_limit_grace_multiplier


class GlucoseFetcher:
    """
    Resilient access to the latest glucose readings.

    Usage:
        async with create_fetcher() as fetcher:
            readings = await fetcher.get_readings()
            latest = readings[-1]

            # After the user logs out
            await fetcher.logout()
    """

    def __init__(
        self,
        client: LibreLinkUpClient,
        authenticator: Authenticator,
        throttler: Throttler,
        cache: PersistentCache,
        config: FetcherConfig | None = None,
        clock: Clock | None = None,
        debug: bool = False,
    ):
        self._client = client
        self._auth = authenticator
        self._throttler = throttler
        self._cache = cache
        self.config = config or FetcherConfig()
        self._clock = clock or SystemClock()
        self._flight: SingleFlight[list[Reading]] = SingleFlight(debug=debug)
        self._background: set[asyncio.Task[None]] = set()

    async def get_readings(self, force_refresh: bool = False) -> list[Reading]:
        """
        Return the latest valid readings in chronological order.

        Args:
            force_refresh: Skip the fresh-cache shortcut. Still joins a fetch
                that is already in flight.

        Raises:
            InvalidCredentialsError: Credentials missing or rejected
            ServiceError: Upstream failed and no cached data is recent enough
        """
        if self._flight.in_flight:
            logger.debug("Fetch already in flight, attaching")
            return await self._flight.run(self._refresh)

        entry = await self._read_cache()
        now = self._clock.now()
        fresh_window = self.config.cache_fresh_window

        if not force_refresh and entry is not None and entry.is_fresh(now, fresh_window):
            age = entry.age(now)
            logger.debug(f"Serving cached readings ({age:.0f}s old)")
            if age >= fresh_window - self.config.refresh_ahead:
                self._schedule_background_refresh()
            return list(entry.readings)

        logger.info("Starting new fetch" + (" (forced)" if force_refresh else ""))
        return await self._flight.run(self._refresh)

    async def latest_reading(self) -> Reading | None:
        """Most recent reading, or None if the set is somehow empty."""
        readings = await self.get_readings()
        return readings[-1] if readings else None

    async def _refresh(self) -> list[Reading]:
        """One logical fetch: retries under rate limiting, stale fallback otherwise."""
        rate_limited = 0
        while True:
            try:
                readings = await self._fetch_once()
            except InvalidCredentialsError as e:
                logger.error(f"Fetch aborted: {e}")
                raise
            except RateLimitError as e:
                fallback = await self._stale_fallback(
                    self.config.rate_limit_grace_window, e
                )
                if fallback is not None:
                    return fallback

                rate_limited += 1
                max_retries = self.config.max_rate_limit_retries
                if max_retries is not None and rate_limited > max_retries:
                    logger.error(f"Giving up after {rate_limited} rate-limited attempts")
                    raise
                await self._throttler.backoff(e.retry_after)
                continue
            except ServiceError as e:
                fallback = await self._stale_fallback(self.config.error_grace_window, e)
                if fallback is not None:
                    return fallback
                logger.error(f"Fetch failed with no usable cache: {e}")
                raise

            self._throttler.record_outcome(True)
            await self._store(readings)
            logger.info(f"Fetch successful: {len(readings)} readings")
            return readings

    async def _fetch_once(self) -> list[Reading]:
        try:
            return await self._fetch_with_token()
        except TokenExpiredError as e:
            logger.warning(f"{e}, re-authenticating")
            self._auth.invalidate()
        return await self._fetch_with_token()

    async def _fetch_with_token(self) -> list[Reading]:
        token = (await self._auth.get_token()).token
        patient_id = await self._throttled(
            lambda: self._client.get_patient_id(token)
        )

        end_date = date.fromtimestamp(self._clock.now())
        start_date = end_date - timedelta(days=self.config.graph_days)
        items = await self._throttled(
            lambda: self._client.get_graph(token, patient_id, start_date, end_date)
        )
        return parse_graph_data(items)

    async def _throttled(self, request_fn: Callable[[], Awaitable[T]]) -> T:
        await self._throttler.wait_turn()
        try:
            result = await request_fn()
        except ServiceError:
            self._throttler.record_outcome(False)
            raise
        self._throttler.record_outcome(True)
        return result

    async def _stale_fallback(
        self, window: float, error: ServiceError
    ) -> list[Reading] | None:
        entry = await self._read_cache()
        if entry is None:
            return None

        now = self._clock.now()
        age = entry.age(now)
        if not entry.is_within(now, window):
            logger.warning(
                f"Cached data too old to serve after error ({age:.0f}s >= {window:.0f}s)"
            )
            return None

        logger.warning(f"Fetch failed ({error}), serving cached data from {age:.0f}s ago")
        return list(entry.readings)

    async def _read_cache(self) -> CacheEntry | None:
        try:
            return await self._cache.read()
        except CacheError as e:
            logger.error(f"Error reading cache: {e}")
            return None

    async def _store(self, readings: list[Reading]) -> None:
        try:
            await self._cache.write(readings, fetched_at=self._clock.now())
        except CacheError as e:
            logger.error(f"Error writing cache: {e}")

    def _schedule_background_refresh(self) -> None:
        if self._flight.in_flight or self._background:
            return
        logger.debug("Starting background refresh")
        task = asyncio.create_task(self._background_refresh())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_refresh(self) -> None:
        try:
            await self._flight.run(self._refresh)
        except Exception as e:
            logger.warning(f"Background refresh failed: {e}")
            return
        logger.debug("Background refresh completed")

    async def clear(self) -> None:
        """Drop cached readings. A following failure cannot fall back to them."""
        await self._cache.clear()
        logger.info("Glucose cache cleared")

    async def logout(self) -> None:
        """Forget the token and the cached readings."""
        self._auth.invalidate()
        await self.clear()

    async def check_credentials(self) -> bool:
        """Verify the stored credentials with a fresh login."""
        return await self._auth.check_credentials()

    def get_status(self) -> dict[str, Any]:
        """Get health status of the fetch layer."""
        return {
            "token_valid": self._auth.has_valid_token,
            "throttler": self._throttler.get_status(),
            "cache": self._cache.get_stats().to_dict(),
            "single_flight": self._flight.get_stats().to_dict(),
            "background_refreshes": len(self._background),
        }

    async def close(self) -> None:
        """Cancel background work, close the HTTP client and the store."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._flight.cancel()
        await self._client.close()
        await self._cache.close()
        logger.debug("GlucoseFetcher closed")

    async def __aenter__(self) -> "GlucoseFetcher":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def create_fetcher(
    settings: Settings | None = None,
    clock: Clock | None = None,
    store: KeyValueStore | None = None,
    client: LibreLinkUpClient | None = None,
) -> GlucoseFetcher:
    """Wire a GlucoseFetcher from settings."""
    settings = settings or global_settings
    clock = clock or SystemClock()

    client = client or LibreLinkUpClient(
        base_url=settings.api_base,
        product=settings.product,
        version=settings.version,
        login_timeout=settings.login_timeout,
        request_timeout=settings.request_timeout,
    )
    throttler = Throttler(
        ThrottlerConfig(
            min_request_interval=settings.min_request_interval,
            initial_backoff=settings.initial_backoff,
            max_backoff=settings.max_backoff,
            failure_threshold=settings.failure_threshold,
            failure_penalty=settings.failure_penalty,
        ),
        clock=clock,
    )
    authenticator = Authenticator(
        client,
        throttler,
        username=settings.username,
        password=settings.password,
        token_ttl=settings.token_ttl_minutes * 60,
        clock=clock,
    )
    cache = PersistentCache(store or FileStore(settings.cache_dir), clock=clock)
    config = FetcherConfig(
        cache_fresh_window=settings.cache_fresh_minutes * 60,
        refresh_ahead=settings.refresh_ahead_seconds,
        error_grace_multiplier=settings.error_grace_multiplier,
        rate_limit_grace_multiplier=settings.rate_limit_grace_multiplier,
        max_rate_limit_retries=settings.max_rate_limit_retries,
        graph_days=settings.graph_days,
    )
    return GlucoseFetcher(client, authenticator, throttler, cache, config, clock)
