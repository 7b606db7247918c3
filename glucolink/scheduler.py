"""
Periodic glucose polling.
Uses APScheduler to refresh readings on a fixed interval.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from glucolink.exceptions import InvalidCredentialsError, ServiceError
from glucolink.models import Reading
from glucolink.services.fetcher import GlucoseFetcher
from glucolink.utils import classify_mmol, format_value


class GlucosePoller:
    """Polls the fetcher in the background and logs each latest reading."""

    def __init__(
        self,
        fetcher: GlucoseFetcher,
        interval_minutes: float = 5,
        unit: str = "mmol",
    ):
        self.scheduler = AsyncIOScheduler()
        self.fetcher = fetcher
        self.interval_minutes = interval_minutes
        self.unit = unit
        self.latest: Reading | None = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def poll_now(self) -> Reading | None:
        """Fetch once and log the newest reading."""
        try:
            readings = await self.fetcher.get_readings()
        except InvalidCredentialsError as e:
            logger.error(f"Polling stopped, credentials rejected: {e}")
            self.stop()
            return None
        except ServiceError as e:
            logger.error(f"Scheduled glucose fetch failed: {e}")
            return None

        self.latest = readings[-1]
        logger.info(
            f"Latest glucose: {describe_reading(self.latest, self.unit)} "
            f"({len(readings)} readings)"
        )
        return self.latest

    def start(self) -> None:
        """Start polling."""
        if self._is_running:
            logger.warning("Glucose poller is already running")
            return

        self.scheduler.add_job(
            self.poll_now,
            trigger="interval",
            minutes=self.interval_minutes,
            id="glucose_poll_job",
            name="Glucose Poller",
            replace_existing=True,
        )
        self.scheduler.start()
        self._is_running = True

        logger.info(
            f"Glucose poller started: fetching every {self.interval_minutes} minutes"
        )

    def stop(self) -> None:
        """Stop polling."""
        if not self._is_running:
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Glucose poller stopped")


def describe_reading(reading: Reading, unit: str) -> str:
    """One-line summary like '5.6 mmol/L (normal) at 14:05'."""
    value = format_value(reading.value_mmol, reading.value_mg_per_dl, unit)
    level = classify_mmol(reading.value_mmol)
    return f"{value} ({level}) at {reading.timestamp:%H:%M}"
