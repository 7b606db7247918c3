"""
glucolink entry point.
Polls LibreLinkUp for glucose readings, or runs a single command.
"""

import argparse
import asyncio
import sys

from loguru import logger

from glucolink.exceptions import InvalidCredentialsError, ServiceError
from glucolink.scheduler import GlucosePoller, describe_reading
from glucolink.services.fetcher import create_fetcher
from glucolink.settings import global_settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="LibreLinkUp glucose monitor")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--once", action="store_true", help="fetch once and exit")
    group.add_argument("--check", action="store_true", help="verify credentials")
    group.add_argument("--logout", action="store_true", help="clear cached data")
    parser.add_argument(
        "--force", action="store_true", help="bypass the fresh cache (with --once)"
    )
    return parser.parse_args(argv)


async def run_command(args: argparse.Namespace) -> int:
    async with create_fetcher(global_settings) as fetcher:
        try:
            if args.check:
                await fetcher.check_credentials()
                logger.info("Credentials OK")
            elif args.logout:
                await fetcher.logout()
                logger.info("Logged out, cached readings removed")
            else:
                readings = await fetcher.get_readings(force_refresh=args.force)
                latest = describe_reading(readings[-1], global_settings.glucose_unit)
                print(f"{latest} ({len(readings)} readings)")
        except InvalidCredentialsError as e:
            logger.error(str(e))
            return 2
        except ServiceError as e:
            logger.error(f"Glucose data unavailable: {e}")
            return 1
    return 0


async def main() -> None:
    """Run the poller until interrupted."""
    logger.info("Starting glucolink...")
    fetcher = create_fetcher(global_settings)
    poller = GlucosePoller(
        fetcher,
        interval_minutes=global_settings.poll_interval_minutes,
        unit=global_settings.glucose_unit,
    )

    try:
        poller.start()

        logger.info("Performing initial glucose fetch...")
        await poller.poll_now()

        logger.info("glucolink is running. Press Ctrl+C to stop.")
        while poller.is_running:
            await asyncio.sleep(60)

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    finally:
        poller.stop()
        await fetcher.close()
        logger.info("glucolink stopped")


if __name__ == "__main__":
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level.upper())

    args = parse_args()
    if args.once or args.check or args.logout:
        sys.exit(asyncio.run(run_command(args)))
    asyncio.run(main())
