"""AdHarvest recovery scheduler runner -- standalone stuck-job sweep.

Usage:
    python scripts/run_scheduler.py

Environment variables:
    APIFY_TOKEN                          -- Apify API token
    DATABASE_URL                         -- default sqlite+aiosqlite:///adharvest.db
    SCRAPER_RECOVERY_INTERVAL_MINUTES    -- sweep interval (default 5)
    SCRAPER_STUCK_THRESHOLD_MINUTES      -- job age before it counts as stuck (default 10)

Use this when the API runs with SCRAPER_RECOVERY_ENABLED=false.
Ctrl+C or SIGTERM for graceful shutdown.
"""

import asyncio
import signal
import sys
from pathlib import Path

_root = str(Path(__file__).resolve().parent.parent)
sys.path.insert(0, _root)

from dotenv import load_dotenv  # noqa: E402
load_dotenv(Path(_root) / ".env")

from loguru import logger  # noqa: E402
logger.remove()
logger.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level:<7} | {message}")

_logs_dir = Path(_root) / "logs"
_logs_dir.mkdir(exist_ok=True)
logger.add(
    str(_logs_dir / "scheduler_{time:YYYY-MM-DD}.log"),
    rotation="1 day",
    retention="7 days",
    level="DEBUG",
    encoding="utf-8",
)

from crawler.apify_client import ApifyClient  # noqa: E402
from database import Database, init_db  # noqa: E402
from scheduler.scheduler import RecoveryScheduler  # noqa: E402


async def main():
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    db = Database()
    await init_db(db)
    logger.info("DB initialized ({})", db.url)

    async with ApifyClient() as client:
        scheduler = RecoveryScheduler(db, client)
        scheduler.setup_schedules()
        scheduler.start()
        # one sweep right away so a restart reconciles immediately
        await scheduler.run_recovery()

        logger.info("Scheduler running. Ctrl+C to stop.")
        try:
            await shutdown_event.wait()
        finally:
            scheduler.stop()

    await db.dispose()
    logger.info("Scheduler stopped.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
