"""Periodic stuck-job recovery sweep (APScheduler)."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from crawler.apify_client import ApifyClient
from crawler.config import ScraperSettings, scraper_settings
from database import Database
from processor.recovery import recover_stuck_jobs

RECOVERY_JOB_ID = "stuck_job_recovery"


class RecoveryScheduler:
    """Runs ``recover_stuck_jobs`` on a fixed interval."""

    def __init__(
        self,
        db: Database,
        client: ApifyClient,
        settings: ScraperSettings | None = None,
    ):
        self.db = db
        self.client = client
        self.settings = settings or scraper_settings
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.last_result: dict | None = None

    def setup_schedules(self):
        interval = max(1, self.settings.recovery_interval_minutes)
        self.scheduler.add_job(
            self.run_recovery,
            IntervalTrigger(minutes=interval),
            id=RECOVERY_JOB_ID,
            name="Stuck job recovery",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            "[schedule] recovery sweep every {}m (threshold {}m)",
            interval, self.settings.stuck_threshold_minutes,
        )

    async def run_recovery(self):
        try:
            result = await recover_stuck_jobs(
                self.db, self.client, self.settings.stuck_threshold_minutes,
            )
        except SQLAlchemyError as exc:
            logger.error("[schedule] recovery sweep failed: {}", exc)
            return
        self.last_result = result
        if result["checked"]:
            logger.info(
                "[schedule] recovery: checked={} recovered={} still_running={}",
                result["checked"], result["recovered_count"], result["still_running_count"],
            )

    def start(self):
        """Start scheduler."""
        self.scheduler.start()
        logger.info("Recovery scheduler started")

    def stop(self):
        """Stop scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Recovery scheduler stopped")
