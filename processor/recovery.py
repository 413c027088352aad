"""Stuck-job sweep.

``running``/``pending`` jobs older than the threshold are reconciled against
the provider's authoritative run status. The provider-side run is never
cancelled; only the local job row is updated.
"""

from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from crawler.apify_client import ApifyClient, ApifyError
from crawler.config import scraper_settings
from crawler.types import RUN_SUCCEEDED, TERMINAL_FAILURE_STATUSES
from database import Database, ScrapeJob
from processor.normalizer import utcnow

STUCK_STATUSES = ("running", "pending")


def retry_instruction(job_id: str) -> str:
    return (
        "Apify completed but result processing failed. "
        f"Retry via POST /api/jobs/{job_id}/retry (data available for 7 days)"
    )


async def find_stuck_jobs(db: Database, threshold_minutes: int, now: datetime) -> list[ScrapeJob]:
    cutoff = now - timedelta(minutes=threshold_minutes)
    async with db.session() as session:
        result = await session.execute(
            select(ScrapeJob)
            .where(ScrapeJob.status.in_(STUCK_STATUSES), ScrapeJob.started_at < cutoff)
            .order_by(ScrapeJob.started_at)
        )
        return list(result.scalars().all())


async def _fail_job(db: Database, job_id: str, message: str):
    async with db.session() as session:
        await session.execute(
            update(ScrapeJob)
            .where(ScrapeJob.id == job_id)
            .values(status="failed", error=message, completed_at=utcnow())
        )
        await session.commit()
    logger.info("[recovery] job {} → failed: {}", job_id, message)


async def resolve_stuck_job(client: ApifyClient, job: ScrapeJob) -> str | None:
    """Failure message for a stuck job, or None when the provider run is still going."""
    if not job.apify_run_id:
        return "No Apify run ID - job stuck at initialization"
    try:
        run = await client.get_run_status(job.apify_run_id)
    except ApifyError as exc:
        logger.warning("[recovery] job {} run {} status check failed: {}", job.id, job.apify_run_id, exc)
        return "Unable to check Apify status - run may have been deleted"

    status = run.get("status") or ""
    if status == RUN_SUCCEEDED:
        return retry_instruction(job.id)
    if status in TERMINAL_FAILURE_STATUSES:
        return f"Apify run {status.lower()}"
    return None


async def recover_stuck_jobs(
    db: Database,
    client: ApifyClient,
    threshold_minutes: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Sweep stuck jobs. Returns counters plus the ids in each bucket."""
    threshold = scraper_settings.stuck_threshold_minutes if threshold_minutes is None else threshold_minutes
    now = now or utcnow()
    stuck = await find_stuck_jobs(db, threshold, now)

    recovered: list[str] = []
    still_running: list[str] = []
    for job in stuck:
        message = await resolve_stuck_job(client, job)
        if message is None:
            still_running.append(job.id)
            continue
        try:
            await _fail_job(db, job.id, message)
        except SQLAlchemyError as exc:
            logger.error("[recovery] job {} update failed: {}", job.id, exc)
            continue
        recovered.append(job.id)

    if stuck:
        logger.info(
            "[recovery] checked {} stuck job(s): recovered {}, still running {}",
            len(stuck), len(recovered), len(still_running),
        )
    return {
        "message": f"Checked {len(stuck)} stuck jobs",
        "checked": len(stuck),
        "recovered_count": len(recovered),
        "still_running_count": len(still_running),
        "recovered_ids": recovered,
        "still_running_ids": still_running,
    }
