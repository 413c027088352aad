from datetime import timedelta
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from database.models import ScrapeJob
from processor.normalizer import utcnow
from processor.recovery import recover_stuck_jobs, retry_instruction


async def _seed(db, job_id, minutes_ago, status="running", run_id="run-1"):
    async with db.session() as session:
        session.add(ScrapeJob(
            id=job_id,
            platform="tiktok",
            search_type="keyword",
            query="ai",
            status=status,
            apify_run_id=run_id,
            started_at=utcnow() - timedelta(minutes=minutes_ago),
        ))
        await session.commit()


async def _job(db, job_id) -> ScrapeJob:
    async with db.session() as session:
        return await session.get(ScrapeJob, job_id)


@pytest.mark.asyncio
async def test_succeeded_run_gets_retry_instruction(db, fake_apify):
    await _seed(db, "old", minutes_ago=11)

    result = await recover_stuck_jobs(db, fake_apify, threshold_minutes=10)

    assert result["checked"] == 1
    assert result["recovered_ids"] == ["old"]
    job = await _job(db, "old")
    assert job.status == "failed"
    assert job.error == retry_instruction("old")
    assert "/api/jobs/old/retry" in job.error
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_recent_jobs_are_untouched(db, fake_apify):
    await _seed(db, "fresh", minutes_ago=5)

    result = await recover_stuck_jobs(db, fake_apify, threshold_minutes=10)

    assert result["checked"] == 0
    assert result["message"] == "Checked 0 stuck jobs"
    assert (await _job(db, "fresh")).status == "running"
    assert fake_apify.status_checks == []


@pytest.mark.asyncio
async def test_missing_run_id_fails_without_provider_call(db, fake_apify):
    await _seed(db, "init", minutes_ago=30, status="pending", run_id=None)

    result = await recover_stuck_jobs(db, fake_apify, threshold_minutes=10)

    assert result["recovered_count"] == 1
    assert (await _job(db, "init")).error == "No Apify run ID - job stuck at initialization"
    assert fake_apify.status_checks == []


@pytest.mark.asyncio
async def test_failed_and_aborted_runs(db, fake_apify):
    await _seed(db, "a", minutes_ago=20, run_id="run-a")
    await _seed(db, "b", minutes_ago=20, run_id="run-b")
    fake_apify.statuses = {"run-a": "FAILED", "run-b": "ABORTED"}

    await recover_stuck_jobs(db, fake_apify, threshold_minutes=10)

    assert (await _job(db, "a")).error == "Apify run failed"
    assert (await _job(db, "b")).error == "Apify run aborted"


@pytest.mark.asyncio
async def test_still_running_provider_run_is_left_alone(db, fake_apify):
    await _seed(db, "slow", minutes_ago=45)
    fake_apify.status = "RUNNING"

    result = await recover_stuck_jobs(db, fake_apify, threshold_minutes=10)

    assert result["still_running_ids"] == ["slow"]
    assert result["recovered_count"] == 0
    assert (await _job(db, "slow")).status == "running"


@pytest.mark.asyncio
async def test_unreachable_run_is_failed(db, fake_apify):
    await _seed(db, "gone", minutes_ago=60 * 24 * 8, run_id="run-gone")
    fake_apify.unreachable.add("run-gone")

    await recover_stuck_jobs(db, fake_apify, threshold_minutes=10)

    job = await _job(db, "gone")
    assert job.status == "failed"
    assert job.error == "Unable to check Apify status - run may have been deleted"


@pytest.mark.asyncio
async def test_terminal_jobs_are_not_checked(db, fake_apify):
    await _seed(db, "done", minutes_ago=120, status="completed")
    await _seed(db, "dead", minutes_ago=120, status="failed")

    result = await recover_stuck_jobs(db, fake_apify, threshold_minutes=10)

    assert result["checked"] == 0
    assert (await _job(db, "done")).status == "completed"


@pytest.mark.asyncio
async def test_sweep_is_idempotent(db, fake_apify):
    await _seed(db, "old", minutes_ago=11)

    first = await recover_stuck_jobs(db, fake_apify, threshold_minutes=10)
    second = await recover_stuck_jobs(db, fake_apify, threshold_minutes=10)

    assert first["recovered_count"] == 1
    assert second["checked"] == 0
