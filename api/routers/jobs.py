"""스크래핑 작업 조회 / 복구 / 재처리 API."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_apify_client, get_database, get_job_manager
from crawler.apify_client import ApifyClient
from database import Database, get_db
from database.models import ScrapeJob
from database.schemas import (
    RecoverOut,
    RetryOut,
    RetryStatsOut,
    ScrapeJobListOut,
    ScrapeJobOut,
)
from processor.job_manager import JobError, JobManager
from processor.recovery import recover_stuck_jobs

logger = logging.getLogger("adharvest.api")

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

RETRY_ERROR_SAMPLE = 10


@router.get("", response_model=ScrapeJobListOut)
async def list_jobs(
    status: str | None = None,
    platform: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """최근 작업 목록 (started_at 내림차순)."""
    query = select(ScrapeJob)
    count_query = select(func.count(ScrapeJob.id))
    if status:
        query = query.where(ScrapeJob.status == status)
        count_query = count_query.where(ScrapeJob.status == status)
    if platform:
        query = query.where(ScrapeJob.platform == platform)
        count_query = count_query.where(ScrapeJob.platform == platform)

    total = (await db.execute(count_query)).scalar_one()
    result = await db.execute(
        query.order_by(ScrapeJob.started_at.desc()).offset(offset).limit(limit)
    )
    return ScrapeJobListOut(
        jobs=[ScrapeJobOut.model_validate(j) for j in result.scalars().all()],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("/recover", response_model=RecoverOut)
async def recover_jobs(
    database: Database = Depends(get_database),
    client: ApifyClient = Depends(get_apify_client),
    manager: JobManager = Depends(get_job_manager),
):
    """오래 멈춘 running/pending 작업을 Apify 실제 상태로 정리."""
    result = await recover_stuck_jobs(
        database, client, threshold_minutes=manager.settings.stuck_threshold_minutes,
    )
    return RecoverOut(**result)


@router.get("/{job_id}", response_model=ScrapeJobOut)
async def get_job(job_id: str, db: AsyncSession = Depends(get_db)):
    job = await db.get(ScrapeJob, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/{job_id}/retry", response_model=RetryOut)
async def retry_job(job_id: str, manager: JobManager = Depends(get_job_manager)):
    """Apify run이 성공했지만 로컬 처리가 실패한 작업을 동기 재처리."""
    try:
        stats = await manager.retry(job_id)
    except JobError as exc:
        logger.info("Retry for job %s refused: %s", job_id, exc.message)
        raise HTTPException(status_code=exc.status_code, detail=exc.message)

    return RetryOut(
        job_id=job_id,
        stats=RetryStatsOut(**stats.counters()),
        errors=stats.errors[:RETRY_ERROR_SAMPLE],
    )
