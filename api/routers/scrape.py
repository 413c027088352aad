"""스크래핑 작업 시작 API."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from crawler.apify_client import ApifyError
from database.schemas import ScrapeRequestIn, ScrapeStartOut
from api.deps import get_job_manager
from processor.job_manager import JobManager

logger = logging.getLogger("adharvest.api")

router = APIRouter(prefix="/api/scrape", tags=["scrape"])


@router.post("", response_model=ScrapeStartOut)
async def start_scrape(
    body: ScrapeRequestIn,
    manager: JobManager = Depends(get_job_manager),
):
    """Start a provider run and return immediately; poll /api/jobs/{job_id} for progress."""
    try:
        job_id = await manager.submit(
            body.platform,
            body.search_type,
            body.query,
            body.filters.to_job_filters(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ApifyError as exc:
        logger.warning("Scrape start rejected by Apify: %s", exc)
        raise HTTPException(
            status_code=502,
            detail=f"Failed to start scraper. Check your APIFY_TOKEN. ({exc})",
        )

    return ScrapeStartOut(
        job_id=job_id,
        status="running",
        message=f"Scrape started. Poll /api/jobs/{job_id} for status.",
    )
