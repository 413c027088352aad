"""ScrapeJob 라이프사이클 — 제출 → 폴링 → 정규화 → 필터 → 적재.

``submit`` 은 프로바이더 run 시작까지만 동기로 처리하고, 결과 처리는
``BackgroundRunner`` 에 넘긴다. ``process_results`` 는 예외를 던지지 않으며
모든 결과(성공/실패/부분 실패)를 job row 에 기록한다.
``retry`` 는 동기 실행이며 거절 사유를 예외로 돌려준다.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from crawler.apify_client import ApifyClient, ApifyError
from crawler.config import ScraperSettings, scraper_settings
from crawler.platforms import PLATFORMS, get_adapter
from crawler.types import (
    OUTCOME_TIMEOUT,
    RUN_SUCCEEDED,
    RunOutcome,
    ScrapeRequest,
)
from database import Database, ScrapeJob
from processor.filters import apply_filters
from processor.normalizer import utcnow
from processor.pipeline import JobStats, persist_batch

T = TypeVar("T")

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

SUBMISSION_OPTION_KEYS = ("country", "media_type", "active_only", "sort_by", "max_items", "time_period_days")


class JobError(Exception):
    """Synchronous job operation refused; ``status_code`` is the HTTP mapping."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class JobNotFound(JobError):
    status_code = 404


class RetryRejected(JobError):
    status_code = 400


class RetryFailed(JobError):
    status_code = 502


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay_sec: float = 1.0,
    label: str = "db operation",
) -> T:
    """Retry a DB write on SQLAlchemyError with doubling delay."""
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except SQLAlchemyError as exc:
            if attempt >= max_attempts:
                raise
            logger.warning(
                "[job] {} failed (attempt {}/{}), retrying in {:.1f}s: {}",
                label, attempt, max_attempts, delay_sec, exc,
            )
            await asyncio.sleep(delay_sec)
            delay_sec *= 2
    raise RuntimeError("unreachable")


class BackgroundRunner:
    """Bounded detached-task runner (semaphore + tracked task set)."""

    def __init__(self, max_concurrency: int = 4):
        self.max_concurrency = max(1, max_concurrency)
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._tasks: set[asyncio.Task] = set()

    @property
    def active(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(self._run(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], name: str | None):
        try:
            async with self._semaphore:
                return await coro
        except asyncio.CancelledError:
            # a task cancelled while queued never started its coroutine
            coro.close()
            logger.warning("[runner] task {} cancelled", name)
            raise
        except Exception:
            logger.exception("[runner] task {} crashed", name)
            return None

    async def drain(self, timeout: float | None = None):
        """Wait for in-flight tasks; cancel whatever is left after ``timeout``."""
        if not self._tasks:
            return
        pending_tasks = set(self._tasks)
        logger.info("[runner] draining {} task(s)", len(pending_tasks))
        _done, still_pending = await asyncio.wait(pending_tasks, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            # unfinished jobs stay "running" and are reconciled by the recovery sweep
            logger.warning("[runner] cancelled {} unfinished task(s)", len(still_pending))
            await asyncio.gather(*still_pending, return_exceptions=True)


def outcome_error_message(job_id: str, outcome: RunOutcome) -> str:
    if outcome.status == OUTCOME_TIMEOUT:
        return (
            "Apify run timed out locally - it may still finish. "
            f"Retry via POST /api/jobs/{job_id}/retry once Apify completes."
        )
    provider_status = (outcome.provider_status or "failed").lower()
    return f"Apify run {provider_status} - check Apify console for details"


def build_scrape_request(search_type: str, query: str, filters: dict | None) -> ScrapeRequest:
    options = {k: v for k, v in (filters or {}).items() if k in SUBMISSION_OPTION_KEYS and v is not None}
    return ScrapeRequest(search_type=search_type, query=query, **options)


class JobManager:
    """Owns ScrapeJob state transitions."""

    def __init__(
        self,
        db: Database,
        client: ApifyClient,
        runner: BackgroundRunner | None = None,
        settings: ScraperSettings | None = None,
        poll_options: dict | None = None,
        status_retry_delay_sec: float = 1.0,
    ):
        self.db = db
        self.client = client
        self.settings = settings or scraper_settings
        self.runner = runner or BackgroundRunner(self.settings.max_concurrent_jobs)
        self.poll_options = poll_options or {}
        self.status_retry_delay_sec = status_retry_delay_sec

    # ── 조회 ──

    async def get_job(self, job_id: str) -> ScrapeJob | None:
        async with self.db.session() as session:
            return await session.get(ScrapeJob, job_id)

    async def _write_job(self, job_id: str, **values):
        async def _op():
            async with self.db.session() as session:
                await session.execute(update(ScrapeJob).where(ScrapeJob.id == job_id).values(**values))
                await session.commit()

        await with_retry(_op, delay_sec=self.status_retry_delay_sec, label=f"job {job_id} update")

    async def _mark_failed(self, job_id: str, message: str):
        logger.error("[job] {} failed: {}", job_id, message)
        try:
            await self._write_job(job_id, status=STATUS_FAILED, error=message, completed_at=utcnow())
        except SQLAlchemyError as exc:
            logger.critical("[job] {} status update failed after retries: {}", job_id, exc)

    # ── 제출 ──

    async def submit(
        self,
        platform: str | None,
        search_type: str | None,
        query: str | None,
        filters: dict | None = None,
        background: bool = True,
    ) -> str:
        """Create the job row and start the provider run. Returns the job id.

        Raises ValueError before anything is written when the request is invalid,
        and re-raises the provider error after marking the job failed.
        """
        if not platform or not (query or "").strip():
            raise ValueError("Platform and query are required")
        if platform not in PLATFORMS:
            raise ValueError(f'Invalid platform. Use {", ".join(repr(p) for p in PLATFORMS)}')
        adapter = get_adapter(platform, self.client)
        search_type = search_type or "keyword"
        if search_type not in adapter.supported_search_types:
            raise ValueError(
                f"Search type '{search_type}' is not supported for {platform} "
                f"(use {', '.join(adapter.supported_search_types)})"
            )
        query = query.strip()
        request = build_scrape_request(search_type, query, filters)

        job_id = uuid.uuid4().hex
        async with self.db.session() as session:
            session.add(ScrapeJob(
                id=job_id,
                platform=platform,
                search_type=search_type,
                query=query,
                filters=filters or {},
                status=STATUS_PENDING,
                ads_found=0,
                started_at=utcnow(),
            ))
            await session.commit()

        try:
            run_id = await adapter.start_job(request)
        except Exception as exc:
            await self._mark_failed(job_id, str(exc) or "Failed to start scraper")
            raise

        await self._write_job(job_id, status=STATUS_RUNNING, apify_run_id=run_id)
        logger.info("[job] {} running: {} {} '{}' (run {})", job_id, platform, search_type, query, run_id)

        if background:
            self.runner.submit(self.process_results(job_id), name=f"scrape-{job_id}")
        return job_id

    # ── 결과 처리 ──

    async def _ingest(self, job: ScrapeJob, items: list[dict]) -> JobStats:
        """normalize → filter → persist → finalize (completed)."""
        adapter = get_adapter(job.platform, self.client)
        now = utcnow()
        batch = adapter.normalize(items, now=now)
        batch, filtered_out = apply_filters(batch, job.filters or {}, now)

        stats = JobStats(error_cap=self.settings.error_sample_cap)
        stats.filtered_out = filtered_out
        await persist_batch(self.db, batch, stats, now=now, job_id=job.id)

        await self._write_job(
            job.id,
            status=STATUS_COMPLETED,
            ads_found=stats.ads_inserted,
            completed_at=utcnow(),
            error=stats.partial_failure,
            stats=stats.summary(),
        )
        logger.info("[job] {} completed: {}", job.id, stats.counters())
        return stats

    async def process_results(self, job_id: str) -> JobStats | None:
        """Await the provider run and persist its results. Never raises."""
        try:
            job = await self.get_job(job_id)
            if job is None:
                logger.warning("[job] {} not found - nothing to process", job_id)
                return None
            if not job.apify_run_id:
                await self._mark_failed(job_id, "No Apify run ID - job stuck at initialization")
                return None

            adapter = get_adapter(job.platform, self.client)
            logger.info("[job] {} awaiting {} run {}", job_id, job.platform, job.apify_run_id)
            outcome = await adapter.await_and_fetch(job.apify_run_id, **self.poll_options)
            if not outcome.completed:
                await self._mark_failed(job_id, outcome_error_message(job_id, outcome))
                return None
            return await self._ingest(job, outcome.items)
        except Exception as exc:
            logger.exception("[job] {} processing error", job_id)
            await self._mark_failed(job_id, f"Processing error: {exc}")
            return None

    # ── 재처리 ──

    async def retry(self, job_id: str) -> JobStats:
        """Re-process a job whose provider run SUCCEEDED, synchronously."""
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFound("Job not found")
        if not job.apify_run_id:
            raise RetryRejected("Job has no Apify run ID - cannot retry")

        try:
            run = await self.client.get_run_status(job.apify_run_id)
        except ApifyError as exc:
            logger.warning("[job] {} retry: Apify unreachable: {}", job_id, exc)
            raise RetryRejected(
                "Cannot reach Apify - run may have been deleted (data expires after 7 days)"
            ) from exc

        run_status = run.get("status")
        if run_status != RUN_SUCCEEDED:
            raise RetryRejected(f"Apify run status is {run_status} - cannot retry", status_code=409)

        await self._write_job(job_id, status=STATUS_RUNNING, error=None, completed_at=None)
        try:
            items = await self.client.get_dataset_items(run.get("defaultDatasetId"))
            return await self._ingest(job, items)
        except (ApifyError, SQLAlchemyError, ValueError) as exc:
            await self._mark_failed(job_id, f"Retry failed: {exc}")
            raise RetryFailed(f"Retry failed: {exc}") from exc
        except Exception as exc:
            logger.exception("[job] {} retry processing error", job_id)
            await self._mark_failed(job_id, f"Retry failed: {exc}")
            raise RetryFailed(f"Retry failed: {exc}") from exc
