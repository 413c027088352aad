"""FastAPI app entrypoint."""

import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

load_dotenv()

from api.logging_config import setup_logging  # noqa: E402
from api.routers import jobs, scrape  # noqa: E402
from crawler.apify_client import ApifyClient  # noqa: E402
from crawler.config import ScraperSettings, scraper_settings  # noqa: E402
from database import Database, init_db  # noqa: E402
from processor.job_manager import BackgroundRunner, JobManager  # noqa: E402
from scheduler.scheduler import RecoveryScheduler  # noqa: E402

logger = logging.getLogger("adharvest.api")

APP_VERSION = "0.1.0"
SHUTDOWN_DRAIN_SEC = 30


def create_app(
    database_url: str | None = None,
    apify_client: ApifyClient | None = None,
    settings: ScraperSettings | None = None,
    poll_options: dict | None = None,
    enable_recovery: bool | None = None,
) -> FastAPI:
    """Build the app. Arguments override the environment (tests inject fakes here)."""
    settings = settings or scraper_settings
    recovery_enabled = settings.recovery_enabled if enable_recovery is None else enable_recovery

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """앱 시작/종료 시 DB, Apify 클라이언트, 작업 매니저, 복구 스케줄러 관리."""
        setup_logging()
        logger.info("AdHarvest API starting up")

        db = Database(database_url)
        await init_db(db)
        client = apify_client or ApifyClient(settings=settings)
        await client.start()
        runner = BackgroundRunner(settings.max_concurrent_jobs)

        app.state.db = db
        app.state.apify_client = client
        app.state.runner = runner
        app.state.job_manager = JobManager(
            db, client, runner=runner, settings=settings, poll_options=poll_options,
        )

        recovery = None
        if recovery_enabled:
            recovery = RecoveryScheduler(db, client, settings=settings)
            recovery.setup_schedules()
            recovery.start()
        app.state.recovery_scheduler = recovery

        try:
            yield
        finally:
            logger.info("AdHarvest API shutting down")
            if recovery is not None:
                recovery.stop()
            await runner.drain(timeout=SHUTDOWN_DRAIN_SEC)
            await client.stop()
            await db.dispose()
            logger.info("Database engine disposed")

    app = FastAPI(
        title="AdHarvest API",
        description="Meta / TikTok / Instagram 콘텐츠 수집 작업 오케스트레이션",
        version=APP_VERSION,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    _cors_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in _cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(scrape.router)
    app.include_router(jobs.router)
    app.add_api_route("/health", health, methods=["GET"])
    return app


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration = time.time() - start
        logger.info(
            "%s %s -> %d (%.2fs)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------
async def global_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None) or {},
        )
    logger.exception(
        "Unhandled exception on %s %s: %s (type=%s)",
        request.method,
        request.url.path,
        str(exc),
        type(exc).__name__,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def health(request: Request):
    """Liveness + DB connectivity + background load."""
    health_status = {"status": "ok", "service": "adharvest-api", "version": APP_VERSION}

    db: Database = request.app.state.db
    try:
        async with db.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["database"] = f"error: {e}"

    health_status["active_jobs"] = request.app.state.runner.active
    health_status["recovery_scheduler"] = request.app.state.recovery_scheduler is not None
    return health_status


app = create_app()
