"""Apify REST client — actor run 시작 / 상태 조회 / 데이터셋 수집 + bounded polling.

API (v2):
  POST /acts/{actor}/runs            -> {"data": {"id", "status", "defaultDatasetId"}}
  GET  /actor-runs/{run_id}          -> {"data": {"id", "status", "defaultDatasetId", ...}}
  GET  /datasets/{id}/items?offset=&limit=  -> [item, ...]

The poller never busy-waits: it sleeps between status checks and gives up with a
local ``timeout`` outcome once ``max_wait_sec`` has elapsed.
"""

from __future__ import annotations

import asyncio
import time

import httpx
from loguru import logger

from crawler.config import ScraperSettings, scraper_settings
from crawler.types import (
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_TIMEOUT,
    RUN_SUCCEEDED,
    TERMINAL_FAILURE_STATUSES,
    RunOutcome,
)

DATASET_PAGE_SIZE = 1000


class ApifyError(Exception):
    """Provider call failed (rejected request or unreachable provider)."""

    def __init__(self, message: str, status_code: int | None = None, category: str = "unknown"):
        super().__init__(message)
        self.status_code = status_code
        self.category = category

    @property
    def unreachable(self) -> bool:
        return self.category == "network"


def classify_apify_error(
    status_code: int, payload: dict | None, response_text: str = "",
) -> tuple[str, bool, str]:
    """Classify Apify API failures into (category, retryable, message)."""
    error = payload.get("error") if isinstance(payload, dict) else None

    message = ""
    if isinstance(error, dict):
        message = str(error.get("message") or "").strip()
        error_type = str(error.get("type") or "").strip()
        if error_type and message:
            message = f"{error_type}: {message}"
    if not message:
        message = (response_text or "").strip()
    message = message[:240]

    if status_code in {401, 403}:
        return ("auth", False, message or "authentication error")
    if status_code == 429:
        return ("quota", True, message or "rate limit error")
    if status_code >= 500 or status_code == 408:
        return ("transient", True, message or "transient server error")
    if status_code == 404:
        return ("not_found", False, message or "resource not found")
    if status_code >= 400:
        return ("fatal", False, message or f"http {status_code}")
    return ("unknown", False, message or f"http {status_code}")


def actor_path(actor_id: str) -> str:
    """'owner/actor-name' -> 'owner~actor-name' (Apify URL form)."""
    return actor_id.replace("/", "~")


class ApifyClient:
    """Thin async wrapper around the Apify v2 API."""

    def __init__(
        self,
        token: str | None = None,
        settings: ScraperSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or scraper_settings
        self.token = (token if token is not None else self.settings.apify_token).strip()
        self.base_url = self.settings.apify_base_url.rstrip("/")
        self.max_retries = max(0, self.settings.max_retries)
        self.retry_backoff_ms = max(0, self.settings.retry_backoff_ms)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        if not self.token:
            logger.warning("[apify] APIFY_TOKEN not set - scraping will not work")

    # ── Lifecycle ──

    async def start(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(
                    self.settings.http_timeout_sec,
                    connect=self.settings.http_connect_timeout_sec,
                ),
                headers={"Authorization": f"Bearer {self.token}"},
                transport=self._transport,
            )
            logger.info("[apify] client started ({})", self.base_url)

    async def stop(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("[apify] client stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    # ── Low-level request ──

    async def _request(self, method: str, path: str, **kwargs):
        if self._client is None:
            raise RuntimeError("ApifyClient is not started")

        max_attempts = self.max_retries + 1
        for attempt in range(1, max_attempts + 1):
            try:
                response = await self._client.request(method, path, **kwargs)
            except httpx.RequestError as exc:
                if attempt >= max_attempts:
                    raise ApifyError(
                        f"Apify unreachable: {exc}", category="network",
                    ) from exc
                wait_ms = self.retry_backoff_ms * (2 ** (attempt - 1))
                logger.warning(
                    "[apify] request error {} {} attempt {}/{}; retry in {}ms: {}",
                    method, path, attempt, max_attempts, wait_ms, exc,
                )
                await asyncio.sleep(wait_ms / 1000)
                continue

            if response.is_success:
                return response.json()

            payload: dict | None = None
            try:
                parsed = response.json()
                if isinstance(parsed, dict):
                    payload = parsed
            except ValueError:
                payload = None

            category, retryable, message = classify_apify_error(
                status_code=response.status_code,
                payload=payload,
                response_text=response.text,
            )

            if category in ("auth", "quota"):
                logger.error(
                    "[apify][ALERT] {} error {} {} status={} msg={}",
                    category, method, path, response.status_code, message,
                )
            else:
                logger.warning(
                    "[apify] API error [{}] {} {} status={} msg={}",
                    category, method, path, response.status_code, message,
                )

            if retryable and attempt < max_attempts:
                wait_ms = self.retry_backoff_ms * (2 ** (attempt - 1))
                await asyncio.sleep(wait_ms / 1000)
                continue

            raise ApifyError(
                f"Apify API error: {response.status_code} - {message}",
                status_code=response.status_code,
                category=category,
            )

        raise ApifyError("Apify API request exhausted retries", category="network")

    # ── Endpoints ──

    async def run_actor(self, actor_id: str, run_input: dict) -> dict:
        """Start an actor run; returns the run object (``id``, ``status``, ...)."""
        body = await self._request("POST", f"/acts/{actor_path(actor_id)}/runs", json=run_input)
        run = (body or {}).get("data") or {}
        if not run.get("id"):
            raise ApifyError("Apify run response missing run id", category="fatal")
        logger.info("[apify] actor {} started run {}", actor_id, run["id"])
        return run

    async def get_run_status(self, run_id: str) -> dict:
        body = await self._request("GET", f"/actor-runs/{run_id}")
        return (body or {}).get("data") or {}

    async def get_dataset_items(self, dataset_id: str, limit: int | None = None) -> list[dict]:
        """Fetch up to ``limit`` dataset items, paging through the dataset."""
        limit = limit or self.settings.dataset_limit
        items: list[dict] = []
        offset = 0
        while len(items) < limit:
            page_size = min(DATASET_PAGE_SIZE, limit - len(items))
            page = await self._request(
                "GET",
                f"/datasets/{dataset_id}/items",
                params={"offset": offset, "limit": page_size, "clean": "true"},
            )
            if not isinstance(page, list) or not page:
                break
            items.extend(item for item in page if isinstance(item, dict))
            if len(page) < page_size:
                break
            offset += len(page)
        return items

    # ── Poller ──

    async def wait_for_run(
        self,
        run_id: str,
        poll_interval_sec: float | None = None,
        max_wait_sec: float | None = None,
        backoff: float | None = None,
    ) -> RunOutcome:
        """Poll until the run reaches a terminal state or the deadline passes."""
        interval = self.settings.poll_interval_sec if poll_interval_sec is None else poll_interval_sec
        max_wait = self.settings.max_wait_sec if max_wait_sec is None else max_wait_sec
        factor = self.settings.poll_backoff if backoff is None else backoff
        max_interval = max(interval, self.settings.max_poll_interval_sec)

        deadline = time.monotonic() + max_wait
        polls = 0
        while True:
            run = await self.get_run_status(run_id)
            polls += 1
            status = run.get("status")

            if status == RUN_SUCCEEDED:
                items = await self.get_dataset_items(run.get("defaultDatasetId"))
                logger.info(
                    "[apify] run {} succeeded after {} polls ({} items)",
                    run_id, polls, len(items),
                )
                return RunOutcome(OUTCOME_COMPLETED, status, items)

            if status in TERMINAL_FAILURE_STATUSES:
                logger.warning("[apify] run {} ended with {}", run_id, status)
                return RunOutcome(OUTCOME_FAILED, status)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    "[apify] run {} still {} after {:.0f}s - giving up locally",
                    run_id, status, max_wait,
                )
                return RunOutcome(OUTCOME_TIMEOUT, status)

            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * factor, max_interval)
