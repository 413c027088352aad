"""Pydantic schemas -- API request/response serialization.

Filter naming:
  - time_period: UI shorthand ("48h", "7d", "30d", "90d"), resolved to time_period_days.
  - min_*/max_*: inclusive bounds applied after normalization.
  - country / media_type / active_only / sort_by / max_items: submission-only options
    forwarded to the provider actor.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

TIME_PERIOD_DAYS = {
    "48h": 2,
    "7d": 7,
    "30d": 30,
    "90d": 90,
}


# ── Scrape request ──
class ScrapeFiltersIn(BaseModel):
    time_period: str | None = Field(default=None, description="48h | 7d | 30d | 90d")
    time_period_days: int | None = Field(default=None, ge=1)
    # TikTok
    min_followers: int | None = Field(default=None, ge=0)
    max_followers: int | None = Field(default=None, ge=0)
    # Instagram
    min_engagement_rate: float | None = Field(default=None, ge=0)
    min_likes: int | None = Field(default=None, ge=0)
    min_views: int | None = Field(default=None, ge=0)
    # Meta
    min_impressions: int | None = Field(default=None, ge=0)
    max_impressions: int | None = Field(default=None, ge=0)
    # submission options
    country: str | None = None
    media_type: str | None = None
    active_only: bool = False
    sort_by: str | None = None
    max_items: int | None = Field(default=None, ge=1, le=1000)

    @model_validator(mode="after")
    def resolve_time_period(self):
        if self.time_period_days is None and self.time_period:
            days = TIME_PERIOD_DAYS.get(self.time_period.strip().lower())
            if days is None:
                raise ValueError(f"Unknown time_period '{self.time_period}'")
            self.time_period_days = days
        return self

    def to_job_filters(self) -> dict:
        """Serializable filter dict stored on the ScrapeJob row."""
        return self.model_dump(exclude_none=True, exclude={"time_period"})


class ScrapeRequestIn(BaseModel):
    platform: str | None = None
    search_type: str = "keyword"
    query: str | None = None
    filters: ScrapeFiltersIn = Field(default_factory=ScrapeFiltersIn)


class ScrapeStartOut(BaseModel):
    job_id: str
    status: str
    message: str


# ── ScrapeJob ──
class ScrapeJobOut(BaseModel):
    id: str
    platform: str
    search_type: str | None
    query: str | None
    status: str
    ads_found: int | None = 0
    apify_run_id: str | None = None
    filters: dict | None = None
    stats: dict | None = None
    started_at: datetime | None
    completed_at: datetime | None
    error: str | None
    model_config = ConfigDict(from_attributes=True)


class ScrapeJobListOut(BaseModel):
    jobs: list[ScrapeJobOut]
    total: int
    limit: int
    offset: int


# ── Recovery / retry ──
class RecoverOut(BaseModel):
    message: str
    checked: int
    recovered_count: int
    still_running_count: int
    recovered_ids: list[str]
    still_running_ids: list[str]


class RetryStatsOut(BaseModel):
    advertisers_total: int
    advertisers_processed: int
    advertisers_skipped: int
    ads_total: int
    ads_inserted: int
    ads_duplicate: int
    ads_skipped: int
    filtered_out: int
    error_count: int


class RetryOut(BaseModel):
    success: bool = True
    job_id: str
    stats: RetryStatsOut
    errors: list[str] = Field(default_factory=list)
