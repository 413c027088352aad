"""Provider-agnostic request/outcome types shared by the adapters."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel

# ── Apify run statuses ──
RUN_READY = "READY"
RUN_RUNNING = "RUNNING"
RUN_SUCCEEDED = "SUCCEEDED"
RUN_FAILED = "FAILED"
RUN_ABORTING = "ABORTING"
RUN_ABORTED = "ABORTED"
RUN_TIMING_OUT = "TIMING-OUT"
RUN_TIMED_OUT = "TIMED-OUT"

TERMINAL_FAILURE_STATUSES = frozenset({RUN_FAILED, RUN_ABORTED, RUN_TIMED_OUT})

# ── Local outcome of awaiting a run ──
OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_TIMEOUT = "timeout"

SEARCH_TYPES = ("keyword", "hashtag", "profile", "id")


class ScrapeRequest(BaseModel):
    """Normalized scrape request handed to a platform adapter."""

    search_type: str = "keyword"
    query: str
    country: str | None = None
    media_type: str | None = None
    active_only: bool = False
    sort_by: str | None = None
    max_items: int | None = None
    time_period_days: int | None = None


@dataclass
class RunOutcome:
    status: str                       # completed | failed | timeout
    provider_status: str | None = None
    items: list[dict] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.status == OUTCOME_COMPLETED
