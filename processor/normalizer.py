"""광고/게시물 데이터 정규화 — 플랫폼별 원본 → 공통 스키마.

Shared building blocks for the platform adapters: the normalized record
models plus the media / recency / engagement helpers every adapter applies
the same way.
"""

import math
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

MEDIA_IMAGE = "image"
MEDIA_VIDEO = "video"
MEDIA_CAROUSEL = "carousel"


def utcnow() -> datetime:
    """Naive UTC now (DB columns store naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class NormalizedAdvertiser(BaseModel):
    """정규화된 광고주/크리에이터."""

    platform: str
    external_id: str
    name: str
    username: str | None = None
    page_url: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    verified: bool | None = None
    follower_count: int | None = None
    following_count: int | None = None
    total_likes: int | None = None
    posts_count: int | None = None
    avg_likes_per_post: int | None = None
    avg_views_per_post: int | None = None
    avg_comments_per_post: int | None = None
    engagement_rate: float | None = None

    @field_validator("bio", "avatar_url", "username", "page_url", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class NormalizedAd(BaseModel):
    """정규화된 개별 광고/게시물."""

    platform: str
    external_id: str | None = None
    advertiser_external_id: str | None = None
    headline: str | None = None
    body_text: str | None = None
    cta_text: str | None = None
    landing_url: str | None = None
    media_type: str = MEDIA_IMAGE
    media_urls: list[str] = Field(default_factory=list)
    thumbnail_url: str | None = None
    impressions_min: int | None = None
    impressions_max: int | None = None
    likes: int | None = None
    comments: int | None = None
    shares: int | None = None
    view_count: int | None = None
    engagement_rate: float | None = None
    days_running: int | None = None
    country_targeting: list[str] | None = None
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None
    # author follower count, carried for the followers filter only (not an ads column)
    follower_count: int | None = None

    @field_validator("headline", "body_text", "cta_text", mode="before")
    @classmethod
    def clean_text(cls, v):
        if v is None:
            return None
        text = str(v).strip()
        return text or None


class NormalizedBatch(BaseModel):
    ads: list[NormalizedAd] = Field(default_factory=list)
    advertisers: list[NormalizedAdvertiser] = Field(default_factory=list)


# ── 값 변환 헬퍼 ──

def first_str(*values) -> str | None:
    """첫 번째 비어있지 않은 문자열."""
    for v in values:
        if v is None:
            continue
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def to_int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        if not cleaned:
            return None
        try:
            return int(float(cleaned))
        except ValueError:
            return None
    return None


def parse_timestamp(value) -> datetime | None:
    """ISO 문자열 / unix seconds / unix millis → naive UTC datetime."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        raw = value.strip()
        if raw.isdigit():
            return parse_timestamp(int(raw))
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def dedupe_urls(urls) -> list[str]:
    seen: list[str] = []
    for url in urls:
        if isinstance(url, str) and url.strip() and url.strip() not in seen:
            seen.append(url.strip())
    return seen


# ── 미디어 분류 ──

def classify_media(video_urls: list[str], image_urls: list[str]) -> tuple[str, list[str]]:
    """(media_type, media_urls): video > carousel > image.

    A video classification requires at least one playable URL; more than one
    image makes a carousel.
    """
    videos = dedupe_urls(video_urls)
    images = dedupe_urls(image_urls)
    if videos:
        return MEDIA_VIDEO, videos
    if len(images) > 1:
        return MEDIA_CAROUSEL, images
    return MEDIA_IMAGE, images


def pick_thumbnail(preview_urls: list[str | None], image_urls: list[str]) -> str | None:
    """Dedicated preview first, then the first resolved image."""
    for url in preview_urls:
        if isinstance(url, str) and url.strip():
            return url.strip()
    for url in image_urls:
        if isinstance(url, str) and url.strip():
            return url.strip()
    return None


# ── 기간 / 인게이지먼트 ──

def days_between(start: datetime | None, end: datetime | None = None, now: datetime | None = None) -> int | None:
    """Whole days from start to end (or now when the item is still live). Rounded up."""
    if start is None:
        return None
    end = end or now or utcnow()
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)


def engagement_rate(likes: int | None, comments: int | None, views: int | None, shares: int | None = None) -> float | None:
    """(likes + comments [+ shares]) / views * 100, undefined without views."""
    if not views or views <= 0:
        return None
    total = (likes or 0) + (comments or 0) + (shares or 0)
    return round(total / views * 100, 2)


def apply_batch_averages(advertisers: dict[str, NormalizedAdvertiser], ads: list[NormalizedAd]):
    """Per-creator averages over the posts observed in this batch."""
    grouped: dict[str, list[NormalizedAd]] = {}
    for ad in ads:
        if ad.advertiser_external_id in advertisers:
            grouped.setdefault(ad.advertiser_external_id, []).append(ad)

    for ext_id, posts in grouped.items():
        adv = advertisers[ext_id]
        likes = [p.likes for p in posts if p.likes is not None]
        comments = [p.comments for p in posts if p.comments is not None]
        views = [p.view_count for p in posts if p.view_count is not None]
        if likes:
            adv.avg_likes_per_post = round(sum(likes) / len(likes))
        if comments:
            adv.avg_comments_per_post = round(sum(comments) / len(comments))
        if views:
            adv.avg_views_per_post = round(sum(views) / len(views))

        viewed = [p for p in posts if p.view_count]
        if viewed:
            total_views = sum(p.view_count for p in viewed)
            total_eng = sum((p.likes or 0) + (p.comments or 0) + (p.shares or 0) for p in viewed)
            adv.engagement_rate = round(total_eng / total_views * 100, 2)
