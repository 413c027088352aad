"""Dedup/upsert for the advertiser + ad catalog.

Advertisers are keyed by (platform, external_id) and merged on repeat
sightings: a field the new observation leaves empty never erases a value
captured earlier. Ads are keyed by (platform, external_id) and skipped when
already present; ads without an external id are always inserted.

Check-then-insert without a lock: two jobs persisting the same record at the
same time can race. The unique indexes turn the lost race into an
IntegrityError that the caller counts as a per-record error.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Ad, Advertiser
from processor.normalizer import NormalizedAd, NormalizedAdvertiser, utcnow

# Fields refreshed on every sighting when the new observation carries a value.
ADVERTISER_MERGE_FIELDS = (
    "username",
    "page_url",
    "avatar_url",
    "bio",
    "verified",
    "follower_count",
    "following_count",
    "total_likes",
    "posts_count",
    "avg_likes_per_post",
    "avg_views_per_post",
    "avg_comments_per_post",
    "engagement_rate",
)


async def find_advertiser(session: AsyncSession, platform: str, external_id: str) -> Advertiser | None:
    result = await session.execute(
        select(Advertiser).where(
            Advertiser.platform == platform,
            Advertiser.external_id == external_id,
        )
    )
    return result.scalar_one_or_none()


def merge_advertiser(existing: Advertiser, observed: NormalizedAdvertiser, now: datetime) -> list[str]:
    """Apply non-null observed values onto ``existing``. Returns the changed field names."""
    changed = []
    for field in ADVERTISER_MERGE_FIELDS:
        value = getattr(observed, field)
        if value is None:
            continue
        if getattr(existing, field) != value:
            setattr(existing, field, value)
            changed.append(field)
    existing.last_scraped_at = now
    return changed


async def upsert_advertiser(
    session: AsyncSession, observed: NormalizedAdvertiser, now: datetime | None = None,
) -> tuple[Advertiser, bool]:
    """Insert or merge one advertiser. Returns (row, created). Does not commit."""
    now = now or utcnow()
    existing = await find_advertiser(session, observed.platform, observed.external_id)
    if existing is not None:
        merge_advertiser(existing, observed, now)
        await session.flush()
        return existing, False

    row = Advertiser(
        platform=observed.platform,
        external_id=observed.external_id,
        name=observed.name,
        first_seen_at=now,
        last_scraped_at=now,
        is_tracked=False,
    )
    for field in ADVERTISER_MERGE_FIELDS:
        setattr(row, field, getattr(observed, field))
    session.add(row)
    await session.flush()
    return row, True


async def find_existing_ad(session: AsyncSession, platform: str, external_id: str | None) -> int | None:
    """Existing ad id for (platform, external_id); None when absent or undeduplicatable."""
    if not external_id:
        return None
    result = await session.execute(
        select(Ad.id).where(Ad.platform == platform, Ad.external_id == external_id).limit(1)
    )
    return result.scalar_one_or_none()


async def insert_ad_if_new(
    session: AsyncSession,
    ad: NormalizedAd,
    advertiser_id: int | None,
    now: datetime | None = None,
) -> Ad | None:
    """Insert the ad unless (platform, external_id) already exists. Does not commit."""
    if await find_existing_ad(session, ad.platform, ad.external_id) is not None:
        return None

    row = Ad(
        platform=ad.platform,
        advertiser_id=advertiser_id,
        external_id=ad.external_id,
        headline=ad.headline,
        body_text=ad.body_text,
        cta_text=ad.cta_text,
        landing_url=ad.landing_url,
        media_type=ad.media_type,
        media_urls=list(ad.media_urls),
        thumbnail_url=ad.thumbnail_url,
        impressions_min=ad.impressions_min,
        impressions_max=ad.impressions_max,
        likes=ad.likes,
        comments=ad.comments,
        shares=ad.shares,
        view_count=ad.view_count,
        engagement_rate=ad.engagement_rate,
        days_running=ad.days_running,
        country_targeting=ad.country_targeting,
        first_seen_at=ad.first_seen_at,
        last_seen_at=ad.last_seen_at,
        scraped_at=now or utcnow(),
    )
    session.add(row)
    await session.flush()
    return row
