"""정규화 이후 적용하는 결과 필터.

모든 predicate는 순수 함수이며 순서와 무관하다. ``apply_filters`` 는 활성화된
필터를 모두 만족하는 레코드만 남긴다 (교집합).

누락 데이터 정책:
  - 최근성: 타임스탬프 없음 → 탈락 (최근임을 증명할 수 없음)
  - 인게이지먼트: rate 없음 → 통과
  - 팔로워: 값 없음 → 통과
  - 노출/좋아요/조회수: 값 없음 → 0 으로 평가
"""

from datetime import datetime, timedelta

from loguru import logger
from pydantic import BaseModel

from processor.normalizer import NormalizedAd, NormalizedBatch, utcnow


class ScrapeFilters(BaseModel):
    """잡에 저장되는 필터 파라미터 (None = 비활성)."""

    time_period_days: int | None = None
    min_followers: int | None = None
    max_followers: int | None = None
    min_engagement_rate: float | None = None
    min_likes: int | None = None
    min_views: int | None = None
    min_impressions: int | None = None
    max_impressions: int | None = None

    model_config = {"extra": "ignore"}


def within_recency(ad: NormalizedAd, days: int, now: datetime) -> bool:
    if ad.first_seen_at is None:
        return False
    return ad.first_seen_at >= now - timedelta(days=days)


def meets_engagement(ad: NormalizedAd, min_rate: float) -> bool:
    if ad.engagement_rate is None:
        return True
    return ad.engagement_rate >= min_rate


def within_followers(ad: NormalizedAd, min_followers: int | None, max_followers: int | None) -> bool:
    if ad.follower_count is None:
        return True
    if min_followers is not None and ad.follower_count < min_followers:
        return False
    if max_followers is not None and ad.follower_count > max_followers:
        return False
    return True


def within_impressions(ad: NormalizedAd, min_impressions: int | None, max_impressions: int | None) -> bool:
    value = ad.impressions_min or 0
    if min_impressions is not None and value < min_impressions:
        return False
    if max_impressions is not None and value > max_impressions:
        return False
    return True


def meets_min_likes(ad: NormalizedAd, min_likes: int) -> bool:
    return (ad.likes or 0) >= min_likes


def meets_min_views(ad: NormalizedAd, min_views: int) -> bool:
    return (ad.view_count or 0) >= min_views


def matches(ad: NormalizedAd, filters: ScrapeFilters, now: datetime | None = None) -> bool:
    """단일 레코드가 모든 활성 필터를 통과하는지."""
    now = now or utcnow()
    if filters.time_period_days is not None and not within_recency(ad, filters.time_period_days, now):
        return False
    if filters.min_engagement_rate is not None and not meets_engagement(ad, filters.min_engagement_rate):
        return False
    if (filters.min_followers is not None or filters.max_followers is not None) and not within_followers(
        ad, filters.min_followers, filters.max_followers,
    ):
        return False
    if (filters.min_impressions is not None or filters.max_impressions is not None) and not within_impressions(
        ad, filters.min_impressions, filters.max_impressions,
    ):
        return False
    if filters.min_likes is not None and not meets_min_likes(ad, filters.min_likes):
        return False
    if filters.min_views is not None and not meets_min_views(ad, filters.min_views):
        return False
    return True


def apply_filters(
    batch: NormalizedBatch, filters: ScrapeFilters | dict | None, now: datetime | None = None,
) -> tuple[NormalizedBatch, int]:
    """(필터링된 batch, 제외된 광고 수).

    광고주는 남은 광고가 참조하는 것만 유지한다.
    """
    if filters is None:
        return batch, 0
    if isinstance(filters, dict):
        filters = ScrapeFilters.model_validate(filters)
    now = now or utcnow()

    kept = [ad for ad in batch.ads if matches(ad, filters, now)]
    filtered_out = len(batch.ads) - len(kept)
    if not filtered_out:
        return batch, 0

    referenced = {ad.advertiser_external_id for ad in kept if ad.advertiser_external_id}
    advertisers = [adv for adv in batch.advertisers if adv.external_id in referenced]
    logger.info(
        "[filters] {}/{}건 통과 (제외 {}건), 광고주 {} → {}",
        len(kept), len(batch.ads), filtered_out, len(batch.advertisers), len(advertisers),
    )
    return NormalizedBatch(ads=kept, advertisers=advertisers), filtered_out
