"""Meta 광고 라이브러리 어댑터 — Apify ``curious_coder/facebook-ads-library-scraper``.

검색 모드:
  - keyword: searchTerms
  - profile / id: pageIds (Facebook page id)

원본 결과 형태 (두 가지 모두 수용):
  - flat: adArchiveId, pageId, pageName, adCreativeBody, images[{url, resizedUrl}],
    videos[{videoHd, videoSd, videoPreviewImageUrl}], impressions{lower_bound, upper_bound}
  - nested: ad_archive_id, page_id, start_date, end_date,
    snapshot{body, title, cta_text, link_url, images, videos, cards[...]}

Meta는 조회수를 노출하지 않으므로 engagement rate는 항상 None.
"""

from __future__ import annotations

from datetime import datetime

from loguru import logger

from crawler.apify_client import ApifyClient
from crawler.types import RunOutcome, ScrapeRequest
from processor.normalizer import (
    NormalizedAd,
    NormalizedAdvertiser,
    NormalizedBatch,
    classify_media,
    days_between,
    first_str,
    parse_timestamp,
    pick_thumbnail,
    to_int,
    utcnow,
)

META_ACTOR_ID = "curious_coder/facebook-ads-library-scraper"
META_MEDIA_TYPES = {"ALL", "IMAGE", "VIDEO", "MEME", "NONE"}
DEFAULT_COUNTRY = "US"
DEFAULT_MAX_ITEMS = 100


def _text(value) -> str | None:
    """str 또는 {"text": ...} 형태 모두 처리."""
    if isinstance(value, dict):
        return first_str(value.get("text"), value.get("markup", {}).get("__html") if isinstance(value.get("markup"), dict) else None)
    return first_str(value)


def _collect_creatives(item: dict) -> tuple[list[str], list[str], list[str]]:
    """(video_urls, image_urls, preview_urls) from flat + snapshot/cards structures."""
    snapshot = item.get("snapshot") if isinstance(item.get("snapshot"), dict) else {}
    video_urls: list[str] = []
    image_urls: list[str] = []
    previews: list[str] = []

    for video in (item.get("videos") or []) + (snapshot.get("videos") or []):
        if not isinstance(video, dict):
            continue
        playable = first_str(
            video.get("videoHd"), video.get("video_hd_url"),
            video.get("videoSd"), video.get("video_sd_url"),
        )
        if playable:
            video_urls.append(playable)
        preview = first_str(video.get("videoPreviewImageUrl"), video.get("video_preview_image_url"))
        if preview:
            previews.append(preview)

    for image in (item.get("images") or []) + (snapshot.get("images") or []):
        if isinstance(image, str):
            image_urls.append(image)
            continue
        if not isinstance(image, dict):
            continue
        url = first_str(image.get("url"), image.get("original_image_url"), image.get("resized_image_url"))
        if url:
            image_urls.append(url)

    # multi-card carousel: each card is one visual item (image or video)
    for card in snapshot.get("cards") or item.get("cards") or []:
        if not isinstance(card, dict):
            continue
        playable = first_str(card.get("video_hd_url"), card.get("video_sd_url"))
        if playable:
            video_urls.append(playable)
        preview = first_str(card.get("video_preview_image_url"))
        if preview:
            previews.append(preview)
        url = first_str(card.get("original_image_url"), card.get("resized_image_url"))
        if url:
            image_urls.append(url)

    return video_urls, image_urls, previews


def _first_image_resized(item: dict) -> str | None:
    images = item.get("images") or []
    if images and isinstance(images[0], dict):
        return first_str(images[0].get("resizedUrl"), images[0].get("resized_image_url"))
    return None


def _countries(item: dict) -> list[str] | None:
    raw = (
        item.get("targetLocations")
        or item.get("targeted_or_reached_countries")
        or item.get("reached_countries")
    )
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return None
    out = [str(c).strip() for c in raw if str(c).strip()]
    return out or None


class MetaLibraryAdapter:
    """Meta 광고 라이브러리 — ads library scraper actor."""

    platform = "meta"
    actor_id = META_ACTOR_ID
    supported_search_types = ("keyword", "profile", "id")

    def __init__(self, client: ApifyClient):
        self.client = client

    # ── 제출 ──

    def build_run_input(self, request: ScrapeRequest) -> dict:
        media_type = (request.media_type or "ALL").strip().upper()
        if media_type not in META_MEDIA_TYPES:
            media_type = "ALL"
        run_input: dict = {
            "countryCode": (request.country or DEFAULT_COUNTRY).strip().upper(),
            "mediaType": media_type,
            "adActiveStatus": "ACTIVE" if request.active_only else "ALL",
            "maxItems": request.max_items or DEFAULT_MAX_ITEMS,
        }
        if request.search_type == "keyword":
            run_input["searchTerms"] = [request.query]
        else:
            run_input["pageIds"] = [request.query]
        return run_input

    async def start_job(self, request: ScrapeRequest) -> str:
        run = await self.client.run_actor(self.actor_id, self.build_run_input(request))
        return run["id"]

    async def await_and_fetch(self, run_id: str, **poll_kwargs) -> RunOutcome:
        return await self.client.wait_for_run(run_id, **poll_kwargs)

    # ── 정규화 ──

    def normalize(self, items: list[dict], now: datetime | None = None) -> NormalizedBatch:
        now = now or utcnow()
        advertisers: dict[str, NormalizedAdvertiser] = {}
        ads: list[NormalizedAd] = []

        for item in items:
            if not isinstance(item, dict):
                continue
            snapshot = item.get("snapshot") if isinstance(item.get("snapshot"), dict) else {}

            page_id = first_str(item.get("pageId"), item.get("page_id"), snapshot.get("page_id"))
            page_name = first_str(item.get("pageName"), item.get("page_name"), snapshot.get("page_name"))
            page_likes = to_int(snapshot.get("page_like_count"))
            if page_id and page_id not in advertisers:
                advertisers[page_id] = NormalizedAdvertiser(
                    platform=self.platform,
                    external_id=page_id,
                    name=page_name or page_id,
                    page_url=first_str(
                        item.get("pageUrl"), snapshot.get("page_profile_uri"),
                    ) or f"https://facebook.com/{page_id}",
                    avatar_url=first_str(
                        item.get("pageProfilePictureUrl"), snapshot.get("page_profile_picture_url"),
                    ),
                    follower_count=page_likes,
                )

            video_urls, image_urls, previews = _collect_creatives(item)
            media_type, media_urls = classify_media(video_urls, image_urls)
            thumbnail = pick_thumbnail(previews + [_first_image_resized(item)], image_urls)

            start = parse_timestamp(
                item.get("adDeliveryStartTime") or item.get("start_date") or item.get("startDate")
            )
            stop = parse_timestamp(
                item.get("adDeliveryStopTime") or item.get("end_date") or item.get("endDate")
            )
            if stop is not None and stop > now:
                stop = None

            impressions = item.get("impressions") if isinstance(item.get("impressions"), dict) else {}

            ads.append(NormalizedAd(
                platform=self.platform,
                external_id=first_str(item.get("adArchiveId"), item.get("ad_archive_id"), item.get("id")),
                advertiser_external_id=page_id,
                headline=first_str(item.get("adCreativeLinkTitle"), snapshot.get("title")),
                body_text=_text(item.get("adCreativeBody")) or _text(snapshot.get("body")),
                cta_text=first_str(item.get("callToActionType"), snapshot.get("cta_text"), snapshot.get("cta_type")),
                landing_url=first_str(snapshot.get("link_url"), item.get("adCreativeLinkCaption"), snapshot.get("caption")),
                media_type=media_type,
                media_urls=media_urls,
                thumbnail_url=thumbnail,
                impressions_min=to_int(impressions.get("lower_bound")),
                impressions_max=to_int(impressions.get("upper_bound")),
                days_running=days_between(start, stop, now=now),
                country_targeting=_countries(item),
                first_seen_at=start,
                last_seen_at=stop,
                follower_count=page_likes,
            ))

        logger.info(
            "[{}] 정규화 완료: 원본 {}건 → 광고 {}건, 광고주 {}명",
            self.platform, len(items), len(ads), len(advertisers),
        )
        return NormalizedBatch(ads=ads, advertisers=list(advertisers.values()))
