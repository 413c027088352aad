"""Instagram 게시물 어댑터 — Apify ``apify/instagram-scraper``.

검색 모드:
  - keyword: search (searchType=hashtag, searchLimit=10)
  - hashtag: hashtags
  - profile: usernames
  - id: directUrls

게시물 type: Image | Video | Sidecar(=carousel, childPosts 포함).
좋아요가 숨겨진 게시물은 likesCount=-1 로 내려오므로 None 처리.
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
    apply_batch_averages,
    classify_media,
    days_between,
    engagement_rate,
    first_str,
    parse_timestamp,
    pick_thumbnail,
    to_int,
    utcnow,
)

INSTAGRAM_ACTOR_ID = "apify/instagram-scraper"
DEFAULT_RESULTS_LIMIT = 50
SEARCH_LIMIT = 10


def _count(value) -> int | None:
    n = to_int(value)
    if n is None or n < 0:
        return None
    return n


def _media(item: dict) -> tuple[list[str], list[str]]:
    """(video_urls, image_urls): top-level post + childPosts + images."""
    videos = [first_str(item.get("videoUrl"))]
    images = [first_str(item.get("displayUrl"))]
    for child in item.get("childPosts") or []:
        if not isinstance(child, dict):
            continue
        videos.append(first_str(child.get("videoUrl")))
        images.append(first_str(child.get("displayUrl")))
    images.extend(first_str(img) for img in item.get("images") or [])
    return [v for v in videos if v], [i for i in images if i]


def _body_with_hashtags(caption: str | None, tags: list) -> str | None:
    body = caption or ""
    names = [str(t).lstrip("#") for t in tags if first_str(t)]
    if names:
        tag_line = " ".join(f"#{n}" for n in names)
        if tag_line.lower() not in body.lower():
            body = f"{body}\n\n{tag_line}" if body else tag_line
    return body or None


class InstagramAdapter:
    """Instagram 게시물/릴스 — apify instagram scraper actor."""

    platform = "instagram"
    actor_id = INSTAGRAM_ACTOR_ID
    supported_search_types = ("keyword", "hashtag", "profile", "id")

    def __init__(self, client: ApifyClient):
        self.client = client

    def build_run_input(self, request: ScrapeRequest) -> dict:
        run_input: dict = {
            "resultsLimit": request.max_items or DEFAULT_RESULTS_LIMIT,
            "resultsType": "posts",
        }
        query = request.query.strip()
        if request.search_type == "hashtag":
            run_input["hashtags"] = [query.lstrip("#")]
        elif request.search_type == "profile":
            run_input["usernames"] = [query.lstrip("@")]
        elif request.search_type == "id":
            run_input["directUrls"] = [query]
        else:
            run_input["search"] = query
            run_input["searchType"] = "hashtag"
            run_input["searchLimit"] = SEARCH_LIMIT
        if request.time_period_days:
            run_input["onlyPostsNewerThan"] = f"{request.time_period_days} days"
        return run_input

    async def start_job(self, request: ScrapeRequest) -> str:
        run = await self.client.run_actor(self.actor_id, self.build_run_input(request))
        return run["id"]

    async def await_and_fetch(self, run_id: str, **poll_kwargs) -> RunOutcome:
        return await self.client.wait_for_run(run_id, **poll_kwargs)

    def normalize(self, items: list[dict], now: datetime | None = None) -> NormalizedBatch:
        now = now or utcnow()
        advertisers: dict[str, NormalizedAdvertiser] = {}
        ads: list[NormalizedAd] = []

        for item in items:
            if not isinstance(item, dict):
                continue
            owner_id = first_str(item.get("ownerId"))
            username = first_str(item.get("ownerUsername"))
            full_name = first_str(item.get("ownerFullName"))
            owner_key = owner_id or username
            followers = _count(item.get("ownerFollowersCount"))
            if owner_key and owner_key not in advertisers:
                advertisers[owner_key] = NormalizedAdvertiser(
                    platform=self.platform,
                    external_id=owner_key,
                    name=full_name or username or owner_key,
                    username=username,
                    page_url=f"https://www.instagram.com/{username}/" if username else None,
                    avatar_url=first_str(item.get("ownerProfilePicUrl")),
                    verified=item.get("ownerIsVerified") if isinstance(item.get("ownerIsVerified"), bool) else None,
                    follower_count=followers,
                )

            video_urls, image_urls = _media(item)
            media_type, media_urls = classify_media(video_urls, image_urls)
            thumbnail = pick_thumbnail([item.get("displayUrl")], image_urls)

            posted = parse_timestamp(item.get("timestamp"))
            likes = _count(item.get("likesCount"))
            comments = _count(item.get("commentsCount"))
            views = _count(
                item.get("videoViewCount") or item.get("videoPlayCount") or item.get("viewsCount")
            )
            short_code = first_str(item.get("shortCode"))
            location = first_str(item.get("locationName"))

            ads.append(NormalizedAd(
                platform=self.platform,
                external_id=short_code or first_str(item.get("id")),
                advertiser_external_id=owner_key,
                headline=full_name or username,
                body_text=_body_with_hashtags(first_str(item.get("caption")), item.get("hashtags") or []),
                cta_text="Sponsored" if item.get("isSponsored") else None,
                landing_url=first_str(item.get("url")) or (
                    f"https://www.instagram.com/p/{short_code}/" if short_code else None
                ),
                media_type=media_type,
                media_urls=media_urls,
                thumbnail_url=thumbnail,
                impressions_min=views,
                impressions_max=views,
                likes=likes,
                comments=comments,
                view_count=views,
                engagement_rate=engagement_rate(likes, comments, views),
                days_running=days_between(posted, None, now=now),
                country_targeting=[location] if location else None,
                first_seen_at=posted,
                follower_count=followers,
            ))

        apply_batch_averages(advertisers, ads)
        logger.info(
            "[{}] 정규화 완료: 원본 {}건 → 게시물 {}건, 계정 {}명",
            self.platform, len(items), len(ads), len(advertisers),
        )
        return NormalizedBatch(ads=ads, advertisers=list(advertisers.values()))
