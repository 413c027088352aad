"""TikTok 콘텐츠 어댑터 — Apify ``clockworks/tiktok-scraper``.

검색 모드:
  - keyword: searchQueries
  - hashtag: hashtags ('#' 제거)
  - profile: profiles ('@' 제거)
  - id: postURLs

작성자 정보는 ``authorMeta`` (scraper 기본 출력) 또는 ``author`` (구버전) 아래에 있다.
사진 모드(slideshow) 게시물은 carousel로 분류.
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

TIKTOK_ACTOR_ID = "clockworks/tiktok-scraper"
DEFAULT_RESULTS_PER_PAGE = 50
DEFAULT_SORT = "popular"


def _author(item: dict) -> dict:
    """authorMeta / author 를 하나의 키 집합으로 정리."""
    meta = item.get("authorMeta") if isinstance(item.get("authorMeta"), dict) else None
    if meta is not None:
        return {
            "id": first_str(meta.get("id")),
            "username": first_str(meta.get("name"), meta.get("uniqueId")),
            "nickname": first_str(meta.get("nickName"), meta.get("nickname")),
            "avatar": first_str(meta.get("avatar"), meta.get("originalAvatarUrl")),
            "bio": first_str(meta.get("signature")),
            "verified": meta.get("verified") if isinstance(meta.get("verified"), bool) else None,
            "followers": to_int(meta.get("fans")),
            "following": to_int(meta.get("following")),
            "likes": to_int(meta.get("heart")),
            "posts": to_int(meta.get("video")),
        }
    author = item.get("author") if isinstance(item.get("author"), dict) else {}
    return {
        "id": first_str(author.get("id")),
        "username": first_str(author.get("uniqueId")),
        "nickname": first_str(author.get("nickname")),
        "avatar": first_str(author.get("avatarThumb"), author.get("avatarMedium")),
        "bio": first_str(author.get("signature")),
        "verified": author.get("verified") if isinstance(author.get("verified"), bool) else None,
        "followers": to_int(author.get("followerCount")),
        "following": to_int(author.get("followingCount")),
        "likes": to_int(author.get("heartCount")),
        "posts": to_int(author.get("videoCount")),
    }


def _slideshow_images(item: dict) -> list[str]:
    urls: list[str] = []
    for link in item.get("slideshowImageLinks") or []:
        if isinstance(link, dict):
            url = first_str(link.get("downloadLink"), link.get("tiktokLink"))
        else:
            url = first_str(link)
        if url:
            urls.append(url)
    image_post = item.get("imagePost") if isinstance(item.get("imagePost"), dict) else {}
    for image in image_post.get("images") or []:
        url_list = ((image or {}).get("imageURL") or {}).get("urlList") or []
        if url_list:
            urls.append(url_list[0])
    return urls


def _video_urls(item: dict) -> list[str]:
    video_meta = item.get("videoMeta") if isinstance(item.get("videoMeta"), dict) else {}
    urls = [
        first_str(item.get("videoUrlNoWaterMark"), item.get("videoUrl"), video_meta.get("downloadAddr")),
    ]
    urls.extend(u for u in item.get("mediaUrls") or [] if isinstance(u, str))
    urls.append(first_str(item.get("webVideoUrl")))
    return [u for u in urls if u]


def _hashtags(item: dict) -> list[str]:
    tags = []
    for tag in item.get("hashtags") or []:
        name = first_str(tag.get("name")) if isinstance(tag, dict) else first_str(tag)
        if name:
            tags.append(name.lstrip("#"))
    return tags


def _body_with_hashtags(text: str | None, tags: list[str]) -> str | None:
    body = text or ""
    if tags:
        tag_line = " ".join(f"#{t}" for t in tags)
        if tag_line not in body:
            body = f"{body}\n\n{tag_line}" if body else tag_line
    return body or None


class TikTokAdapter:
    """TikTok 바이럴/오가닉 영상 — clockworks scraper actor."""

    platform = "tiktok"
    actor_id = TIKTOK_ACTOR_ID
    supported_search_types = ("keyword", "hashtag", "profile", "id")

    def __init__(self, client: ApifyClient):
        self.client = client

    def build_run_input(self, request: ScrapeRequest) -> dict:
        run_input: dict = {
            "resultsPerPage": request.max_items or DEFAULT_RESULTS_PER_PAGE,
            "shouldDownloadVideos": False,
            "shouldDownloadCovers": False,
        }
        query = request.query.strip()
        if request.search_type == "hashtag":
            run_input["hashtags"] = [query.lstrip("#")]
        elif request.search_type == "profile":
            run_input["profiles"] = [query.lstrip("@")]
        elif request.search_type == "id":
            run_input["postURLs"] = [query]
        else:
            run_input["searchQueries"] = [query]

        sort_by = request.sort_by or DEFAULT_SORT
        if sort_by == "oldest":
            run_input["oldestFirst"] = True
        elif sort_by == "popular":
            run_input["searchSection"] = "/video"
        # provider-side recency cut; results are filtered again after normalization
        if request.time_period_days:
            run_input["oldestPostDateUnified"] = f"{request.time_period_days} days"
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
            author = _author(item)
            # 작성자 식별자: 숫자 id > username (없으면 광고주 없이 저장)
            author_key = author["id"] or author["username"]
            if author_key and author_key not in advertisers:
                advertisers[author_key] = NormalizedAdvertiser(
                    platform=self.platform,
                    external_id=author_key,
                    name=author["nickname"] or author["username"] or author_key,
                    username=author["username"],
                    page_url=f"https://www.tiktok.com/@{author['username']}" if author["username"] else None,
                    avatar_url=author["avatar"],
                    bio=author["bio"],
                    verified=author["verified"],
                    follower_count=author["followers"],
                    following_count=author["following"],
                    total_likes=author["likes"],
                    posts_count=author["posts"],
                )

            slides = _slideshow_images(item)
            if slides:
                media_type, media_urls = classify_media([], slides)
            else:
                media_type, media_urls = classify_media(_video_urls(item), [])

            video_meta = item.get("videoMeta") if isinstance(item.get("videoMeta"), dict) else {}
            thumbnail = pick_thumbnail(
                [item.get("coverUrl"), video_meta.get("coverUrl"),
                 item.get("dynamicCoverUrl"), video_meta.get("originalCoverUrl")],
                slides,
            )

            created = parse_timestamp(item.get("createTimeISO") or item.get("createTime"))
            plays = to_int(item.get("playCount"))
            likes = to_int(item.get("diggCount"))
            comments = to_int(item.get("commentCount"))
            shares = to_int(item.get("shareCount"))
            music = item.get("musicMeta") or item.get("music") or {}
            music_title = first_str(music.get("musicName"), music.get("title")) if isinstance(music, dict) else None
            post_id = first_str(item.get("id"))
            location = first_str(item.get("locationCreated"))

            ads.append(NormalizedAd(
                platform=self.platform,
                external_id=post_id,
                advertiser_external_id=author_key,
                headline=author["nickname"] or author["username"],
                body_text=_body_with_hashtags(first_str(item.get("text")), _hashtags(item)),
                cta_text=f"Music: {music_title}" if music_title else None,
                landing_url=first_str(item.get("webVideoUrl")) or (
                    f"https://www.tiktok.com/@{author['username']}/video/{post_id}"
                    if author["username"] and post_id else None
                ),
                media_type=media_type,
                media_urls=media_urls,
                thumbnail_url=thumbnail,
                impressions_min=plays,
                impressions_max=plays,
                likes=likes,
                comments=comments,
                shares=shares,
                view_count=plays,
                engagement_rate=engagement_rate(likes, comments, plays, shares),
                days_running=days_between(created, None, now=now),
                country_targeting=[location] if location else None,
                first_seen_at=created,
                follower_count=author["followers"],
            ))

        apply_batch_averages(advertisers, ads)
        logger.info(
            "[{}] 정규화 완료: 원본 {}건 → 게시물 {}건, 크리에이터 {}명",
            self.platform, len(items), len(ads), len(advertisers),
        )
        return NormalizedBatch(ads=ads, advertisers=list(advertisers.values()))
