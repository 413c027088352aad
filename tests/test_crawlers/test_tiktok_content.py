from datetime import datetime
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from crawler.tiktok_content import TikTokAdapter
from crawler.types import ScrapeRequest

NOW = datetime(2026, 4, 1, 12, 0)


def _video(**overrides):
    item = {
        "id": "7301",
        "text": "morning routine",
        "createTimeISO": "2026-03-30T12:00:00.000Z",
        "diggCount": 800,
        "commentCount": 100,
        "shareCount": 100,
        "playCount": 10000,
        "webVideoUrl": "https://www.tiktok.com/@coach/video/7301",
        "videoMeta": {"coverUrl": "https://cdn/cover.jpg", "downloadAddr": "https://cdn/v.mp4"},
        "hashtags": [{"name": "fitness"}, {"name": "gym"}],
        "musicMeta": {"musicName": "original sound"},
        "authorMeta": {
            "id": "uid-1",
            "name": "coach",
            "nickName": "Coach K",
            "avatar": "https://cdn/avatar.jpg",
            "signature": "daily workouts",
            "verified": True,
            "fans": 52000,
            "following": 12,
            "heart": 900000,
            "video": 300,
        },
    }
    item.update(overrides)
    return item


def test_build_run_input_per_search_type():
    adapter = TikTokAdapter(client=None)
    assert adapter.build_run_input(ScrapeRequest(search_type="hashtag", query="#gym"))["hashtags"] == ["gym"]
    assert adapter.build_run_input(ScrapeRequest(search_type="profile", query="@coach"))["profiles"] == ["coach"]
    assert adapter.build_run_input(ScrapeRequest(search_type="id", query="https://t/v/1"))["postURLs"] == ["https://t/v/1"]
    keyword = adapter.build_run_input(ScrapeRequest(search_type="keyword", query="ai tools"))
    assert keyword["searchQueries"] == ["ai tools"]
    assert keyword["resultsPerPage"] == 50


def test_build_run_input_defaults_to_popular_sort():
    adapter = TikTokAdapter(client=None)
    run_input = adapter.build_run_input(ScrapeRequest(query="x"))
    assert run_input["searchSection"] == "/video"
    assert "oldestFirst" not in run_input

    latest = adapter.build_run_input(ScrapeRequest(query="x", sort_by="latest"))
    assert "searchSection" not in latest
    assert "oldestFirst" not in latest


def test_build_run_input_native_recency_and_sort():
    run_input = TikTokAdapter(client=None).build_run_input(
        ScrapeRequest(query="x", time_period_days=7, sort_by="oldest", max_items=10)
    )
    assert run_input["oldestPostDateUnified"] == "7 days"
    assert run_input["oldestFirst"] is True
    assert "searchSection" not in run_input
    assert run_input["resultsPerPage"] == 10


def test_normalize_video_post():
    batch = TikTokAdapter(client=None).normalize([_video()], now=NOW)

    ad = batch.ads[0]
    assert ad.media_type == "video"
    assert ad.media_urls == ["https://cdn/v.mp4", "https://www.tiktok.com/@coach/video/7301"]
    assert ad.thumbnail_url == "https://cdn/cover.jpg"
    assert ad.body_text == "morning routine\n\n#fitness #gym"
    assert ad.cta_text == "Music: original sound"
    assert ad.headline == "Coach K"
    assert ad.view_count == 10000
    assert ad.impressions_min == ad.impressions_max == 10000
    assert ad.engagement_rate == 10.0
    assert ad.days_running == 2
    assert ad.follower_count == 52000
    assert ad.advertiser_external_id == "uid-1"

    creator = batch.advertisers[0]
    assert creator.external_id == "uid-1"
    assert creator.username == "coach"
    assert creator.page_url == "https://www.tiktok.com/@coach"
    assert creator.verified is True
    assert creator.follower_count == 52000
    assert creator.total_likes == 900000
    assert creator.avg_views_per_post == 10000


def test_normalize_slideshow_is_carousel():
    item = _video(slideshowImageLinks=[
        {"downloadLink": "https://cdn/s1.jpg"},
        {"downloadLink": "https://cdn/s2.jpg"},
    ])
    ad = TikTokAdapter(client=None).normalize([item], now=NOW).ads[0]
    assert ad.media_type == "carousel"
    assert ad.media_urls == ["https://cdn/s1.jpg", "https://cdn/s2.jpg"]


def test_normalize_legacy_author_shape_and_username_identity():
    item = _video(authorMeta=None, author={"uniqueId": "legacy", "nickname": "Legacy"})
    batch = TikTokAdapter(client=None).normalize([item], now=NOW)
    assert batch.advertisers[0].external_id == "legacy"
    assert batch.ads[0].advertiser_external_id == "legacy"


def test_normalize_without_author_does_not_invent_identity():
    item = _video(authorMeta=None)
    batch = TikTokAdapter(client=None).normalize([item], now=NOW)
    assert batch.advertisers == []
    assert batch.ads[0].advertiser_external_id is None


def test_engagement_undefined_without_plays():
    item = _video(playCount=0)
    ad = TikTokAdapter(client=None).normalize([item], now=NOW).ads[0]
    assert ad.engagement_rate is None


def test_hashtags_already_in_caption_not_repeated():
    item = _video(text="leg day #fitness #gym")
    ad = TikTokAdapter(client=None).normalize([item], now=NOW).ads[0]
    assert ad.body_text == "leg day #fitness #gym"
