from datetime import datetime
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from crawler.instagram_content import InstagramAdapter
from crawler.types import ScrapeRequest

NOW = datetime(2026, 4, 1, 12, 0)


def _post(**overrides):
    item = {
        "id": "3100",
        "shortCode": "Cx1",
        "type": "Image",
        "url": "https://www.instagram.com/p/Cx1/",
        "caption": "new collection",
        "hashtags": ["fashion"],
        "likesCount": 250,
        "commentsCount": 50,
        "timestamp": "2026-03-25T12:00:00.000Z",
        "displayUrl": "https://cdn/display.jpg",
        "ownerId": "881",
        "ownerUsername": "studio",
        "ownerFullName": "Studio Label",
        "locationName": "Seoul",
    }
    item.update(overrides)
    return item


def test_build_run_input_keyword_uses_hashtag_search():
    run_input = InstagramAdapter(client=None).build_run_input(
        ScrapeRequest(search_type="keyword", query="skincare", time_period_days=30)
    )
    assert run_input == {
        "resultsLimit": 50,
        "resultsType": "posts",
        "search": "skincare",
        "searchType": "hashtag",
        "searchLimit": 10,
        "onlyPostsNewerThan": "30 days",
    }


def test_build_run_input_profile_and_hashtag():
    adapter = InstagramAdapter(client=None)
    assert adapter.build_run_input(ScrapeRequest(search_type="profile", query="@studio"))["usernames"] == ["studio"]
    assert adapter.build_run_input(ScrapeRequest(search_type="hashtag", query="#ootd"))["hashtags"] == ["ootd"]
    assert adapter.build_run_input(ScrapeRequest(search_type="id", query="https://ig/p/1"))["directUrls"] == ["https://ig/p/1"]


def test_normalize_image_post():
    batch = InstagramAdapter(client=None).normalize([_post()], now=NOW)
    ad = batch.ads[0]
    assert ad.external_id == "Cx1"
    assert ad.media_type == "image"
    assert ad.media_urls == ["https://cdn/display.jpg"]
    assert ad.thumbnail_url == "https://cdn/display.jpg"
    assert ad.body_text == "new collection\n\n#fashion"
    assert ad.engagement_rate is None
    assert ad.days_running == 7
    assert ad.country_targeting == ["Seoul"]

    owner = batch.advertisers[0]
    assert owner.external_id == "881"
    assert owner.name == "Studio Label"
    assert owner.page_url == "https://www.instagram.com/studio/"


def test_normalize_sidecar_is_carousel():
    item = _post(type="Sidecar", childPosts=[
        {"type": "Image", "displayUrl": "https://cdn/c1.jpg"},
        {"type": "Image", "displayUrl": "https://cdn/c2.jpg"},
    ], displayUrl="https://cdn/c1.jpg")
    ad = InstagramAdapter(client=None).normalize([item], now=NOW).ads[0]
    assert ad.media_type == "carousel"
    assert ad.media_urls == ["https://cdn/c1.jpg", "https://cdn/c2.jpg"]


def test_normalize_video_engagement():
    item = _post(type="Video", videoUrl="https://cdn/reel.mp4", videoViewCount=3000)
    ad = InstagramAdapter(client=None).normalize([item], now=NOW).ads[0]
    assert ad.media_type == "video"
    assert ad.media_urls == ["https://cdn/reel.mp4"]
    assert ad.thumbnail_url == "https://cdn/display.jpg"
    assert ad.view_count == 3000
    assert ad.engagement_rate == 10.0


def test_hidden_likes_are_unknown():
    ad = InstagramAdapter(client=None).normalize([_post(likesCount=-1)], now=NOW).ads[0]
    assert ad.likes is None


def test_username_identity_when_owner_id_missing():
    batch = InstagramAdapter(client=None).normalize([_post(ownerId=None)], now=NOW)
    assert batch.advertisers[0].external_id == "studio"


def test_no_owner_no_advertiser():
    batch = InstagramAdapter(client=None).normalize(
        [_post(ownerId=None, ownerUsername=None, ownerFullName=None)], now=NOW,
    )
    assert batch.advertisers == []
    assert batch.ads[0].advertiser_external_id is None
