"""플랫폼 → 어댑터 매핑."""

from crawler.apify_client import ApifyClient
from crawler.instagram_content import InstagramAdapter
from crawler.meta_library import MetaLibraryAdapter
from crawler.tiktok_content import TikTokAdapter

ADAPTER_MAP = {
    "meta": MetaLibraryAdapter,
    "tiktok": TikTokAdapter,
    "instagram": InstagramAdapter,
}

PLATFORMS = tuple(ADAPTER_MAP)


def get_adapter(platform: str, client: ApifyClient):
    """플랫폼 이름으로 어댑터 생성. 알 수 없는 플랫폼이면 ValueError."""
    adapter_cls = ADAPTER_MAP.get(platform)
    if adapter_cls is None:
        raise ValueError(
            f"Unsupported platform: {platform!r} (expected one of {', '.join(PLATFORMS)})"
        )
    return adapter_cls(client)
