"""스크래핑 프로바이더(Apify) 전역 설정."""

from pydantic import Field
from pydantic_settings import BaseSettings


class ScraperSettings(BaseSettings):
    # 인증
    apify_token: str = Field(default="", validation_alias="APIFY_TOKEN")
    apify_base_url: str = "https://api.apify.com/v2"

    # HTTP
    http_timeout_sec: float = 30.0
    http_connect_timeout_sec: float = 10.0
    max_retries: int = 3
    retry_backoff_ms: int = 800

    # 폴링 (deadline is a first-class parameter of the poller)
    poll_interval_sec: float = 5.0
    poll_backoff: float = 1.0
    max_poll_interval_sec: float = 30.0
    max_wait_sec: float = 15 * 60
    dataset_limit: int = 1000

    # 작업 관리
    stuck_threshold_minutes: int = 10
    max_concurrent_jobs: int = 4
    error_sample_cap: int = 50
    recovery_interval_minutes: int = 5
    recovery_enabled: bool = True

    model_config = {"env_prefix": "SCRAPER_", "populate_by_name": True}


scraper_settings = ScraperSettings()
