"""AdHarvest DB models — scrape jobs + normalized advertiser/ad catalog. (SQLite/PostgreSQL 호환)"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


# ─────────────────────────────────────────────
# 1. 광고주 / 크리에이터
# ─────────────────────────────────────────────
class Advertiser(Base):
    __tablename__ = "advertisers"

    id = Column(Integer, primary_key=True)
    platform = Column(String(20), nullable=False)        # meta | tiktok | instagram
    external_id = Column(String(200), nullable=False)    # page id / user id / username
    name = Column(String(300), nullable=False)
    username = Column(String(200))
    page_url = Column(Text)
    avatar_url = Column(Text)
    bio = Column(Text)
    verified = Column(Boolean)
    follower_count = Column(Integer)
    following_count = Column(Integer)
    total_likes = Column(Integer)
    posts_count = Column(Integer)
    # -- 배치 기준 파생 지표 --
    avg_likes_per_post = Column(Integer)
    avg_views_per_post = Column(Integer)
    avg_comments_per_post = Column(Integer)
    engagement_rate = Column(Float)
    first_seen_at = Column(DateTime, default=datetime.utcnow)
    last_scraped_at = Column(DateTime, default=datetime.utcnow)
    is_tracked = Column(Boolean, default=False)          # competitor tracking flag (manual)

    ads = relationship("Ad", back_populates="advertiser")

    __table_args__ = (
        UniqueConstraint("platform", "external_id", name="uq_advertisers_platform_external"),
        Index("ix_advertisers_followers", "follower_count"),
    )


# ─────────────────────────────────────────────
# 2. 광고 / 게시물
# ─────────────────────────────────────────────
class Ad(Base):
    __tablename__ = "ads"

    id = Column(Integer, primary_key=True)
    platform = Column(String(20), nullable=False)
    advertiser_id = Column(Integer, ForeignKey("advertisers.id"), nullable=True)
    external_id = Column(String(200))                    # 플랫폼 콘텐츠 ID (없으면 dedup 불가)

    headline = Column(Text)
    body_text = Column(Text)
    cta_text = Column(String(300))
    landing_url = Column(Text)
    media_type = Column(String(20))                      # image | video | carousel
    media_urls = Column(JSON)                            # ordered list
    thumbnail_url = Column(Text)

    impressions_min = Column(Integer)
    impressions_max = Column(Integer)
    likes = Column(Integer)
    comments = Column(Integer)
    shares = Column(Integer)
    view_count = Column(Integer)
    engagement_rate = Column(Float)
    days_running = Column(Integer)

    country_targeting = Column(JSON)
    first_seen_at = Column(DateTime)
    last_seen_at = Column(DateTime)
    scraped_at = Column(DateTime, default=datetime.utcnow)

    analysis = Column(JSON)                              # filled later by the analysis feature

    advertiser = relationship("Advertiser", back_populates="ads")

    __table_args__ = (
        Index("ix_ads_platform_external", "platform", "external_id", unique=True),
        Index("ix_ads_advertiser", "advertiser_id"),
        Index("ix_ads_scraped_at", "scraped_at"),
    )


# ─────────────────────────────────────────────
# 3. 수집 작업 이력
# ─────────────────────────────────────────────
class ScrapeJob(Base):
    __tablename__ = "scrape_jobs"

    id = Column(String(32), primary_key=True)
    platform = Column(String(20), nullable=False)
    search_type = Column(String(20), nullable=False, default="keyword")
    query = Column(Text, nullable=False)
    filters = Column(JSON)
    status = Column(String(20), nullable=False, default="pending")  # pending | running | completed | failed
    ads_found = Column(Integer, default=0)
    apify_run_id = Column(String(100))
    stats = Column(JSON)
    error = Column(Text)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_scrape_jobs_status", "status"),
        Index("ix_scrape_jobs_started", "started_at"),
    )
