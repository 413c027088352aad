"""정규화 batch → DB 적재 파이프라인.

레코드 단위로 커밋한다. 한 레코드의 DB 오류는 해당 레코드만 롤백하고
카운트/에러 목록에 남긴 뒤 다음 레코드로 진행한다 (batch 전체 중단 없음).
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from database import Database
from processor.dedup import insert_ad_if_new, upsert_advertiser
from processor.normalizer import NormalizedBatch, utcnow

DEFAULT_ERROR_CAP = 50


@dataclass
class JobStats:
    advertisers_total: int = 0
    advertisers_processed: int = 0
    advertisers_skipped: int = 0
    ads_total: int = 0
    ads_inserted: int = 0
    ads_duplicate: int = 0
    ads_skipped: int = 0
    filtered_out: int = 0
    error_count: int = 0
    errors: list[str] = field(default_factory=list)
    error_cap: int = DEFAULT_ERROR_CAP

    def add_error(self, message: str):
        self.error_count += 1
        if len(self.errors) < self.error_cap:
            self.errors.append(message)

    @property
    def partial_failure(self) -> str | None:
        """``"Partial success: X/Y ads, N errors"`` or None when nothing failed."""
        if not self.error_count:
            return None
        return f"Partial success: {self.ads_inserted}/{self.ads_total} ads, {self.error_count} errors"

    def counters(self) -> dict:
        data = asdict(self)
        data.pop("errors")
        data.pop("error_cap")
        return data

    def summary(self) -> dict:
        """JSON-serializable snapshot stored on the job row."""
        return {**self.counters(), "errors": list(self.errors)}


async def persist_batch(
    db: Database,
    batch: NormalizedBatch,
    stats: JobStats | None = None,
    now: datetime | None = None,
    job_id: str | None = None,
) -> JobStats:
    """Upsert advertisers, then insert new ads linked to them."""
    stats = stats or JobStats()
    now = now or utcnow()
    tag = f"[pipeline] job {job_id}" if job_id else "[pipeline]"

    stats.advertisers_total += len(batch.advertisers)
    stats.ads_total += len(batch.ads)
    advertiser_ids: dict[str, int] = {}

    async with db.session() as session:
        # ── 광고주 ──
        for advertiser in batch.advertisers:
            try:
                row, _created = await upsert_advertiser(session, advertiser, now)
                await session.commit()
                advertiser_ids[advertiser.external_id] = row.id
                stats.advertisers_processed += 1
            except SQLAlchemyError as exc:
                await session.rollback()
                stats.advertisers_skipped += 1
                stats.add_error(f"Advertiser {advertiser.external_id}: {exc}")
                logger.warning("{} advertiser {} 저장 실패: {}", tag, advertiser.external_id, exc)

        # ── 광고 ──
        seen: set[str] = set()
        for ad in batch.ads:
            if ad.external_id and ad.external_id in seen:
                stats.ads_duplicate += 1
                continue
            try:
                row = await insert_ad_if_new(
                    session, ad, advertiser_ids.get(ad.advertiser_external_id), now,
                )
                if row is None:
                    stats.ads_duplicate += 1
                else:
                    await session.commit()
                    stats.ads_inserted += 1
                if ad.external_id:
                    seen.add(ad.external_id)
            except SQLAlchemyError as exc:
                await session.rollback()
                stats.ads_skipped += 1
                stats.add_error(f"Ad {ad.external_id or 'unknown'}: {exc}")
                logger.warning("{} ad {} 저장 실패: {}", tag, ad.external_id, exc)

    logger.info(
        "{} 적재 완료: 광고 {}/{} (중복 {}, 실패 {}), 광고주 {}/{}",
        tag, stats.ads_inserted, stats.ads_total, stats.ads_duplicate, stats.ads_skipped,
        stats.advertisers_processed, stats.advertisers_total,
    )
    return stats
