"""Feed 抓取元数据仓储."""

import logging
from typing import Any

from sqlalchemy import case, func
from sqlmodel import col, select

from newsagent.models.database import Database
from newsagent.models.feed import Feed
from newsagent.models.metadata import FeedMetadata
from newsagent.utils.dates import utcnow

logger = logging.getLogger(__name__)

# 连续失败超过该次数视为严重
CRITICAL_FAILURES = 5


def rolling_average(current: int, new_count: int) -> int:
    """文章数滚动平均：首次取原值，之后新值权重 10%."""
    if current == 0:
        return new_count
    return round(current * 0.9 + new_count * 0.1)


class MetadataRepository:
    """抓取元数据读写."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, feed_id: int) -> FeedMetadata | None:
        async with self.db.session() as session:
            return await session.get(FeedMetadata, feed_id)

    async def record_success(
        self,
        feed_id: int,
        item_count: int | None,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> FeedMetadata:
        """
        记录一次成功抓取.

        item_count 为空表示 304 未修改：不更新平均文章数，保留原有校验值。
        """
        now = utcnow()
        async with self.db.transaction() as session:
            meta = await session.get(FeedMetadata, feed_id)
            if meta is None:
                meta = FeedMetadata(feed_id=feed_id)

            meta.last_fetch_at = now
            meta.last_success_at = now
            meta.consecutive_failures = 0
            if etag is not None:
                meta.etag = etag
            if last_modified is not None:
                meta.last_modified = last_modified
            if item_count is not None:
                meta.average_article_count = rolling_average(
                    meta.average_article_count, item_count
                )

            session.add(meta)
            return meta

    async def record_failure(self, feed_id: int, message: str) -> int:
        """记录一次失败抓取，返回新的连续失败次数."""
        now = utcnow()
        async with self.db.transaction() as session:
            meta = await session.get(FeedMetadata, feed_id)
            if meta is None:
                meta = FeedMetadata(feed_id=feed_id)

            meta.last_fetch_at = now
            meta.last_error_at = now
            meta.last_error_message = message[:1000]
            meta.consecutive_failures += 1
            session.add(meta)
            return meta.consecutive_failures

    async def reset_failures(self, feed_id: int) -> bool:
        """手动清零连续失败次数."""
        async with self.db.transaction() as session:
            meta = await session.get(FeedMetadata, feed_id)
            if meta is None:
                return False
            meta.consecutive_failures = 0
            session.add(meta)
            return True

    async def list_failing(self, min_failures: int = 1) -> list[dict[str, Any]]:
        """连续失败次数不低于 min_failures 的 Feed."""
        async with self.db.session() as session:
            stmt = (
                select(Feed, FeedMetadata)
                .join(FeedMetadata, col(FeedMetadata.feed_id) == col(Feed.id))
                .where(FeedMetadata.consecutive_failures >= min_failures)
                .order_by(
                    col(FeedMetadata.consecutive_failures).desc(),
                    col(FeedMetadata.last_error_at).desc(),
                )
            )
            result = await session.execute(stmt)
            return [
                {
                    "feed_id": feed.id,
                    "name": feed.title,
                    "url": feed.url,
                    "consecutive_failures": meta.consecutive_failures,
                    "last_error_at": meta.last_error_at,
                    "last_error_message": meta.last_error_message,
                    "last_success_at": meta.last_success_at,
                }
                for feed, meta in result.all()
            ]

    async def health_stats(self) -> dict[str, Any]:
        """Feed 健康统计."""
        async with self.db.session() as session:
            failures = col(FeedMetadata.consecutive_failures)
            stmt = select(
                func.count(col(Feed.id)),
                func.count(col(FeedMetadata.feed_id)),
                func.coalesce(func.sum(case((failures == 0, 1), else_=0)), 0),
                func.coalesce(func.sum(case((failures > 0, 1), else_=0)), 0),
                func.coalesce(
                    func.sum(case((failures > CRITICAL_FAILURES, 1), else_=0)), 0
                ),
                func.avg(col(FeedMetadata.average_article_count)),
            ).select_from(Feed).join(
                FeedMetadata, col(FeedMetadata.feed_id) == col(Feed.id), isouter=True
            )
            row = (await session.execute(stmt)).one()

        total, tracked, healthy, failing, critical, avg_articles = row
        return {
            "total_feeds": total,
            "tracked_feeds": tracked,
            "healthy_feeds": healthy,
            "failing_feeds": failing,
            "critical_feeds": critical,
            "average_articles_per_feed": round(avg_articles or 0, 1),
        }
