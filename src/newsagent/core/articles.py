"""文章仓储：去重写入、状态流转、已读标记."""

import logging
from collections.abc import Iterable

from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import col, select

from newsagent.fetcher.parser import FeedItem
from newsagent.models.article import Article, ArticleStatus
from newsagent.models.database import Database
from newsagent.models.queries import Queries
from newsagent.utils.dates import utcnow

logger = logging.getLogger(__name__)

# 允许的状态流转 (from, to)
ALLOWED_TRANSITIONS = frozenset(
    {
        (ArticleStatus.NEW, ArticleStatus.SUMMARIZING),
        (ArticleStatus.SUMMARIZING, ArticleStatus.SUMMARIZED),
        (ArticleStatus.SUMMARIZING, ArticleStatus.FAILED),
        (ArticleStatus.FAILED, ArticleStatus.NEW),
    }
)

# 单条 INSERT 的最大行数
_INSERT_CHUNK = 100


class ArticleRepository:
    """文章读写."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def upsert_new(self, feed_id: int, items: Iterable[FeedItem]) -> list[Article]:
        """
        写入新文章，返回本次真正插入的行.

        链接已存在（无论属于哪个 Feed）的条目被忽略。

        Args:
            feed_id: 所属 Feed
            items: 解析后的条目

        Returns:
            新插入的文章列表
        """
        now = utcnow()
        rows = [
            {
                "feed_id": feed_id,
                "title": item.title or item.link,
                "link": item.link,
                "published_at": item.published_at,
                "content": item.content,
                "summary": None,
                "is_read": False,
                "status": ArticleStatus.NEW,
                "created_at": now,
            }
            for item in items
            if item.link
        ]
        if not rows:
            return []

        inserted: list[Article] = []
        async with self.db.transaction() as session:
            for start in range(0, len(rows), _INSERT_CHUNK):
                stmt = (
                    sqlite_insert(Article)
                    .values(rows[start : start + _INSERT_CHUNK])
                    .on_conflict_do_nothing(index_elements=["link"])
                    .returning(Article)
                )
                result = await session.scalars(stmt)
                inserted.extend(result.all())

        if inserted:
            logger.info(f"Feed {feed_id} 新增 {len(inserted)} 篇文章")
        return inserted

    async def get(self, article_id: int) -> Article | None:
        async with self.db.session() as session:
            return await session.get(Article, article_id)

    async def list_by_feed(
        self,
        feed_id: int | None = None,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Article]:
        """按发布时间倒序列出文章."""
        async with self.db.session() as session:
            stmt = select(Article)
            if feed_id is not None:
                stmt = stmt.where(Article.feed_id == feed_id)
            if unread_only:
                stmt = stmt.where(col(Article.is_read).is_(False))
            stmt = (
                stmt.order_by(
                    col(Article.published_at).desc().nulls_last(),
                    col(Article.id).desc(),
                )
                .offset(offset)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_by_status(self, status: str, limit: int = 50) -> list[Article]:
        """按创建顺序列出指定状态的文章."""
        async with self.db.session() as session:
            stmt = (
                select(Article)
                .where(Article.status == status)
                .order_by(col(Article.id))
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        """各状态文章数量."""
        counts = dict.fromkeys(ArticleStatus.ALL, 0)
        async with self.db.session() as session:
            result = await session.execute(Queries.COUNT_BY_STATUS)
            for status, count in result.all():
                counts[status] = count
        counts["total"] = sum(counts.values())
        return counts

    async def set_read(self, article_id: int, is_read: bool = True) -> bool:
        async with self.db.transaction() as session:
            result = await session.execute(
                update(Article)
                .where(col(Article.id) == article_id)
                .values(is_read=is_read)
            )
            return result.rowcount == 1

    async def mark_feed_read(self, feed_id: int) -> int:
        """将某个 Feed 的全部文章标记为已读."""
        async with self.db.transaction() as session:
            result = await session.execute(
                update(Article)
                .where(Article.feed_id == feed_id, col(Article.is_read).is_(False))
                .values(is_read=True)
            )
            return result.rowcount

    async def transition(
        self,
        article_id: int,
        from_status: str,
        to_status: str,
        summary: str | None = None,
    ) -> bool:
        """
        状态流转.

        非法流转或当前状态不匹配时不做修改，返回 False。
        """
        if (from_status, to_status) not in ALLOWED_TRANSITIONS:
            logger.warning(
                f"忽略非法状态流转: 文章 {article_id} {from_status} -> {to_status}"
            )
            return False

        async with self.db.transaction() as session:
            if to_status == ArticleStatus.SUMMARIZED:
                if not summary:
                    logger.warning(f"文章 {article_id} 缺少摘要，不能标记为 summarized")
                    return False
                result = await session.execute(
                    Queries.TRANSITION_TO_SUMMARIZED,
                    {"id": article_id, "summary": summary},
                )
            else:
                result = await session.execute(
                    Queries.TRANSITION_STATUS,
                    {"id": article_id, "from_status": from_status, "to_status": to_status},
                )

        changed = result.rowcount == 1
        if not changed:
            logger.debug(f"文章 {article_id} 当前状态不是 {from_status}，跳过")
        return changed

    async def start_summarizing(self, article_id: int) -> bool:
        return await self.transition(
            article_id, ArticleStatus.NEW, ArticleStatus.SUMMARIZING
        )

    async def complete_summary(self, article_id: int, summary: str) -> bool:
        return await self.transition(
            article_id, ArticleStatus.SUMMARIZING, ArticleStatus.SUMMARIZED, summary
        )

    async def fail_summary(self, article_id: int) -> bool:
        return await self.transition(
            article_id, ArticleStatus.SUMMARIZING, ArticleStatus.FAILED
        )

    async def retry(self, article_id: int) -> bool:
        """失败文章重新排队."""
        return await self.transition(article_id, ArticleStatus.FAILED, ArticleStatus.NEW)

    async def reset_stuck(self) -> int:
        """将中断遗留的 summarizing 状态重置为 new（服务重启后恢复）."""
        async with self.db.transaction() as session:
            result = await session.execute(Queries.RESET_STUCK_SUMMARIZING)
            count = result.rowcount
        if count:
            logger.info(f"已重置卡住的状态: summarizing={count}")
        return count
