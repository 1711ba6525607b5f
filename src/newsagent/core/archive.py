"""归档仓储与保留策略管理."""

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy import or_
from sqlmodel import col, func, select

from newsagent.config import Settings
from newsagent.models.article import ArchivedArticle, ArchiveReason, Article
from newsagent.models.database import Database
from newsagent.models.feed import Feed
from newsagent.models.queries import Queries
from newsagent.models.settings import SettingItem
from newsagent.utils.dates import days_ago, utcnow

logger = logging.getLogger(__name__)


class RestoreConflictError(Exception):
    """归档文章无法恢复到主表."""


class OrphanedArchiveError(RestoreConflictError):
    """归档文章所属的 Feed 已删除."""


class ArchiveRepository:
    """文章归档：复制到归档表后删除原记录，均在同一事务中完成."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def archive_articles(
        self, article_ids: Sequence[int], reason: str = ArchiveReason.BATCH_ARCHIVE
    ) -> int:
        """批量归档，返回实际归档的数量."""
        ids = list(dict.fromkeys(article_ids))
        if not ids:
            return 0

        async with self.db.transaction() as session:
            copied = await session.execute(
                Queries.ARCHIVE_COPY,
                {"ids": ids, "reason": reason, "archived_at": utcnow()},
            )
            await session.execute(Queries.ARCHIVE_DELETE, {"ids": ids})

        count = copied.rowcount
        if count:
            logger.info(f"归档 {count} 篇文章 (原因: {reason})")
        return count

    async def archive_article(
        self, article_id: int, reason: str = ArchiveReason.MANUAL
    ) -> bool:
        return await self.archive_articles([article_id], reason) == 1

    async def restore(self, article_id: int) -> Article | None:
        """
        恢复归档文章到主表（保留原 id 与全部字段）.

        Raises:
            RestoreConflictError: 主表中已有相同链接的文章
            OrphanedArchiveError: 所属 Feed 已删除
        """
        async with self.db.transaction() as session:
            archived = await session.get(ArchivedArticle, article_id)
            if archived is None:
                return None

            if await session.get(Feed, archived.feed_id) is None:
                msg = f"所属 Feed 已删除，无法恢复: feed_id={archived.feed_id}"
                raise OrphanedArchiveError(msg)

            conflict = await session.execute(
                select(Article.id).where(Article.link == archived.link)
            )
            if conflict.first() is not None:
                msg = f"链接已存在，无法恢复: {archived.link}"
                raise RestoreConflictError(msg)

            await session.execute(Queries.RESTORE_COPY, {"id": article_id})
            await session.execute(Queries.RESTORE_DELETE, {"id": article_id})
            article = await session.get(Article, article_id)

        logger.info(f"恢复归档文章: {article_id}")
        return article

    async def get(self, article_id: int) -> ArchivedArticle | None:
        async with self.db.session() as session:
            return await session.get(ArchivedArticle, article_id)

    async def list_archived(
        self, feed_id: int | None = None, limit: int = 50, offset: int = 0
    ) -> list[ArchivedArticle]:
        """按归档时间倒序列出归档文章."""
        async with self.db.session() as session:
            stmt = select(ArchivedArticle)
            if feed_id is not None:
                stmt = stmt.where(ArchivedArticle.feed_id == feed_id)
            stmt = (
                stmt.order_by(col(ArchivedArticle.archived_at).desc())
                .offset(offset)
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def search_archived(self, query: str, limit: int = 50) -> list[ArchivedArticle]:
        """在归档文章的标题、正文、摘要中做子串匹配."""
        pattern = f"%{query}%"
        async with self.db.session() as session:
            stmt = (
                select(ArchivedArticle)
                .where(
                    or_(
                        col(ArchivedArticle.title).like(pattern),
                        col(ArchivedArticle.content).like(pattern),
                        col(ArchivedArticle.summary).like(pattern),
                    )
                )
                .order_by(col(ArchivedArticle.archived_at).desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(
                select(func.count()).select_from(ArchivedArticle)
            )
            return result.scalar_one()

    async def retention_candidates(self, older_than_days: int, limit: int) -> list[int]:
        """超过保留期且已读或失败的文章 id."""
        async with self.db.session() as session:
            result = await session.execute(
                Queries.RETENTION_CANDIDATES,
                {"cutoff": days_ago(older_than_days), "limit": limit},
            )
            return [row[0] for row in result.all()]

    async def purge(self, older_than_days: int) -> int:
        """永久删除归档时间超过 older_than_days 的归档文章."""
        async with self.db.transaction() as session:
            result = await session.execute(
                Queries.PURGE_ARCHIVED, {"cutoff": days_ago(older_than_days)}
            )
        count = result.rowcount
        if count:
            logger.info(f"永久删除 {count} 篇过期归档文章")
        return count

    async def stats(self) -> dict[str, Any]:
        """归档统计：按原因、按时间段、按 Feed."""
        now = utcnow()
        async with self.db.session() as session:
            by_reason = dict(
                (await session.execute(Queries.ARCHIVE_COUNT_BY_REASON)).all()
            )
            last_week = (
                await session.execute(
                    Queries.ARCHIVE_COUNT_SINCE, {"since": now - timedelta(days=7)}
                )
            ).scalar_one()
            last_month = (
                await session.execute(
                    Queries.ARCHIVE_COUNT_SINCE, {"since": now - timedelta(days=30)}
                )
            ).scalar_one()
            date_range = (await session.execute(Queries.ARCHIVE_DATE_RANGE)).one()
            by_feed = (await session.execute(Queries.ARCHIVE_COUNT_BY_FEED)).all()

        return {
            "total": sum(by_reason.values()),
            "by_reason": by_reason,
            "last_week": last_week,
            "last_month": last_month,
            "oldest": date_range.oldest,
            "newest": date_range.newest,
            "by_feed": [
                {"feed_id": feed_id, "feed_name": feed_name, "count": count}
                for feed_id, feed_name, count in by_feed
            ],
        }

    async def size(self) -> dict[str, int]:
        """归档内容体积（字符数）."""
        async with self.db.session() as session:
            count, content_chars, summary_chars = (
                await session.execute(Queries.ARCHIVE_SIZE)
            ).one()
        return {
            "count": count,
            "content_chars": content_chars,
            "summary_chars": summary_chars,
            "total_chars": content_chars + summary_chars,
        }


@dataclass
class RetentionPolicy:
    """保留策略."""

    enabled: bool
    article_retention_days: int
    archive_retention_days: int
    max_batch_size: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetentionPolicy":
        return cls(
            enabled=settings.archive_enabled,
            article_retention_days=settings.article_retention_days,
            archive_retention_days=settings.archive_retention_days,
            max_batch_size=settings.archive_max_batch_size,
        )


@dataclass
class RetentionResult:
    """一次保留策略执行结果."""

    archived: int = 0
    purged: int = 0
    skipped: bool = False


# settings 表中的键
_POLICY_KEY_PREFIX = "archive."


class ArchiveManager:
    """按保留策略定期归档与清理."""

    def __init__(
        self, db: Database, archive: ArchiveRepository, settings: Settings
    ) -> None:
        self.db = db
        self.archive = archive
        self._defaults = RetentionPolicy.from_settings(settings)

    async def get_policy(self) -> RetentionPolicy:
        """读取保留策略（settings 表中的值覆盖环境变量默认值）."""
        policy = RetentionPolicy(**asdict(self._defaults))
        async with self.db.session() as session:
            result = await session.execute(
                select(SettingItem).where(
                    col(SettingItem.key).startswith(_POLICY_KEY_PREFIX)
                )
            )
            stored = {
                item.key.removeprefix(_POLICY_KEY_PREFIX): item.value
                for item in result.scalars().all()
            }

        for name, raw in stored.items():
            if not hasattr(policy, name):
                continue
            if name == "enabled":
                policy.enabled = raw == "true"
            else:
                setattr(policy, name, int(raw))
        return policy

    async def update_policy(self, **changes: Any) -> RetentionPolicy:
        """更新并持久化保留策略（只更新传入的字段）."""
        policy = await self.get_policy()
        async with self.db.transaction() as session:
            for name, value in changes.items():
                if value is None:
                    continue
                if not hasattr(policy, name):
                    msg = f"未知的保留策略字段: {name}"
                    raise ValueError(msg)
                if name != "enabled" and int(value) < 1:
                    msg = f"{name} 必须为正整数"
                    raise ValueError(msg)

                setattr(policy, name, value)
                stored = str(value).lower() if name == "enabled" else str(int(value))
                item = await session.get(SettingItem, _POLICY_KEY_PREFIX + name)
                if item is None:
                    item = SettingItem(key=_POLICY_KEY_PREFIX + name, value=stored)
                else:
                    item.value = stored
                    item.updated_at = utcnow()
                session.add(item)

        logger.info(f"保留策略已更新: {asdict(policy)}")
        return policy

    async def run(self, force: bool = False) -> RetentionResult:
        """
        执行保留策略.

        归档超过保留期且已读（或摘要失败）的文章，每次最多 max_batch_size 篇；
        再永久删除超过归档保留期的归档文章。
        """
        policy = await self.get_policy()
        if not policy.enabled and not force:
            logger.info("自动归档已禁用，跳过")
            return RetentionResult(skipped=True)

        candidates = await self.archive.retention_candidates(
            policy.article_retention_days, policy.max_batch_size
        )
        archived = await self.archive.archive_articles(
            candidates, ArchiveReason.RETENTION_POLICY
        )
        purged = await self.archive.purge(policy.archive_retention_days)

        logger.info(f"保留策略执行完成: 归档={archived}, 清理={purged}")
        return RetentionResult(archived=archived, purged=purged)
