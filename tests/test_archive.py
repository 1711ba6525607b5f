"""测试归档、保留策略与维护."""

from datetime import datetime

import pytest
from sqlalchemy import text, update
from sqlmodel import col

from conftest import make_items
from newsagent.core.archive import OrphanedArchiveError, RestoreConflictError
from newsagent.core.store import Store
from newsagent.fetcher.parser import FeedItem
from newsagent.models.article import ArchivedArticle, ArchiveReason, Article
from newsagent.models.feed import Feed


async def _age_articles(store: Store, when: datetime) -> None:
    async with store.db.transaction() as session:
        await session.execute(update(Article).values(created_at=when))


class TestArchive:
    """测试归档与恢复."""

    async def test_never_in_both_tables(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """归档后文章只存在于归档表."""
        ids = [a.id or 0 for a in sample_articles[:2]]
        assert await store.archive.archive_articles(ids) == 2

        for article_id in ids:
            assert await store.articles.get(article_id) is None
            archived = await store.archive.get(article_id)
            assert archived is not None
            assert archived.archive_reason == ArchiveReason.BATCH_ARCHIVE
        assert await store.archive.count() == 2

    async def test_restore_is_lossless(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """恢复后所有字段与原文章一致."""
        original = sample_articles[0]
        article_id = original.id or 0
        await store.articles.start_summarizing(article_id)
        await store.articles.complete_summary(article_id, "Summary text")
        await store.articles.set_read(article_id)
        before = await store.articles.get(article_id)
        assert before is not None

        assert await store.archive.archive_article(article_id)
        restored = await store.archive.restore(article_id)

        assert restored is not None
        assert restored.model_dump() == before.model_dump()
        assert await store.archive.get(article_id) is None

    async def test_restored_article_searchable(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """归档后不可检索，恢复后可以."""
        from newsagent.core.search import SearchQuery

        article_id = sample_articles[0].id or 0
        await store.archive.archive_article(article_id)
        assert (await store.search.search(SearchQuery(query="quantum"))).total == 0

        await store.archive.restore(article_id)
        assert (await store.search.search(SearchQuery(query="quantum"))).total == 1

    async def test_restore_conflict(
        self, store: Store, sample_feed: Feed, sample_articles: list[Article]
    ) -> None:
        """主表已有相同链接时拒绝恢复."""
        article = sample_articles[0]
        await store.archive.archive_article(article.id or 0)
        await store.articles.upsert_new(
            sample_feed.id or 0, [FeedItem(title="Again", link=article.link)]
        )

        with pytest.raises(RestoreConflictError):
            await store.archive.restore(article.id or 0)
        assert await store.archive.get(article.id or 0) is not None

    async def test_restore_after_feed_deleted(
        self, store: Store, sample_feed: Feed, sample_articles: list[Article]
    ) -> None:
        """所属 Feed 已删除时拒绝恢复，归档保持不变."""
        article = sample_articles[0]
        await store.archive.archive_article(article.id or 0)
        assert await store.feeds.delete(sample_feed.id or 0)

        with pytest.raises(OrphanedArchiveError, match="Feed 已删除"):
            await store.archive.restore(article.id or 0)
        assert await store.archive.get(article.id or 0) is not None
        assert await store.articles.get(article.id or 0) is None

    async def test_restore_missing(self, store: Store) -> None:
        """归档不存在时返回 None."""
        assert await store.archive.restore(123) is None

    async def test_list_and_search(
        self, store: Store, sample_feed: Feed, sample_articles: list[Article]
    ) -> None:
        """列出与检索归档."""
        await store.archive.archive_articles([a.id or 0 for a in sample_articles])

        listed = await store.archive.list_archived(feed_id=sample_feed.id)
        assert len(listed) == 3
        found = await store.archive.search_archived("emission")
        assert [a.link for a in found] == ["https://example.com/climate"]

    async def test_stats(self, store: Store, sample_articles: list[Article]) -> None:
        """按原因与 Feed 统计."""
        await store.archive.archive_article(sample_articles[0].id or 0)
        await store.archive.archive_articles(
            [sample_articles[1].id or 0], ArchiveReason.RETENTION_POLICY
        )

        stats = await store.archive.stats()
        assert stats["total"] == 2
        assert stats["by_reason"] == {
            ArchiveReason.MANUAL: 1,
            ArchiveReason.RETENTION_POLICY: 1,
        }
        assert stats["last_week"] == 2
        assert stats["by_feed"][0]["count"] == 2
        assert isinstance(stats["newest"], datetime)

        size = await store.archive.size()
        assert size["count"] == 2
        assert size["total_chars"] > 0


class TestRetention:
    """测试保留策略."""

    async def test_archives_old_read_or_failed(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """只归档超过保留期且已读或失败的文章."""
        read_id, failed_id, unread_id = (a.id or 0 for a in sample_articles)
        await store.articles.set_read(read_id)
        await store.articles.start_summarizing(failed_id)
        await store.articles.fail_summary(failed_id)
        await _age_articles(store, datetime(2020, 1, 1))

        result = await store.retention.run()

        assert result.archived == 2
        assert await store.articles.get(unread_id) is not None
        archived = await store.archive.get(read_id)
        assert archived is not None
        assert archived.archive_reason == ArchiveReason.RETENTION_POLICY

    async def test_recent_articles_kept(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """保留期内的已读文章不归档."""
        await store.articles.set_read(sample_articles[0].id or 0)
        result = await store.retention.run()
        assert result.archived == 0

    async def test_purges_old_archives(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """超过归档保留期的归档被永久删除."""
        await store.archive.archive_articles([a.id or 0 for a in sample_articles])
        async with store.db.transaction() as session:
            await session.execute(
                update(ArchivedArticle).values(archived_at=datetime(2020, 1, 1))
            )

        result = await store.retention.run()
        assert result.purged == 3
        assert await store.archive.count() == 0

    async def test_disabled_policy(self, store: Store) -> None:
        """策略禁用时跳过，force 时仍执行."""
        await store.retention.update_policy(enabled=False)
        assert (await store.retention.run()).skipped
        assert not (await store.retention.run(force=True)).skipped

    async def test_policy_persisted(self, store: Store) -> None:
        """策略保存在 settings 表并覆盖默认值."""
        policy = await store.retention.update_policy(article_retention_days=7)
        assert policy.article_retention_days == 7

        reloaded = await store.retention.get_policy()
        assert reloaded.article_retention_days == 7
        assert reloaded.archive_retention_days == 365

    async def test_policy_rejects_invalid(self, store: Store) -> None:
        """非法值拒绝更新."""
        with pytest.raises(ValueError):
            await store.retention.update_policy(max_batch_size=0)
        with pytest.raises(ValueError):
            await store.retention.update_policy(unknown=1)


class TestMaintenance:
    """测试维护任务."""

    async def test_cleanup_orphans_and_empty_content(
        self, store: Store, sample_feed: Feed, sample_articles: list[Article]
    ) -> None:
        """清理孤立归档，并把超过 7 天的空内容文章移入归档."""
        feed_id = sample_feed.id or 0
        empty = await store.articles.upsert_new(feed_id, make_items("empty", 2))
        rich = await store.articles.upsert_new(
            feed_id, make_items("rich", 1, content="Long body text " * 5)
        )
        old_ids = [empty[0].id, empty[1].id, rich[0].id]
        async with store.db.transaction() as session:
            await session.execute(
                update(Article)
                .where(col(Article.id).in_(old_ids))
                .values(created_at=datetime(2025, 1, 1))
            )
            await session.execute(
                update(Article)
                .where(col(Article.id) == empty[1].id)
                .values(summary="A complete summary of the story.")
            )
            await session.execute(
                text(
                    "INSERT INTO archived_articles (id, feed_id, title, link, is_read, "
                    "status, created_at, archive_reason, archived_at) VALUES "
                    "(100, 999, 'orphan', 'https://x/1', 0, 'new', "
                    "'2025-01-01 00:00:00', 'manual', '2025-01-01 00:00:00')"
                )
            )

        preview = await store.maintenance.comprehensive_cleanup(dry_run=True)
        assert preview.orphaned_archives == 1
        assert preview.empty_content_archived == 1
        assert await store.archive.count() == 1
        assert await store.articles.get(empty[0].id or 0) is not None

        report = await store.maintenance.comprehensive_cleanup(optimize=True)
        assert report.orphaned_archives == 1
        assert report.empty_content_archived == 1
        assert report.optimized

        archived = await store.archive.get(empty[0].id or 0)
        assert archived is not None
        assert archived.archive_reason == ArchiveReason.EMPTY_CONTENT_CLEANUP
        assert await store.articles.get(empty[0].id or 0) is None
        # 有摘要、正文足够或入库不足 7 天的文章保留
        for article in [empty[1], rich[0], *sample_articles]:
            assert await store.articles.get(article.id or 0) is not None
        assert await store.archive.count() == 1

    async def test_cleanup_keeps_archived_without_content(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """没有正文的归档文章由归档保留期处理，清理不删除."""
        article_id = sample_articles[0].id or 0
        async with store.db.transaction() as session:
            await session.execute(
                update(Article).where(col(Article.id) == article_id).values(content=None)
            )
        await store.archive.archive_articles([article_id])

        report = await store.maintenance.comprehensive_cleanup(optimize=False)
        assert report.empty_content_archived == 0
        assert await store.archive.get(article_id) is not None

    async def test_database_stats(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """数据库统计."""
        stats = await store.maintenance.database_stats()
        assert stats["articles"] == 3
        assert stats["feeds"] == 1
        assert stats["size_bytes"] > 0
