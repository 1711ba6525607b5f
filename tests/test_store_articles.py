"""测试文章仓储."""

from conftest import make_items

from newsagent.core.store import Store
from newsagent.models.article import Article, ArticleStatus
from newsagent.models.feed import Feed


class TestUpsertNew:
    """测试去重写入."""

    async def test_returns_only_inserted(self, store: Store, sample_feed: Feed) -> None:
        """重复写入时只返回新文章."""
        feed_id = sample_feed.id or 0
        first = await store.articles.upsert_new(feed_id, make_items("a", 3))
        second = await store.articles.upsert_new(feed_id, make_items("a", 5))

        assert len(first) == 3
        assert [a.link for a in second] == [
            "https://example.com/a/3",
            "https://example.com/a/4",
        ]
        assert all(a.status == ArticleStatus.NEW for a in second)
        assert all(a.is_read is False for a in second)

    async def test_link_unique_across_feeds(self, store: Store, sample_feed: Feed) -> None:
        """同一链接只保留第一个 Feed 写入的文章."""
        other = await store.feeds.add("https://other.example/feed", "Other")
        assert other is not None

        await store.articles.upsert_new(sample_feed.id or 0, make_items("shared", 2))
        inserted = await store.articles.upsert_new(other.id or 0, make_items("shared", 2))

        assert inserted == []
        articles = await store.articles.list_by_feed(other.id)
        assert articles == []

    async def test_empty_items(self, store: Store, sample_feed: Feed) -> None:
        """空列表不写入."""
        assert await store.articles.upsert_new(sample_feed.id or 0, []) == []

    async def test_large_batch(self, store: Store, sample_feed: Feed) -> None:
        """超过单条语句行数上限时分块写入."""
        inserted = await store.articles.upsert_new(sample_feed.id or 0, make_items("bulk", 250))
        assert len(inserted) == 250


class TestTransitions:
    """测试状态流转."""

    async def test_full_lifecycle(self, store: Store, sample_articles: list[Article]) -> None:
        """new -> summarizing -> summarized."""
        article_id = sample_articles[0].id or 0
        assert await store.articles.start_summarizing(article_id)
        assert await store.articles.complete_summary(article_id, "**Headline**")

        article = await store.articles.get(article_id)
        assert article is not None
        assert article.status == ArticleStatus.SUMMARIZED
        assert article.summary == "**Headline**"

    async def test_failed_can_be_retried(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """failed -> new 只能通过重试."""
        article_id = sample_articles[0].id or 0
        await store.articles.start_summarizing(article_id)
        assert await store.articles.fail_summary(article_id)
        assert await store.articles.retry(article_id)

        article = await store.articles.get(article_id)
        assert article is not None
        assert article.status == ArticleStatus.NEW

    async def test_illegal_transition_is_noop(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """非法流转不修改状态并返回 False."""
        article_id = sample_articles[0].id or 0
        assert not await store.articles.transition(
            article_id, ArticleStatus.NEW, ArticleStatus.SUMMARIZED, "text"
        )
        assert not await store.articles.complete_summary(article_id, "text")

        article = await store.articles.get(article_id)
        assert article is not None
        assert article.status == ArticleStatus.NEW
        assert article.summary is None

    async def test_summarized_requires_summary(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """没有摘要文本时不能标记为 summarized."""
        article_id = sample_articles[0].id or 0
        await store.articles.start_summarizing(article_id)
        assert not await store.articles.complete_summary(article_id, "")

    async def test_reset_stuck(self, store: Store, sample_articles: list[Article]) -> None:
        """summarizing 状态在重启时重置为 new."""
        for article in sample_articles[:2]:
            await store.articles.start_summarizing(article.id or 0)

        assert await store.articles.reset_stuck() == 2
        counts = await store.articles.count_by_status()
        assert counts[ArticleStatus.NEW] == 3
        assert counts[ArticleStatus.SUMMARIZING] == 0
        assert counts["total"] == 3


class TestReadState:
    """测试已读标记."""

    async def test_set_read(self, store: Store, sample_articles: list[Article]) -> None:
        """标记单篇已读."""
        article_id = sample_articles[0].id or 0
        assert await store.articles.set_read(article_id)
        unread = await store.articles.list_by_feed(unread_only=True)
        assert article_id not in {a.id for a in unread}

    async def test_set_read_missing(self, store: Store) -> None:
        """文章不存在时返回 False."""
        assert not await store.articles.set_read(999)

    async def test_mark_feed_read(
        self, store: Store, sample_feed: Feed, sample_articles: list[Article]
    ) -> None:
        """整个 Feed 标记已读."""
        assert await store.articles.mark_feed_read(sample_feed.id or 0) == 3
        assert await store.articles.list_by_feed(unread_only=True) == []

    async def test_list_orders_by_published(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """按发布时间倒序."""
        articles = await store.articles.list_by_feed()
        assert [a.link for a in articles] == [
            "https://example.com/sports",
            "https://example.com/climate",
            "https://example.com/quantum",
        ]
