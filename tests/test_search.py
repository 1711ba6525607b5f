"""测试全文检索."""

from datetime import datetime

import pytest

from newsagent.core.search import SearchQuery, build_match_query
from newsagent.core.store import Store
from newsagent.models.article import Article, ArticleStatus
from newsagent.models.feed import Feed


class TestBuildMatchQuery:
    """测试 MATCH 表达式构建."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("quantum", '"quantum"'),
            ("climate summit", '"climate" "summit"'),
            ('drop "table" OR *', '"drop" "table" "OR"'),
        ],
    )
    def test_quotes_tokens(self, raw: str, expected: str) -> None:
        """每个词作为带引号的短语."""
        assert build_match_query(raw) == expected

    def test_prefix_and_column(self) -> None:
        """联想时最后一个词做前缀匹配."""
        assert build_match_query("clim", prefix_last=True, column="title") == 'title : "clim"*'

    def test_no_tokens(self) -> None:
        """只有符号时返回 None."""
        assert build_match_query("  ()* ") is None


class TestSearch:
    """测试检索."""

    async def test_finds_with_highlight(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """命中正文并返回高亮片段."""
        results = await store.search.search(SearchQuery(query="processor"))
        assert results.total == 1
        item = results.items[0]
        assert item["link"] == "https://example.com/quantum"
        assert "<mark>processor</mark>" in item["content_snippet"]
        assert item["feed_name"] == "Example News"

    async def test_porter_stemming(self, store: Store, sample_articles: list[Article]) -> None:
        """词干匹配: agreed -> agreement."""
        results = await store.search.search(SearchQuery(query="agree"))
        assert {i["link"] for i in results.items} == {"https://example.com/climate"}

    async def test_sees_latest_write(
        self, store: Store, sample_articles: list[Article]
    ) -> None:
        """摘要写入后立即可检索."""
        article_id = sample_articles[2].id or 0
        await store.articles.start_summarizing(article_id)
        await store.articles.complete_summary(article_id, "Dramatic overtime victory")

        results = await store.search.search(SearchQuery(query="dramatic"))
        assert [i["id"] for i in results.items] == [article_id]
        assert "<mark>Dramatic</mark>" in results.items[0]["summary_snippet"]

    async def test_filters(self, store: Store, sample_articles: list[Article]) -> None:
        """已读、状态、日期过滤."""
        await store.articles.set_read(sample_articles[0].id or 0)

        unread = await store.search.search(SearchQuery(query="quantum", is_read=False))
        assert unread.total == 0

        read = await store.search.search(SearchQuery(query="quantum", is_read=True))
        assert read.total == 1
        assert read.items[0]["is_read"] is True

        failed = await store.search.search(
            SearchQuery(query="quantum", status=ArticleStatus.FAILED)
        )
        assert failed.total == 0

        dated = await store.search.search(
            SearchQuery(query="quantum", date_from=datetime(2025, 1, 3))
        )
        assert dated.total == 0

    async def test_feed_filter(
        self, store: Store, sample_feed: Feed, sample_articles: list[Article]
    ) -> None:
        """按 Feed 过滤."""
        results = await store.search.search(
            SearchQuery(query="team", feed_ids=[sample_feed.id or 0])
        )
        assert results.total == 1
        results = await store.search.search(SearchQuery(query="team", feed_ids=[999]))
        assert results.total == 0

    async def test_feed_rename_updates_index(
        self, store: Store, sample_feed: Feed, sample_articles: list[Article]
    ) -> None:
        """Feed 改名后按新名称可检索."""
        await store.feeds.rename(sample_feed.id or 0, "Morning Gazette")
        results = await store.search.search(SearchQuery(query="gazette"))
        assert results.total == 3

    async def test_suggestions(self, store: Store, sample_articles: list[Article]) -> None:
        """标题前缀联想."""
        assert await store.search.suggestions("clim") == ["Climate summit reaches agreement"]
        assert await store.search.suggestions("zzz") == []

    async def test_rebuild(self, store: Store, sample_articles: list[Article]) -> None:
        """重建索引."""
        assert await store.search.rebuild() == 3
        results = await store.search.search(SearchQuery(query="championship"))
        assert results.total == 1
