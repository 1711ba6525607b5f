"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from pathlib import Path

import httpx
import pytest
import pytest_asyncio

from newsagent.config import Settings
from newsagent.core.store import Store
from newsagent.fetcher.parser import FeedItem
from newsagent.models.article import Article
from newsagent.models.feed import Feed

SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example News</title>
    <link>https://example.com</link>
    <item>
      <title>Local elections announced</title>
      <link>https://example.com/elections</link>
      <pubDate>Mon, 06 Jan 2025 10:00:00 GMT</pubDate>
      <description>&lt;p&gt;The council announced &lt;b&gt;local elections&lt;/b&gt; for spring.&lt;/p&gt;</description>
    </item>
    <item>
      <title>New bridge opens downtown</title>
      <link>https://example.com/bridge</link>
      <pubDate>Tue, 07 Jan 2025 08:30:00 GMT</pubDate>
      <description>The long awaited bridge opened to traffic this morning.</description>
    </item>
  </channel>
</rss>
"""


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """使用临时文件数据库的配置."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
    )


@pytest_asyncio.fixture
async def store(settings: Settings) -> AsyncGenerator[Store, None]:
    """初始化好的存储."""
    store = Store.from_settings(settings)
    await store.init()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def sample_feed(store: Store) -> Feed:
    """创建测试用的 Feed."""
    feed = await store.feeds.add("https://example.com/feed.xml", "Example News")
    assert feed is not None
    return feed


def make_items(prefix: str, count: int, content: str = "Body text") -> list[FeedItem]:
    return [
        FeedItem(
            title=f"{prefix} article {i}",
            link=f"https://example.com/{prefix}/{i}",
            published_at=datetime(2025, 1, 1, 12) + timedelta(minutes=i),
            content=f"{content} {i}",
        )
        for i in range(count)
    ]


@pytest_asyncio.fixture
async def sample_articles(store: Store, sample_feed: Feed) -> list[Article]:
    """创建测试用的文章列表."""
    items = [
        FeedItem(
            title="Quantum computing breakthrough",
            link="https://example.com/quantum",
            published_at=datetime(2025, 1, 2, 9, 0),
            content="<p>Researchers demonstrate a <b>quantum</b> processor.</p>",
        ),
        FeedItem(
            title="Climate summit reaches agreement",
            link="https://example.com/climate",
            published_at=datetime(2025, 1, 3, 9, 0),
            content="Delegates agreed on new emission targets.",
        ),
        FeedItem(
            title="Local team wins championship",
            link="https://example.com/sports",
            published_at=datetime(2025, 1, 4, 9, 0),
            content="The final was decided in overtime.",
        ),
    ]
    return await store.articles.upsert_new(sample_feed.id or 0, items)


def rss_transport(
    body: str = SAMPLE_RSS, etag: str | None = '"v1"'
) -> Callable[[httpx.Request], httpx.Response]:
    """返回一个支持 If-None-Match 的 Feed 源处理函数."""

    def handler(request: httpx.Request) -> httpx.Response:
        if etag and request.headers.get("If-None-Match") == etag:
            return httpx.Response(304)
        headers = {"ETag": etag} if etag else {}
        return httpx.Response(200, text=body, headers=headers)

    return handler
