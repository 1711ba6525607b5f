"""测试 Feed 抓取调度."""

import asyncio

import httpx
import pytest

from conftest import SAMPLE_RSS, rss_transport
from newsagent.core.fetch_runner import FeedScheduler, FetchOutcome, backoff_minutes
from newsagent.core.store import Store
from newsagent.fetcher.client import FetchError
from newsagent.models.feed import Feed


class FakeClock:
    """可手动推进的单调时钟."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def _no_sleep(_: float) -> None:
    return None


def _scheduler(store: Store, handler, clock: FakeClock | None = None, **kwargs) -> FeedScheduler:
    return FeedScheduler(
        store,
        transport=httpx.MockTransport(handler),
        clock=clock or FakeClock(),
        sleep=_no_sleep,
        **kwargs,
    )


class TestBackoff:
    """测试退避时长."""

    @pytest.mark.parametrize(
        ("failures", "minutes"),
        [(0, 0), (1, 5), (2, 10), (3, 20), (4, 40), (6, 160), (7, 240), (20, 240)],
    )
    def test_backoff_minutes(self, failures: int, minutes: int) -> None:
        assert backoff_minutes(failures) == minutes


class TestFetchAll:
    """测试整轮抓取."""

    async def test_success(self, store: Store, sample_feed: Feed) -> None:
        """首次抓取写入文章和元数据."""
        scheduler = _scheduler(store, rss_transport())
        status = await scheduler.fetch_all()
        await scheduler.close()

        assert status.total == 1
        assert status.succeeded == 1
        assert status.new_articles == 2
        assert status.completed_at is not None

        meta = await store.metadata.get(sample_feed.id or 0)
        assert meta is not None
        assert meta.etag == '"v1"'
        assert meta.consecutive_failures == 0
        assert meta.average_article_count == 2

    async def test_not_modified(self, store: Store, sample_feed: Feed) -> None:
        """第二次抓取携带 ETag，得到 304 且没有新文章."""
        seen: list[str | None] = []
        inner = rss_transport()

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("If-None-Match"))
            return inner(request)

        scheduler = _scheduler(store, handler)
        await scheduler.fetch_all()
        status = await scheduler.fetch_all()
        await scheduler.close()

        assert seen == [None, '"v1"']
        assert status.not_modified == 1
        assert status.new_articles == 0
        assert len(await store.articles.list_by_feed(sample_feed.id or 0)) == 2

    async def test_refetch_does_not_duplicate(self, store: Store, sample_feed: Feed) -> None:
        """没有 ETag 时重复抓取也不会产生重复文章."""
        scheduler = _scheduler(store, rss_transport(etag=None))
        first = await scheduler.fetch_all()
        second = await scheduler.fetch_all()
        await scheduler.close()

        assert first.new_articles == 2
        assert second.succeeded == 1
        assert second.new_articles == 0

    async def test_failure_then_backoff(self, store: Store, sample_feed: Feed) -> None:
        """重试用尽后记录失败，退避期内跳过，到期后恢复."""
        calls = 0
        healthy = False

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if healthy:
                return httpx.Response(200, text=SAMPLE_RSS)
            return httpx.Response(500)

        clock = FakeClock()
        scheduler = _scheduler(store, handler, clock=clock, retry_attempts=3)

        status = await scheduler.fetch_all()
        assert status.failed == 1
        assert calls == 3
        assert status.results[0].attempts == 3
        meta = await store.metadata.get(sample_feed.id or 0)
        assert meta is not None
        assert meta.consecutive_failures == 1
        assert meta.last_error_message == f"HTTP 500: {sample_feed.url}"

        status = await scheduler.fetch_all()
        assert status.skipped == 1
        assert calls == 3
        assert scheduler.is_in_backoff(sample_feed.id or 0)

        clock.now += 5 * 60 + 1
        healthy = True
        status = await scheduler.fetch_all()
        await scheduler.close()

        assert status.succeeded == 1
        assert not scheduler.is_in_backoff(sample_feed.id or 0)
        meta = await store.metadata.get(sample_feed.id or 0)
        assert meta is not None
        assert meta.consecutive_failures == 0

    async def test_store_error_counts_as_failure(
        self, store: Store, sample_feed: Feed, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """下载成功但写库出错：计入连续失败并进入退避."""

        async def broken_upsert(*args: object, **kwargs: object) -> int:
            msg = "database is locked"
            raise RuntimeError(msg)

        monkeypatch.setattr(store.articles, "upsert_new", broken_upsert)
        scheduler = _scheduler(store, rss_transport())

        status = await scheduler.fetch_all()
        assert status.failed == 1
        assert status.results[0].error == "database is locked"
        assert scheduler.is_in_backoff(sample_feed.id or 0)
        meta = await store.metadata.get(sample_feed.id or 0)
        assert meta is not None
        assert meta.consecutive_failures == 1
        assert meta.last_error_message == "database is locked"

        status = await scheduler.fetch_all()
        await scheduler.close()
        assert status.skipped == 1

    async def test_retry_recovers(self, store: Store, sample_feed: Feed) -> None:
        """第二次尝试成功时不记录失败."""
        responses = [httpx.Response(503), httpx.Response(200, text=SAMPLE_RSS)]

        scheduler = _scheduler(store, lambda request: responses.pop(0))
        status = await scheduler.fetch_all()
        await scheduler.close()

        assert status.succeeded == 1
        assert status.results[0].attempts == 2
        meta = await store.metadata.get(sample_feed.id or 0)
        assert meta is not None
        assert meta.consecutive_failures == 0

    async def test_clear_failure_tracking(self, store: Store, sample_feed: Feed) -> None:
        """人工解除退避."""
        scheduler = _scheduler(
            store, lambda request: httpx.Response(404), retry_attempts=1
        )
        await scheduler.fetch_all()
        feed_id = sample_feed.id or 0
        assert scheduler.is_in_backoff(feed_id)

        assert await scheduler.clear_failure_tracking(feed_id) is True
        assert not scheduler.is_in_backoff(feed_id)
        meta = await store.metadata.get(feed_id)
        assert meta is not None
        assert meta.consecutive_failures == 0
        await scheduler.close()

    async def test_one_failure_does_not_stop_batch(self, store: Store) -> None:
        """单个 Feed 出错不影响其他 Feed."""
        good = await store.feeds.add("https://good.example/feed", "Good")
        bad = await store.feeds.add("https://bad.example/feed", "Bad")
        assert good is not None
        assert bad is not None

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "bad.example":
                return httpx.Response(200, text="this is not a feed")
            return httpx.Response(200, text=SAMPLE_RSS)

        scheduler = _scheduler(store, handler, retry_attempts=1)
        status = await scheduler.fetch_all()
        await scheduler.close()

        assert status.succeeded == 1
        assert status.failed == 1
        assert status.new_articles == 2

    async def test_concurrency_limit(self, store: Store) -> None:
        """同时进行的请求数不超过并发上限."""
        for i in range(6):
            await store.feeds.add(f"https://example.com/feed/{i}", f"Feed {i}")

        active = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return httpx.Response(200, text=SAMPLE_RSS)

        scheduler = _scheduler(store, handler, concurrency=2)
        status = await scheduler.fetch_all()
        await scheduler.close()

        assert status.succeeded == 6
        assert peak <= 2
        assert scheduler.peak_in_flight <= 2

    async def test_empty(self, store: Store) -> None:
        """没有订阅时立即返回."""
        scheduler = _scheduler(store, rss_transport())
        status = await scheduler.fetch_all()
        await scheduler.close()
        assert status.total == 0
        assert status.completed_at is not None


class TestSubscribe:
    """测试添加订阅."""

    async def test_subscribe(self, store: Store) -> None:
        """使用 Feed 标题作为名称并写入首批文章."""
        scheduler = _scheduler(store, rss_transport())
        result = await scheduler.subscribe("https://example.com/rss")
        await scheduler.close()

        assert result is not None
        feed, count = result
        assert feed.name == "Example News"
        assert count == 2
        meta = await store.metadata.get(feed.id or 0)
        assert meta is not None
        assert meta.etag == '"v1"'

    async def test_custom_name(self, store: Store) -> None:
        scheduler = _scheduler(store, rss_transport())
        result = await scheduler.subscribe("https://example.com/rss", name="Mine")
        await scheduler.close()
        assert result is not None
        assert result[0].name == "Mine"

    async def test_duplicate(self, store: Store, sample_feed: Feed) -> None:
        """URL 已订阅时返回 None."""
        scheduler = _scheduler(store, rss_transport())
        assert await scheduler.subscribe(sample_feed.url) is None
        await scheduler.close()

    async def test_download_failure(self, store: Store) -> None:
        """下载失败时不写入 Feed."""
        scheduler = _scheduler(store, lambda request: httpx.Response(404))
        with pytest.raises(FetchError):
            await scheduler.subscribe("https://example.com/missing")
        await scheduler.close()
        assert await store.feeds.get_by_url("https://example.com/missing") is None
