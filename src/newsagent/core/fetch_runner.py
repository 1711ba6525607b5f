"""Feed 抓取调度器：并发上限、重试、失败退避、条件请求."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from newsagent.config import Settings
from newsagent.core.store import Store
from newsagent.fetcher.client import FeedClient, FeedResponse, FetchError
from newsagent.fetcher.parser import ParsedFeed, parse_feed
from newsagent.models.article import Article
from newsagent.models.feed import Feed
from newsagent.utils.dates import utcnow

logger = logging.getLogger(__name__)

BACKOFF_BASE_MINUTES = 5
BACKOFF_MAX_MINUTES = 240


class FetchOutcome:
    """单个 Feed 抓取结果类型."""

    SUCCESS = "success"
    NOT_MODIFIED = "not_modified"
    FAILED = "failed"
    SKIPPED = "skipped"


def backoff_minutes(failure_count: int) -> float:
    """连续失败 n 次后的退避时长: min(2^(n-1) * 5, 240) 分钟."""
    if failure_count <= 0:
        return 0
    return min(2 ** (failure_count - 1) * BACKOFF_BASE_MINUTES, BACKOFF_MAX_MINUTES)


@dataclass
class FailureRecord:
    """内存中的失败跟踪."""

    count: int = 0
    last_error: str | None = None
    backoff_until: float = 0.0


@dataclass
class FeedFetchResult:
    """单个 Feed 的抓取结果."""

    feed_id: int
    feed_name: str
    outcome: str
    new_articles: list[Article] = field(default_factory=list)
    item_count: int = 0
    attempts: int = 0
    error: str | None = None


@dataclass
class FetchBatchStatus:
    """一轮抓取的汇总."""

    total: int
    succeeded: int = 0
    not_modified: int = 0
    failed: int = 0
    skipped: int = 0
    new_articles: int = 0
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    results: list[FeedFetchResult] = field(default_factory=list)


class FeedScheduler:
    """并发抓取所有 Feed，每个 Feed 的错误都不会中断整轮抓取."""

    def __init__(
        self,
        store: Store,
        concurrency: int = 5,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        user_agent: str = "AI-News-Agent/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.concurrency = concurrency
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._client = FeedClient(timeout=timeout, user_agent=user_agent, transport=transport)
        self._semaphore = asyncio.Semaphore(concurrency)
        self._failures: dict[int, FailureRecord] = {}
        self._clock = clock
        self._sleep = sleep
        self._in_flight = 0
        self.peak_in_flight = 0

    @classmethod
    def from_settings(
        cls,
        store: Store,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "FeedScheduler":
        return cls(
            store,
            concurrency=settings.fetch_concurrency,
            timeout=settings.fetch_timeout_seconds,
            retry_attempts=settings.fetch_retry_attempts,
            retry_delay=settings.fetch_retry_delay_seconds,
            user_agent=settings.user_agent,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.close()

    @property
    def in_flight(self) -> int:
        """正在进行的请求数."""
        return self._in_flight

    def is_in_backoff(self, feed_id: int) -> bool:
        record = self._failures.get(feed_id)
        return record is not None and record.backoff_until > self._clock()

    def get_statistics(self) -> dict[str, Any]:
        """抓取器统计."""
        now = self._clock()
        return {
            "total_tracked_feeds": len(self._failures),
            "feeds_in_backoff": sum(
                1 for r in self._failures.values() if r.backoff_until > now
            ),
            "concurrency_limit": self.concurrency,
            "request_timeout": self.timeout,
            "in_flight": self._in_flight,
            "peak_in_flight": self.peak_in_flight,
        }

    async def clear_failure_tracking(self, feed_id: int) -> bool:
        """人工解除退避：清除内存跟踪并清零持久化的失败次数."""
        tracked = self._failures.pop(feed_id, None) is not None
        persisted = await self.store.metadata.reset_failures(feed_id)
        logger.info(f"已清除 Feed {feed_id} 的失败跟踪")
        return tracked or persisted

    async def download(self, url: str) -> tuple[ParsedFeed, FeedResponse]:
        """下载并解析任意 Feed URL（添加订阅时用于获取标题）."""
        response = await asyncio.wait_for(self._client.fetch(url), self.timeout)
        return parse_feed(response.body), response

    async def subscribe(
        self, url: str, folder_id: int | None = None, name: str | None = None
    ) -> tuple[Feed, int] | None:
        """
        添加订阅：下载获取标题，写入 Feed 与首批文章.

        URL 已订阅时返回 None。

        Raises:
            FetchError: 下载失败
            ValueError: 内容无法解析或文件夹不存在
        """
        if await self.store.feeds.get_by_url(url) is not None:
            return None

        try:
            parsed, response = await self.download(url)
        except TimeoutError as e:
            msg = f"下载超时: {url}"
            raise FetchError(msg) from e

        title = name or parsed.title or url
        feed = await self.store.feeds.add(url, title, folder_id)
        if feed is None:
            return None

        feed_id = feed.id or 0
        new_articles = await self.store.articles.upsert_new(feed_id, parsed.items)
        await self.store.metadata.record_success(
            feed_id, len(parsed.items), response.etag, response.last_modified
        )
        logger.info(f"订阅成功: {title} ({len(new_articles)} 篇文章)")
        return feed, len(new_articles)

    async def fetch_all(self, feeds: list[Feed] | None = None) -> FetchBatchStatus:
        """
        抓取一轮.

        Args:
            feeds: 要抓取的 Feed，默认全部

        Returns:
            FetchBatchStatus: 本轮汇总
        """
        if feeds is None:
            feeds = await self.store.feeds.list_feeds()

        status = FetchBatchStatus(total=len(feeds))
        if not feeds:
            status.completed_at = utcnow()
            return status

        logger.info(f"开始抓取 {len(feeds)} 个 Feed (并发={self.concurrency})")
        results = await asyncio.gather(*(self.fetch_feed(feed) for feed in feeds))

        for result in results:
            if result.outcome == FetchOutcome.SUCCESS:
                status.succeeded += 1
            elif result.outcome == FetchOutcome.NOT_MODIFIED:
                status.not_modified += 1
            elif result.outcome == FetchOutcome.FAILED:
                status.failed += 1
            else:
                status.skipped += 1
            status.new_articles += len(result.new_articles)

        status.results = list(results)
        status.completed_at = utcnow()
        logger.info(
            f"Feed 抓取完成: 成功={status.succeeded}, 未修改={status.not_modified}, "
            f"失败={status.failed}, 跳过={status.skipped}, 新文章={status.new_articles}"
        )
        return status

    async def fetch_feed(self, feed: Feed) -> FeedFetchResult:
        """抓取单个 Feed；处于退避期的 Feed 直接跳过，不占用并发名额."""
        feed_id = feed.id or 0
        if self.is_in_backoff(feed_id):
            logger.debug(f"跳过退避中的 Feed: {feed.title}")
            return FeedFetchResult(
                feed_id=feed_id, feed_name=feed.title, outcome=FetchOutcome.SKIPPED
            )

        async with self._semaphore:
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            try:
                return await self._fetch_with_retry(feed)
            except Exception as e:
                logger.exception(f"抓取异常: {feed.title} - {e}")
                return await self._record_failure(feed, str(e) or type(e).__name__)
            finally:
                self._in_flight -= 1

    async def _fetch_with_retry(self, feed: Feed) -> FeedFetchResult:
        feed_id = feed.id or 0
        meta = await self.store.metadata.get(feed_id)
        etag = meta.etag if meta else None
        last_modified = meta.last_modified if meta else None

        last_error = "未知错误"
        for attempt in range(1, self.retry_attempts + 1):
            try:
                response = await asyncio.wait_for(
                    self._client.fetch(feed.url, etag=etag, last_modified=last_modified),
                    self.timeout,
                )
                parsed = None if response.not_modified else parse_feed(response.body)
            except (FetchError, ValueError, TimeoutError) as e:
                last_error = str(e) or type(e).__name__
                logger.warning(
                    f"第 {attempt} 次抓取失败: {feed.title} - {last_error}"
                )
                if attempt < self.retry_attempts:
                    await self._sleep(self.retry_delay * attempt)
                continue

            if parsed is None:
                await self.store.metadata.record_success(
                    feed_id, None, response.etag, response.last_modified
                )
                self._failures.pop(feed_id, None)
                logger.debug(f"Feed 未修改: {feed.title}")
                return FeedFetchResult(
                    feed_id=feed_id,
                    feed_name=feed.title,
                    outcome=FetchOutcome.NOT_MODIFIED,
                    attempts=attempt,
                )

            new_articles = await self.store.articles.upsert_new(feed_id, parsed.items)
            await self.store.metadata.record_success(
                feed_id, len(parsed.items), response.etag, response.last_modified
            )
            self._failures.pop(feed_id, None)
            return FeedFetchResult(
                feed_id=feed_id,
                feed_name=feed.title,
                outcome=FetchOutcome.SUCCESS,
                new_articles=new_articles,
                item_count=len(parsed.items),
                attempts=attempt,
            )

        return await self._record_failure(feed, last_error)

    async def _record_failure(self, feed: Feed, error: str) -> FeedFetchResult:
        feed_id = feed.id or 0
        record = self._failures.setdefault(feed_id, FailureRecord())
        record.count += 1
        record.last_error = error
        minutes = backoff_minutes(record.count)
        record.backoff_until = self._clock() + minutes * 60

        try:
            await self.store.metadata.record_failure(feed_id, error)
        except Exception as e:
            logger.exception(f"记录抓取失败出错: {feed.title} - {e}")
        logger.warning(
            f"Feed 抓取失败: {feed.title} (连续 {record.count} 次，退避 {minutes} 分钟) - {error}"
        )
        return FeedFetchResult(
            feed_id=feed_id,
            feed_name=feed.title,
            outcome=FetchOutcome.FAILED,
            attempts=self.retry_attempts,
            error=error,
        )
