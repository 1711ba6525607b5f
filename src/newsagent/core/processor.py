"""文章摘要引擎：把 new 状态的文章交给 Worker 池生成摘要."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from newsagent.config import EndpointConfig
from newsagent.core.store import Store
from newsagent.enrichment import (
    QueueFullError,
    TaskTimeoutError,
    TaskType,
    WorkerPool,
    WorkerPoolError,
    WorkerTaskError,
)
from newsagent.llm import InferenceRequestError, LoadBalancer, NoHealthyEndpointError
from newsagent.models.article import Article, ArticleStatus
from newsagent.utils.dates import utcnow

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentResult:
    """一轮摘要处理的汇总."""

    processed: int = 0
    summarized: int = 0
    failed: int = 0
    skipped: int = 0
    stopped_early: bool = False
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None


class EnrichmentEngine:
    """按批次处理待摘要文章."""

    def __init__(
        self,
        store: Store,
        pool: WorkerPool,
        balancer: LoadBalancer,
        batch_size: int = 5,
    ) -> None:
        self.store = store
        self.pool = pool
        self.balancer = balancer
        self.batch_size = max(1, batch_size)
        self._lock = asyncio.Lock()
        self.last_result: EnrichmentResult | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_pass(self, max_articles: int | None = None) -> EnrichmentResult:
        """
        处理所有 new 状态的文章，直到没有待处理文章、队列已满或没有健康端点.

        Args:
            max_articles: 本轮最多处理的文章数

        Returns:
            EnrichmentResult: 本轮汇总
        """
        result = EnrichmentResult()
        if self._lock.locked():
            logger.info("摘要处理已在运行，跳过")
            result.completed_at = utcnow()
            return result

        async with self._lock:
            while not result.stopped_early:
                limit = self.batch_size
                if max_articles is not None:
                    limit = min(limit, max_articles - result.processed)
                    if limit <= 0:
                        break

                articles = await self.store.articles.list_by_status(ArticleStatus.NEW, limit)
                if not articles:
                    break
                await self._run_batch(articles, result)

        result.completed_at = utcnow()
        self.last_result = result
        if result.processed or result.stopped_early:
            logger.info(
                f"摘要处理完成: 处理={result.processed}, 成功={result.summarized}, "
                f"失败={result.failed}, 跳过={result.skipped}, 提前结束={result.stopped_early}"
            )
        return result

    async def _run_batch(self, articles: list[Article], result: EnrichmentResult) -> None:
        jobs = []
        for article in articles:
            if self.pool.queue_size >= self.pool.max_queue_size:
                logger.warning("Worker 队列已满，本轮剩余文章保持 new")
                result.stopped_early = True
                break
            if not self.balancer.healthy_endpoints():
                logger.warning("没有健康的推理端点，本轮剩余文章保持 new")
                result.stopped_early = True
                break

            article_id = article.id or 0
            if not await self.store.articles.start_summarizing(article_id):
                result.skipped += 1
                continue
            result.processed += 1
            jobs.append(self._summarize(article_id, article.content, result))

        if jobs:
            await asyncio.gather(*jobs)

    async def _request(
        self, article_id: int, content: str | None, endpoint: EndpointConfig
    ) -> Any:
        """把一次请求交给执行单元；超时与推理失败计为该端点失败."""
        try:
            return await self.pool.submit_task(
                TaskType.SUMMARIZE_ARTICLE,
                {"article_id": article_id, "content": content, "endpoint": endpoint.model_dump()},
            )
        except TaskTimeoutError as e:
            raise InferenceRequestError(str(e)) from e
        except WorkerTaskError as e:
            if e.error_type == InferenceRequestError.__name__:
                raise InferenceRequestError(str(e)) from e
            raise

    async def _summarize(
        self, article_id: int, content: str | None, result: EnrichmentResult
    ) -> None:
        try:
            routed = await self.balancer.route(
                lambda endpoint: self._request(article_id, content, endpoint)
            )
        except QueueFullError:
            result.stopped_early = True
            result.failed += 1
            await self.store.articles.fail_summary(article_id)
            logger.warning(f"文章 {article_id} 提交失败: Worker 队列已满")
            return
        except NoHealthyEndpointError as e:
            result.stopped_early = True
            result.failed += 1
            await self.store.articles.fail_summary(article_id)
            logger.warning(f"文章 {article_id} 摘要失败: {e}")
            return
        except (WorkerPoolError, InferenceRequestError) as e:
            result.failed += 1
            await self.store.articles.fail_summary(article_id)
            logger.warning(f"文章 {article_id} 摘要失败: {e}")
            return

        summary = (routed.value or {}).get("summary")
        if summary and await self.store.articles.complete_summary(article_id, summary):
            result.summarized += 1
            logger.debug(f"文章 {article_id} 摘要完成 ({routed.endpoint}, 第 {routed.attempts} 次)")
        else:
            result.failed += 1
            await self.store.articles.fail_summary(article_id)
            logger.warning(f"文章 {article_id} 返回空摘要")

    async def health_check(self) -> dict[str, bool]:
        """让一个执行单元立即探测全部推理端点，结果合并到共享健康记录."""
        results = await self.pool.submit_task(
            TaskType.HEALTH_CHECK,
            {"endpoints": [e.model_dump() for e in self.balancer.endpoints]},
        )
        self.balancer.apply_probe_results(results)
        return results

    async def balancer_stats(self) -> dict[str, Any]:
        """共享的端点健康统计，附带一个执行单元的本地请求计数."""
        stats = self.balancer.get_statistics()
        stats["worker"] = await self.pool.submit_task(TaskType.BALANCER_STATS)
        return stats
