"""定时任务：抓取 -> 摘要 -> （周期性）归档."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from newsagent.config import Settings
from newsagent.core.archive import RetentionResult
from newsagent.core.fetch_runner import FeedScheduler, FetchBatchStatus
from newsagent.core.processor import EnrichmentEngine, EnrichmentResult
from newsagent.core.store import Store
from newsagent.utils.dates import utcnow

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "news_cycle"


@dataclass
class CycleReport:
    """一轮处理的汇总."""

    cycle: int
    fetch: FetchBatchStatus | None = None
    enrichment: EnrichmentResult | None = None
    retention: RetentionResult | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None


class Orchestrator:
    """
    周期性处理编排.

    每轮结束后再安排下一轮（一次性 date 任务），两轮之间至少间隔
    cycle_interval_minutes；运行中的手动触发直接跳过。
    """

    def __init__(
        self,
        store: Store,
        fetcher: FeedScheduler,
        engine: EnrichmentEngine,
        settings: Settings,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.engine = engine
        self.interval = timedelta(minutes=settings.cycle_interval_minutes)
        self.initial_delay = timedelta(seconds=settings.initial_delay_seconds)
        self.archive_interval_cycles = max(1, settings.archive_interval_cycles)
        self._scheduler: AsyncIOScheduler | None = None
        self._lock = asyncio.Lock()
        self.cycle_count = 0
        self.last_report: CycleReport | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def start(self) -> None:
        """启动调度器，initial_delay 后执行第一轮."""
        self._scheduler = AsyncIOScheduler()
        self._scheduler.start()
        self._schedule_next(self.initial_delay)
        logger.info(
            f"定时任务调度器已启动，处理间隔: {self.interval.total_seconds() / 60:g} 分钟"
        )

    async def shutdown(self) -> None:
        """关闭调度器."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("定时任务调度器已关闭")

    def _schedule_next(self, delay: timedelta) -> None:
        if self._scheduler is None:
            return
        self._scheduler.add_job(
            self._scheduled_cycle,
            "date",
            run_date=datetime.now() + delay,
            id=CYCLE_JOB_ID,
            name="抓取+摘要",
            replace_existing=True,
        )

    async def _scheduled_cycle(self) -> None:
        try:
            await self.run_cycle()
        finally:
            self._schedule_next(self.interval)

    async def trigger(self) -> CycleReport | None:
        """手动触发一轮；已有一轮在运行时返回 None."""
        return await self.run_cycle()

    async def run_cycle(self) -> CycleReport | None:
        """执行一轮：抓取所有 Feed，摘要新文章，按间隔执行保留策略."""
        if self._lock.locked():
            logger.info("已有一轮处理在运行，跳过本次调度")
            return None

        async with self._lock:
            self.cycle_count += 1
            report = CycleReport(cycle=self.cycle_count)
            logger.info(f"开始第 {report.cycle} 轮处理...")
            try:
                report.fetch = await self.fetcher.fetch_all()
                report.enrichment = await self.engine.run_pass()
                if report.cycle % self.archive_interval_cycles == 0:
                    report.retention = await self.store.retention.run()
            except Exception as e:
                report.error = str(e)
                logger.exception(f"第 {report.cycle} 轮处理失败: {e}")

            report.completed_at = utcnow()
            self.last_report = report

        fetch = report.fetch
        enrichment = report.enrichment
        logger.info(
            f"第 {report.cycle} 轮处理完成: "
            f"抓取成功={fetch.succeeded if fetch else 0}, "
            f"抓取失败={fetch.failed if fetch else 0}, "
            f"新文章={fetch.new_articles if fetch else 0}, "
            f"摘要={enrichment.summarized if enrichment else 0}, "
            f"摘要失败={enrichment.failed if enrichment else 0}"
        )
        return report

    def next_run_time(self) -> datetime | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(CYCLE_JOB_ID)
        return job.next_run_time if job else None
