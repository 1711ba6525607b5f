"""测试周期处理编排."""

import asyncio

from newsagent.config import Settings
from newsagent.core import EnrichmentResult, FetchBatchStatus
from newsagent.core.archive import RetentionResult
from newsagent.core.store import Store
from newsagent.scheduler import Orchestrator


class FakeFetcher:
    def __init__(self) -> None:
        self.calls = 0
        self.release: asyncio.Event | None = None
        self.error: Exception | None = None

    async def fetch_all(self) -> FetchBatchStatus:
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return FetchBatchStatus(total=1, succeeded=1, new_articles=2)


class FakeEngine:
    def __init__(self) -> None:
        self.calls = 0

    async def run_pass(self) -> EnrichmentResult:
        self.calls += 1
        return EnrichmentResult(processed=2, summarized=2)


def _orchestrator(
    store: Store, settings: Settings
) -> tuple[Orchestrator, FakeFetcher, FakeEngine]:
    fetcher = FakeFetcher()
    engine = FakeEngine()
    orchestrator = Orchestrator(store, fetcher, engine, settings)  # type: ignore[arg-type]
    return orchestrator, fetcher, engine


class TestOrchestrator:
    """测试单轮处理与调度."""

    async def test_cycle_order(self, store: Store, settings: Settings) -> None:
        """一轮依次执行抓取与摘要."""
        orchestrator, fetcher, engine = _orchestrator(store, settings)
        report = await orchestrator.run_cycle()

        assert report is not None
        assert report.cycle == 1
        assert report.fetch is not None
        assert report.fetch.new_articles == 2
        assert report.enrichment is not None
        assert report.enrichment.summarized == 2
        assert report.error is None
        assert report.completed_at is not None
        assert fetcher.calls == engine.calls == 1
        assert orchestrator.last_report is report

    async def test_retention_every_n_cycles(self, store: Store, settings: Settings) -> None:
        """每 archive_interval_cycles 轮执行一次保留策略."""
        settings.archive_interval_cycles = 2
        orchestrator, _, _ = _orchestrator(store, settings)

        reports = [await orchestrator.run_cycle() for _ in range(4)]
        retention = [r.retention if r else None for r in reports]

        assert retention[0] is None
        assert isinstance(retention[1], RetentionResult)
        assert retention[2] is None
        assert isinstance(retention[3], RetentionResult)

    async def test_overlapping_trigger_skipped(self, store: Store, settings: Settings) -> None:
        """已有一轮在运行时，手动触发被跳过."""
        orchestrator, fetcher, _ = _orchestrator(store, settings)
        fetcher.release = asyncio.Event()

        running = asyncio.create_task(orchestrator.run_cycle())
        while not orchestrator.is_running:
            await asyncio.sleep(0)

        assert await orchestrator.trigger() is None
        assert fetcher.calls == 1

        fetcher.release.set()
        report = await running
        assert report is not None
        assert orchestrator.cycle_count == 1

    async def test_error_does_not_stop_next_cycle(
        self, store: Store, settings: Settings
    ) -> None:
        """一轮出错时记录错误，下一轮照常执行."""
        orchestrator, fetcher, engine = _orchestrator(store, settings)
        fetcher.error = RuntimeError("database locked")

        report = await orchestrator.run_cycle()
        assert report is not None
        assert report.error == "database locked"
        assert engine.calls == 0

        fetcher.error = None
        report = await orchestrator.run_cycle()
        assert report is not None
        assert report.error is None
        assert engine.calls == 1

    async def test_start_schedules_first_cycle(
        self, store: Store, settings: Settings
    ) -> None:
        """启动后安排首轮，关闭后不再有待执行任务."""
        settings.initial_delay_seconds = 3600
        orchestrator, fetcher, _ = _orchestrator(store, settings)

        orchestrator.start()
        assert orchestrator.next_run_time() is not None
        assert fetcher.calls == 0

        await orchestrator.shutdown()
        assert orchestrator.next_run_time() is None
