"""系统 API：手动触发与运行状态."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from newsagent.api.deps import get_engine, get_fetcher, get_orchestrator, get_pool, get_store
from newsagent.core.fetch_runner import FeedScheduler
from newsagent.core.processor import EnrichmentEngine
from newsagent.core.store import Store
from newsagent.enrichment import QueueFullError, WorkerPool, WorkerPoolError
from newsagent.scheduler import Orchestrator

router = APIRouter(prefix="/api/system", tags=["system"])


@router.post("/fetch")
async def trigger_cycle(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict:
    """立即执行一轮抓取+摘要；已有一轮在运行时跳过."""
    report = await orchestrator.trigger()
    if report is None:
        return {"status": "skipped", "message": "已有一轮处理在运行"}

    fetch = report.fetch
    return {
        "status": "failed" if report.error else "completed",
        "cycle": report.cycle,
        "error": report.error,
        "fetch": {
            "total": fetch.total,
            "succeeded": fetch.succeeded,
            "not_modified": fetch.not_modified,
            "failed": fetch.failed,
            "skipped": fetch.skipped,
            "new_articles": fetch.new_articles,
        }
        if fetch
        else None,
        "enrichment": asdict(report.enrichment) if report.enrichment else None,
    }


@router.post("/enrich")
async def trigger_enrichment(engine: EnrichmentEngine = Depends(get_engine)) -> dict:
    """立即处理待摘要文章."""
    if engine.is_running:
        return {"status": "skipped", "message": "摘要处理已在运行"}
    try:
        result = await engine.run_pass()
    except QueueFullError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    if result.stopped_early and result.processed == 0:
        raise HTTPException(status_code=503, detail="Worker 队列已满")
    return {"status": "completed", **asdict(result)}


@router.get("/stats")
async def system_stats(
    store: Store = Depends(get_store),
    fetcher: FeedScheduler = Depends(get_fetcher),
    pool: WorkerPool = Depends(get_pool),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    """运行统计."""
    next_run = orchestrator.next_run_time()
    return {
        "articles": await store.articles.count_by_status(),
        "database": await store.maintenance.database_stats(),
        "fetcher": fetcher.get_statistics(),
        "worker_pool": pool.get_statistics(),
        "scheduler": {
            "cycles": orchestrator.cycle_count,
            "running": orchestrator.is_running,
            "next_run_time": next_run.isoformat() if next_run else None,
        },
    }


@router.get("/health")
async def system_health(
    engine: EnrichmentEngine = Depends(get_engine),
    store: Store = Depends(get_store),
) -> dict:
    """推理端点与订阅源健康状况."""
    try:
        endpoints = await engine.health_check()
        balancer = await engine.balancer_stats()
    except QueueFullError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except WorkerPoolError as e:
        return {
            "status": "degraded",
            "error": str(e),
            "balancer": engine.balancer.get_statistics(),
            "feeds": await store.metadata.health_stats(),
        }

    return {
        "status": "ok" if any(endpoints.values()) else "degraded",
        "endpoints": endpoints,
        "balancer": balancer,
        "feeds": await store.metadata.health_stats(),
    }
