"""AI News Agent 主应用入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from newsagent.api import archive, articles, duplicates, feeds, system
from newsagent.config import get_settings
from newsagent.core.fetch_runner import FeedScheduler
from newsagent.core.processor import EnrichmentEngine
from newsagent.core.store import Store
from newsagent.enrichment import WorkerPool
from newsagent.llm import LoadBalancer
from newsagent.scheduler import Orchestrator

# 配置日志
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理：创建并关闭进程内单例."""
    settings = get_settings()

    logger.info("正在初始化数据库...")
    store = Store.from_settings(settings)
    await store.init()

    logger.info("正在启动 Worker 池...")
    pool = WorkerPool.from_settings(settings)
    await pool.start()

    logger.info("正在探测推理端点...")
    balancer = LoadBalancer.from_settings(settings)
    await balancer.start()

    fetcher = FeedScheduler.from_settings(store, settings)
    engine = EnrichmentEngine(store, pool, balancer, settings.enrichment_batch_size)
    orchestrator = Orchestrator(store, fetcher, engine, settings)

    app.state.store = store
    app.state.pool = pool
    app.state.fetcher = fetcher
    app.state.engine = engine
    app.state.orchestrator = orchestrator

    logger.info("正在启动定时任务...")
    orchestrator.start()

    logger.info("AI News Agent 启动完成！")
    yield

    logger.info("正在关闭...")
    await orchestrator.shutdown()
    await pool.shutdown()
    await balancer.stop()
    await fetcher.close()
    await store.close()
    logger.info("AI News Agent 已关闭")


app = FastAPI(
    title="AI News Agent",
    description="RSS 抓取 + 本地大模型摘要的新闻聚合服务",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(feeds.router)
app.include_router(feeds.folders_router)
app.include_router(articles.router)
app.include_router(articles.search_router)
app.include_router(archive.router)
app.include_router(duplicates.router)
app.include_router(system.router)


@app.get("/")
async def root() -> dict:
    """根路径."""
    return {
        "name": "AI News Agent",
        "version": "0.1.0",
    }


@app.get("/health")
async def health() -> dict:
    """健康检查."""
    return {"status": "ok"}


def run() -> None:
    """命令行入口."""
    import uvicorn

    uvicorn.run("newsagent.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
