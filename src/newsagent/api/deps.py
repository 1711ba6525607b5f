"""路由依赖：从 app.state 取出进程内单例."""

from fastapi import Request

from newsagent.core.fetch_runner import FeedScheduler
from newsagent.core.processor import EnrichmentEngine
from newsagent.core.store import Store
from newsagent.enrichment import WorkerPool
from newsagent.scheduler import Orchestrator


def get_store(request: Request) -> Store:
    return request.app.state.store


def get_fetcher(request: Request) -> FeedScheduler:
    return request.app.state.fetcher


def get_pool(request: Request) -> WorkerPool:
    return request.app.state.pool


def get_engine(request: Request) -> EnrichmentEngine:
    return request.app.state.engine


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator
