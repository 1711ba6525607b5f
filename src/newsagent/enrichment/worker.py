"""执行单元（子进程）：从任务管道读取任务，结果写回结果管道."""

import asyncio
import logging
import os
import time
from multiprocessing.connection import Connection
from typing import Any

import httpx

from newsagent.config import EndpointConfig, Settings
from newsagent.llm.balancer import PROBE_TIMEOUT_SECONDS, endpoint_key
from newsagent.llm.base import InferenceRequestError, LLMConfig, LLMProvider
from newsagent.llm.ollama import OllamaProvider
from newsagent.llm.summarizer import generate_summary

logger = logging.getLogger(__name__)


class TaskType:
    """任务类型."""

    SUMMARIZE_ARTICLE = "summarize_article"
    HEALTH_CHECK = "health_check"
    BALANCER_STATS = "balancer_stats"


class TaskHandler:
    """任务处理器基类，每个执行单元持有一个实例."""

    def __init__(self, options: dict[str, Any]) -> None:
        self.options = options

    async def start(self) -> None:
        """子进程启动后调用."""

    async def handle(self, task_type: str, data: dict[str, Any]) -> Any:
        raise NotImplementedError

    async def close(self) -> None:
        """子进程退出前调用."""


def worker_options(settings: Settings) -> dict[str, Any]:
    """从配置构建可跨进程传递的执行单元参数."""
    return {
        "request_timeout": settings.ai_request_timeout_seconds,
        "max_content_chars": settings.content_max_chars,
        "summary_max_words": settings.summary_max_words,
        "log_level": settings.log_level,
    }


class SummaryTaskHandler(TaskHandler):
    """
    默认处理器：对主进程选定的端点发起一次请求.

    端点健康与轮询由主进程的 LoadBalancer 维护，这里只缓存各端点的 HTTP 客户端
    并统计本执行单元的请求数。
    """

    def __init__(self, options: dict[str, Any]) -> None:
        super().__init__(options)
        self.request_timeout = options.get("request_timeout", 45.0)
        self.max_content_chars = options.get("max_content_chars", 15000)
        self.summary_max_words = options.get("summary_max_words", 200)
        self._providers: dict[str, LLMProvider] = {}
        self._requests: dict[str, int] = {}
        self._failures: dict[str, int] = {}

    def make_transport(self) -> httpx.AsyncBaseTransport | None:
        return None

    def _provider(self, endpoint: EndpointConfig) -> LLMProvider:
        key = endpoint_key(endpoint)
        provider = self._providers.get(key)
        if provider is None:
            config = LLMConfig(model=endpoint.model, timeout=self.request_timeout)
            provider = OllamaProvider(config, host=endpoint.url, transport=self.make_transport())
            self._providers[key] = provider
        return provider

    async def _summarize(self, data: dict[str, Any]) -> dict[str, Any]:
        endpoint = EndpointConfig(**data["endpoint"])
        key = endpoint_key(endpoint)
        self._requests[key] = self._requests.get(key, 0) + 1
        started = time.perf_counter()
        try:
            summary = await generate_summary(
                self._provider(endpoint),
                data.get("content"),
                self.max_content_chars,
                self.summary_max_words,
            )
        except InferenceRequestError:
            self._failures[key] = self._failures.get(key, 0) + 1
            raise
        return {
            "article_id": data.get("article_id"),
            "summary": summary,
            "endpoint": key,
            "processing_time_ms": (time.perf_counter() - started) * 1000,
        }

    async def _probe(self, data: dict[str, Any]) -> dict[str, bool]:
        results = {}
        for raw in data.get("endpoints", []):
            endpoint = EndpointConfig(**raw)
            key = endpoint_key(endpoint)
            try:
                await self._provider(endpoint).ping(PROBE_TIMEOUT_SECONDS)
            except (httpx.HTTPError, OSError) as e:
                logger.warning(f"端点 {key} 健康检查失败: {e}")
                results[key] = False
            else:
                results[key] = True
        return results

    async def handle(self, task_type: str, data: dict[str, Any]) -> Any:
        if task_type == TaskType.SUMMARIZE_ARTICLE:
            return await self._summarize(data)
        if task_type == TaskType.HEALTH_CHECK:
            return await self._probe(data)
        if task_type == TaskType.BALANCER_STATS:
            return {
                "pid": os.getpid(),
                "requests": dict(self._requests),
                "failures": dict(self._failures),
            }

        msg = f"未知任务类型: {task_type}"
        raise ValueError(msg)

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()


async def _serve(
    worker_id: int,
    task_conn: Connection,
    result_conn: Connection,
    handler: TaskHandler,
) -> None:
    loop = asyncio.get_running_loop()
    await handler.start()
    logger.info(f"执行单元 {worker_id} 已就绪")
    try:
        while True:
            try:
                message = await loop.run_in_executor(None, task_conn.recv)
            except EOFError:
                break
            if message is None:
                break

            task_id = message["id"]
            try:
                result = await handler.handle(message["type"], message.get("data") or {})
            except Exception as e:
                logger.warning(f"执行单元 {worker_id} 任务 {task_id} 失败: {e}")
                result_conn.send(
                    {
                        "id": task_id,
                        "ok": False,
                        "error": str(e) or type(e).__name__,
                        "error_type": type(e).__name__,
                    }
                )
                continue

            result_conn.send({"id": task_id, "ok": True, "result": result})
    finally:
        await handler.close()
        logger.info(f"执行单元 {worker_id} 退出")


def worker_main(
    worker_id: int,
    task_conn: Connection,
    result_conn: Connection,
    handler_cls: type[TaskHandler],
    options: dict[str, Any],
) -> None:
    """子进程入口."""
    logging.basicConfig(
        level=options.get("log_level", "INFO"),
        format=f"%(asctime)s - worker-{worker_id} - %(name)s - %(levelname)s - %(message)s",
    )
    handler = handler_cls(options)
    try:
        asyncio.run(_serve(worker_id, task_conn, result_conn, handler))
    except KeyboardInterrupt:
        pass
    finally:
        task_conn.close()
        result_conn.close()
