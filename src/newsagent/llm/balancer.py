"""
多推理端点负载均衡：健康检查 + 轮询.

运行在主进程中，所有执行单元共享同一份健康记录与轮询游标。
执行单元只负责对选定端点发起一次请求，结果（成功、失败、超时）回报到这里。
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from newsagent.config import EndpointConfig, Settings
from newsagent.llm.base import (
    InferenceRequestError,
    LLMConfig,
    LLMProvider,
    NoHealthyEndpointError,
)
from newsagent.llm.ollama import OllamaProvider

logger = logging.getLogger(__name__)

# 连续失败达到该次数后标记为不健康
FAILURE_THRESHOLD = 3
PROBE_TIMEOUT_SECONDS = 10.0


def endpoint_key(endpoint: EndpointConfig) -> str:
    return f"{endpoint.url}-{endpoint.model}"


@dataclass
class EndpointHealth:
    """端点健康记录."""

    healthy: bool = True
    last_check: float | None = None
    consecutive_failures: int = 0
    average_response_time: float = 0.0
    total_requests: int = 0
    successful_requests: int = 0
    request_count: int = 0

    def record_latency(self, elapsed_ms: float, weight_new: float) -> None:
        """指数滑动平均，首个样本直接采用."""
        if self.average_response_time > 0:
            self.average_response_time = (
                self.average_response_time * (1 - weight_new) + elapsed_ms * weight_new
            )
        else:
            self.average_response_time = elapsed_ms


@dataclass
class RouteResult:
    """一次路由请求的结果."""

    value: Any
    endpoint: str
    processing_time_ms: float
    attempts: int


class LoadBalancer:
    """在健康端点之间轮询分发推理请求."""

    def __init__(
        self,
        endpoints: list[EndpointConfig],
        request_timeout: float = 45.0,
        retry_attempts: int = 2,
        health_check_interval: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.request_timeout = request_timeout
        self.retry_attempts = max(1, retry_attempts)
        self.health_check_interval = health_check_interval
        self._transport = transport
        self._endpoints: list[EndpointConfig] = []
        self._providers: dict[str, LLMProvider] = {}
        self._health: dict[str, EndpointHealth] = {}
        self._cursor = 0
        self._last_health_check: float | None = None
        self._health_task: asyncio.Task[None] | None = None

        for endpoint in endpoints:
            self.add_endpoint(endpoint)

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "LoadBalancer":
        return cls(
            list(settings.ai_endpoints),
            request_timeout=settings.ai_request_timeout_seconds,
            retry_attempts=settings.ai_retry_attempts,
            health_check_interval=settings.ai_health_check_interval_seconds,
            transport=transport,
        )

    @property
    def endpoints(self) -> list[EndpointConfig]:
        return list(self._endpoints)

    def _make_provider(self, endpoint: EndpointConfig) -> LLMProvider:
        config = LLMConfig(model=endpoint.model, timeout=self.request_timeout)
        return OllamaProvider(config, host=endpoint.url, transport=self._transport)

    def add_endpoint(self, endpoint: EndpointConfig) -> bool:
        """添加端点（已存在时返回 False）."""
        key = endpoint_key(endpoint)
        if key in self._health:
            return False
        self._endpoints.append(endpoint)
        self._providers[key] = self._make_provider(endpoint)
        self._health[key] = EndpointHealth()
        logger.info(f"添加推理端点: {key}")
        return True

    async def remove_endpoint(self, url: str, model: str) -> bool:
        """移除端点."""
        key = endpoint_key(EndpointConfig(url=url, model=model))
        if key not in self._health:
            return False
        self._endpoints = [e for e in self._endpoints if endpoint_key(e) != key]
        del self._health[key]
        provider = self._providers.pop(key)
        await provider.close()
        logger.info(f"移除推理端点: {key}")
        return True

    async def start(self) -> None:
        """启动时探测一次，然后定期探测."""
        await self.check_all()
        if self.health_check_interval > 0 and self._health_task is None:
            self._health_task = asyncio.create_task(self._health_loop())

    async def stop(self) -> None:
        if self._health_task is not None:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None
        for provider in self._providers.values():
            await provider.close()

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_check_interval)
            await self.check_all()

    def _mark_probe(self, key: str, ok: bool, elapsed_ms: float | None = None) -> None:
        health = self._health.get(key)
        if health is None:
            return
        health.last_check = time.time()
        if ok:
            health.healthy = True
            health.consecutive_failures = 0
            if elapsed_ms is not None:
                health.record_latency(elapsed_ms, 0.2)
        else:
            health.healthy = False
            health.consecutive_failures += 1

    async def check_endpoint(self, endpoint: EndpointConfig) -> bool:
        """探测单个端点 /api/tags."""
        key = endpoint_key(endpoint)
        provider = self._providers[key]
        started = time.perf_counter()
        try:
            await provider.ping(PROBE_TIMEOUT_SECONDS)
        except (httpx.HTTPError, OSError) as e:
            self._mark_probe(key, False)
            logger.warning(f"端点 {key} 健康检查失败: {e}")
            return False

        self._mark_probe(key, True, (time.perf_counter() - started) * 1000)
        logger.debug(f"端点 {key} 健康")
        return True

    async def check_all(self) -> dict[str, bool]:
        """并行探测全部端点."""
        endpoints = list(self._endpoints)
        results = await asyncio.gather(*(self.check_endpoint(e) for e in endpoints))
        self._last_health_check = time.time()
        return {endpoint_key(e): ok for e, ok in zip(endpoints, results, strict=True)}

    async def force_health_check(self) -> dict[str, bool]:
        return await self.check_all()

    def apply_probe_results(self, results: dict[str, bool]) -> None:
        """合并执行单元回报的探测结果（未知端点忽略）."""
        for key, ok in results.items():
            self._mark_probe(key, ok)
        self._last_health_check = time.time()

    def healthy_endpoints(self) -> list[EndpointConfig]:
        return [e for e in self._endpoints if self._health[endpoint_key(e)].healthy]

    def next_endpoint(self, exclude: set[str] | None = None) -> EndpointConfig | None:
        """健康端点之间轮询；无可用端点时返回 None."""
        candidates = [
            e for e in self.healthy_endpoints() if endpoint_key(e) not in (exclude or set())
        ]
        if not candidates:
            return None
        endpoint = candidates[self._cursor % len(candidates)]
        self._cursor += 1
        self._health[endpoint_key(endpoint)].request_count += 1
        return endpoint

    def record_success(self, endpoint: EndpointConfig, elapsed_ms: float) -> None:
        health = self._health.get(endpoint_key(endpoint))
        if health is None:
            return
        health.total_requests += 1
        health.successful_requests += 1
        health.consecutive_failures = 0
        health.record_latency(elapsed_ms, 0.1)

    def record_failure(self, endpoint: EndpointConfig) -> None:
        """记录一次请求失败，连续失败达到阈值立即标记为不健康."""
        key = endpoint_key(endpoint)
        health = self._health.get(key)
        if health is None:
            return
        health.total_requests += 1
        health.consecutive_failures += 1
        if health.healthy and health.consecutive_failures >= FAILURE_THRESHOLD:
            health.healthy = False
            logger.warning(f"端点 {key} 连续失败 {health.consecutive_failures} 次，标记为不健康")

    async def route(
        self, call: Callable[[EndpointConfig], Awaitable[Any]]
    ) -> RouteResult:
        """
        选择健康端点执行 call，失败时换下一个健康端点重试.

        call 抛出 InferenceRequestError 计为端点失败；其它异常直接向上抛出，
        不影响端点健康。失败过的端点在本次调用中不再重试。

        Raises:
            NoHealthyEndpointError: 没有健康端点
            InferenceRequestError: 所有尝试均失败
        """
        tried: set[str] = set()
        last_error: Exception | None = None
        for attempt in range(1, self.retry_attempts + 1):
            endpoint = self.next_endpoint(exclude=tried)
            if endpoint is None:
                if last_error is None:
                    msg = "No healthy AI instances available"
                    raise NoHealthyEndpointError(msg)
                break

            key = endpoint_key(endpoint)
            tried.add(key)
            started = time.perf_counter()
            try:
                value = await call(endpoint)
            except InferenceRequestError as e:
                last_error = e
                self.record_failure(endpoint)
                logger.warning(f"端点 {key} 请求失败 (第 {attempt} 次): {e}")
                continue

            elapsed_ms = (time.perf_counter() - started) * 1000
            self.record_success(endpoint, elapsed_ms)
            logger.info(f"端点 {key} 请求完成 ({elapsed_ms:.0f}ms)")
            return RouteResult(
                value=value,
                endpoint=key,
                processing_time_ms=elapsed_ms,
                attempts=attempt,
            )

        msg = f"所有推理端点均失败: {last_error}"
        raise InferenceRequestError(msg)

    def get_statistics(self) -> dict[str, Any]:
        """负载均衡统计."""
        endpoints = []
        for endpoint in self._endpoints:
            health = self._health[endpoint_key(endpoint)]
            stats = asdict(health)
            stats["average_response_time"] = round(health.average_response_time)
            stats["success_rate"] = (
                round(health.successful_requests / health.total_requests * 100)
                if health.total_requests
                else 0
            )
            endpoints.append({"url": endpoint.url, "model": endpoint.model, **stats})

        healthy = len(self.healthy_endpoints())
        return {
            "total_endpoints": len(self._endpoints),
            "healthy_endpoints": healthy,
            "unhealthy_endpoints": len(self._endpoints) - healthy,
            "last_health_check": self._last_health_check,
            "round_robin_index": self._cursor,
            "endpoints": endpoints,
        }
