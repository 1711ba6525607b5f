"""
进程 Worker 池.

固定数量的子进程（spawn），每个执行单元两条单向管道：
任务管道（主进程 -> 子进程）与结果管道（子进程 -> 主进程）。
主进程在线程执行器中阻塞读取结果管道，不阻塞事件循环。
"""

import asyncio
import itertools
import logging
import multiprocessing
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from multiprocessing.connection import Connection
from multiprocessing.process import BaseProcess
from typing import Any

from newsagent.config import Settings
from newsagent.enrichment.errors import (
    PoolShutdownError,
    QueueFullError,
    TaskTimeoutError,
    WorkerCrashedError,
    WorkerTaskError,
)
from newsagent.enrichment.worker import (
    SummaryTaskHandler,
    TaskHandler,
    worker_options,
    worker_main,
)

logger = logging.getLogger(__name__)

_JOIN_TIMEOUT_SECONDS = 5.0


@dataclass
class PendingTask:
    """等待或正在执行的任务."""

    id: int
    type: str
    data: dict[str, Any]
    future: asyncio.Future[Any]
    dispatched_at: float | None = None


@dataclass
class WorkerUnit:
    """一个执行单元（子进程 + 两条管道）."""

    worker_id: int
    process: BaseProcess
    task_conn: Connection
    result_conn: Connection
    task: PendingTask | None = None
    deadline: asyncio.TimerHandle | None = None
    timed_out: bool = False
    listener: asyncio.Task[None] | None = None

    @property
    def busy(self) -> bool:
        return self.task is not None


@dataclass
class PoolStatistics:
    """Worker 池统计."""

    tasks_submitted: int = 0
    tasks_completed: int = 0
    tasks_errored: int = 0
    tasks_timed_out: int = 0
    tasks_crashed: int = 0
    total_processing_time: float = 0.0
    queue_peak: int = 0
    workers_created: int = 0
    workers_terminated: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def average_processing_time(self) -> float:
        finished = self.tasks_completed + self.tasks_errored
        return self.total_processing_time / finished if finished else 0.0


class WorkerPool:
    """固定大小的进程池，FIFO 分发任务到空闲执行单元."""

    def __init__(
        self,
        size: int = 2,
        max_queue_size: int = 100,
        task_timeout: float = 60.0,
        respawn_delay: float = 1.0,
        handler_cls: type[TaskHandler] = SummaryTaskHandler,
        options: dict[str, Any] | None = None,
    ) -> None:
        self.size = size
        self.max_queue_size = max_queue_size
        self.task_timeout = task_timeout
        self.respawn_delay = respawn_delay
        self.handler_cls = handler_cls
        self.options = options or {}
        self.stats = PoolStatistics()

        self._ctx = multiprocessing.get_context("spawn")
        self._units: dict[int, WorkerUnit] = {}
        self._queue: deque[PendingTask] = deque()
        self._ids = itertools.count(1)
        self._executor = ThreadPoolExecutor(
            max_workers=size * 2, thread_name_prefix="pool-listener"
        )
        self._respawns: set[asyncio.Task[None]] = set()
        self._started = False
        self._closing = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkerPool":
        return cls(
            size=settings.worker_pool_size,
            max_queue_size=settings.worker_max_queue_size,
            task_timeout=settings.worker_task_timeout_seconds,
            respawn_delay=settings.worker_respawn_delay_seconds,
            options=worker_options(settings),
        )

    @property
    def is_running(self) -> bool:
        return self._started and not self._closing

    @property
    def idle_count(self) -> int:
        return sum(
            1
            for unit in self._units.values()
            if not unit.busy and not unit.timed_out and unit.process.is_alive()
        )

    @property
    def busy_count(self) -> int:
        return sum(1 for unit in self._units.values() if unit.busy)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    async def start(self) -> None:
        """启动全部执行单元."""
        if self._started:
            return
        self._started = True
        for worker_id in range(1, self.size + 1):
            self._spawn(worker_id)
        logger.info(f"Worker 池已启动: {self.size} 个执行单元")

    def _spawn(self, worker_id: int) -> WorkerUnit:
        task_reader, task_writer = self._ctx.Pipe(duplex=False)
        result_reader, result_writer = self._ctx.Pipe(duplex=False)
        process = self._ctx.Process(
            target=worker_main,
            args=(worker_id, task_reader, result_writer, self.handler_cls, self.options),
            name=f"newsagent-worker-{worker_id}",
            daemon=True,
        )
        process.start()
        # 只保留主进程这一端，子进程退出时读取端才能收到 EOF
        task_reader.close()
        result_writer.close()

        unit = WorkerUnit(
            worker_id=worker_id,
            process=process,
            task_conn=task_writer,
            result_conn=result_reader,
        )
        unit.listener = asyncio.create_task(self._listen(unit))
        self._units[worker_id] = unit
        self.stats.workers_created += 1
        logger.debug(f"执行单元 {worker_id} 已创建 (pid={process.pid})")
        return unit

    async def submit_task(self, task_type: str, data: dict[str, Any] | None = None) -> Any:
        """
        提交任务并等待结果.

        Raises:
            QueueFullError: 等待队列已满
            PoolShutdownError: 池已关闭
            TaskTimeoutError: 任务超时
            WorkerCrashedError: 执行单元崩溃
            WorkerTaskError: 任务内部出错
        """
        if self._closing or not self._started:
            msg = "Worker 池未运行"
            raise PoolShutdownError(msg)
        if len(self._queue) >= self.max_queue_size:
            msg = f"等待队列已满 ({self.max_queue_size})"
            raise QueueFullError(msg)

        loop = asyncio.get_running_loop()
        task = PendingTask(
            id=next(self._ids),
            type=task_type,
            data=data or {},
            future=loop.create_future(),
        )
        self._queue.append(task)
        self.stats.tasks_submitted += 1
        self.stats.queue_peak = max(self.stats.queue_peak, len(self._queue))
        self._dispatch()
        return await task.future

    def _dispatch(self) -> None:
        """把队首任务交给空闲执行单元."""
        # 丢弃调用方已取消的任务
        while self._queue and self._queue[0].future.done():
            self._queue.popleft()

        for unit in list(self._units.values()):
            if not self._queue:
                return
            if unit.busy or unit.timed_out or not unit.process.is_alive():
                continue

            task = self._queue.popleft()
            try:
                unit.task_conn.send({"id": task.id, "type": task.type, "data": task.data})
            except OSError as e:
                logger.warning(f"向执行单元 {unit.worker_id} 发送任务失败: {e}")
                self._queue.appendleft(task)
                continue

            task.dispatched_at = time.perf_counter()
            unit.task = task
            unit.deadline = asyncio.get_running_loop().call_later(
                self.task_timeout, self._on_timeout, unit, task.id
            )

    def _on_timeout(self, unit: WorkerUnit, task_id: int) -> None:
        task = unit.task
        if task is None or task.id != task_id:
            return

        unit.task = None
        unit.deadline = None
        unit.timed_out = True
        self.stats.tasks_timed_out += 1
        if not task.future.done():
            msg = f"任务 {task_id} 超时 ({self.task_timeout}s)"
            task.future.set_exception(TaskTimeoutError(msg))
        logger.warning(f"执行单元 {unit.worker_id} 任务 {task_id} 超时，强制终止")
        unit.process.kill()

    def _on_result(self, unit: WorkerUnit, message: dict[str, Any]) -> None:
        task = unit.task
        if task is None or message.get("id") != task.id:
            logger.debug(f"忽略过期结果: 执行单元 {unit.worker_id} 任务 {message.get('id')}")
            return

        if unit.deadline is not None:
            unit.deadline.cancel()
            unit.deadline = None
        unit.task = None
        if task.dispatched_at is not None:
            self.stats.total_processing_time += time.perf_counter() - task.dispatched_at

        if message.get("ok"):
            self.stats.tasks_completed += 1
            if not task.future.done():
                task.future.set_result(message.get("result"))
        else:
            self.stats.tasks_errored += 1
            if not task.future.done():
                task.future.set_exception(
                    WorkerTaskError(message.get("error", ""), message.get("error_type"))
                )

        if not self._closing:
            self._dispatch()

    async def _listen(self, unit: WorkerUnit) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                message = await loop.run_in_executor(self._executor, unit.result_conn.recv)
            except (EOFError, OSError):
                break
            self._on_result(unit, message)
        self._on_exit(unit)

    def _on_exit(self, unit: WorkerUnit) -> None:
        """执行单元退出：拒绝在途任务，必要时重建."""
        if unit.deadline is not None:
            unit.deadline.cancel()
            unit.deadline = None

        task = unit.task
        unit.task = None
        if task is not None and not task.future.done():
            if self._closing:
                task.future.set_exception(PoolShutdownError("Worker 池正在关闭"))
            else:
                self.stats.tasks_crashed += 1
                msg = f"执行单元 {unit.worker_id} 异常退出 (exitcode={unit.process.exitcode})"
                task.future.set_exception(WorkerCrashedError(msg))

        self.stats.workers_terminated += 1
        unit.task_conn.close()
        unit.result_conn.close()
        if self._closing or self._units.get(unit.worker_id) is not unit:
            return

        delay = 0.0 if unit.timed_out else self.respawn_delay
        if not unit.timed_out:
            logger.warning(f"执行单元 {unit.worker_id} 已退出，{delay}s 后重建")
        respawn = asyncio.create_task(self._respawn(unit.worker_id, delay))
        self._respawns.add(respawn)
        respawn.add_done_callback(self._respawns.discard)

    async def _respawn(self, worker_id: int, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        if self._closing:
            return
        await asyncio.get_running_loop().run_in_executor(
            self._executor, self._units[worker_id].process.join, _JOIN_TIMEOUT_SECONDS
        )
        self._spawn(worker_id)
        logger.info(f"执行单元 {worker_id} 已重建")
        self._dispatch()

    async def shutdown(self) -> None:
        """停止接收任务，拒绝排队与在途任务，终止并回收全部执行单元."""
        if self._closing:
            return
        self._closing = True
        logger.info("正在关闭 Worker 池...")

        for task in self._respawns:
            task.cancel()
        while self._queue:
            task = self._queue.popleft()
            if not task.future.done():
                task.future.set_exception(PoolShutdownError("Worker 池已关闭"))

        loop = asyncio.get_running_loop()
        units = list(self._units.values())
        for unit in units:
            if unit.deadline is not None:
                unit.deadline.cancel()
                unit.deadline = None
            if unit.task is not None and not unit.task.future.done():
                unit.task.future.set_exception(PoolShutdownError("Worker 池已关闭"))
            unit.task = None
            if unit.process.is_alive():
                unit.process.terminate()

        for unit in units:
            await loop.run_in_executor(
                self._executor, unit.process.join, _JOIN_TIMEOUT_SECONDS
            )
            if unit.process.is_alive():
                unit.process.kill()
                await loop.run_in_executor(self._executor, unit.process.join)
            if unit.listener is not None:
                await unit.listener

        self._executor.shutdown(wait=False)
        logger.info("Worker 池已关闭")

    def get_statistics(self) -> dict[str, Any]:
        """Worker 池统计."""
        return {
            "pool_size": self.size,
            "idle_workers": self.idle_count,
            "busy_workers": self.busy_count,
            "queue_size": len(self._queue),
            "max_queue_size": self.max_queue_size,
            "tasks_submitted": self.stats.tasks_submitted,
            "tasks_completed": self.stats.tasks_completed,
            "tasks_errored": self.stats.tasks_errored,
            "tasks_timed_out": self.stats.tasks_timed_out,
            "tasks_crashed": self.stats.tasks_crashed,
            "average_processing_time": round(self.stats.average_processing_time, 3),
            "queue_peak": self.stats.queue_peak,
            "workers_created": self.stats.workers_created,
            "workers_terminated": self.stats.workers_terminated,
            "uptime_seconds": round(time.time() - self.stats.started_at),
        }
