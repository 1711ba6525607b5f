"""文章摘要 Worker 池."""

from newsagent.enrichment.errors import (
    PoolShutdownError,
    QueueFullError,
    TaskTimeoutError,
    WorkerCrashedError,
    WorkerPoolError,
    WorkerTaskError,
)
from newsagent.enrichment.pool import WorkerPool
from newsagent.enrichment.worker import SummaryTaskHandler, TaskHandler, TaskType

__all__ = [
    "PoolShutdownError",
    "QueueFullError",
    "SummaryTaskHandler",
    "TaskHandler",
    "TaskTimeoutError",
    "TaskType",
    "WorkerCrashedError",
    "WorkerPool",
    "WorkerPoolError",
    "WorkerTaskError",
]
