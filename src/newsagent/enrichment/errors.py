"""Worker 池错误类型."""


class WorkerPoolError(Exception):
    """Worker 池错误基类."""


class QueueFullError(WorkerPoolError):
    """等待队列已满."""


class TaskTimeoutError(WorkerPoolError):
    """任务超过截止时间，执行单元已被强制终止."""


class WorkerCrashedError(WorkerPoolError):
    """执行单元在处理任务时退出."""


class PoolShutdownError(WorkerPoolError):
    """Worker 池正在关闭或已关闭."""


class WorkerTaskError(WorkerPoolError):
    """任务在执行单元内抛出异常."""

    def __init__(self, message: str, error_type: str | None = None) -> None:
        super().__init__(message)
        self.error_type = error_type
