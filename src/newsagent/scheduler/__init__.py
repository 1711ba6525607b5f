"""定时任务模块."""

from newsagent.scheduler.tasks import CycleReport, Orchestrator

__all__ = ["CycleReport", "Orchestrator"]
