"""Task scheduling — APScheduler + SQLite bridge."""

from toolbot.core.cron.scheduler import TaskScheduler, next_cron_fire
from toolbot.core.cron.types import ScheduledTask, ScheduleSpec, TaskInfo, TaskRun

__all__ = [
    "ScheduleSpec",
    "ScheduledTask",
    "TaskInfo",
    "TaskRun",
    "TaskScheduler",
    "next_cron_fire",
]
