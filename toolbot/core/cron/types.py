"""Schedule specs and scheduled task types."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ════════════════════════════════════════════════════════════
# SCHEDULE SPEC (tagged union on ``type``)
# ════════════════════════════════════════════════════════════


class ScheduledAt(BaseModel):
    """Fire once at an absolute instant (naive datetimes are UTC)."""

    type: Literal["scheduled"] = "scheduled"
    date: datetime


class Delayed(BaseModel):
    """Fire once, ``delay_in_seconds`` from submission."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["delayed"] = "delayed"
    delay_in_seconds: float = Field(alias="delayInSeconds")


class CronSchedule(BaseModel):
    """Fire on every occurrence of a 5-field crontab expression."""

    type: Literal["cron"] = "cron"
    cron: str


class NoSchedule(BaseModel):
    type: Literal["no-schedule"] = "no-schedule"


ScheduleSpec = Annotated[
    Union[ScheduledAt, Delayed, CronSchedule, NoSchedule],
    Field(discriminator="type"),
]


# ════════════════════════════════════════════════════════════
# TASKS
# ════════════════════════════════════════════════════════════


TaskStatus = Literal["pending", "due", "retired", "cancelled"]


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


class ScheduledTask(BaseModel):
    """Scheduled task, mirroring the SQLite ``scheduled_tasks`` table.

    ``schedule_value`` holds what produced the task: the ISO instant for
    ``scheduled``, the delay for ``delayed`` and the crontab string for
    ``cron`` (kept so the next occurrence can be recomputed after a fire).
    """

    task_id: str
    session_id: str
    schedule_type: Literal["scheduled", "delayed", "cron"]
    schedule_value: str
    tool_name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    next_fire: datetime
    status: TaskStatus = "pending"
    last_status: str | None = None
    last_error: str | None = None
    last_run_at: datetime | None = None

    @property
    def is_recurring(self) -> bool:
        return self.schedule_type == "cron"

    @property
    def description(self) -> str:
        return str(self.payload.get("description", ""))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ScheduledTask:
        data = dict(row)
        data["payload"] = json.loads(data.get("payload") or "{}")
        data["next_fire"] = from_timestamp(data["next_fire"])
        if data.get("last_run_at") is not None:
            data["last_run_at"] = from_timestamp(data["last_run_at"])
        return cls.model_validate(data)


class TaskInfo(BaseModel):
    """Public listing entry for ``get_scheduled_tasks``."""

    id: str
    tool_name: str
    next_fire: datetime
    schedule_type: str
    schedule_value: str
    description: str = ""
    last_status: str | None = None
    last_error: str | None = None

    @classmethod
    def from_task(cls, task: ScheduledTask) -> TaskInfo:
        return cls(
            id=task.task_id,
            tool_name=task.tool_name,
            next_fire=task.next_fire,
            schedule_type=task.schedule_type,
            schedule_value=task.schedule_value,
            description=task.description,
            last_status=task.last_status,
            last_error=task.last_error,
        )


class TaskRun(BaseModel):
    """Outcome of one firing, as recorded in ``task_runs``."""

    task_id: str
    tool_name: str
    status: str  # executed | pending | error
    detail: str = ""
    fired_at: datetime
    call_id: str | None = None
