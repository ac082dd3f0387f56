"""TaskScheduler — SQLite-backed scheduled tool calls driven by APScheduler."""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger
from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaValidationError

from toolbot.agent.context import agent_scope
from toolbot.core.config.schema import SchedulerConfig
from toolbot.core.cron.types import (
    CronSchedule,
    Delayed,
    NoSchedule,
    ScheduledAt,
    ScheduledTask,
    ScheduleSpec,
    TaskInfo,
    TaskRun,
    from_timestamp,
    to_utc,
)
from toolbot.core.errors import InvalidScheduleError, UnknownTaskError, ValidationError
from toolbot.memory.store import TaskStore

if TYPE_CHECKING:
    from toolbot.agent.context import AgentContext
    from toolbot.agent.runner import Agent
    from toolbot.core.config.schema import Config

_TICK_JOB_ID = "toolbot:tick"
_SPEC_ADAPTER: TypeAdapter = TypeAdapter(ScheduleSpec)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_schedule(spec: Any) -> ScheduledAt | Delayed | CronSchedule | NoSchedule:
    """Coerce a wire-format ``when`` object into a ScheduleSpec variant."""
    if isinstance(spec, (ScheduledAt, Delayed, CronSchedule, NoSchedule)):
        return spec
    try:
        return _SPEC_ADAPTER.validate_python(spec)
    except SchemaValidationError as e:
        raise InvalidScheduleError(f"Not a valid schedule input: {e.errors()[0]['msg']}") from e


def next_cron_fire(expr: str, now: datetime, tz: str = "UTC") -> datetime:
    """First occurrence of ``expr`` strictly after ``now`` (returned in UTC)."""
    try:
        trigger = CronTrigger.from_crontab(expr, timezone=tz)
    except ValueError as e:
        raise InvalidScheduleError(f"Invalid cron expression {expr!r}: {e}") from e
    # Crontab resolution is one second; start on the next whole second.
    start = to_utc(now).replace(microsecond=0) + timedelta(seconds=1)
    nxt = trigger.get_next_fire_time(None, start)
    if nxt is None:
        raise InvalidScheduleError(f"Cron expression {expr!r} never fires")
    return to_utc(nxt)


class TaskScheduler:
    """Bridge between SQLite scheduled_tasks and APScheduler.

    Tasks are persisted in SQLite (source of truth). APScheduler only
    provides the wake-ups: a recurring tick plus a one-shot wake at each
    task's next fire. On every tick due tasks are fired through the
    agent's confirmation gate in (next_fire, task_id) order.
    """

    def __init__(self, db: TaskStore, agent: Agent, config: Config | None = None):
        self.db = db
        self.agent = agent
        self.settings: SchedulerConfig = config.scheduler if config else SchedulerConfig()
        self._scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )
        self._tick_lock = asyncio.Lock()

    @property
    def session_id(self) -> str:
        return self.agent.session_id

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def start(self) -> None:
        """Recover stranded tasks, register the tick job and start the timer."""
        requeued = self.db.requeue_due_tasks(self.session_id)
        if requeued:
            logger.warning(f"Re-queued {requeued} task(s) interrupted mid-fire")

        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.settings.tick_interval_s),
            id=_TICK_JOB_ID,
            next_run_time=utcnow(),  # overdue tasks fire right away
            replace_existing=True,
        )
        self._scheduler.start()
        active = self.db.get_active_tasks(self.session_id)
        logger.info(
            f"TaskScheduler started for session={self.session_id} "
            f"with {len(active)} active task(s)"
        )

    async def stop(self) -> None:
        """Shutdown the timer; persisted tasks are left untouched."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("TaskScheduler stopped")

    # ── Submission ──────────────────────────────────────────

    def submit(
        self,
        spec: Any,
        tool_name: str,
        payload: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> str:
        """Persist a scheduled call of ``tool_name`` and return its task id.

        Raises
        ------
        InvalidScheduleError
            ``no-schedule``, a past instant, a non-positive delay, a
            malformed cron expression, or a payload the tool would reject.
        UnknownToolError
            ``tool_name`` is not registered.
        """
        now = to_utc(now) if now else utcnow()
        spec = parse_schedule(spec)
        definition = self.agent.registry.lookup(tool_name)
        try:
            definition.validate(payload or {})
        except ValidationError as e:
            raise InvalidScheduleError(f"Payload would never run: {e}") from e

        next_fire, value = self._first_fire(spec, now)
        task_id = uuid.uuid4().hex[:8]
        self.db.add_task(
            task_id,
            self.session_id,
            spec.type,
            value,
            tool_name,
            json.dumps(payload or {}),
            next_fire.timestamp(),
        )
        self._arm_wake(task_id, next_fire)
        logger.info(
            f"Task scheduled: {task_id} ({spec.type} {value}) → {tool_name} "
            f"at {next_fire.isoformat()}"
        )
        return task_id

    def _first_fire(self, spec, now: datetime) -> tuple[datetime, str]:
        if isinstance(spec, NoSchedule):
            raise InvalidScheduleError("Not a valid schedule input: no-schedule")
        if isinstance(spec, ScheduledAt):
            when = to_utc(spec.date)
            if when < now:
                raise InvalidScheduleError(
                    f"Scheduled time {when.isoformat()} is in the past"
                )
            return when, when.isoformat()
        if isinstance(spec, Delayed):
            if spec.delay_in_seconds <= 0:
                raise InvalidScheduleError(
                    f"Delay must be positive, got {spec.delay_in_seconds:g}s"
                )
            return now + timedelta(seconds=spec.delay_in_seconds), f"{spec.delay_in_seconds:g}"
        return next_cron_fire(spec.cron, now, self.settings.timezone), spec.cron

    # ── Listing / cancellation ──────────────────────────────

    def get_task(self, task_id: str) -> ScheduledTask:
        row = self.db.get_task(task_id)
        if row is None or row["session_id"] != self.session_id:
            raise UnknownTaskError(task_id)
        return ScheduledTask.from_row(row)

    def get_scheduled_tasks(self) -> list[TaskInfo]:
        """Active tasks ordered by next fire, then task id."""
        return [
            TaskInfo.from_task(ScheduledTask.from_row(r))
            for r in self.db.get_active_tasks(self.session_id)
        ]

    def get_task_runs(self, task_id: str, limit: int | None = None) -> list[TaskRun]:
        task = self.get_task(task_id)
        rows = self.db.get_task_runs(task.task_id, limit or self.settings.history_limit)
        return [
            TaskRun(
                task_id=r["task_id"],
                tool_name=r["tool_name"],
                status=r["status"],
                detail=r["detail"] or "",
                call_id=r["call_id"],
                fired_at=from_timestamp(r["fired_at"]),
            )
            for r in rows
        ]

    def cancel(self, task_id: str) -> None:
        """Cancel an active task. An in-flight firing is not interrupted."""
        row = self.db.get_task(task_id)
        if (
            row is None
            or row["session_id"] != self.session_id
            or not self.db.cancel_task(task_id)
        ):
            raise UnknownTaskError(task_id)
        self._disarm(task_id)
        logger.info(f"Task cancelled: {task_id}")

    # ── Firing ──────────────────────────────────────────────

    async def tick(self, now: datetime | None = None) -> list[TaskRun]:
        """Fire every task due at ``now``. Never raises for a single task."""
        now = to_utc(now) if now else utcnow()
        async with self._tick_lock:
            rows = self.db.get_due_tasks(self.session_id, now.timestamp())
            if not rows:
                return []
            runs: list[TaskRun] = []
            with agent_scope(self.agent, origin="tick") as ctx:
                for row in rows:
                    task = ScheduledTask.from_row(row)
                    try:
                        run = await self._fire(task, row["next_fire"], now, ctx)
                    except Exception as e:
                        logger.error(f"Scheduled task {task.task_id} failed: {e}")
                        run = self._settle_failure(task, now, e)
                    if run is not None:
                        runs.append(run)
            return runs

    async def _fire(
        self, task: ScheduledTask, next_fire: float, now: datetime, ctx: AgentContext,
    ) -> TaskRun | None:
        if not self.db.mark_task_due(task.task_id, next_fire):
            logger.debug(f"Task {task.task_id} no longer pending, skipped")
            return None

        logger.info(f"Task trigger: {task.task_id} → {task.tool_name}")
        call_id = f"sched_{task.task_id}_{uuid.uuid4().hex[:6]}"
        result = await self.agent.gate.dispatch(
            task.tool_name,
            task.payload,
            call_id,
            ctx,
            origin=f"schedule:{task.task_id}",
        )
        detail = result.to_text()
        fired_at = now.timestamp()
        self.db.log_task_run(
            task.task_id, task.tool_name, result.status, detail, fired_at, call_id=call_id,
        )
        self.db.record_task_outcome(
            task.task_id,
            result.status,
            result.message if result.status == "error" else None,
            fired_at,
        )
        if result.status == "error":
            logger.error(f"Task {task.task_id} → {result.kind}: {result.message}")

        self._advance(task, now)
        return TaskRun(
            task_id=task.task_id,
            tool_name=task.tool_name,
            status=result.status,
            detail=detail,
            call_id=call_id,
            fired_at=now,
        )

    def _settle_failure(
        self, task: ScheduledTask, now: datetime, err: Exception,
    ) -> TaskRun | None:
        """Record a crashed firing and move the task on, as a normal fire would."""
        fired_at = now.timestamp()
        detail = f"{type(err).__name__}: {err}"
        try:
            self.db.log_task_run(task.task_id, task.tool_name, "error", detail, fired_at)
            self.db.record_task_outcome(task.task_id, "error", detail, fired_at)
            self._advance(task, now)
        except Exception as e:
            # Still "due" here; start() re-queues it.
            logger.error(f"Could not settle task {task.task_id}: {e}")
            return None
        return TaskRun(
            task_id=task.task_id,
            tool_name=task.tool_name,
            status="error",
            detail=detail,
            fired_at=now,
        )

    def _advance(self, task: ScheduledTask, now: datetime) -> None:
        """Reschedule a cron task after ``now``; retire one-shot tasks."""
        if not task.is_recurring:
            self.db.retire_task(task.task_id)
            return
        try:
            nxt = next_cron_fire(task.schedule_value, now, self.settings.timezone)
        except InvalidScheduleError as e:
            logger.error(f"Retiring cron task {task.task_id}: {e}")
            self.db.retire_task(task.task_id)
            return
        if self.db.reschedule_task(task.task_id, nxt.timestamp()):
            self._arm_wake(task.task_id, nxt)

    # ── APScheduler wake-ups ────────────────────────────────

    def _arm_wake(self, task_id: str, when: datetime) -> None:
        if not self._scheduler.running:
            return
        self._scheduler.add_job(
            self.tick,
            trigger=DateTrigger(run_date=when),
            id=f"wake:{task_id}",
            replace_existing=True,
        )

    def _disarm(self, task_id: str) -> None:
        try:
            self._scheduler.remove_job(f"wake:{task_id}")
        except JobLookupError:
            pass  # no wake-up armed
