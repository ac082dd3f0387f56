"""Tests for TaskScheduler — submission, tick firing, cancellation and recovery."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import BaseModel

from toolbot.agent.gate import ToolResult
from toolbot.agent.runner import Agent
from toolbot.agent.tools import ToolDefinition, ToolRegistry
from toolbot.agent.tools.scheduling import ExecuteTaskInput, execute_task
from toolbot.core.config import Config
from toolbot.core.cron.scheduler import next_cron_fire, parse_schedule
from toolbot.core.cron.types import Delayed
from toolbot.core.errors import InvalidScheduleError, UnknownTaskError, UnknownToolError
from toolbot.memory.store import TaskStore

NOW = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


class NoteInput(BaseModel):
    description: str = ""


async def fail(args, ctx):
    raise RuntimeError("disk full")


@pytest.fixture
def store(tmp_path):
    return TaskStore(str(tmp_path / "test.db"))


@pytest.fixture
def fired():
    return []


@pytest.fixture
def registry(fired):
    async def record(args, ctx):
        fired.append(args.description)
        return f"recorded {args.description}"

    r = ToolRegistry()
    r.register(ToolDefinition("execute_task", "Run task", ExecuteTaskInput, execute=execute_task))
    r.register(ToolDefinition("record", "Record description", NoteInput, execute=record))
    r.register(ToolDefinition("fail", "Always fails", NoteInput, execute=fail))
    r.register(ToolDefinition("deploy", "Deploy to production", NoteInput))
    r.register_execution("deploy", AsyncMock(return_value="deployed"))
    return r


@pytest.fixture
def agent(store, registry):
    return Agent(Config(), store, registry=registry)


@pytest.fixture
def sched(agent):
    return agent.scheduler


# ── Cron evaluation ────────────────────────────────────────


def test_cron_next_fire():
    assert next_cron_fire("0 9 * * *", NOW) == datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)


def test_cron_next_fire_is_pure():
    first = next_cron_fire("*/15 * * * *", NOW)
    assert all(next_cron_fire("*/15 * * * *", NOW) == first for _ in range(5))
    assert first == NOW + timedelta(minutes=15)


def test_cron_next_fire_strictly_after_now():
    at_nine = datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)
    assert next_cron_fire("0 9 * * *", at_nine) == at_nine + timedelta(days=1)


def test_cron_next_fire_naive_is_utc():
    assert next_cron_fire("0 9 * * *", NOW.replace(tzinfo=None)) == datetime(
        2024, 1, 2, 9, 0, tzinfo=timezone.utc
    )


def test_cron_next_fire_in_timezone():
    # 09:00 in Istanbul (UTC+3) is 06:00 UTC
    nxt = next_cron_fire("0 9 * * *", NOW, tz="Europe/Istanbul")
    assert nxt == datetime(2024, 1, 2, 6, 0, tzinfo=timezone.utc)


def test_cron_malformed():
    with pytest.raises(InvalidScheduleError):
        next_cron_fire("not a cron", NOW)
    with pytest.raises(InvalidScheduleError):
        next_cron_fire("61 * * * *", NOW)


def test_parse_schedule_wire_format():
    spec = parse_schedule({"type": "delayed", "delayInSeconds": 30})
    assert isinstance(spec, Delayed)
    assert spec.delay_in_seconds == 30
    with pytest.raises(InvalidScheduleError):
        parse_schedule({"type": "sometimes"})


# ── Submission ─────────────────────────────────────────────


def test_submit_delayed(sched):
    task_id = sched.submit({"type": "delayed", "delayInSeconds": 60}, "execute_task", now=NOW)
    task = sched.get_task(task_id)
    assert task.next_fire == NOW + timedelta(seconds=60)
    assert task.status == "pending"
    assert task.schedule_type == "delayed"


def test_submit_cron(sched):
    task_id = sched.submit({"type": "cron", "cron": "0 9 * * *"}, "execute_task", now=NOW)
    assert sched.get_task(task_id).next_fire == datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)


def test_submit_scheduled(sched):
    when = NOW + timedelta(hours=2)
    task_id = sched.submit({"type": "scheduled", "date": when.isoformat()}, "execute_task", now=NOW)
    assert sched.get_task(task_id).next_fire == when


def test_submit_scheduled_now_is_accepted(sched):
    task_id = sched.submit({"type": "scheduled", "date": NOW.isoformat()}, "execute_task", now=NOW)
    assert sched.get_task(task_id).next_fire == NOW


@pytest.mark.parametrize(
    "spec",
    [
        {"type": "delayed", "delayInSeconds": -5},
        {"type": "delayed", "delayInSeconds": 0},
        {"type": "scheduled", "date": "2023-12-31T10:00:00+00:00"},
        {"type": "cron", "cron": "every morning"},
        {"type": "no-schedule"},
    ],
)
def test_submit_rejects_invalid(sched, spec):
    with pytest.raises(InvalidScheduleError):
        sched.submit(spec, "execute_task", now=NOW)
    assert sched.get_scheduled_tasks() == []


def test_submit_unknown_tool(sched):
    with pytest.raises(UnknownToolError):
        sched.submit({"type": "delayed", "delayInSeconds": 5}, "teleport", now=NOW)
    assert sched.get_scheduled_tasks() == []


def test_listing_order(sched):
    later = sched.submit({"type": "delayed", "delayInSeconds": 120}, "execute_task", now=NOW)
    sooner = sched.submit({"type": "delayed", "delayInSeconds": 60}, "execute_task", now=NOW)
    assert [t.id for t in sched.get_scheduled_tasks()] == [sooner, later]


def test_submit_arms_wake_when_running(sched):
    with patch.object(sched, "_scheduler") as mock_sched:
        mock_sched.running = True
        task_id = sched.submit({"type": "delayed", "delayInSeconds": 60}, "execute_task", now=NOW)
    mock_sched.add_job.assert_called_once()
    assert mock_sched.add_job.call_args.kwargs["id"] == f"wake:{task_id}"


# ── Tick ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_tick_nothing_due(sched, fired):
    sched.submit({"type": "delayed", "delayInSeconds": 60}, "record", now=NOW)
    assert await sched.tick(NOW + timedelta(seconds=30)) == []
    assert fired == []


@pytest.mark.asyncio
async def test_tick_fires_and_retires_one_shot(sched, agent):
    task_id = sched.submit(
        {"type": "delayed", "delayInSeconds": 60},
        "execute_task",
        {"description": "water the plants"},
        now=NOW,
    )
    runs = await sched.tick(NOW + timedelta(seconds=61))

    assert len(runs) == 1
    assert runs[0].task_id == task_id
    assert runs[0].status == "executed"
    assert runs[0].detail == "Running scheduled task: water the plants"
    assert agent.state["executed_tasks"] == ["water the plants"]
    assert sched.get_scheduled_tasks() == []
    assert sched.get_task(task_id).status == "retired"

    # Already retired: a second tick is a no-op
    assert await sched.tick(NOW + timedelta(seconds=120)) == []


@pytest.mark.asyncio
async def test_tick_same_instant_fires_in_id_order(sched, fired):
    ids = [
        sched.submit({"type": "delayed", "delayInSeconds": 30}, "record", {"description": f"t{i}"}, now=NOW)
        for i in range(4)
    ]
    by_id = {tid: f"t{i}" for i, tid in enumerate(ids)}

    runs = await sched.tick(NOW + timedelta(minutes=1))
    assert [r.task_id for r in runs] == sorted(ids)
    assert fired == [by_id[tid] for tid in sorted(ids)]


@pytest.mark.asyncio
async def test_tick_earlier_fire_goes_first(sched, fired):
    sched.submit({"type": "delayed", "delayInSeconds": 50}, "record", {"description": "second"}, now=NOW)
    sched.submit({"type": "delayed", "delayInSeconds": 10}, "record", {"description": "first"}, now=NOW)
    await sched.tick(NOW + timedelta(minutes=1))
    assert fired == ["first", "second"]


@pytest.mark.asyncio
async def test_tick_reschedules_cron(sched, fired):
    task_id = sched.submit({"type": "cron", "cron": "0 9 * * *"}, "record", {"description": "standup"}, now=NOW)

    runs = await sched.tick(datetime(2024, 1, 2, 9, 0, 30, tzinfo=timezone.utc))
    assert [r.task_id for r in runs] == [task_id]
    assert fired == ["standup"]

    task = sched.get_task(task_id)
    assert task.status == "pending"
    assert task.next_fire == datetime(2024, 1, 3, 9, 0, tzinfo=timezone.utc)
    assert task.last_status == "executed"


@pytest.mark.asyncio
async def test_cron_missed_occurrences_fire_once(sched, fired):
    task_id = sched.submit({"type": "cron", "cron": "0 9 * * *"}, "record", {"description": "daily"}, now=NOW)
    # Three days late
    late = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)
    await sched.tick(late)
    assert fired == ["daily"]
    assert sched.get_task(task_id).next_fire == datetime(2024, 1, 6, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_failing_task_does_not_block_others(sched, fired):
    bad = sched.submit({"type": "delayed", "delayInSeconds": 10}, "fail", now=NOW)
    good = sched.submit({"type": "delayed", "delayInSeconds": 20}, "record", {"description": "ok"}, now=NOW)

    runs = await sched.tick(NOW + timedelta(minutes=1))
    assert [r.status for r in runs] == ["error", "executed"]
    assert fired == ["ok"]

    failed = sched.get_task(bad)
    assert failed.last_status == "error"
    assert "disk full" in failed.last_error
    assert sched.get_task(good).last_error is None


@pytest.mark.asyncio
async def test_tick_survives_dispatch_crash(sched, agent):
    first = sched.submit({"type": "delayed", "delayInSeconds": 10}, "record", now=NOW)
    second = sched.submit({"type": "delayed", "delayInSeconds": 20}, "record", now=NOW)

    ok = ToolResult(status="executed", call_id="x", tool_name="record", result="fine")
    with patch.object(agent.gate, "dispatch", AsyncMock(side_effect=[RuntimeError("boom"), ok])):
        runs = await sched.tick(NOW + timedelta(minutes=1))

    assert [(r.task_id, r.status) for r in runs] == [(first, "error"), (second, "executed")]
    crashed = sched.get_task(first)
    assert crashed.status == "retired"
    assert crashed.last_status == "error"
    assert "boom" in crashed.last_error
    assert sched.get_task_runs(first)[0].status == "error"


@pytest.mark.asyncio
async def test_cron_keeps_firing_after_crash(sched, agent, fired):
    task_id = sched.submit({"type": "cron", "cron": "* * * * *"}, "record", {"description": "beat"}, now=NOW)

    with patch.object(agent.gate, "dispatch", AsyncMock(side_effect=RuntimeError("db locked"))):
        await sched.tick(NOW + timedelta(minutes=1))

    task = sched.get_task(task_id)
    assert task.status == "pending"
    assert task.last_status == "error"
    assert task.next_fire == NOW + timedelta(minutes=2)

    runs = await sched.tick(NOW + timedelta(minutes=5))
    assert [r.status for r in runs] == ["executed"]
    assert fired == ["beat"]
    assert sched.get_task(task_id).last_status == "executed"


@pytest.mark.asyncio
async def test_confirm_tool_fired_by_schedule_is_parked(sched, agent, registry):
    task_id = sched.submit({"type": "delayed", "delayInSeconds": 5}, "deploy", {"description": "v2"}, now=NOW)

    runs = await sched.tick(NOW + timedelta(seconds=10))
    assert runs[0].status == "pending"

    pending = agent.pending()
    assert len(pending) == 1
    assert pending[0].tool_name == "deploy"
    assert pending[0].origin == f"schedule:{task_id}"
    assert pending[0].call_id == runs[0].call_id
    registry.executor_for("deploy").run.assert_not_awaited()

    result = await agent.resolve(pending[0].call_id, "approve")
    assert result.status == "executed"
    assert result.result == "deployed"


@pytest.mark.asyncio
async def test_task_runs_history(sched):
    task_id = sched.submit({"type": "cron", "cron": "*/5 * * * *"}, "record", {"description": "ping"}, now=NOW)
    await sched.tick(NOW + timedelta(minutes=5))
    await sched.tick(NOW + timedelta(minutes=10))

    runs = sched.get_task_runs(task_id)
    assert len(runs) == 2
    assert runs[0].fired_at == NOW + timedelta(minutes=10)
    assert all(r.status == "executed" for r in runs)
    assert len(sched.get_task_runs(task_id, limit=1)) == 1


# ── Cancellation ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel(sched, fired):
    task_id = sched.submit({"type": "delayed", "delayInSeconds": 60}, "record", now=NOW)
    sched.cancel(task_id)
    assert sched.get_scheduled_tasks() == []
    assert await sched.tick(NOW + timedelta(minutes=5)) == []
    assert fired == []
    assert sched.get_task(task_id).status == "cancelled"


def test_cancel_unknown_or_finished(sched):
    with pytest.raises(UnknownTaskError):
        sched.cancel("deadbeef")
    task_id = sched.submit({"type": "delayed", "delayInSeconds": 60}, "record", now=NOW)
    sched.cancel(task_id)
    with pytest.raises(UnknownTaskError):
        sched.cancel(task_id)


def test_cancel_other_session(store, registry, sched):
    task_id = sched.submit({"type": "delayed", "delayInSeconds": 60}, "record", now=NOW)
    other = Agent(Config(), store, registry=registry, session_id="someone-else")
    with pytest.raises(UnknownTaskError):
        other.scheduler.cancel(task_id)
    assert other.scheduler.get_scheduled_tasks() == []
    assert len(sched.get_scheduled_tasks()) == 1


def test_get_task_runs_unknown(sched):
    with pytest.raises(UnknownTaskError):
        sched.get_task_runs("nope")


# ── Lifecycle / recovery ───────────────────────────────────


@pytest.mark.asyncio
async def test_tasks_survive_restart(store, registry, fired):
    first = Agent(Config(), store, registry=registry)
    task_id = first.scheduler.submit(
        {"type": "delayed", "delayInSeconds": 60}, "record", {"description": "after restart"}, now=NOW,
    )

    restarted = Agent(Config(), TaskStore(store.db_path), registry=registry)
    assert [t.id for t in restarted.scheduler.get_scheduled_tasks()] == [task_id]
    await restarted.scheduler.tick(NOW + timedelta(minutes=2))
    assert fired == ["after restart"]


@pytest.mark.asyncio
async def test_start_requeues_interrupted_tasks(store, sched):
    task_id = sched.submit({"type": "delayed", "delayInSeconds": 60}, "record", now=NOW)
    row = store.get_task(task_id)
    assert store.mark_task_due(task_id, row["next_fire"])

    with patch.object(sched, "_scheduler") as mock_sched:
        await sched.start()
        mock_sched.add_job.assert_called_once()
        mock_sched.start.assert_called_once()

    assert sched.get_task(task_id).status == "pending"


@pytest.mark.asyncio
async def test_stop_when_not_running(sched):
    with patch.object(sched, "_scheduler") as mock_sched:
        mock_sched.running = False
        await sched.stop()
        mock_sched.shutdown.assert_not_called()


@pytest.mark.asyncio
async def test_agent_start_respects_disabled(store, registry):
    config = Config(scheduler={"enabled": False})
    agent = Agent(config, store, registry=registry)
    with patch.object(agent.scheduler, "start", AsyncMock()) as mock_start:
        await agent.start()
        mock_start.assert_not_awaited()


def test_task_info_fields(sched):
    sched.submit(
        {"type": "cron", "cron": "0 9 * * 1"}, "execute_task", {"description": "weekly report"}, now=NOW,
    )
    (info,) = sched.get_scheduled_tasks()
    assert info.schedule_type == "cron"
    assert info.schedule_value == "0 9 * * 1"
    assert info.description == "weekly report"
    assert info.tool_name == "execute_task"


class MessageInput(BaseModel):
    message: str


def test_submit_rejects_payload_tool_would_refuse(sched, registry):
    registry.register(ToolDefinition("notify", "Notify someone", MessageInput))
    with pytest.raises(InvalidScheduleError, match="message"):
        sched.submit({"type": "cron", "cron": "0 9 * * *"}, "notify", {"description": "hi"}, now=NOW)
    assert sched.get_scheduled_tasks() == []

    task_id = sched.submit({"type": "cron", "cron": "0 9 * * *"}, "notify", {"message": "hi"}, now=NOW)
    assert sched.get_task(task_id).payload == {"message": "hi"}
