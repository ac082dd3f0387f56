"""Scheduling tools — let the model schedule, list and cancel tool calls."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from toolbot.agent.tools import ToolDefinition
from toolbot.core.cron.types import ScheduleSpec
from toolbot.core.errors import InvalidScheduleError, UnknownTaskError, UnknownToolError

if TYPE_CHECKING:
    from toolbot.agent.context import AgentContext


class ScheduleTaskInput(BaseModel):
    when: ScheduleSpec = Field(
        description=(
            "When to run: {type: 'scheduled', date}, {type: 'delayed', delayInSeconds}, "
            "{type: 'cron', cron} or {type: 'no-schedule'}"
        )
    )
    description: str = Field(description="What the task should do when it runs")
    tool_name: str = Field(
        default="execute_task", description="Tool to call when the task fires"
    )


class CancelTaskInput(BaseModel):
    task_id: str = Field(description="ID of the scheduled task to cancel")


class ExecuteTaskInput(BaseModel):
    description: str = ""


class NoInput(BaseModel):
    pass


async def schedule_task(args: ScheduleTaskInput, ctx: AgentContext) -> str:
    if args.when.type == "no-schedule":
        return "Not a valid schedule input"
    try:
        task_id = ctx.agent.scheduler.submit(
            args.when, args.tool_name, {"description": args.description},
        )
    except (InvalidScheduleError, UnknownToolError) as e:
        return f"Error scheduling task: {e}"
    return f'Task scheduled for type "{args.when.type}" : {task_id}'


async def list_scheduled_tasks(args: NoInput, ctx: AgentContext) -> str:
    tasks = ctx.agent.scheduler.get_scheduled_tasks()
    if not tasks:
        return "No scheduled tasks."
    lines = []
    for t in tasks:
        kind = f"cron ({t.schedule_value})" if t.schedule_type == "cron" else t.schedule_type
        lines.append(
            f"- [{t.id}] {kind} next {t.next_fire.isoformat()} → {t.tool_name}: "
            f"{t.description[:50]}"
        )
    return "\n".join(lines)


async def cancel_scheduled_task(args: CancelTaskInput, ctx: AgentContext) -> str:
    try:
        ctx.agent.scheduler.cancel(args.task_id)
    except UnknownTaskError:
        return f"Task {args.task_id} not found or already finished."
    return f"Task {args.task_id} cancelled."


async def execute_task(args: ExecuteTaskInput, ctx: AgentContext) -> str:
    """Default target of scheduled tasks: surface the description to the session."""
    ctx.state.setdefault("executed_tasks", []).append(args.description)
    return f"Running scheduled task: {args.description}"


def make_scheduling_tools() -> list[ToolDefinition]:
    return [
        ToolDefinition(
            name="schedule_task",
            description="A tool to schedule a task to be executed at a later time",
            input_schema=ScheduleTaskInput,
            execute=schedule_task,
        ),
        ToolDefinition(
            name="list_scheduled_tasks",
            description="List the tasks scheduled in this conversation",
            input_schema=NoInput,
            execute=list_scheduled_tasks,
        ),
        ToolDefinition(
            name="cancel_scheduled_task",
            description="Cancel a scheduled task by its ID",
            input_schema=CancelTaskInput,
            execute=cancel_scheduled_task,
        ),
        ToolDefinition(
            name="execute_task",
            description="Run a previously scheduled task",
            input_schema=ExecuteTaskInput,
            execute=execute_task,
        ),
    ]
