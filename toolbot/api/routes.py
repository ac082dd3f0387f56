"""Core API routes — tool calls, confirmations, schedules, health."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from toolbot import __version__
from toolbot.agent.gate import PendingConfirmation, ToolResult
from toolbot.agent.runner import Agent
from toolbot.api.deps import get_agent
from toolbot.core.cron.types import TaskInfo, TaskRun
from toolbot.core.errors import InvalidScheduleError, UnknownTaskError, UnknownToolError
from toolbot.memory.models import (
    CancelResponse,
    HealthResponse,
    ResolveRequest,
    ScheduleRequest,
    ScheduleResponse,
    ToolCallRequest,
)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(agent: Agent = Depends(get_agent)):
    """Health check."""
    return HealthResponse(
        status="ok",
        version=__version__,
        session_id=agent.session_id,
        scheduler_running=agent.scheduler.running,
    )


# ── Tool calls ──────────────────────────────────────────────


@router.post("/tools/call", response_model=ToolResult)
async def call_tool(body: ToolCallRequest, agent: Agent = Depends(get_agent)):
    """Dispatch a model-requested tool call (executed, pending or error)."""
    return await agent.call_tool(
        body.tool_name, body.arguments, call_id=body.call_id, message_id=body.message_id,
    )


@router.get("/tools")
async def list_tools(agent: Agent = Depends(get_agent)):
    """Function specs for the model layer."""
    return agent.registry.to_model_tools()


# ── Confirmations ───────────────────────────────────────────


@router.get("/confirmations", response_model=list[PendingConfirmation])
async def list_confirmations(agent: Agent = Depends(get_agent)):
    return agent.pending()


@router.post("/confirmations/{call_id}", response_model=ToolResult)
async def resolve_confirmation(
    call_id: str, body: ResolveRequest, agent: Agent = Depends(get_agent),
):
    """Approve or deny a pending call."""
    return await agent.resolve(call_id, body.decision, body.override_arguments)


# ── Schedules ───────────────────────────────────────────────


@router.post("/schedules", response_model=ScheduleResponse)
async def submit_schedule(body: ScheduleRequest, agent: Agent = Depends(get_agent)):
    payload = body.payload if body.payload is not None else {"description": body.description}
    try:
        task_id = agent.scheduler.submit(body.when, body.tool_name, payload)
    except (InvalidScheduleError, UnknownToolError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ScheduleResponse(task_id=task_id)


@router.get("/schedules", response_model=list[TaskInfo])
async def list_schedules(agent: Agent = Depends(get_agent)):
    return agent.scheduler.get_scheduled_tasks()


@router.get("/schedules/{task_id}/runs", response_model=list[TaskRun])
async def task_runs(
    task_id: str,
    limit: int = Query(default=20, ge=1, le=200),
    agent: Agent = Depends(get_agent),
):
    try:
        return agent.scheduler.get_task_runs(task_id, limit=limit)
    except UnknownTaskError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/schedules/{task_id}", response_model=CancelResponse)
async def cancel_schedule(task_id: str, agent: Agent = Depends(get_agent)):
    try:
        agent.scheduler.cancel(task_id)
    except UnknownTaskError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return CancelResponse(task_id=task_id)
