"""Pydantic API models — request/response bodies for the HTTP surface."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from toolbot.core.cron.types import ScheduleSpec


# ════════════════════════════════════════════════════════════
# API REQUEST / RESPONSE
# ════════════════════════════════════════════════════════════


class ToolCallRequest(BaseModel):
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    call_id: str | None = None
    message_id: str | None = None


class ResolveRequest(BaseModel):
    decision: Literal["approve", "deny"]
    override_arguments: dict[str, Any] | None = None


class ScheduleRequest(BaseModel):
    when: ScheduleSpec
    description: str = ""
    tool_name: str = "execute_task"
    payload: dict[str, Any] | None = None  # defaults to {"description": ...}


class ScheduleResponse(BaseModel):
    task_id: str


class CancelResponse(BaseModel):
    task_id: str
    cancelled: bool = True


class HealthResponse(BaseModel):
    status: str
    version: str
    session_id: str
    scheduler_running: bool = False
