"""Confirmation gate — run a requested tool now or park it for human approval."""

from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger
from pydantic import BaseModel, Field

from toolbot.core.errors import (
    ExecutionError,
    ToolbotError,
    UnknownPendingCallError,
    ValidationError,
)

if TYPE_CHECKING:
    from toolbot.agent.context import AgentContext
    from toolbot.agent.tools import Executor, ToolRegistry
    from toolbot.memory.store import TaskStore


DENIED_MESSAGE = "Error: User denied access to tool execution"


class ToolResult(BaseModel):
    """Outcome of a dispatch or resolution, reported back as the tool result."""

    status: Literal["executed", "pending", "denied", "error"]
    call_id: str | None = None
    tool_name: str | None = None
    result: Any = None
    kind: str | None = None
    message: str | None = None

    @classmethod
    def failure(
        cls, err: ToolbotError, call_id: str | None = None, tool_name: str | None = None,
    ) -> ToolResult:
        return cls(
            status="error",
            call_id=call_id,
            tool_name=tool_name,
            kind=err.kind,
            message=err.message,
            result={"content": [{"type": "text", "text": err.message}]},
        )

    def to_text(self) -> str:
        """Render for the model / end user."""
        if self.status == "executed":
            if isinstance(self.result, str):
                return self.result
            return json.dumps(self.result, ensure_ascii=False, default=str)
        if self.status == "pending":
            return f"Waiting for approval to run {self.tool_name} (call {self.call_id})"
        return self.message or self.status


class PendingConfirmation(BaseModel):
    """One tool call waiting for a human approve/deny decision."""

    call_id: str
    session_id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    message_id: str | None = None
    origin: str = "chat"
    created_at: str | None = None  # SQLite CURRENT_TIMESTAMP

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> PendingConfirmation:
        data = dict(row)
        data["arguments"] = json.loads(data.get("arguments") or "{}")
        return cls.model_validate(data)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


class ConfirmationGate:
    """Intercepts tool calls requested by the model.

    Auto-executing tools run immediately. Confirmation-required tools are
    persisted as :class:`PendingConfirmation` rows until :meth:`resolve`
    receives a decision; each row is claimed at most once.
    """

    def __init__(self, registry: ToolRegistry, db: TaskStore):
        self.registry = registry
        self.db = db

    async def dispatch(
        self,
        tool_name: str,
        arguments: Any,
        call_id: str | None,
        ctx: AgentContext,
        message_id: str | None = None,
        origin: str = "chat",
    ) -> ToolResult:
        """Execute ``tool_name`` now or park it as a pending confirmation."""
        call_id = call_id or f"call_{uuid.uuid4().hex[:12]}"
        try:
            definition = self.registry.lookup(tool_name)
            args = definition.validate(arguments)
        except ToolbotError as e:
            logger.warning(f"Dispatch rejected {tool_name} ({call_id}): {e}")
            return ToolResult.failure(e, call_id, tool_name)

        if definition.execute is not None:
            return await self._run(tool_name, definition.execute, args, ctx, call_id)

        arguments_json = json.dumps(args.model_dump(mode="json"))
        created = self.db.add_pending_confirmation(
            call_id,
            ctx.session_id,
            tool_name,
            arguments_json,
            message_id=message_id,
            origin=origin,
        )
        if created:
            logger.info(f"Confirmation required: {tool_name} ({call_id}, origin={origin})")
            return ToolResult(status="pending", call_id=call_id, tool_name=tool_name)

        # Only a repeat of the very same call may reuse a pending call id.
        existing = self.db.get_pending_confirmation(call_id, ctx.session_id)
        if (
            existing is not None
            and existing["tool_name"] == tool_name
            and json.loads(existing["arguments"]) == json.loads(arguments_json)
        ):
            logger.warning(f"Call {call_id} is already awaiting confirmation")
            return ToolResult(status="pending", call_id=call_id, tool_name=tool_name)

        err = ValidationError(tool_name, f"call id {call_id} is already pending for another call")
        logger.warning(f"Dispatch rejected {tool_name} ({call_id}): {err}")
        return ToolResult.failure(err, call_id, tool_name)

    async def resolve(
        self,
        call_id: str,
        decision: str,
        ctx: AgentContext,
        override_arguments: Any = None,
    ) -> ToolResult:
        """Apply a human decision to a pending call.

        ``deny`` drops the call; ``approve`` runs the tool's registered
        execution with the stored arguments, or with ``override_arguments``
        when the human edited them. A call id is only ever resolved once.
        """
        if decision not in ("approve", "deny"):
            err = ValidationError("resolve", f"unknown decision {decision!r}")
            return ToolResult.failure(err, call_id)

        row = self.db.get_pending_confirmation(call_id, ctx.session_id)
        if row is None:
            return ToolResult.failure(UnknownPendingCallError(call_id), call_id)
        tool_name = row["tool_name"]

        if decision == "deny":
            if self.db.claim_pending_confirmation(call_id, ctx.session_id) is None:
                return ToolResult.failure(UnknownPendingCallError(call_id), call_id, tool_name)
            logger.info(f"Call denied: {tool_name} ({call_id})")
            return ToolResult(
                status="denied", call_id=call_id, tool_name=tool_name, message=DENIED_MESSAGE,
            )

        # Invalid edits leave the call pending so the human can try again.
        try:
            definition = self.registry.lookup(tool_name)
            raw = (
                override_arguments
                if override_arguments is not None
                else json.loads(row["arguments"])
            )
            args = definition.validate(raw)
        except ToolbotError as e:
            logger.warning(f"Approval rejected for {call_id}: {e}")
            return ToolResult.failure(e, call_id, tool_name)

        if self.db.claim_pending_confirmation(call_id, ctx.session_id) is None:
            return ToolResult.failure(UnknownPendingCallError(call_id), call_id, tool_name)

        try:
            executor = self.registry.executor_for(tool_name)
        except ToolbotError as e:
            logger.error(f"Approved call {call_id} cannot run: {e}")
            return ToolResult.failure(e, call_id, tool_name)

        logger.info(f"Call approved: {tool_name} ({call_id})")
        return await self._run(tool_name, executor.run, args, ctx, call_id)

    def list_pending(self, session_id: str) -> list[PendingConfirmation]:
        return [
            PendingConfirmation.from_row(r)
            for r in self.db.list_pending_confirmations(session_id)
        ]

    async def _run(
        self,
        tool_name: str,
        run: Executor,
        args: BaseModel,
        ctx: AgentContext,
        call_id: str,
    ) -> ToolResult:
        try:
            result = await run(args, ctx)
        except Exception as e:
            logger.error(f"Tool {tool_name} failed ({call_id}): {e}")
            return ToolResult.failure(ExecutionError(tool_name, e), call_id, tool_name)
        return ToolResult(
            status="executed", call_id=call_id, tool_name=tool_name, result=_jsonable(result),
        )
