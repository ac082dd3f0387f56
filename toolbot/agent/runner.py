"""Agent — one conversational session: registry, gate and scheduler wired together."""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any

from loguru import logger

from toolbot.agent.context import AgentContext, agent_scope
from toolbot.agent.gate import ConfirmationGate, PendingConfirmation, ToolResult
from toolbot.agent.tools import ToolRegistry, make_registry
from toolbot.core.config.schema import Config
from toolbot.core.cron.scheduler import TaskScheduler
from toolbot.memory.store import TaskStore


class Agent:
    """
    Session-scoped owner of all tool-call state.

    Flow:
        1. Open an :class:`AgentContext` scope for the inbound call
        2. Hand the call to the confirmation gate (run now or park)
        3. Human decisions come back through :meth:`resolve`
        4. The scheduler fires due tasks through the same gate
    """

    def __init__(
        self,
        config: Config,
        db: TaskStore,
        registry: ToolRegistry | None = None,
        session_id: str | None = None,
    ):
        self.config = config
        self.db = db
        self.session_id = session_id or config.agent.session_id
        self.env: dict[str, str] = dict(config.agent.env)
        self.state: dict[str, Any] = {}
        self.registry = registry if registry is not None else make_registry(config)
        self.gate = ConfirmationGate(self.registry, db)
        self.scheduler = TaskScheduler(db, self, config=config)
        logger.debug(f"Agent ready: session={self.session_id}")

    def scope(self, origin: str = "chat") -> AbstractContextManager[AgentContext]:
        """Open a context scope bound to this agent."""
        return agent_scope(self, origin=origin)

    async def call_tool(
        self,
        tool_name: str,
        arguments: Any,
        call_id: str | None = None,
        message_id: str | None = None,
    ) -> ToolResult:
        """Entry point for a tool call requested by the model."""
        with self.scope() as ctx:
            return await self.gate.dispatch(
                tool_name, arguments, call_id, ctx, message_id=message_id,
            )

    async def resolve(
        self,
        call_id: str,
        decision: str,
        override_arguments: Any = None,
    ) -> ToolResult:
        """Entry point for a human approve/deny decision."""
        with self.scope(origin="confirmation") as ctx:
            return await self.gate.resolve(
                call_id, decision, ctx, override_arguments=override_arguments,
            )

    def pending(self) -> list[PendingConfirmation]:
        return self.gate.list_pending(self.session_id)

    async def start(self) -> None:
        if self.config.scheduler.enabled:
            await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()

