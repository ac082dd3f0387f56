"""Execution context — scoped handle to the agent serving the current call.

A handle is opened at request (or tick) entry with :func:`agent_scope`
and passed explicitly to the gate, the scheduler and every tool body.
Once the scope exits the handle is dead: using it raises
:class:`NoActiveContextError` instead of silently reaching a session
that no longer owns the call.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from toolbot.core.errors import NoActiveContextError

if TYPE_CHECKING:
    from toolbot.agent.runner import Agent


class AgentContext:
    """Handle bound to one agent for the duration of one scope."""

    def __init__(self, agent: Agent, origin: str = "chat"):
        self._agent: Agent | None = agent
        self.origin = origin

    @property
    def active(self) -> bool:
        return self._agent is not None

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            raise NoActiveContextError(
                f"Agent context ({self.origin}) used after its scope ended"
            )
        return self._agent

    @property
    def session_id(self) -> str:
        return self.agent.session_id

    @property
    def env(self) -> dict[str, str]:
        return self.agent.env

    @property
    def state(self) -> dict[str, Any]:
        return self.agent.state

    def close(self) -> None:
        self._agent = None


@contextmanager
def agent_scope(agent: Agent | None, origin: str = "chat") -> Iterator[AgentContext]:
    """Bind ``agent`` for the enclosed block; released on every exit path."""
    if agent is None:
        raise NoActiveContextError("Cannot open a scope without an agent")
    ctx = AgentContext(agent, origin=origin)
    try:
        yield ctx
    finally:
        ctx.close()
