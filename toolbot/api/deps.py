"""FastAPI dependency injection — pull singletons from app.state."""

from __future__ import annotations

from fastapi import Request

from toolbot.agent.runner import Agent


def get_agent(request: Request) -> Agent:
    """Get the session Agent from app state."""
    return request.app.state.agent
