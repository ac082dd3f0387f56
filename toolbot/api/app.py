"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from toolbot import __version__
from toolbot.agent.runner import Agent
from toolbot.api.routes import router
from toolbot.core.config import Config, load_config
from toolbot.core.errors import ToolbotError
from toolbot.memory.store import TaskStore


def build_agent(config: Config) -> Agent:
    """Open the store named by ``config`` and bind the configured session to it."""
    return Agent(config, TaskStore(str(config.db_path)))


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = load_config()
    agent = build_agent(config)
    app.state.agent = agent

    await agent.start()
    logger.info(
        f"toolbot API up: session={agent.session_id}, "
        f"{len(agent.registry)} tools, scheduler={'on' if agent.scheduler.running else 'off'}"
    )
    try:
        yield
    finally:
        await agent.stop()
        logger.info("toolbot API stopped")


async def _toolbot_error(request: Request, exc: ToolbotError) -> JSONResponse:
    # Taxonomy errors escaping a route map to 400.
    logger.warning(f"{request.method} {request.url.path}: {exc.kind}: {exc}")
    return JSONResponse(status_code=400, content={"kind": exc.kind, "detail": exc.message})


def create_app() -> FastAPI:
    app = FastAPI(
        title="toolbot API",
        description="Tool dispatch with human confirmation and scheduled calls",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ToolbotError, _toolbot_error)
    app.include_router(router)
    return app


app = create_app()
