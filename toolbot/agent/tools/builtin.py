"""Built-in tools — current time (auto) and outbound webhook (needs approval)."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from toolbot.agent.tools import Executor, ToolDefinition

if TYPE_CHECKING:
    from toolbot.agent.context import AgentContext
    from toolbot.core.config.schema import Config


class CurrentTimeInput(BaseModel):
    timezone: str = Field(default="UTC", description="IANA timezone, e.g. 'Europe/Istanbul'")


class WebhookInput(BaseModel):
    message: str = Field(min_length=1, description="Text to post to the webhook")


async def get_current_time(args: CurrentTimeInput, ctx: AgentContext) -> str:
    try:
        tz = ZoneInfo(args.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return f'Unknown timezone "{args.timezone}".'
    now = datetime.now(tz)
    return f"The current time in {args.timezone} is {now.strftime('%Y-%m-%d %H:%M:%S %Z')}."


def make_builtin_tools() -> list[ToolDefinition]:
    return [
        ToolDefinition(
            name="get_current_time",
            description="Get the current date and time in a timezone",
            input_schema=CurrentTimeInput,
            execute=get_current_time,
        ),
        # No execute: every post needs a human approval first.
        ToolDefinition(
            name="send_webhook",
            description="Send a message to the configured chat webhook",
            input_schema=WebhookInput,
        ),
    ]


def make_builtin_executions(config: Config) -> dict[str, Executor]:
    """Bodies of the confirmation-required built-in tools."""
    webhook = config.tools.webhook

    async def send_webhook(args: WebhookInput, ctx: AgentContext) -> str:
        # Session env bindings may point a conversation at its own webhook.
        url = ctx.env.get("WEBHOOK_URL") or webhook.url
        if not url:
            raise RuntimeError("No webhook URL configured")
        async with httpx.AsyncClient(timeout=webhook.timeout) as client:
            resp = await client.post(
                url,
                json={"text": args.message},
                headers={"Content-Type": "application/json; charset=UTF-8"},
            )
            resp.raise_for_status()
        logger.info(f"Webhook message sent ({len(args.message)} chars)")
        return "Message successfully sent to the webhook."

    return {"send_webhook": send_webhook}
