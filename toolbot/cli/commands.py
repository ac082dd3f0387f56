"""toolbot CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio
import json

import typer
from rich.console import Console
from rich.table import Table

from toolbot import __version__

app = typer.Typer(
    name="toolbot",
    help="toolbot - tool dispatch with human confirmation and scheduling",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"toolbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """toolbot - tool dispatch with human confirmation and scheduling."""


def _load_agent(session: str | None = None):
    from toolbot.agent.runner import Agent
    from toolbot.core.config.loader import load_config
    from toolbot.memory.store import TaskStore

    config = load_config()
    db = TaskStore(config.database.path)
    return Agent(config, db, session_id=session)


_SESSION_OPT = typer.Option(None, "--session", "-s", help="Session ID (default from config)")


# ════════════════════════════════════════════════════════════
# run — start API server
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int = typer.Option(8000, "--port", "-p", help="Port number"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Start the API server (uvicorn)."""
    import uvicorn

    console.print(f"[green]Starting toolbot API on {host}:{port}[/green]")
    uvicorn.run("toolbot.api.app:app", host=host, port=port, reload=reload)


# ════════════════════════════════════════════════════════════
# status — config + DB info
# ════════════════════════════════════════════════════════════


@app.command()
def status(session: str | None = _SESSION_OPT) -> None:
    """Show configuration, tools and pending work."""
    agent = _load_agent(session)

    table = Table(title="toolbot status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Session", agent.session_id)
    table.add_row("DB Path", agent.config.database.path)
    table.add_row("Cron timezone", agent.config.scheduler.timezone)
    for group, names in agent.registry.get_groups_summary().items():
        table.add_row(f"Tools ({group})", ", ".join(names))
    table.add_row("Scheduled tasks", str(len(agent.scheduler.get_scheduled_tasks())))
    table.add_row("Pending confirmations", str(len(agent.pending())))

    console.print(table)


# ════════════════════════════════════════════════════════════
# tasks — scheduled task management (sub-command group)
# ════════════════════════════════════════════════════════════

tasks_app = typer.Typer(help="Manage scheduled tasks")
app.add_typer(tasks_app, name="tasks")


@tasks_app.command("list")
def tasks_list(session: str | None = _SESSION_OPT) -> None:
    """List active scheduled tasks in firing order."""
    agent = _load_agent(session)
    tasks = agent.scheduler.get_scheduled_tasks()

    if not tasks:
        console.print("[dim]No scheduled tasks.[/dim]")
        return

    table = Table(title="Scheduled Tasks")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="yellow")
    table.add_column("Next fire", style="blue")
    table.add_column("Tool", style="white")
    table.add_column("Description", style="white")
    table.add_column("Last", style="green")

    for t in tasks:
        kind = f"cron {t.schedule_value}" if t.schedule_type == "cron" else t.schedule_type
        table.add_row(
            t.id,
            kind,
            t.next_fire.isoformat(),
            t.tool_name,
            t.description,
            t.last_status or "-",
        )

    console.print(table)


@tasks_app.command("cancel")
def tasks_cancel(
    task_id: str = typer.Argument(help="Task ID to cancel"),
    session: str | None = _SESSION_OPT,
) -> None:
    """Cancel a scheduled task by ID."""
    from toolbot.core.errors import UnknownTaskError

    agent = _load_agent(session)
    try:
        agent.scheduler.cancel(task_id)
    except UnknownTaskError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Cancelled task:[/green] {task_id}")


@tasks_app.command("runs")
def tasks_runs(
    task_id: str = typer.Argument(help="Task ID"),
    session: str | None = _SESSION_OPT,
) -> None:
    """Show recent firings of a task."""
    from toolbot.core.errors import UnknownTaskError

    agent = _load_agent(session)
    try:
        runs = agent.scheduler.get_task_runs(task_id)
    except UnknownTaskError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    if not runs:
        console.print("[dim]No runs yet.[/dim]")
        return
    for r in runs:
        console.print(f"{r.fired_at.isoformat()}  [bold]{r.status}[/bold]  {r.detail}")


@tasks_app.command("tick")
def tasks_tick(session: str | None = _SESSION_OPT) -> None:
    """Fire every task that is due right now (one scheduler pass)."""
    agent = _load_agent(session)
    runs = asyncio.run(agent.scheduler.tick())
    if not runs:
        console.print("[dim]Nothing due.[/dim]")
        return
    for r in runs:
        console.print(f"[cyan]{r.task_id}[/cyan] → {r.tool_name}: {r.status}")


# ════════════════════════════════════════════════════════════
# pending — confirmations (sub-command group)
# ════════════════════════════════════════════════════════════

pending_app = typer.Typer(help="Review tool calls awaiting approval")
app.add_typer(pending_app, name="pending")


@pending_app.command("list")
def pending_list(session: str | None = _SESSION_OPT) -> None:
    """List tool calls waiting for a decision."""
    agent = _load_agent(session)
    pending = agent.pending()

    if not pending:
        console.print("[dim]Nothing awaiting approval.[/dim]")
        return

    table = Table(title="Pending Confirmations")
    table.add_column("Call ID", style="cyan")
    table.add_column("Tool", style="yellow")
    table.add_column("Arguments", style="white")
    table.add_column("Origin", style="blue")
    table.add_column("Created", style="dim")

    for p in pending:
        table.add_row(
            p.call_id, p.tool_name, json.dumps(p.arguments), p.origin, p.created_at or "-",
        )

    console.print(table)


def _resolve(call_id: str, decision: str, arguments: str | None, session: str | None) -> None:
    try:
        override = json.loads(arguments) if arguments else None
    except json.JSONDecodeError as e:
        console.print(f"[red]--arguments is not valid JSON:[/red] {e}")
        raise typer.Exit(code=1)
    agent = _load_agent(session)
    result = asyncio.run(agent.resolve(call_id, decision, override))
    if result.status == "error":
        console.print(f"[red]{result.kind}:[/red] {result.message}")
        raise typer.Exit(code=1)
    console.print(f"[green]{result.status}[/green] {result.to_text()}")


@pending_app.command("approve")
def pending_approve(
    call_id: str = typer.Argument(help="Call ID to approve"),
    arguments: str | None = typer.Option(
        None, "--arguments", "-a", help="Edited arguments as JSON"
    ),
    session: str | None = _SESSION_OPT,
) -> None:
    """Approve a pending call and run it."""
    _resolve(call_id, "approve", arguments, session)


@pending_app.command("deny")
def pending_deny(
    call_id: str = typer.Argument(help="Call ID to deny"),
    session: str | None = _SESSION_OPT,
) -> None:
    """Deny a pending call."""
    _resolve(call_id, "deny", None, session)
