"""
AG-Vote Core - CLI Entry Point

Usage:
    # Run the API
    agvote serve --port 8000

    # Create tables
    agvote init-db

    # List the motions of a meeting with their decisions
    agvote motions <meeting-id>

    # Recompute a closed motion's decision and compare with the stored one
    agvote replay <motion-id>
"""

import asyncio
import uuid
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agvote import __version__
from agvote.core.config import settings
from agvote.core.database import build_engine, build_session_maker, init_db
from agvote.voting.errors import VotingError
from agvote.voting.services import SessionCoordinator

app = typer.Typer(
    name="agvote",
    help="Decision engine and ballot pipeline for general assemblies",
    add_completion=False,
)
console = Console()


def print_banner() -> None:
    """Print the application banner."""
    console.print(Panel.fit(
        f"[bold blue]AG-Vote Core[/bold blue] [dim]{__version__}[/dim]",
        border_style="blue",
    ))
    console.print()


def parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Error:[/red] {label} '{value}' is not a valid UUID")
        raise typer.Exit(2)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    print_banner()
    console.print(f"Serving on [bold]{host}:{port}[/bold] ({settings.environment})")
    uvicorn.run("agvote.main:app", host=host, port=port, reload=reload)


@app.command("init-db")
def init_database(
    database_url: Optional[str] = typer.Option(
        None, "--database-url", "-d", help="Override DATABASE_URL"
    ),
) -> None:
    """Create all tables."""
    print_banner()
    url = database_url or settings.database_url

    async def run_init() -> None:
        engine = build_engine(url)
        try:
            await init_db(engine)
        finally:
            await engine.dispose()

    try:
        asyncio.run(run_init())
    except Exception as e:
        console.print(f"[red]Failed to create tables: {e}[/red]")
        raise typer.Exit(1)
    console.print("[green]Tables created[/green]")


@app.command()
def motions(
    meeting_id: str = typer.Argument(..., help="Meeting UUID"),
    database_url: Optional[str] = typer.Option(
        None, "--database-url", "-d", help="Override DATABASE_URL"
    ),
) -> None:
    """List the motions of a meeting in agenda order."""
    print_banner()
    meeting_uuid = parse_uuid(meeting_id, "Meeting id")
    url = database_url or settings.database_url

    async def run_list() -> None:
        engine = build_engine(url)
        try:
            coordinator = SessionCoordinator(build_session_maker(engine))
            meeting = await coordinator.get_meeting(meeting_uuid)
            items = await coordinator.list_motions(meeting_uuid)
        finally:
            await engine.dispose()

        table = Table(title=f"{meeting.title} [{meeting.status.value}]")
        table.add_column("#", justify="right")
        table.add_column("Title", style="cyan")
        table.add_column("Secret")
        table.add_column("State")
        table.add_column("Decision", style="green")

        for motion in items:
            state = "closed" if motion.is_closed else "open" if motion.is_open else "pending"
            table.add_row(
                str(motion.position),
                motion.title,
                "yes" if motion.secret else "",
                state,
                motion.decision.value if motion.decision else "-",
            )
        console.print(table)

    try:
        asyncio.run(run_list())
    except VotingError as e:
        console.print(f"[red]{e.code}:[/red] {e.message}")
        raise typer.Exit(1)


@app.command()
def replay(
    motion_id: str = typer.Argument(..., help="Closed motion UUID"),
    database_url: Optional[str] = typer.Option(
        None, "--database-url", "-d", help="Override DATABASE_URL"
    ),
) -> None:
    """
    Recompute a closed motion's decision for audit.

    The stored result is never modified. Exits with status 3 when the
    recomputed decision differs from the stored one.
    """
    print_banner()
    motion_uuid = parse_uuid(motion_id, "Motion id")
    url = database_url or settings.database_url

    async def run_replay():
        engine = build_engine(url)
        try:
            coordinator = SessionCoordinator(build_session_maker(engine))
            return await coordinator.replay_decision(motion_uuid)
        finally:
            await engine.dispose()

    try:
        report = asyncio.run(run_replay())
    except VotingError as e:
        console.print(f"[red]{e.code}:[/red] {e.message}")
        raise typer.Exit(1)

    result = report.replayed
    table = Table(show_header=True, header_style="bold")
    table.add_column("", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Stored decision", report.stored.value if report.stored else "-")
    table.add_row("Replayed decision", result.decision.value)
    table.add_row("For", f"{result.tally.weight_for} ({result.tally.count_for})")
    table.add_row("Against", f"{result.tally.weight_against} ({result.tally.count_against})")
    table.add_row("Abstain", f"{result.tally.weight_abstain} ({result.tally.count_abstain})")
    if result.quorum:
        table.add_row("Quorum ratio", str(result.quorum.ratio))
    if result.majority:
        table.add_row("Majority ratio", str(result.majority.ratio))
    console.print(table)
    console.print(f"[dim]{result.reason}[/dim]")

    if report.matches:
        console.print("[green]Decision reproduced[/green]")
    else:
        console.print("[red]Replayed decision differs from the stored one[/red]")
        raise typer.Exit(3)


@app.callback()
def main() -> None:
    """
    AG-Vote Core - decision engine and ballot pipeline for general assemblies.

    Use 'agvote COMMAND --help' for more information on a command.
    """
    pass


if __name__ == "__main__":
    app()
