"""turngraph CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.table import Table

from turngraph import __version__

app = typer.Typer(
    name="turngraph",
    help="turngraph - conversation orchestration engine",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"turngraph v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """turngraph - conversation orchestration engine."""


def _open_store():
    from turngraph.core.config.loader import load_config
    from turngraph.memory.checkpoints import CheckpointStore

    config = load_config()
    store = CheckpointStore(
        config.checkpoint_path,
        namespace=config.checkpoints.namespace,
        timeout=config.checkpoints.connect_timeout_s,
    )
    if not store.is_ready():
        console.print(f"[red]Checkpoint store unavailable: {config.checkpoint_path}[/red]")
        raise typer.Exit(code=1)
    return config, store


# ════════════════════════════════════════════════════════════
# run: start API server
# ════════════════════════════════════════════════════════════


@app.command()
def run(
    port: int = typer.Option(8000, "--port", "-p", help="Port number"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host address"),
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload"),
) -> None:
    """Start the API server (uvicorn)."""
    import uvicorn

    console.print(f"[green]Starting turngraph API on {host}:{port}[/green]")
    uvicorn.run("turngraph.api.app:app", host=host, port=port, reload=reload)


# ════════════════════════════════════════════════════════════
# turn: run one turn from the terminal
# ════════════════════════════════════════════════════════════


@app.command()
def turn(
    message: str = typer.Option(..., "--message", "-m", help="Inbound customer message"),
    tenant_file: Path = typer.Option(
        ..., "--tenant-file", "-t", help="YAML/JSON with tenant, business, lead"
    ),
    conversation: str = typer.Option("cli:default", "--conversation", "-c", help="Thread ID"),
    resume: bool = typer.Option(False, "--resume", help="Resume from the latest checkpoint"),
) -> None:
    """Run a single turn and print the result."""
    from turngraph.container import build_container
    from turngraph.core.config.loader import load_config
    from turngraph.memory.models import TurnOptions, TurnRequest

    context = yaml.safe_load(tenant_file.read_text(encoding="utf-8")) or {}
    tenant = context.get("tenant") or {}
    request = TurnRequest(
        tenant_id=tenant.get("tenant_id", "cli"),
        conversation_id=conversation,
        current_message=message,
        channel="api",
        tenant_context=tenant or None,
        lead_context=context.get("lead"),
        business_context=context.get("business"),
    )

    container = build_container(load_config())

    async def _run():
        result = await container.executor.execute(
            request, TurnOptions(resume_from_checkpoint=resume)
        )
        await container.shutdown()
        return result

    result = asyncio.run(_run())
    console.print(f"\n[bold cyan]turngraph:[/bold cyan] {result.response}\n")

    table = Table(title="turn")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Success", str(result.success))
    table.add_row("Intent", result.intent)
    table.add_row("Agents", " → ".join(result.agents_used))
    table.add_row("Escalated", str(result.escalated))
    if result.escalation_reason:
        table.add_row("Reason", result.escalation_reason)
    table.add_row("Tokens", str(result.tokens_used))
    table.add_row("Time", f"{result.processing_time_ms} ms")
    if result.replayed:
        table.add_row("Replayed", "yes")
    for err in result.errors:
        table.add_row("Error", err)
    console.print(table)


# ════════════════════════════════════════════════════════════
# checkpoint maintenance
# ════════════════════════════════════════════════════════════


@app.command()
def threads(
    limit: int = typer.Option(20, "--limit", "-n", help="Max threads"),
) -> None:
    """List threads with checkpoints in the last 24 hours."""
    _, store = _open_store()
    rows = store.get_active_threads(limit=limit)
    if not rows:
        console.print("No active threads.")
        return

    table = Table(title="Active threads")
    table.add_column("Thread", style="cyan")
    table.add_column("Last checkpoint")
    table.add_column("Updated", style="green")
    for t in rows:
        table.add_row(t.thread_id, t.last_checkpoint_id, t.last_updated.isoformat())
    console.print(table)


@app.command()
def checkpoints(
    thread_id: str = typer.Argument(help="Thread (conversation) ID"),
    limit: int = typer.Option(10, "--limit", "-n", help="Max checkpoints"),
) -> None:
    """List checkpoints of a thread, newest first."""
    _, store = _open_store()
    rows = store.list(thread_id, limit=limit)
    if not rows:
        console.print(f"No checkpoints for {thread_id}.")
        return

    table = Table(title=f"Checkpoints — {thread_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Source")
    table.add_column("Step")
    table.add_column("Response")
    table.add_column("Created", style="green")
    for t in rows:
        table.add_row(
            t.checkpoint.id,
            t.metadata.source,
            str(t.metadata.step),
            "yes" if t.checkpoint.channel_values.get("final_response") else "",
            t.created_at.isoformat() if t.created_at else "",
        )
    console.print(table)


@app.command()
def cleanup(
    days: float | None = typer.Option(None, "--days", "-d", help="Retention in days"),
) -> None:
    """Delete checkpoints older than the retention window."""
    config, store = _open_store()
    max_age = timedelta(days=days) if days is not None else timedelta(seconds=config.checkpoints.max_age_s)
    removed = store.cleanup_older_than(max_age)
    console.print(f"[green]Removed {removed} checkpoints older than {max_age}[/green]")


@app.command()
def stats() -> None:
    """Show checkpoint store statistics."""
    config, store = _open_store()
    s = store.get_stats()

    table = Table(title="turngraph checkpoints")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Version", __version__)
    table.add_row("DB Path", str(config.checkpoint_path))
    table.add_row("Checkpoints", str(s.total_checkpoints))
    table.add_row("Threads", str(s.total_threads))
    table.add_row("Oldest", s.oldest_checkpoint.isoformat() if s.oldest_checkpoint else "-")
    table.add_row("Newest", s.newest_checkpoint.isoformat() if s.newest_checkpoint else "-")
    table.add_row("Size", f"{s.storage_bytes} bytes")
    console.print(table)
