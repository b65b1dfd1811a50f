"""
Collection CLI Commands
=======================

CLI commands for running collectors and inspecting their cursors.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from catalog_replay.collector.cancellation import CancellationToken
from catalog_replay.collector.commit_collector import CatalogIndexReader
from catalog_replay.collector.consumers import get_consumer_info, list_consumers
from catalog_replay.collector.jobs import (
    JobStatus,
    build_client,
    build_front_cursor,
    build_storage,
    enqueue_collection,
    get_job_status,
    poll_collector,
    run_collection_cycle,
)
from catalog_replay.collector.registry import CollectorConfig, get_default_registry
from catalog_replay.core.errors import CatalogReplayError
from catalog_replay.core.timestamps import format_timestamp, parse_timestamp

console = Console()
collect_app = typer.Typer(help="Catalog collection commands")
collectors_app = typer.Typer(help="Collector management commands")
cursor_app = typer.Typer(help="Front cursor commands")
jobs_app = typer.Typer(help="Job management commands")

collect_app.add_typer(collectors_app, name="collectors")
collect_app.add_typer(cursor_app, name="cursor")
collect_app.add_typer(jobs_app, name="jobs")


def _get_collector_or_exit(name: str) -> CollectorConfig:
    registry = get_default_registry()
    config = registry.get_collector(name)

    if config is None:
        rprint(f"[red]Error:[/red] Collector '{name}' not found")
        collectors = registry.list_collectors()
        if collectors:
            rprint("\nAvailable collectors:")
            for c in collectors:
                status = "[green]enabled[/green]" if c.enabled else "[yellow]disabled[/yellow]"
                rprint(f"  • {c.name} ({status})")
        raise typer.Exit(1)

    return config


def _run_cancellable(coro_factory):
    """Run a coroutine built around a CancellationToken that Ctrl+C cancels."""

    async def runner():
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        # Signal handlers are unavailable on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, token.cancel)
        try:
            return await coro_factory(token)
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(runner())


@collect_app.command("run")
def run_collection(
    collector: str = typer.Option(..., "--collector", "-c", help="Collector name to run"),
    sync: bool = typer.Option(False, "--sync", help="Run synchronously (blocking)"),
) -> None:
    """
    Run one collection cycle for a collector.

    Examples:
        catalog-replay collect run --collector=registration --sync
        catalog-replay collect run -c registration
    """
    config = _get_collector_or_exit(collector)

    if not config.enabled:
        rprint(f"[yellow]Warning:[/yellow] Collector '{collector}' is disabled")
        raise typer.Exit(1)

    rprint(f"\n[bold]Collecting:[/bold] {collector}")
    rprint(f"  Index: {config.index_url}")
    rprint(f"  Consumer: {config.consumer}")

    if sync:
        rprint("\n[dim]Running synchronously...[/dim]\n")

        with console.status("[bold blue]Collecting...[/bold blue]"):
            result = _run_cancellable(
                lambda token: run_collection_cycle(collector, cancellation_token=token)
            )

        _display_job_result(result.to_dict())

        if result.status == JobStatus.FAILED:
            raise typer.Exit(1)
    else:
        rprint("\n[dim]Enqueueing job for async processing...[/dim]")

        try:
            job_id = asyncio.run(enqueue_collection(collector))
        except Exception as e:
            rprint(f"\n[red]Error:[/red] Failed to enqueue job: {e}")
            rprint("\nMake sure Redis is running")
            raise typer.Exit(1)

        if job_id is None:
            rprint(f"\n[yellow]A cycle for '{collector}' is already queued[/yellow]")
            return

        rprint("\n[green]Job enqueued successfully![/green]")
        rprint(f"Job ID: [bold]{job_id}[/bold]")
        rprint("\nCheck status with:")
        rprint(f"  catalog-replay collect jobs status {job_id}")


@collect_app.command("poll")
def poll(
    collector: str = typer.Option(..., "--collector", "-c", help="Collector name to poll"),
    max_cycles: Optional[int] = typer.Option(None, "--max-cycles", "-n", help="Stop after this many cycles"),
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Seconds to sleep when idle"),
) -> None:
    """
    Poll a collector until interrupted.

    Examples:
        catalog-replay collect poll --collector=registration
        catalog-replay collect poll -c registration -n 10 -i 1
    """
    config = _get_collector_or_exit(collector)
    rprint(f"[bold]Polling {config.name}[/bold] ({config.index_url})")
    rprint("Press Ctrl+C to stop\n")

    try:
        summary = _run_cancellable(
            lambda token: poll_collector(
                collector,
                cancellation_token=token,
                max_cycles=max_cycles,
                interval=interval,
            )
        )
    except CatalogReplayError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    rprint(f"\n[bold]Stopped after {summary.cycles} cycle(s)[/bold]")
    rprint(f"  Batches dispatched: {summary.batches_dispatched}")
    rprint(f"  Failed cycles: {summary.failed_cycles}")
    if summary.cancelled:
        rprint("  [yellow]Cancelled[/yellow]")


@collect_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the collection worker.

    The worker processes queued collection jobs from Redis.

    Examples:
        catalog-replay collect worker
        catalog-replay collect worker --burst
    """
    from arq import run_worker

    from catalog_replay.collector.jobs import WorkerSettings

    rprint("[bold]Starting collection worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    try:
        run_worker(WorkerSettings, burst=burst)
    except Exception as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)


@collect_app.command("consumers")
def list_batch_consumers() -> None:
    """
    List available consumers.

    Examples:
        catalog-replay collect consumers
    """
    table = Table(title="Available Consumers")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Class")

    for consumer_name in list_consumers():
        info = get_consumer_info(consumer_name)
        if info:
            table.add_row(consumer_name, info["version"], info["class"])

    console.print(table)


@collect_app.command("entries")
def list_entries(
    collector: str = typer.Option(..., "--collector", "-c", help="Collector whose catalog to read"),
    limit: int = typer.Option(20, "--limit", "-l", help="Number of entries to show (0 for all)"),
) -> None:
    """
    List catalog leaf entries, oldest first, ignoring any cursor.

    Examples:
        catalog-replay collect entries -c registration --limit 50
    """
    config = _get_collector_or_exit(collector)
    registry = get_default_registry()

    async def read_entries(token: CancellationToken):
        async with build_client(registry.global_config) as client:
            return await CatalogIndexReader(config.index_url, client).get_entries(token)

    try:
        with console.status("[bold blue]Reading catalog...[/bold blue]"):
            entries = _run_cancellable(read_entries)
    except CatalogReplayError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    shown = entries if limit <= 0 else entries[:limit]
    table = Table(title=f"Catalog entries ({len(shown)} of {len(entries)})")
    table.add_column("Commit Timestamp")
    table.add_column("Type")
    table.add_column("URI", style="bold")

    for entry in shown:
        entry_type = entry.value.get("@type", "")
        if isinstance(entry_type, list):
            entry_type = ", ".join(entry_type)
        table.add_row(format_timestamp(entry.commit_timestamp), str(entry_type), entry.uri)

    console.print(table)


# Collectors subcommands


@collectors_app.command("list")
def list_collectors(
    all_collectors: bool = typer.Option(False, "--all", "-a", help="Show all collectors including disabled"),
) -> None:
    """
    List configured collectors.

    Examples:
        catalog-replay collect collectors list
        catalog-replay collect collectors list --all
    """
    registry = get_default_registry()
    collectors = registry.list_collectors() if all_collectors else registry.list_enabled_collectors()

    if not collectors:
        rprint("[yellow]No collectors configured[/yellow]")
        rprint("\nAdd collectors to config/collectors.yaml")
        return

    table = Table(title="Collectors")
    table.add_column("Name", style="bold")
    table.add_column("Consumer")
    table.add_column("Back Cursor")
    table.add_column("Status")
    table.add_column("Index")

    for c in collectors:
        status = "[green]enabled[/green]" if c.enabled else "[yellow]disabled[/yellow]"
        table.add_row(c.name, c.consumer, c.back_cursor.kind, status, c.index_url)

    console.print(table)


@collectors_app.command("show")
def show_collector(
    name: str = typer.Argument(..., help="Collector name"),
) -> None:
    """
    Show detailed information about a collector.

    Examples:
        catalog-replay collect collectors show registration
    """
    config = _get_collector_or_exit(name)
    status = "[green]enabled[/green]" if config.enabled else "[yellow]disabled[/yellow]"

    rprint(f"\n[bold]Collector: {config.name}[/bold]")
    rprint(f"  Status: {status}")
    rprint(f"  Index: {config.index_url}")
    rprint(f"  Consumer: {config.consumer}")
    if config.description:
        rprint(f"  Description: {config.description}")

    rprint("\n[bold]Cursors:[/bold]")
    rprint(f"  Front cursor: {config.cursor_name}")
    if config.start:
        rprint(f"  Start: {format_timestamp(config.start)}")
    back = config.back_cursor
    rprint(f"  Back cursor: {back.kind}")
    if back.value:
        rprint(f"    Value: {format_timestamp(back.value)}")
    for cursor_name in back.cursors:
        rprint(f"    • {cursor_name}")
    if back.uri:
        rprint(f"    URI: {back.uri}")

    rprint("\n[bold]Batching:[/bold]")
    rprint(f"  Batch size: {config.batch_size or 'whole timestamp groups'}")
    rprint(f"  Poll interval: {config.poll_interval_seconds}s")

    if config.consumer_config:
        rprint("\n[bold]Consumer Config:[/bold]")
        for key, value in config.consumer_config.items():
            rprint(f"  {key}: {value}")

    consumer_info = get_consumer_info(config.consumer)
    if consumer_info:
        rprint("\n[bold]Consumer Info:[/bold]")
        rprint(f"  Name: {consumer_info['name']}")
        rprint(f"  Version: {consumer_info['version']}")
        rprint(f"  Class: {consumer_info['class']}")


@collectors_app.command("enable")
def enable_collector(
    name: str = typer.Argument(..., help="Collector name"),
) -> None:
    """
    Enable a collector.

    Note: This only affects the in-memory registry.
    To persist, edit config/collectors.yaml.
    """
    registry = get_default_registry()

    if registry.enable_collector(name):
        rprint(f"[green]Collector '{name}' enabled[/green]")
        rprint("\n[dim]Note: Edit config/collectors.yaml to persist this change[/dim]")
    else:
        rprint(f"[red]Error:[/red] Collector '{name}' not found")
        raise typer.Exit(1)


@collectors_app.command("disable")
def disable_collector(
    name: str = typer.Argument(..., help="Collector name"),
) -> None:
    """
    Disable a collector.

    Note: This only affects the in-memory registry.
    To persist, edit config/collectors.yaml.
    """
    registry = get_default_registry()

    if registry.disable_collector(name):
        rprint(f"[yellow]Collector '{name}' disabled[/yellow]")
        rprint("\n[dim]Note: Edit config/collectors.yaml to persist this change[/dim]")
    else:
        rprint(f"[red]Error:[/red] Collector '{name}' not found")
        raise typer.Exit(1)


# Cursor subcommands


@cursor_app.command("show")
def show_cursor(
    name: str = typer.Argument(..., help="Collector name"),
) -> None:
    """
    Show the stored front cursor of a collector.

    Examples:
        catalog-replay collect cursor show registration
    """
    config = _get_collector_or_exit(name)
    storage = build_storage(get_default_registry().global_config)
    cursor = build_front_cursor(config, storage)

    try:
        asyncio.run(cursor.load())
    except CatalogReplayError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    stored = storage.exists(cursor.resource_uri)
    rprint(f"\n[bold]Cursor: {config.cursor_name}[/bold]")
    rprint(f"  Location: {cursor.resource_uri}")
    rprint(f"  Value: {cursor}")
    if not stored:
        rprint("  [dim]Not saved yet; showing the default[/dim]")


@cursor_app.command("set")
def set_cursor(
    name: str = typer.Argument(..., help="Collector name"),
    value: str = typer.Argument(..., help="ISO-8601 commit timestamp"),
) -> None:
    """
    Overwrite the front cursor of a collector.

    Collection resumes with the first commit after the given timestamp.

    Examples:
        catalog-replay collect cursor set registration 2024-01-01T00:00:00Z
    """
    config = _get_collector_or_exit(name)

    try:
        timestamp = parse_timestamp(value)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    cursor = build_front_cursor(config, build_storage(get_default_registry().global_config))
    cursor.value = timestamp

    try:
        asyncio.run(cursor.save())
    except CatalogReplayError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    rprint(f"[green]Cursor for '{name}' set to {cursor}[/green]")


@cursor_app.command("reset")
def reset_cursor(
    name: str = typer.Argument(..., help="Collector name"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """
    Delete the stored front cursor of a collector.

    The next cycle starts from the collector's configured start.

    Examples:
        catalog-replay collect cursor reset registration --yes
    """
    config = _get_collector_or_exit(name)

    if not yes and not typer.confirm(f"Replay '{name}' from the start?"):
        raise typer.Exit(0)

    storage = build_storage(get_default_registry().global_config)
    try:
        deleted = storage.delete(storage.resolve_uri(config.cursor_name))
    except CatalogReplayError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if deleted:
        rprint(f"[yellow]Cursor for '{name}' reset[/yellow]")
    else:
        rprint(f"[dim]No cursor stored for '{name}'[/dim]")


# Jobs subcommands


@jobs_app.command("status")
def job_status(
    job_id: str = typer.Argument(..., help="Job ID to check"),
) -> None:
    """
    Check the status of a collection job.

    Examples:
        catalog-replay collect jobs status collect:registration
    """
    try:
        result = asyncio.run(get_job_status(job_id))
    except Exception as e:
        rprint(f"[red]Error:[/red] Failed to get job status: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)

    if result is None:
        rprint(f"[yellow]Job '{job_id}' not found[/yellow]")
        raise typer.Exit(1)

    rprint(f"\n[bold]Job: {job_id}[/bold]")
    rprint(f"  Status: {result.get('status', 'unknown')}")

    if isinstance(result.get("result"), dict):
        _display_job_result(result["result"])


def _display_job_result(result: dict) -> None:
    """Display job result."""
    status = result.get("status", "unknown")
    status_color = {
        "completed": "green",
        "running": "blue",
        "pending": "yellow",
        "cancelled": "yellow",
        "failed": "red",
    }.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Status: [{status_color}]{status}[/{status_color}]")
    rprint(f"  Collector: {result.get('collector_name', 'N/A')}")
    rprint(f"  Front cursor: {result.get('front_cursor') or 'N/A'}")
    rprint(f"  Consumer accepted more: {'yes' if result.get('accepted') else 'no'}")

    if result.get("duration_seconds"):
        rprint(f"  Duration: {result['duration_seconds']:.1f}s")

    rprint("\n[bold]Statistics:[/bold]")
    rprint(f"  Pages fetched: {result.get('pages_fetched', 0)}")
    rprint(f"  Batches dispatched: {result.get('batches_dispatched', 0)}")
    rprint(f"  Items dispatched: {result.get('items_dispatched', 0)}")
    rprint(f"  Checkpoints saved: {result.get('checkpoints_saved', 0)}")

    errors = result.get("errors", [])
    if errors:
        rprint(f"\n[bold red]Errors ({len(errors)}):[/bold red]")
        for error in errors[:10]:
            rprint(f"  • {error}")
        if len(errors) > 10:
            rprint(f"  ... and {len(errors) - 10} more")
