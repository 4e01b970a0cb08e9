#!/usr/bin/env python3
"""
CLI for the trend discovery engine.

Usage:
    python scripts/run_discovery.py trigger --callback-url https://example.com/api/dataforseo/callback
    python scripts/run_discovery.py runs --limit 10
    python scripts/run_discovery.py run <run-id>
    python scripts/run_discovery.py replay-callback data/callbacks/sample.json
    python scripts/run_discovery.py add-root "ai agent" --locale us
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from trend_scout.config import get_settings
from trend_scout.db.repository import TrendRepository
from trend_scout.pipeline.discovery import TrendDiscovery
from trend_scout.pipeline.inspector import RunSummary, get_run_detail, list_runs
from trend_scout.utils.logging import setup_logging

console = Console()
logger = logging.getLogger(__name__)


def get_repository() -> TrendRepository:
    repository = TrendRepository()
    repository.create_tables()
    return repository


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="INFO",
    help="Logging level",
)
def cli(log_level: str) -> None:
    """Trend discovery and keyword spike detection."""
    setup_logging(log_level)


@cli.command()
@click.option(
    "--callback-url",
    type=str,
    default=None,
    help="Postback URL for DataForSEO (defaults to APP_URL + /api/dataforseo/callback)",
)
def trigger(callback_url: str | None) -> None:
    """Seed a new run and post its root tasks."""
    settings = get_settings()
    if not callback_url:
        if not settings.app_url:
            console.print("[red]Error: Provide --callback-url or set APP_URL[/red]")
            raise SystemExit(1)
        callback_url = f"{settings.app_url.rstrip('/')}/api/dataforseo/callback"

    console.print("\n[bold]Trend Discovery Run[/bold]")
    console.print(f"Markets: {', '.join(settings.markets)}")
    console.print(f"Timeframes: {', '.join(settings.timeframes)}")
    console.print(f"Callback: {callback_url}")
    console.print()

    outcome = asyncio.run(run_trigger(callback_url))

    if outcome.run_id is None:
        console.print("[yellow]No seed keywords found, no run created[/yellow]")
        return

    color = "green" if outcome.errors == 0 else "yellow"
    console.print(f"[{color}]✓ Run {outcome.run_id}: posted {outcome.posted}, errors {outcome.errors}[/{color}]")
    for detail in outcome.details[:10]:
        console.print(f"  [red]- {detail}[/red]")


async def run_trigger(callback_url: str):
    async with TrendDiscovery(repository=get_repository()) as discovery:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task("Posting root tasks...", total=None)
            return await discovery.trigger_run(callback_url, trigger_source="cli")


@cli.command()
@click.option("--limit", "-n", type=int, default=20, help="Number of runs to show")
def runs(limit: int) -> None:
    """List recent runs."""
    summaries = list_runs(get_repository(), limit=limit)
    if not summaries:
        console.print("[yellow]No runs yet[/yellow]")
        return
    display_runs(summaries)


@cli.command()
@click.argument("run_id")
def run(run_id: str) -> None:
    """Show one run and its tasks."""
    detail = get_run_detail(get_repository(), run_id)
    if detail is None:
        console.print(f"[red]Run {run_id} not found[/red]")
        raise SystemExit(1)

    display_runs([detail.run])

    table = Table(title="Tasks")
    table.add_column("Task", style="dim")
    table.add_column("Keyword", style="cyan")
    table.add_column("Locale")
    table.add_column("Depth", justify="right")
    table.add_column("Status", style="magenta")
    table.add_column("Error", style="red")

    for task in detail.tasks:
        depth = (task.metadata or {}).get("discovery_depth")
        table.add_row(
            task.task_id,
            task.keyword[:40],
            task.locale,
            "-" if depth is None else str(depth),
            task.status,
            (task.error_message or "")[:60],
        )

    console.print(table)


@cli.command("replay-callback")
@click.argument("file", type=click.Path(exists=True, path_type=Path))
def replay_callback(file: Path) -> None:
    """Process a saved DataForSEO callback body offline."""
    outcome = asyncio.run(run_replay(file))
    console.print(
        f"[green]✓ Processed {outcome.processed} tasks[/green] "
        f"(errors {outcome.errors}, skipped {outcome.skipped}, runs updated {len(outcome.runs_updated)})"
    )


async def run_replay(file: Path):
    async with TrendDiscovery(repository=get_repository()) as discovery:
        return await discovery.replay_callback(file)


@cli.command("add-root")
@click.argument("keyword")
@click.option("--label", type=str, default=None, help="Display label (defaults to the keyword)")
@click.option("--locale", type=str, default="global", help="Market code or 'global'")
def add_root(keyword: str, label: str | None, locale: str) -> None:
    """Add an active root keyword."""
    root = get_repository().add_root(keyword.strip(), label=label, locale=locale.strip().lower())
    console.print(f"[green]✓ Added root '{root.keyword}' ({root.locale})[/green]")


def display_runs(summaries: list[RunSummary]) -> None:
    """Display a table of runs."""
    table = Table(title="Runs")
    table.add_column("Run", style="dim")
    table.add_column("Triggered", style="cyan")
    table.add_column("Status", style="magenta")
    table.add_column("Tasks", justify="right")
    table.add_column("Completed", justify="right", style="green")
    table.add_column("Queued", justify="right", style="yellow")
    table.add_column("Errors", justify="right", style="red")
    table.add_column("Spikes", justify="right")
    table.add_column("Cost ($)", justify="right")

    for summary in summaries:
        spikes = summary.metadata.get("keyword_spikes") or {}
        counts = summary.task_counts
        table.add_row(
            summary.id,
            summary.triggered_at.strftime("%Y-%m-%d %H:%M"),
            summary.status,
            str(counts.total),
            str(counts.completed),
            str(counts.queued),
            str(counts.error),
            str(len(spikes.get("recorded_keywords", []))),
            f"{summary.cost_total_usd:.4f}",
        )

    console.print(table)


if __name__ == "__main__":
    cli()
