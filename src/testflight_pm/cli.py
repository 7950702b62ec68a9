"""Operator CLI: pull recent TestFlight feedback into Linear."""

import asyncio
import json
from datetime import timedelta
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .common.config import get_settings
from .common.logging import configure_logging
from .errors import TestFlightPMError
from .health import HealthReport, check_health
from .linear.client import LinearClient
from .models import FeedbackRecord, utcnow
from .pipeline import FilingOptions, FilingResult, FilingState, IssueFilingOrchestrator
from .testflight.client import TestFlightClient

console = Console()
app = typer.Typer(help="Sync TestFlight crash reports and feedback into Linear issues.")

_STATE_STYLES = {
    FilingState.CREATED: "green",
    FilingState.COMMENTED: "cyan",
    FilingState.FAILED: "red",
}


def _render_records(records: List[FeedbackRecord]) -> None:
    table = Table(title="TestFlight feedback", show_edge=False, header_style="bold cyan")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Submitted")
    table.add_column("Version")
    table.add_column("Device")
    table.add_column("Screenshots", justify="right")
    for record in records:
        cached = sum(1 for image in record.images if image.is_cached)
        table.add_row(
            record.id,
            record.type.value,
            record.submitted_at.strftime("%Y-%m-%d %H:%M"),
            f"{record.app_version} ({record.build_number})",
            record.device_info.model or "-",
            f"{cached}/{len(record.images)}" if record.images else "-",
        )
    console.print(table)


def _render_results(results: List[FilingResult]) -> None:
    table = Table(title="Filing results", show_edge=False, header_style="bold cyan")
    table.add_column("Feedback", style="cyan")
    table.add_column("Outcome")
    table.add_column("Issue")
    table.add_column("Notes")
    for result in results:
        style = _STATE_STYLES[result.state]
        notes = str(result.error) if result.error else (result.label_warning or "")
        table.add_row(
            result.feedback_id,
            f"[{style}]{result.state.value}[/{style}]",
            result.issue.identifier if result.issue else "-",
            notes,
        )
    console.print(table)


def _ok(flag: bool) -> str:
    return "[green]ok[/green]" if flag else "[red]failed[/red]"


def _render_health(report: HealthReport) -> None:
    table = Table(title="Health", show_edge=False, header_style="bold cyan")
    table.add_column("Check")
    table.add_column("Result")
    table.add_row("App Store Connect auth", _ok(report.testflight_authenticated))
    table.add_row("Linear connectivity", _ok(report.linear_connected))
    table.add_row("Linear team", _ok(report.linear_status == "healthy"))
    for key, value in report.linear_details.items():
        table.add_row(f"[dim]{key}[/dim]", str(value))
    console.print(table)


async def _sync(hours: int, bundle_id: Optional[str], dry_run: bool, labels: List[str]) -> List[FilingResult]:
    settings = get_settings()
    cutoff = utcnow() - timedelta(hours=hours)
    async with TestFlightClient.from_settings(settings) as testflight:
        records = await testflight.fetch_since(cutoff, bundle_id=bundle_id)
        _render_records(records)
        if dry_run or not records:
            return []

        async with LinearClient.from_settings(settings) as linear, IssueFilingOrchestrator.from_settings(
            settings, linear, acquirer=testflight.acquirer
        ) as orchestrator:
            return await orchestrator.file_many(records, FilingOptions(additional_labels=labels))


async def _health() -> HealthReport:
    settings = get_settings()
    async with TestFlightClient.from_settings(settings) as testflight, LinearClient.from_settings(settings) as linear:
        return await check_health(testflight, linear)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
) -> None:
    settings = get_settings()
    configure_logging(log_level or settings.log_level, force=True, json_output=settings.log_json)


@app.command()
def sync(
    hours: int = typer.Option(24, "--hours", min=1, help="Look back this many hours."),
    bundle_id: Optional[str] = typer.Option(None, "--bundle-id", help="Bundle id to resolve the app from."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Fetch and list feedback without filing issues."),
    label: List[str] = typer.Option([], "--label", help="Extra label for every filed issue (repeatable)."),
) -> None:
    """Fetch recent feedback and file or update Linear issues."""
    try:
        results = asyncio.run(_sync(hours, bundle_id, dry_run, label))
    except TestFlightPMError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    if dry_run:
        console.print("[dim]Dry run: no issues filed.[/dim]")
        return
    if not results:
        console.print("[yellow]No feedback in the requested window.[/yellow]")
        return
    _render_results(results)
    if any(result.state is FilingState.FAILED for result in results):
        raise typer.Exit(1)


@app.command()
def health(
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
) -> None:
    """Check App Store Connect and Linear credentials."""
    try:
        report = asyncio.run(_health())
    except TestFlightPMError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1) from exc

    if as_json:
        console.print_json(json.dumps(report.as_dict()))
    else:
        _render_health(report)
    if not report.healthy:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
