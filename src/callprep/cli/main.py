"""
CLI for the call prep research engine.

Commands:
    callprep research --email E --campaign FILE - Research a prospect and print a brief
    callprep config - Show current configuration
    callprep version - Print version
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import orjson
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from callprep import __version__
from callprep.cache.history import SQLiteBriefHistory
from callprep.config import Settings, clear_settings_cache, get_settings
from callprep.coordinator.orchestrator import CoordinatorOptions
from callprep.coordinator.pipeline import ResearchPipeline
from callprep.exceptions import CallPrepError, ValidationError
from callprep.logging import setup_logging
from callprep.types import (
    CampaignContext,
    ConfidenceRating,
    PipelineOutcome,
    ResearchBriefData,
    ResearchRequest,
    ResearchTarget,
    ResearchType,
)
from callprep.utils.domains import normalize_email

app = typer.Typer(
    name="callprep",
    help="Call Prep - AI-researched sales briefs for upcoming meetings",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

CONFIDENCE_STYLES = {
    ConfidenceRating.HIGH: "green",
    ConfidenceRating.MEDIUM: "yellow",
    ConfidenceRating.LOW: "red",
}


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _load_campaign(path: Path) -> CampaignContext:
    """Read a campaign context JSON file.

    Raises:
        ValidationError: If the file is unreadable or incomplete.
    """
    try:
        data = orjson.loads(path.read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ValidationError(
            "Cannot read campaign file",
            context={"field": "campaign", "value": str(path)},
        ) from e
    if not isinstance(data, dict):
        raise ValidationError(
            "Campaign file must contain a JSON object",
            context={"field": "campaign", "value": str(path)},
        )
    return CampaignContext.from_dict(data)


def _print_brief(brief: ResearchBriefData, outcome: PipelineOutcome) -> None:
    style = CONFIDENCE_STYLES[brief.confidence_rating]
    console.print()
    console.print(
        Panel(
            f"[bold]Confidence:[/bold] [{style}]{brief.confidence_rating.value}[/{style}]\n"
            f"{brief.confidence_explanation}\n\n"
            f"[dim]Brief ID: {outcome.brief_id}"
            + (" | partial data" if outcome.result and outcome.result.is_partial_data else "")
            + "[/dim]",
            title="[bold cyan]Call Prep Brief[/bold cyan]",
            border_style="cyan",
        )
    )

    sections = [
        ("Company Overview", brief.company_overview),
        ("Pain Points", brief.pain_points),
        ("How We Fit", brief.how_we_fit),
        ("Opening Line", brief.opening_line),
        ("Success Outcome", brief.success_outcome),
        ("Watch Outs", brief.watch_outs),
    ]
    for title, body in sections:
        if body:
            console.print(Panel(body, title=f"[bold]{title}[/bold]", border_style="dim"))

    if brief.discovery_questions:
        questions = "\n".join(f"{i}. {q}" for i, q in enumerate(brief.discovery_questions, 1))
        console.print(Panel(questions, title="[bold]Discovery Questions[/bold]", border_style="dim"))
    if brief.recent_signals:
        signals = "\n".join(f"- {s}" for s in brief.recent_signals)
        console.print(Panel(signals, title="[bold]Recent Signals[/bold]", border_style="dim"))


async def _run_pipeline(
    settings: Settings,
    request: ResearchRequest,
    campaign: CampaignContext,
    options: CoordinatorOptions,
) -> PipelineOutcome:
    history = SQLiteBriefHistory(settings.HISTORY_DB_PATH)
    await history.init()
    pipeline = ResearchPipeline(history, settings=settings)
    try:
        return await pipeline.run(request, campaign, options)
    finally:
        await pipeline.close()
        await history.close()


@app.command()
def research(
    campaign_file: Annotated[
        Path,
        typer.Option("--campaign", "-c", help="Campaign context JSON file"),
    ],
    email: Annotated[
        Optional[str],
        typer.Option("--email", "-e", help="Prospect email address"),
    ] = None,
    name: Annotated[
        Optional[str],
        typer.Option("--name", "-n", help="Prospect name"),
    ] = None,
    website: Annotated[
        Optional[str],
        typer.Option("--website", "-w", help="Company website (takes priority over email domain)"),
    ] = None,
    domain: Annotated[
        Optional[str],
        typer.Option("--domain", "-d", help="Company domain"),
    ] = None,
    company: Annotated[
        Optional[str],
        typer.Option("--company", help="Company name"),
    ] = None,
    campaign_id: Annotated[
        str,
        typer.Option("--campaign-id", help="Campaign identifier used for brief reuse"),
    ] = "cli",
    calendar: Annotated[
        bool,
        typer.Option("--calendar", help="Treat as a calendar request (enables brief reuse)"),
    ] = False,
    multi_pass: Annotated[
        bool,
        typer.Option("--multi-pass", "-m", help="Run three-pass research per prospect"),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON"),
    ] = False,
) -> None:
    """Research a prospect and print a call prep brief."""
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'callprep config' to see what's wrong."
        )
        raise typer.Exit(1)

    if not (email or website or company):
        error_console.print("[red]Error:[/red] Provide at least one of --email, --website or --company.")
        raise typer.Exit(1)

    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE, console_output=not as_json)

    try:
        campaign = _load_campaign(campaign_file)
    except ValidationError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    target = ResearchTarget(
        email=normalize_email(email) if email else None,
        name=name,
        company_domain=domain,
        website=website,
        company_name=company,
    )
    request = ResearchRequest(
        type=ResearchType.CALENDAR if calendar else ResearchType.ADHOC,
        campaign_id=campaign_id,
        prospects=(target,),
    )

    try:
        outcome = asyncio.run(
            _run_pipeline(settings, request, campaign, CoordinatorOptions(multi_pass=multi_pass))
        )
    except CallPrepError as e:
        error_console.print(f"\n[red]Error ({e.kind.value}):[/red] {e}")
        raise typer.Exit(1)

    if outcome.reused or outcome.result is None:
        if as_json:
            console.print_json(orjson.dumps({"briefId": outcome.brief_id, "reused": True}).decode())
        else:
            console.print(
                f"\n[green]Reusing recent brief[/green] [bold]{outcome.brief_id}[/bold]"
            )
        return

    if as_json:
        payload = {"briefId": outcome.brief_id, "reused": False, **outcome.result.to_dict()}
        console.print_json(orjson.dumps(payload).decode())
    else:
        _print_brief(outcome.result.brief, outcome)
        console.print()


@app.command()
def config() -> None:
    """Show current configuration.

    Displays all configuration values with API keys redacted.
    Also shows which external services have credentials.
    """
    console.print()
    console.print("[bold]Call Prep Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print()
        error_console.print("Check timeouts, retry settings and LOG_LEVEL.")
        error_console.print("Create a .env file or set environment variables.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)

    console.print()
    services = settings.available_services
    if services:
        console.print(f"[bold]Configured services:[/bold] {', '.join(services)}")
    else:
        console.print(
            "[yellow]No services configured. Set PERPLEXITY_API_KEY and ANTHROPIC_API_KEY.[/yellow]"
        )

    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"callprep version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
