"""Command-line interface for research jobs and claim verification (Typer + Rich)."""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from narrative_research.config.logging import configure_logging, get_logger
from narrative_research.config.settings import settings
from narrative_research.data_management.schemas import (
    Claim,
    FormulatedQuery,
    JobStatus,
    ResearchDepth,
    ResearchJob,
)
from narrative_research.errors import ResearchError
from narrative_research.research.job_poller import format_elapsed
from narrative_research.research.service import ResearchService

app = typer.Typer(
    help="Narrative research CLI - research jobs and claim verification",
    add_completion=False,
)

console = Console()

logger = get_logger("cli")

_STATUS_STYLES = {
    "verified": "green",
    "reliable": "green",
    "unreliable": "red",
    "unable_to_verify": "yellow",
    "pending": "dim",
    "checking": "dim",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Warnings and errors only"),
) -> None:
    """Configure logging for every command."""
    if verbose:
        configure_logging(level="DEBUG")
    elif quiet:
        configure_logging(level="WARNING")


@app.command()
def status() -> None:
    """Display configuration and stored state of the research services."""
    table = Table(title="Narrative Research Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", width=20)
    table.add_column("Status", style="green", width=18)
    table.add_column("Details", style="yellow")

    research_status = "✓ Configured" if settings.perplexity_api_key else "⚠ Not Configured"
    table.add_row(
        "Research API",
        research_status,
        f"deep: {settings.research_model_deep}, quick: {settings.research_model_quick}",
    )

    verify_status = "✓ Configured" if settings.google_ai_api_key else "⚠ Not Configured"
    table.add_row("Verification API", verify_status, settings.verification_model)
    table.add_row("Formulation API", verify_status, settings.formulation_model)

    table.add_row(
        "Polling",
        "✓ Active",
        f"every {settings.poll_interval_seconds:g}s, research deadline "
        f"{settings.research_timeout_seconds or 'none'}",
    )
    table.add_row(
        "Verification",
        "✓ Active",
        f"stagger {settings.stagger_seconds:g}s, {settings.verification_max_retries} retries, "
        f"base delay {settings.verification_base_delay_seconds:g}s",
    )

    for name, path in (
        ("Job store", settings.job_store_path),
        ("History", settings.history_store_path),
        ("Verification cache", settings.verification_cache_path),
    ):
        table.add_row(name, "✓ Persistent" if path else "Memory only", path or "-")

    storage = asyncio.run(_run_storage_stats())
    job_counts = storage["jobs"]
    table.add_row(
        "Jobs",
        f"{job_counts['total_jobs']} stored",
        ", ".join(f"{name}: {count}" for name, count in job_counts["by_status"].items()),
    )
    cache = storage["cache"]
    if cache is not None:
        table.add_row(
            "Cached verdicts",
            f"{cache['entries']} entries",
            f"{cache['total_hits']} hits, {cache['purged']} expired purged",
        )

    table.add_row("Logging", "✓ Active", f"Level: {settings.log_level}, Format: {settings.log_format}")
    console.print(table)


@app.command()
def formulate(
    topic: str = typer.Argument(..., help="Research topic"),
    context: Optional[str] = typer.Option(None, help="Business context"),
    audience: Optional[str] = typer.Option(None, help="Target audience"),
    question: Optional[List[str]] = typer.Option(
        None, "--question", help="Question the research must answer (repeatable)"
    ),
) -> None:
    """Suggest a research query and follow-up questions for a topic."""
    try:
        formulated = asyncio.run(_run_formulate(topic, context, audience, question or []))
    except ResearchError as e:
        console.print(f"\n[red]✗[/red] {e}")
        raise typer.Exit(1)

    console.print(
        Panel(formulated.suggested_query, title="Suggested query", border_style="green")
    )
    for follow_up in formulated.follow_up_questions:
        console.print(f"[bold]{follow_up.id}.[/bold] {follow_up.question}")
        for option in follow_up.options:
            console.print(f"    - {option}")


@app.command()
def research(
    query: str = typer.Argument(..., help="Research query"),
    depth: ResearchDepth = typer.Option(ResearchDepth.DEEP, "--depth", "-d"),
    owner: Optional[str] = typer.Option(None, "--owner", "-o", help="Owner id (required for deep)"),
    subject: Optional[str] = typer.Option(None, help="Narrative subject"),
    decision_type: Optional[str] = typer.Option(None, help="Decision the narrative supports"),
    audience: Optional[str] = typer.Option(None, help="Target audience"),
) -> None:
    """Run a research query; deep jobs are polled until they finish."""
    metadata = {"subject": subject, "decision_type": decision_type, "audience": audience}
    logger.info("Research command invoked", depth=depth.value)
    try:
        job = asyncio.run(_run_research(query, depth, metadata, owner))
    except ResearchError as e:
        console.print(f"\n[red]✗[/red] {e}")
        raise typer.Exit(1)

    _print_job(job)
    if job.status != JobStatus.COMPLETED:
        raise typer.Exit(1)


@app.command()
def resume(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner id"),
    execute: bool = typer.Option(
        False, "--execute", help="Run a pending job here if no other process picked it up"
    ),
) -> None:
    """Find the owner's latest incomplete job and follow it to completion."""
    try:
        job = asyncio.run(_run_resume(owner, execute))
    except ResearchError as e:
        console.print(f"\n[red]✗[/red] {e}")
        raise typer.Exit(1)

    if job is None:
        console.print("[dim]No incomplete research jobs.[/dim]")
        return
    _print_job(job)


@app.command()
def history(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner id"),
    subject: Optional[str] = typer.Option(None, help="Filter by subject"),
) -> None:
    """List saved research results."""
    service = ResearchService()
    entries = asyncio.run(service.history_store.list_entries(owner, subject=subject))
    if not entries:
        console.print("[dim]No saved research.[/dim]")
        return

    table = Table(title=f"Research History ({owner})", header_style="bold magenta")
    table.add_column("Saved", style="cyan")
    table.add_column("Query")
    table.add_column("Subject", style="yellow")
    table.add_column("Findings", justify="right")
    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M"),
            entry.query,
            entry.subject or "-",
            str(len(entry.result.key_findings)),
        )
    console.print(table)


@app.command()
def jobs(
    owner: str = typer.Option(..., "--owner", "-o", help="Owner id"),
    status: Optional[JobStatus] = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List an owner's research jobs, newest first."""
    found = asyncio.run(_run_list_jobs(owner, status))
    if not found:
        console.print("[dim]No research jobs.[/dim]")
        return

    table = Table(title=f"Research Jobs ({owner})", header_style="bold magenta")
    table.add_column("Created", style="cyan")
    table.add_column("Job")
    table.add_column("Depth")
    table.add_column("Status")
    table.add_column("Query")
    for job in found:
        table.add_row(
            job.created_at.strftime("%Y-%m-%d %H:%M"),
            job.id,
            job.depth.value,
            job.status.value,
            job.query,
        )
    console.print(table)


@app.command()
def verify(
    claims_file: Path = typer.Argument(..., exists=True, readable=True, help="JSON list of claims"),
    output: Optional[Path] = typer.Option(None, "--output", help="Write verified claims here"),
) -> None:
    """Verify claims from a JSON file ([{"id", "title", "text"}, ...])."""
    try:
        raw = json.loads(claims_file.read_text())
        claims = [Claim.model_validate(item) for item in raw]
    except (OSError, ValueError) as e:
        console.print(f"[red]✗[/red] Cannot read claims: {e}")
        raise typer.Exit(1)

    console.print(f"[bold cyan]Verifying {len(claims)} claims[/bold cyan]")
    stats = asyncio.run(_run_verify(claims))

    table = Table(title="Claim Verification", header_style="bold magenta")
    table.add_column("Claim", style="cyan")
    table.add_column("Status")
    table.add_column("Confidence", justify="right")
    table.add_column("Attempts", justify="right")
    table.add_column("Summary")
    for claim in claims:
        v = claim.verification
        if v is None:
            table.add_row(claim.title, "-", "-", "-", "")
            continue
        style = _STATUS_STYLES.get(v.status.value, "white")
        table.add_row(
            claim.title,
            f"[{style}]{v.status.value}[/{style}]",
            str(v.confidence),
            str(v.attempts),
            v.summary,
        )
    console.print(table)
    console.print(
        f"[dim]{stats['verified'] + stats['reliable']} supported, "
        f"{stats['unreliable']} unreliable, {stats['unable_to_verify']} need review[/dim]"
    )

    if output:
        output.write_text(
            json.dumps([c.model_dump(mode="json") for c in claims], indent=2)
        )
        console.print(f"[green]✓[/green] Wrote {output}")


async def _run_formulate(
    topic: str, context: Optional[str], audience: Optional[str], questions: list[str]
) -> FormulatedQuery:
    service = ResearchService()
    try:
        return await service.formulate_query(topic, context, audience, questions)
    finally:
        await service.aclose()


async def _run_list_jobs(owner: str, status: Optional[JobStatus]) -> list[ResearchJob]:
    service = ResearchService()
    try:
        return await service.list_jobs(owner, status)
    finally:
        await service.aclose()


async def _run_storage_stats() -> dict:
    service = ResearchService()
    try:
        return await service.storage_stats()
    finally:
        await service.aclose()


async def _run_research(
    query: str, depth: ResearchDepth, metadata: dict, owner: Optional[str]
) -> ResearchJob:
    service = ResearchService()
    try:
        job = await service.submit_research(query, depth, metadata, owner_id=owner)
        if job.is_terminal or owner is None:
            return job
        return await _follow(service, job.id, owner)
    finally:
        await service.aclose()


async def _run_resume(owner: str, execute: bool) -> Optional[ResearchJob]:
    service = ResearchService()
    try:
        job = await service.resume_incomplete_job(owner)
        if job is None:
            return None
        console.print(f"[cyan]Resuming[/cyan] {job.id} ({job.status.value}): {job.query}")
        if execute and job.status == JobStatus.PENDING:
            service.executor.trigger(job.id, owner)
        return await _follow(service, job.id, owner)
    finally:
        await service.aclose()


async def _follow(service: ResearchService, job_id: str, owner: str) -> ResearchJob:
    """Poll a job with a live spinner showing status and elapsed time."""
    with console.status("Researching...") as spinner:
        handle = None

        def on_update(job: ResearchJob) -> None:
            elapsed = handle.formatted_elapsed if handle else format_elapsed(0)
            spinner.update(f"Researching... [cyan]{job.status.value}[/cyan] {elapsed}")

        handle = await service.poll_job(job_id, owner, on_update=on_update)
        try:
            job = await handle.wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            service.cancel_poll(handle)
            raise

    if handle.error is not None:
        raise handle.error
    console.print(f"[dim]Finished in {handle.formatted_elapsed}[/dim]")
    return job


async def _run_verify(claims: list[Claim]) -> dict:
    service = ResearchService()
    try:
        return await service.verify_claims(claims)
    finally:
        await service.aclose()


def _print_job(job: ResearchJob) -> None:
    if job.status == JobStatus.FAILED:
        console.print(f"\n[red]✗[/red] Research failed: {job.error}")
        return
    if job.status != JobStatus.COMPLETED or job.result is None:
        console.print(f"\n[yellow]Job {job.id} is {job.status.value}[/yellow]")
        return

    result = job.result
    console.print(Panel(result.summary or "(no summary)", title="Summary", border_style="green"))
    if result.key_findings:
        console.print("[bold]Key findings[/bold]")
        for finding in result.key_findings:
            console.print(f"  • {finding}")
    if result.citations:
        console.print("\n[bold]Sources[/bold]")
        for citation in result.citations:
            console.print(f"  [cyan]{citation.title}[/cyan] [dim]{citation.url}[/dim]")


if __name__ == "__main__":
    app()
