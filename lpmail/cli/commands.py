"""CLI command implementations — all commands delegate to Pipeline."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click
from rich import box
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from lpmail.mail.types import RawEmail
from lpmail.processing.reparse import (
    DealNotFoundError,
    RawEmailNotFoundError,
    backfill_deal,
    parse_stored_email,
    reparse_all,
)
from lpmail.storage.db import StorageError

if TYPE_CHECKING:
    from lpmail.cli.pipeline import Pipeline

logger = logging.getLogger(__name__)
console = Console(width=200)


def _fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def _require_org(pipeline: Pipeline) -> str:
    if not pipeline.config.organization_id:
        _fail("No organization set. Pass --org or set LPMAIL_ORG_ID.")
    return pipeline.config.organization_id


@contextmanager
def _progress(description: str) -> Iterator[Callable[[int, int], None]]:
    """Yield an on_progress callback that drives a rich progress bar."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(description, total=None)

        def on_progress(completed: int, total: int) -> None:
            progress.update(task, completed=completed, total=total)

        yield on_progress


def _print_errors(errors: list[str]) -> None:
    if not errors:
        return
    console.print("\n[red]Errors:[/red]")
    for message in errors:
        console.print(f"  • {message}")


# ── lpmail parse ─────────────────────────────────────────────────────────────────


@click.command()
@click.argument("email_id")
@click.option("--simple", is_flag=True, help="Skip the AI classifier.")
@click.pass_obj
def parse(pipeline: Pipeline, email_id: str, simple: bool) -> None:
    """Parse one stored email and show what was detected."""
    try:
        result = asyncio.run(
            parse_stored_email(
                pipeline.orchestrator,
                pipeline.store,
                email_id,
                pipeline.config.organization_id or None,
                use_ai=not simple,
            )
        )
    except RawEmailNotFoundError:
        _fail(f"Email {email_id} not found.")
    except StorageError as exc:
        _fail(f"Could not save parse result: {exc}")
    email = pipeline.store.get_raw_email(email_id)

    method = result.parsing_method.value
    if result.fell_back:
        method += " [yellow](AI failed, fell back)[/yellow]"

    table = Table(box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="bold cyan")
    table.add_column("Value")
    table.add_row("Email", email.id)
    table.add_row("From", email.from_email)
    table.add_row("Subject", email.subject or "")
    table.add_row("Method", method)
    table.add_row("Intent", result.intent.value if result.intent else "")
    table.add_row("LP", result.detected_lp_id or "[dim]no match[/dim]")
    table.add_row("Deal", result.detected_deal_id or "[dim]no match[/dim]")
    table.add_row("Sender", result.extracted_lp.name or "")
    table.add_row("Firm", result.extracted_lp.firm or "")
    console.print(table)


# ── lpmail backfill ──────────────────────────────────────────────────────────────


@click.command()
@click.argument("deal_id")
@click.pass_obj
def backfill(pipeline: Pipeline, deal_id: str) -> None:
    """Reparse recent emails to find ones that mention a deal."""
    org_id = _require_org(pipeline)
    try:
        with _progress("Reparsing emails...") as on_progress:
            summary = asyncio.run(
                backfill_deal(
                    pipeline.orchestrator,
                    pipeline.store,
                    org_id,
                    deal_id,
                    pipeline.config,
                    on_progress=on_progress,
                )
            )
    except DealNotFoundError:
        _fail(f"Deal {deal_id} not found.")

    console.print(
        f"[green]Done.[/green] Deal [bold]{summary.deal_name}[/bold]: "
        f"{summary.processed}/{summary.total} processed, "
        f"[bold]{summary.matched}[/bold] matched"
        + (f", [red]{len(summary.errors)} error(s)[/red]" if summary.errors else "")
        + "."
    )
    if summary.timed_out:
        console.print("[yellow]Time budget reached; remaining emails were not processed.[/yellow]")
    _print_errors(summary.errors)


# ── lpmail reparse ───────────────────────────────────────────────────────────────


@click.command()
@click.pass_obj
def reparse(pipeline: Pipeline) -> None:
    """Reparse every email that failed or was handled without AI."""
    org_id = _require_org(pipeline)
    if not pipeline.orchestrator.ai_available:
        console.print("[yellow]AI parsing disabled; emails will be re-matched only.[/yellow]")

    with _progress("Reparsing emails...") as on_progress:
        summary = asyncio.run(
            reparse_all(
                pipeline.orchestrator,
                pipeline.store,
                org_id,
                pipeline.config,
                on_progress=on_progress,
            )
        )

    if summary.total == 0:
        console.print("[green]Nothing to reparse.[/green]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    for column in ("Total", "Processed", "Succeeded", "Failed"):
        table.add_column(column, justify="right")
    table.add_row(
        str(summary.total),
        str(summary.processed),
        f"[green]{summary.succeeded}[/green]",
        f"[red]{summary.failed}[/red]" if summary.failed else "0",
    )
    console.print(table)
    if summary.timed_out:
        console.print("[yellow]Time budget reached; remaining emails were not processed.[/yellow]")
    _print_errors(summary.errors)


# ── lpmail ingest ────────────────────────────────────────────────────────────────


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--ai/--no-ai", "use_ai", default=None, help="Parse with the AI classifier.")
@click.pass_obj
def ingest(pipeline: Pipeline, file: Path, use_ai: bool | None) -> None:
    """Store and parse emails from a JSON array of raw email records."""
    try:
        records = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        _fail(f"Could not read {file}: {exc}")
    if not isinstance(records, list):
        _fail(f"{file} must contain a JSON array of emails.")

    try:
        emails = [RawEmail.from_dict(record) for record in records]
    except (TypeError, ValueError, AttributeError) as exc:
        _fail(f"Invalid email record in {file}: {exc}")

    stats = asyncio.run(pipeline.ingestor(use_ai).ingest(emails))

    console.print(
        f"[green]Done.[/green] {stats.ingested} ingested, "
        f"{stats.duplicates} duplicate(s), {stats.parsed} parsed, "
        f"{stats.suggested_contacts_added} suggested contact(s), "
        f"{stats.answered} question(s) answered"
        + (f", [red]{len(stats.errors)} error(s)[/red]" if stats.errors else "")
        + "."
    )
    _print_errors(stats.errors[:10])
