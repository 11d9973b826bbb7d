"""CLI entrypoint for sheetmail."""

import asyncio
import logging
import sys
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import load_settings, Settings
from .exceptions import SheetmailError, format_exception_chain
from .logging import setup_logging
from .models import Record, RecordStatus
from .session import DispatchSession


console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    "success": "green",
    "error": "red",
    "warning": "yellow",
}

spreadsheet_option = click.option(
    "--spreadsheet", "-s", help="Spreadsheet ID or docs.google.com URL"
)
sheet_option = click.option("--sheet", help="Sheet name (defaults to the configured sheet)")
debug_option = click.option("--debug", is_flag=True, help="Enable debug logging")


@click.group()
def main():
    """Send the messages listed in a Google Sheet through the dispatch endpoint."""
    pass


@main.command()
@spreadsheet_option
@sheet_option
@debug_option
def load(spreadsheet: Optional[str], sheet: Optional[str], debug: bool):
    """Fetch the sheet and list its records."""
    settings = _setup_logging(debug)

    async def run():
        async with DispatchSession(settings) as session:
            return await session.load(spreadsheet, sheet)

    records = _run(run())
    if not records:
        console.print("[yellow]No email data found[/yellow]")
        return
    console.print(_records_table(records))


@main.command()
@click.option("--row", "-r", type=int, required=True, help="Sheet row of the record to send")
@spreadsheet_option
@sheet_option
@debug_option
def send(row: int, spreadsheet: Optional[str], sheet: Optional[str], debug: bool):
    """Send a single record."""
    settings = _setup_logging(debug)

    async def run():
        async with DispatchSession(settings) as session:
            await session.load(spreadsheet, sheet)
            if row not in session.tracker:
                raise click.BadParameter(f"No record at row {row}", param_hint="--row")
            return await session.send_one(row)

    outcome = _run(run())
    if outcome.sent:
        console.print(f"[green]✓ Email sent for row {row}[/green]")
    else:
        console.print(f"[red]✗ Failed to send row {row}: {outcome.reason}[/red]")
        sys.exit(1)


@main.command(name="send-all")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@spreadsheet_option
@sheet_option
@debug_option
def send_all(yes: bool, spreadsheet: Optional[str], sheet: Optional[str], debug: bool):
    """Send every record that has not been sent yet."""
    settings = _setup_logging(debug)

    async def run():
        async with DispatchSession(settings) as session:
            records = await session.load(spreadsheet, sheet)
            pending = [r for r in records if r.status is not RecordStatus.SENT]
            if not records:
                console.print("[yellow]No emails to send[/yellow]")
                return None
            if not pending:
                console.print("[yellow]All emails have already been sent[/yellow]")
                return None
            if not yes and not click.confirm(
                f"Send emails to all {len(pending)} pending contacts?", default=False
            ):
                return None
            summary = await session.send_all()
            console.print(_records_table(session.tracker.snapshot(), session))
            return summary

    summary = _run(run())
    if summary is None:
        return
    console.print(Panel(
        f"[green]Sent: {summary.sent}[/green]\n"
        f"[red]Failed: {summary.failed}[/red]",
        title="Bulk send completed"
    ))
    if summary.failed:
        sys.exit(1)


@main.command()
@debug_option
def probe(debug: bool):
    """Test the connection to the dispatch endpoint."""
    settings = _setup_logging(debug)

    async def run():
        async with DispatchSession(settings) as session:
            return await session.probe()

    result = _run(run())
    if result.error:
        console.print(f"[red]Connection failed ({result.url}): {result.error}[/red]")
        sys.exit(1)
    style = "green" if result.ok else "red"
    console.print(f"[{style}]Connection test: {result.status_code}[/{style}]\n{result.body_preview}")
    if not result.ok:
        sys.exit(1)


@main.command()
@debug_option
def status(debug: bool):
    """Show application configuration."""
    settings = _setup_logging(debug)

    console.print(Panel.fit(
        f"[bold green]Sheetmail Status[/bold green]\n"
        f"Version: {__version__}\n"
        f"Debug Mode: {settings.debug}\n"
        f"Logging Level: {settings.logging.level}\n"
        f"Spreadsheet: {settings.sheets.spreadsheet_id or '-'}\n"
        f"Sheet: {settings.sheets.sheet_name}\n"
        f"API Key: {'set' if settings.sheets.api_key else 'missing'}\n"
        f"Dispatch Endpoint: {settings.dispatch.endpoint}\n"
        f"Throttle Delay: {settings.dispatch.throttle_delay}s",
        title="Application Status"
    ))


@main.command()
def version():
    """Show version information."""
    console.print(f"Sheetmail version {__version__}")


def _records_table(records: List[Record], session: Optional[DispatchSession] = None) -> Table:
    table = Table(show_header=True, title="Email Data")
    table.add_column("Row", style="cyan")
    table.add_column("Name")
    table.add_column("To", style="magenta")
    table.add_column("Subject")
    table.add_column("Status")

    for record in records:
        style = STATUS_STYLES[record.status_color_class]
        status_text = f"[{style}]{record.status.value}[/{style}]"
        reason = session.tracker.reason(record.source_position) if session else None
        if reason:
            status_text += f" ({reason})"
        table.add_row(
            str(record.source_position),
            record.display_name,
            ", ".join(record.recipient_list),
            record.subject,
            status_text,
        )
    return table


def _run(coro):
    """Run a coroutine, reporting sheetmail errors and exiting on failure."""
    try:
        return asyncio.run(coro)
    except SheetmailError as e:
        console.print(f"[red]{format_exception_chain(e)}[/red]")
        logger.log(e.log_level, f"{type(e).__name__}: {e.message}", extra={"context": e.context})
        sys.exit(1)


def _setup_logging(debug: bool = False) -> Settings:
    """Load application settings and setup logging."""
    try:
        settings = load_settings()
    except SheetmailError as e:
        console.print(f"[red]{format_exception_chain(e)}[/red]")
        sys.exit(1)

    if debug:
        settings = settings.model_copy(deep=True)
        settings.debug = True
        settings.logging.level = "DEBUG"

    setup_logging(settings=settings)
    return settings


if __name__ == "__main__":
    main()
