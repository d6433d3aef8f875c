"""Rich views for the CLI."""

from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.table import Table

from .models import LedgerEntry, SearchResult, StatusReport


def format_timestamp(value: Optional[datetime]) -> str:
	if value is None:
		return "-"
	return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def format_duration(millis: int) -> str:
	if millis < 1000:
		return f"{millis}ms"
	return f"{millis / 1000:.1f}s"


def render_ledger_entry(entry: LedgerEntry, console: Optional[Console] = None, title: str = "Last Update") -> None:
	"""Render one update run as a two-column table."""
	console = console or Console()
	style = "green" if entry.succeeded else "red"

	table = Table(title=title, show_header=False)
	table.add_column("Field", style="cyan")
	table.add_column("Value")
	table.add_row("Started", format_timestamp(entry.run_timestamp))
	table.add_row("Completed", format_timestamp(entry.completed_at))
	table.add_row("Result", f"[{style}]{'succeeded' if entry.succeeded else 'failed'}[/{style}]")
	table.add_row("Total documents", str(entry.total_documents))
	table.add_row("New", str(entry.new_count))
	table.add_row("Updated", str(entry.updated_count))
	table.add_row("Deleted", str(entry.deleted_count))
	table.add_row("Errors", str(len(entry.errors)))
	table.add_row("Duration", format_duration(entry.duration_millis))
	console.print(table)

	for error in entry.errors[:5]:
		console.print(f"  [yellow]-[/yellow] {error}")
	if len(entry.errors) > 5:
		console.print(f"  [dim]... and {len(entry.errors) - 5} more[/dim]")


def render_status(report: StatusReport, console: Optional[Console] = None) -> None:
	console = console or Console()
	if report.last_update is None:
		console.print("[dim]No update status available. Run an update first.[/dim]")
	else:
		render_ledger_entry(report.last_update, console)
	console.print(f"Running: {'yes' if report.is_running else 'no'}")
	console.print(f"Next scheduled run: {format_timestamp(report.next_scheduled_run)}")


def render_search_results(query: str, results: list[SearchResult], console: Optional[Console] = None) -> None:
	"""Render ranked search hits."""
	console = console or Console()
	if not results:
		console.print(f"[dim]No documents match {query!r}.[/dim]")
		return

	table = Table(title=f"Search: {query} ({len(results)} results)")
	table.add_column("Score", justify="right")
	table.add_column("Title", style="cyan")
	table.add_column("Category")
	table.add_column("Platform")
	table.add_column("Id", style="dim")

	for r in results:
		table.add_row(f"{r.score:.3f}", r.title, r.category, r.platform, r.id)
	console.print(table)
