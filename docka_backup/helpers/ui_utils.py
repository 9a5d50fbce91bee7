"""
CLI Utilities for docka-backup

Rich-based helpers for consistent CLI output.
"""

from typing import Callable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ..types import RunSummary

console = Console()


def print_header(title: str, subtitle: str = ""):
    """Print styled header with optional subtitle"""
    content = f"[bold cyan]{escape(title)}[/bold cyan]"
    if subtitle:
        content += f"\n[dim]{escape(subtitle)}[/dim]"

    console.print(Panel(content, border_style="cyan"))


def print_success(message: str):
    console.print(f"[green]✓[/green] {escape(message)}")


def print_error(message: str):
    console.print(f"[red]✗[/red] {escape(message)}")


def print_warning(message: str):
    console.print(f"[yellow]⚠[/yellow]  {escape(message)}")


def print_info(message: str):
    console.print(f"[cyan]→[/cyan] {escape(message)}")



def create_table(title: str, columns: List[tuple]) -> Table:
    """
    Create a styled Rich table

    Args:
        title: Table title
        columns: List of (name, style, width) tuples; width may be None

    Returns:
        Rich Table instance
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    for name, style, width in columns:
        table.add_column(name, style=style, width=width)
    return table


def with_spinner(message: str, func: Callable, *args, **kwargs):
    """Execute ``func`` while a spinner is shown; returns its result."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description=message, total=None)
        return func(*args, **kwargs)


def format_size(size_bytes: Optional[int]) -> str:
    if size_bytes is None:
        return "-"
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size_bytes} B"


def print_run_summary(summary: RunSummary) -> None:
    """Print one row per target plus run-level errors."""
    table = create_table(
        f"{summary.action.capitalize()} summary",
        [
            ("Target", "cyan", None),
            ("Status", "white", None),
            ("Quiesced", "white", None),
            ("Containers", "green", None),
            ("Details", "yellow", None),
        ],
    )
    for result in summary.results:
        status = "[green]OK[/green]" if result.success else "[red]FAILED[/red]"
        quiesced = "yes" if result.quiesced else "[yellow]no[/yellow]"
        details = "; ".join(result.errors + result.warnings)
        table.add_row(
            escape(result.target_name),
            status,
            quiesced,
            str(len(result.containers_stopped)),
            escape(details) or "-",
        )
    console.print(table)

    if summary.archive:
        print_info(f"Archive: {summary.archive.file_name}")
    if summary.deleted:
        print_info(f"Pruned {len(summary.deleted)} old backup(s)")
    for error in summary.errors:
        print_error(error)

    if summary.success:
        print_success(f"{summary.action.capitalize()} completed in {summary.duration_seconds:.1f}s")
    else:
        print_warning(f"{summary.action.capitalize()} finished with failures - check logs for details")
