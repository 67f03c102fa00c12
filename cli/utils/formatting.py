"""Rich Formatting Utilities for CLI Output"""

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "active": "yellow",
    "completed": "green",
    "failed": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def format_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]], show_payload: bool = False) -> Table:
    """Create a formatted table for a jobs list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Name", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Created", justify="left", style="dim")
    table.add_column("Result", justify="left", style="white")
    if show_payload:
        table.add_column("Data", justify="left", style="white")

    for job in jobs:
        row = [
            job.get("id", "")[:8],  # Short ID
            job.get("name", ""),
            format_status(job.get("status", "")),
            job.get("createdAt", "") or "-",
            escape(_truncate(job.get("result") or "-")),
        ]
        if show_payload:
            row.append(escape(_truncate(json.dumps(job.get("data", {})))))
        table.add_row(*row)

    return table


def create_job_panel(job: dict[str, Any], title: str = "Job") -> Panel:
    """Create formatted panel with every field of a job"""
    content = (
        f"• ID: [cyan]{job.get('id', '')}[/cyan]\n"
        f"• Name: [magenta]{job.get('name', '')}[/magenta]\n"
        f"• Status: {format_status(job.get('status', ''))}\n"
        f"• Result: {escape(job.get('result') or '-')}\n"
        f"• Created: [dim]{job.get('createdAt') or '-'}[/dim]\n"
        f"• Completed: [dim]{job.get('completedAt') or '-'}[/dim]\n"
        f"• Failed: [dim]{job.get('failedAt') or '-'}[/dim]\n\n"
        f"[bold]Data[/bold]\n{escape(json.dumps(job.get('data', {}), indent=2))}"
    )
    border = STATUS_STYLES.get(job.get("status", ""), "blue")
    return Panel(content, title=title, border_style=border)


def _truncate(text: str, length: int = 50) -> str:
    return text[:length] + "..." if len(text) > length else text
