"""Rich Formatting Utilities for Beautiful CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "blue",
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


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a jobs list"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center", style="yellow")
    table.add_column("Priority", justify="center")
    table.add_column("Created", justify="left", style="dim")
    table.add_column("Error", justify="left", style="red")

    for job in jobs:
        table.add_row(
            str(job.get("id", ""))[:8],  # Short ID
            job.get("type", ""),
            format_status(job.get("status", "")),
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            str(job.get("priority", 0)),
            str(job.get("created_at", ""))[:19],
            (job.get("error") or "-")[:40],
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Detailed view of a single job"""
    lines = [
        f"• ID: [cyan]{job.get('id')}[/cyan]",
        f"• Type: [magenta]{job.get('type')}[/magenta]",
        f"• Status: {format_status(job.get('status', ''))}",
        f"• Attempts: [yellow]{job.get('attempts', 0)}/{job.get('max_attempts', 0)}[/yellow]",
        f"• Priority: {job.get('priority', 0)}",
        f"• Created: [dim]{job.get('created_at')}[/dim]",
    ]
    if job.get("parent_id"):
        lines.append(f"• Parent: [cyan]{job['parent_id']}[/cyan]")
    if job.get("next_retry_at") and job.get("status") == "pending":
        lines.append(f"• Next retry: [yellow]{job['next_retry_at']}[/yellow]")
    if job.get("completed_at"):
        lines.append(f"• Finished: [dim]{job['completed_at']}[/dim]")
    if job.get("error"):
        lines.append(f"• Error: [red]{job['error']}[/red]")
    if job.get("result") is not None:
        lines.append(f"• Result: [green]{job['result']}[/green]")

    border = STATUS_STYLES.get(job.get("status", ""), "blue")
    return Panel("\n".join(lines), title="Job", border_style=border)


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create job statistics panel"""
    by_status = stats.get("by_status", {})
    by_type = stats.get("by_type", {})

    lines = [
        f"📦 Total jobs: [bold cyan]{stats.get('total_jobs', 0)}[/bold cyan]",
        f"⏳ Queue depth: [yellow]{stats.get('queue_depth', 0)}[/yellow]",
        f"🚨 Failed last hour: [red]{stats.get('failed_last_hour', 0)}[/red]",
        "",
        "[bold]By status[/bold]",
    ]
    lines.extend(
        f"  {format_status(status)}: {count}" for status, count in sorted(by_status.items())
    )
    lines.append("")
    lines.append("[bold]By type[/bold]")
    lines.extend(f"  {job_type}: {count}" for job_type, count in sorted(by_type.items()))

    return Panel("\n".join(lines), title="Job Statistics", border_style="blue")
