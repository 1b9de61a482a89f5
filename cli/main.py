"""Study Jobs CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

# Import command modules
from .commands import config, jobs, worker
from .utils.formatting import print_error, print_info
from .utils.config_manager import config as config_manager
from .client.endpoints import StudyJobsClient, StudyJobsError

console = Console()

# Create main Typer app
app = typer.Typer(
    name="studyjobs",
    help="🧠 Study Jobs - background generation of learning material",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")

# In-process worker commands
app.command("worker")(worker.worker)
app.command("process-once")(worker.process_once)
app.command("recover-stale")(worker.recover_stale)


@app.command()
def status():
    """📊 Check system status and connectivity"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with StudyJobsClient(base_url) as client:
            health = client.health_check()
    except StudyJobsError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Study Jobs API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]studyjobs config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1) from None

    queue = health.get("queue") or {}
    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Queue depth: [yellow]{queue.get('queue_depth', 'unknown')}[/yellow]\n"
        f"• Stale jobs: [red]{queue.get('stale_jobs_count', 'unknown')}[/red]\n"
        f"• API URL: [blue]{base_url}[/blue]",
        title="System Status",
        border_style="green" if health.get("ok") else "red"
    ))


@app.callback()
def main():
    """
    🧠 Study Jobs CLI

    Enqueue and inspect AI generation jobs, or run a worker that processes them.
    """


if __name__ == "__main__":
    app()
