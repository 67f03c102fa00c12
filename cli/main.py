"""Job Relay CLI - Main Entry Point"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

# Import command modules
from .commands import config, jobs
from .utils.formatting import print_error, print_info, print_success
from .utils.config_manager import config as config_manager
from .client.endpoints import JobRelayClient, JobRelayError

console = Console()

# Create main Typer app
app = typer.Typer(
    name="jobrelay",
    help="Job Relay - create, inspect and process background jobs",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check API health and connectivity"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with JobRelayClient(base_url) as client:
            health = client.health_check()
    except JobRelayError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Job Relay API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]jobrelay config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1)

    database = health.get("database") or {}
    queue = health.get("queue") or {}
    worker = health.get("worker")
    ok = health.get("ok", False)

    console.print(Panel(
        f"{'🚀 [green]Healthy[/green]' if ok else '⚠️ [yellow]Degraded[/yellow]'}\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• Database: {'[green]connected[/green]' if database.get('connected') else '[red]unreachable[/red]'}\n"
        f"• Queue depth: [cyan]{queue.get('depth', 'unknown')}[/cyan]\n"
        f"• Embedded workers: {worker['concurrency'] if worker else '[dim]none[/dim]'}\n"
        f"• API URL: [blue]{base_url}[/blue]",
        title="System Status",
        border_style="green" if ok else "yellow"
    ))


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    console.print(Panel(
        f"[bold cyan]Job Relay CLI[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]",
        title="Version Info",
        border_style="cyan"
    ))


@app.command()
def worker(
    once: bool = typer.Option(
        False, "--once", help="Process due jobs, then exit"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", help="Override JOB_CONCURRENCY"
    ),
):
    """⚙️ Run a worker pool against the database queue"""
    from api.config.settings import settings
    from api.v1.jobs.runner import run_worker

    worker_settings = settings
    if concurrency:
        worker_settings = settings.model_copy(update={"job_concurrency": concurrency})

    print_info(
        f"Starting worker (concurrency: {worker_settings.job_concurrency}, "
        f"once: {once})"
    )
    handled = asyncio.run(run_worker(worker_settings, once=once))
    if once:
        print_success(f"Processed {handled} jobs")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", help="Show version and exit"
    ),
):
    """
    Job Relay CLI

    Create jobs, follow their status, retry failures and run workers.
    """
    if version:
        from . import __version__
        console.print(f"Job Relay CLI v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


if __name__ == "__main__":
    app()
