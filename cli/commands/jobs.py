"""Jobs Commands - Create, inspect, retry and delete jobs"""

import json

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ..client.endpoints import JobRelayClient, JobRelayError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    print_error,
    print_info,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Job lifecycle commands")


def _parse_data(data: str) -> dict:
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        print_error(f"--data is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(parsed, dict):
        print_error("--data must be a JSON object")
        raise typer.Exit(1)
    return parsed


@app.command("create")
def create_job(
    name: str = typer.Argument(..., help="Job type, e.g. sendEmail"),
    data: str = typer.Option("{}", "--data", "-d", help="Job data as a JSON object"),
):
    """Create a job and enqueue it"""
    payload = _parse_data(data)

    try:
        with JobRelayClient(config.get("api.base_url")) as client:
            job = client.create_job(name, payload)
    except JobRelayError as e:
        print_error(f"Failed to create job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job.get('id')} created")
    console.print(create_job_panel(job, title="Created Job"))


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(
        None, "--status", "-s", help="Filter by status (active, completed, failed)"
    ),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Number of jobs to show"),
    show_payload: bool = typer.Option(False, "--data", help="Show job data column"),
):
    """List jobs, newest first"""
    limit = limit or config.get("display.jobs_per_page", 20)

    try:
        with JobRelayClient(config.get("api.base_url")) as client:
            print_info(f"Fetching jobs (limit: {limit}, status: {status or 'all'})")
            jobs = client.list_jobs(status=status, limit=limit)
    except JobRelayError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    if not jobs:
        console.print(Panel(
            "📭 [yellow]No jobs found![/yellow]\n\n"
            f"Status filter: {status or 'any'}",
            title="Empty Results",
            border_style="yellow"
        ))
        return

    console.print(create_jobs_table(jobs, show_payload=show_payload))
    console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] jobs")


@app.command("show")
def show_job(
    job_id: str = typer.Argument(..., help="Job ID to show"),
):
    """Show a single job"""
    try:
        with JobRelayClient(config.get("api.base_url")) as client:
            job = client.get_job(job_id)
    except JobRelayError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))


@app.command("retry")
def retry_job(
    job_id: str = typer.Argument(..., help="ID of a failed job"),
):
    """Re-enqueue a failed job"""
    try:
        with JobRelayClient(config.get("api.base_url")) as client:
            job = client.retry_job(job_id)
    except JobRelayError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} is active again")
    console.print(create_job_panel(job, title="Retried Job"))


@app.command("delete")
def delete_job(
    job_id: str = typer.Argument(..., help="Job ID to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a job and its pending queue entry"""
    if not yes and not Confirm.ask(f"Delete job {job_id}?"):
        console.print("Deletion cancelled.")
        return

    try:
        with JobRelayClient(config.get("api.base_url")) as client:
            job = client.delete_job(job_id)
    except JobRelayError as e:
        print_error(f"Failed to delete job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} deleted")
    console.print(create_job_panel(job, title="Deleted Job"))
