"""Job Commands - enqueue, inspect and retry jobs through the API"""

import json
import time

import typer
from rich.console import Console

from ..client.endpoints import StudyJobsClient, StudyJobsError
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
    print_warning,
)

console = Console()
app = typer.Typer(name="jobs", help="Background job commands")

TERMINAL_STATUSES = {"completed", "failed"}


def _parse_payload(payload: str) -> dict:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None
    if not isinstance(data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)
    return data


@app.command("enqueue")
def enqueue_job(
    type: str = typer.Argument(..., help="Job type, e.g. content_generation"),
    payload: str = typer.Option("{}", "--payload", "-p", help="JSON payload"),
    priority: int = typer.Option(0, "--priority", help="Lower runs sooner"),
):
    """📥 Enqueue a job"""
    data = _parse_payload(payload)

    try:
        with StudyJobsClient(config.get("api.base_url")) as client:
            job = client.create_job(type, data, priority)
    except StudyJobsError as e:
        if e.status_code == 429:
            retry_after = e.details.get("retry_after")
            print_warning(f"Rate limited, retry in {retry_after}s")
        else:
            print_error(f"Failed to enqueue job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job['id']} enqueued")
    console.print(create_job_panel(job))


@app.command("show")
def show_job(job_id: str = typer.Argument(..., help="Job ID")):
    """🔍 Show a job's status"""
    try:
        with StudyJobsClient(config.get("api.base_url")) as client:
            job = client.get_job(job_id)
    except StudyJobsError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))


@app.command("list")
def list_jobs(
    type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Maximum results (max 100)"),
):
    """📋 List recent jobs"""
    limit = limit or config.get("jobs.list_limit", 20)
    try:
        with StudyJobsClient(config.get("api.base_url")) as client:
            data = client.list_jobs(type=type, status=status, limit=limit)
    except StudyJobsError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = data.get("jobs", [])
    if not jobs:
        print_info("No jobs found")
        return
    console.print(create_jobs_table(jobs))


@app.command("stats")
def show_stats():
    """📊 Show job statistics"""
    try:
        with StudyJobsClient(config.get("api.base_url")) as client:
            stats = client.get_job_stats()
    except StudyJobsError as e:
        print_error(f"Failed to get job stats: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(stats))


@app.command("retry")
def retry_job(job_id: str = typer.Argument(..., help="Failed job ID")):
    """🔁 Retry a failed job as a new job"""
    try:
        with StudyJobsClient(config.get("api.base_url")) as client:
            job = client.retry_job(job_id)
    except StudyJobsError as e:
        print_error(f"Failed to retry job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} retried as {job['id']}")


@app.command("wait")
def wait_for_job(
    job_id: str = typer.Argument(..., help="Job ID"),
    interval: float | None = typer.Option(None, "--interval", help="Poll interval in seconds"),
    timeout: float | None = typer.Option(None, "--timeout", help="Give up after seconds"),
):
    """⏳ Poll a job until it completes or fails"""
    interval = interval or float(config.get("jobs.wait_interval_s", 1.0))
    timeout = timeout or float(config.get("jobs.wait_timeout_s", 300))
    deadline = time.monotonic() + timeout

    try:
        with StudyJobsClient(config.get("api.base_url")) as client:
            with console.status(f"Waiting for job {job_id}..."):
                job = client.get_job(job_id)
                while job.get("status") not in TERMINAL_STATUSES:
                    if time.monotonic() >= deadline:
                        print_warning(f"Job still {job.get('status')} after {timeout}s")
                        raise typer.Exit(2)
                    time.sleep(interval)
                    job = client.get_job(job_id)
    except StudyJobsError as e:
        print_error(f"Failed to get job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))
    if job["status"] == "failed":
        raise typer.Exit(1)
