"""Worker Commands - run the job processor in this process"""

import asyncio
import signal

import typer
from rich.console import Console

from studyjobs.config.logging import setup_logging
from studyjobs.config.settings import settings
from studyjobs.infra.database import Database
from studyjobs.v1.core.registries import job_registry
from studyjobs.v1.gen.registry_init import init_generator_registry
from studyjobs.v1.infra.jobs.processor import JobProcessor, build_result_summary
from studyjobs.v1.infra.jobs.registry_init import register_job_handlers
from studyjobs.v1.infra.jobs.store import JobStore

from ..utils.formatting import create_jobs_table, print_info, print_success

console = Console()


def build_processor(database: Database) -> JobProcessor:
    """Wire a processor against the configured database."""
    store = JobStore(settings)
    init_generator_registry()
    register_job_handlers(job_registry, settings, store=store)
    return JobProcessor(settings, database.SessionLocal, job_registry, store=store)


async def _run_worker() -> None:
    database = Database(settings)
    processor = build_processor(database)

    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    worker = asyncio.create_task(processor.start())
    try:
        await stop_requested.wait()
        await processor.stop()
        await worker
    finally:
        await database.close()


async def _process_once(max_jobs: int) -> list[dict]:
    database = Database(settings)
    processor = build_processor(database)
    processed = []
    try:
        for _ in range(max_jobs):
            job = await processor.run_once()
            if job is None:
                break
            processed.append(build_result_summary(job))
    finally:
        await database.close()
    return processed


async def _recover_stale() -> int:
    database = Database(settings)
    try:
        async with database.SessionLocal() as session:
            return await JobStore(settings).reset_stale_jobs(session)
    finally:
        await database.close()


def worker():
    """👷 Run the job worker until interrupted"""
    setup_logging()
    print_info(
        f"Starting worker (concurrency={settings.job_concurrency}), Ctrl+C to stop"
    )
    asyncio.run(_run_worker())
    print_success("Worker stopped")


def process_once(
    max_jobs: int = typer.Option(1, "--max-jobs", "-n", help="Jobs to process"),
):
    """▶️ Claim and process eligible jobs, then exit"""
    setup_logging()
    processed = asyncio.run(_process_once(max_jobs))
    if not processed:
        print_info("No eligible jobs")
        return
    console.print(create_jobs_table(processed))


def recover_stale():
    """🧹 Requeue or fail jobs stuck in processing"""
    setup_logging()
    recovered = asyncio.run(_recover_stale())
    print_success(f"Recovered {recovered} stale job(s)")
