"""
Job processor: claims eligible jobs, runs their handlers and records outcomes.

Workers coordinate only through the job store. A retry is a pending row with a
future ``next_retry_at``; the claim query picks it up once that time passes,
so nothing here sleeps on behalf of a particular job.
"""

import asyncio
import os
import socket
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyjobs.config.logging import bind_worker_context, get_logger
from studyjobs.config.settings import Settings
from studyjobs.v1.core.exceptions import InvalidTransition, NonRetryableJobError
from studyjobs.v1.core.registries import JobRegistry
from studyjobs.v1.infra.jobs.models import Job, JobStatus
from studyjobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class JobContext:
    """What a handler knows about the job it is running."""

    job_id: UUID
    user_id: UUID
    attempt: int


def retry_delay_ms(previous_attempts: int, base_ms: int = 1000) -> int:
    """Backoff before the next attempt: base * 2^attempts (1s, 2s, 4s, ...).

    ``previous_attempts`` counts the attempts made before the one that failed.
    """
    return (2**previous_attempts) * base_ms


def describe_error(exc: BaseException) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message or exc.__class__.__name__


class JobProcessor:
    """
    Runs jobs from the store through their registered handlers.

    Features:
    - Claim via compare-and-swap, safe with many workers and processes
    - Exponential backoff persisted on the job row
    - Handler timeout and stale job recovery for hung or crashed workers
    - Graceful shutdown that lets in-flight jobs finish
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        registry: JobRegistry,
        store: JobStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.registry = registry
        self.store = store or JobStore(settings)
        self.clock = clock or self.store.clock
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self._tasks: set[asyncio.Task] = set()
        self._wakeup = asyncio.Event()

    # ------------------------------------------------------------------
    # Single job execution
    # ------------------------------------------------------------------

    async def run_once(self) -> Job | None:
        """Claim one eligible job, process it and return its final row."""
        async with self.session_factory() as session:
            job = await self.store.claim_next_job(session)
        if job is None:
            return None
        return await self.process_job(job)

    async def process_job(self, job: Job) -> Job | None:
        """
        Execute a claimed job and apply the resulting transition.

        The handler shares its session with the completion update, so the
        handler's writes and ``completed`` commit together. On failure that
        session is rolled back and the retry or failure is recorded in a
        fresh one.
        """
        job_logger = logger.bind(
            job_id=str(job.id), job_type=job.type, attempt=job.attempts
        )
        ctx = JobContext(job_id=job.id, user_id=job.user_id, attempt=job.attempts)

        try:
            handler = self.registry.get_handler(job.type)
            job_logger.info("Processing job started")

            async with self.session_factory() as session:
                try:
                    result = await asyncio.wait_for(
                        handler.handle(session, ctx, dict(job.payload)),
                        timeout=self.settings.job_handler_timeout_s,
                    )
                    completed = await self.store.update_job_status(
                        session,
                        job.id,
                        JobStatus.COMPLETED,
                        result=result or {},
                        attempt=job.attempts,
                    )
                except BaseException:
                    await session.rollback()
                    raise

            job_logger.info("Processing job completed", result=result)
            return completed

        except asyncio.CancelledError:
            # Worker shutdown; the stale job sweep will requeue it
            job_logger.warning("Job processing cancelled")
            raise

        except InvalidTransition:
            # Completion raced with stale job recovery; the row already moved on
            job_logger.warning("Job changed state while processing", exc_info=True)
            return await self._reload(job.id)

        except Exception as exc:
            return await self._record_failure(job, exc, job_logger)

    async def _record_failure(self, job: Job, exc: Exception, job_logger) -> Job | None:
        error = describe_error(exc)
        if isinstance(exc, TimeoutError):
            error = f"Handler timed out after {self.settings.job_handler_timeout_s}s"
        non_retryable = isinstance(exc, NonRetryableJobError)

        try:
            async with self.session_factory() as session:
                if non_retryable or job.attempts >= job.max_attempts:
                    failed = await self.store.update_job_status(
                        session,
                        job.id,
                        JobStatus.FAILED,
                        error=error,
                        non_retryable=non_retryable,
                        attempt=job.attempts,
                    )
                    job_logger.error(
                        "Job failed permanently",
                        error=error,
                        non_retryable=non_retryable,
                        exc_info=exc,
                    )
                    return failed

                delay_ms = retry_delay_ms(
                    job.attempts - 1, self.settings.job_backoff_base_ms
                )
                next_retry_at = self.clock() + timedelta(milliseconds=delay_ms)
                retried = await self.store.update_job_status(
                    session,
                    job.id,
                    JobStatus.PENDING,
                    error=error,
                    next_retry_at=next_retry_at,
                    attempt=job.attempts,
                )
                job_logger.warning(
                    "Job scheduled for retry",
                    error=error,
                    delay_ms=delay_ms,
                    next_retry_at=next_retry_at.isoformat(),
                    exc_info=exc,
                )
                return retried

        except InvalidTransition:
            job_logger.warning("Job changed state while processing", exc_info=True)
            return await self._reload(job.id)

    async def _reload(self, job_id: UUID) -> Job | None:
        async with self.session_factory() as session:
            return await self.store.get_job_by_id(session, job_id)

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Run the worker until ``stop()`` is called."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.registry.ensure_complete()
        self.running = True
        bind_worker_context(self.worker_id)
        logger.info(
            "Starting job worker",
            concurrency=self.settings.job_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            handlers=self.registry.list(),
        )

        try:
            await asyncio.gather(self._worker_loop(), self._stale_job_recovery_loop())
        finally:
            self.running = False

    async def stop(self, timeout_s: float = 30) -> None:
        """Stop claiming and wait for in-flight jobs."""
        logger.info("Stopping job worker", active_jobs=len(self._tasks))
        self.running = False
        self._wakeup.set()

        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=timeout_s)
            if pending:
                logger.warning(
                    "Worker stopped with active jobs", active_jobs=len(pending)
                )
                for task in pending:
                    task.cancel()

    async def _worker_loop(self) -> None:
        """Claim jobs while there are free slots."""
        poll_interval = self.settings.job_poll_interval_ms / 1000

        while self.running:
            try:
                if len(self._tasks) >= self.settings.job_concurrency:
                    await self._sleep(poll_interval)
                    continue

                async with self.session_factory() as session:
                    job = await self.store.claim_next_job(session)

                if job is None:
                    await self._sleep(poll_interval)
                    continue

                task = asyncio.create_task(self.process_job(job))
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

            except Exception:
                logger.exception("Error in worker loop")
                await self._sleep(5)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Job task crashed", exc_info=task.exception())
        self._wakeup.set()

    async def _sleep(self, seconds: float) -> None:
        """Sleep until the interval passes or a slot frees up."""
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _stale_job_recovery_loop(self) -> None:
        """Requeue jobs whose worker died while processing them."""
        while self.running:
            try:
                async with self.session_factory() as session:
                    await self.store.reset_stale_jobs(session)
            except Exception:
                logger.exception("Error in stale job recovery")

            slept = 0.0
            interval = self.settings.job_stale_check_interval_s
            while self.running and slept < interval:
                await asyncio.sleep(min(1.0, interval - slept))
                slept += 1.0


def build_result_summary(job: Job) -> dict[str, Any]:
    """Compact view of a processed job for logs and the CLI."""
    return {
        "id": str(job.id),
        "type": job.type,
        "status": job.status,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "priority": job.priority,
        "created_at": job.created_at.isoformat(),
        "error": job.error,
    }
