"""
Job store: the durable queue and the only place job rows are mutated.

Every state change is a compare-and-swap ``UPDATE ... WHERE status = <seen>``
so two workers can never both move the same job out of a given state.
Updates leaving processing also match the attempt number of the claim.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pydantic
from sqlalchemy import (
    JSON,
    Integer,
    String,
    Uuid,
    func,
    insert,
    literal,
    or_,
    select,
    true,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession

from studyjobs.config.logging import get_logger
from studyjobs.config.settings import Settings
from studyjobs.infra.database import UTCDateTime
from studyjobs.v1.core.exceptions import (
    InvalidTransition,
    JobNotFound,
    RateLimitExceeded,
    ValidationError,
)
from studyjobs.v1.infra.jobs.models import (
    ALLOWED_TRANSITIONS,
    Job,
    JobStatus,
    JobType,
    utcnow,
)
from studyjobs.v1.infra.jobs.rate_limit import RateLimiter, RateLimitResult
from studyjobs.v1.infra.jobs.schemas import PAYLOAD_SCHEMAS, JobStatsResponse

logger = get_logger(__name__)

# Candidates tried per claim before giving up to other workers
CLAIM_ATTEMPTS = 5


class JobStore:
    """Creation, claiming and state transitions of background jobs."""

    def __init__(
        self,
        settings: Settings,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.clock = clock
        self.rate_limiter = rate_limiter or RateLimiter(settings, clock=clock)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def parse_job_type(job_type: JobType | str) -> JobType:
        try:
            return JobType(job_type)
        except ValueError:
            valid = ", ".join(t.value for t in JobType)
            raise ValidationError(
                f"Invalid job type. Must be one of: {valid}",
                details={"type": str(job_type)},
            ) from None

    @staticmethod
    def validate_payload(job_type: JobType, payload: Any) -> dict[str, Any]:
        """Validate and normalize a payload for its job type."""
        if not isinstance(payload, dict):
            raise ValidationError("Invalid payload", details={"type": job_type.value})

        schema = PAYLOAD_SCHEMAS[job_type]
        try:
            parsed = schema.model_validate(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"Invalid payload for {job_type.value}",
                details={
                    "type": job_type.value,
                    "errors": e.errors(include_url=False, include_context=False),
                },
            ) from None
        return parsed.model_dump(mode="json", exclude_none=True)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_job(
        self,
        session: AsyncSession,
        job_type: JobType | str,
        user_id: UUID,
        payload: dict[str, Any],
        priority: int = 0,
    ) -> Job:
        """
        Admit and insert a new pending job.

        The rate limit count and the insert are a single conditional
        statement, so concurrent requests from one user cannot jointly
        overshoot the cap. Nothing is inserted when admission fails.

        Raises:
            ValidationError: unknown type or malformed payload
            RateLimitExceeded: the user's window for this type is full
        """
        job_type = self.parse_job_type(job_type)
        clean_payload = self.validate_payload(job_type, payload)

        await self._lock_admission(session, user_id, job_type)
        limit = await self.rate_limiter.check_rate_limit(session, user_id, job_type)
        if not limit.allowed:
            await session.rollback()
            self._log_rate_limited(user_id, job_type, limit)
            raise RateLimitExceeded(
                job_type.value, 0, limit.reset_at, now=self.clock()
            )

        now = self.clock()
        job_id = uuid4()
        row = select(
            literal(job_id, Uuid()),
            literal(job_type.value, String(50)),
            literal(user_id, Uuid()),
            literal(clean_payload, JSON()),
            literal(JobStatus.PENDING.value, String(20)),
            literal(priority, Integer()),
            literal(0, Integer()),
            literal(self.settings.job_max_attempts, Integer()),
            literal(now, UTCDateTime()),
        ).where(
            self.rate_limiter.window_count(user_id, job_type, now)
            < self.rate_limiter.limit
        )
        result = await session.execute(
            insert(Job.__table__).from_select(
                [
                    "id",
                    "type",
                    "user_id",
                    "payload",
                    "status",
                    "priority",
                    "attempts",
                    "max_attempts",
                    "created_at",
                ],
                row,
            )
        )

        if result.rowcount != 1:
            # Another request filled the window between the check and the insert
            await session.rollback()
            limit = await self.rate_limiter.check_rate_limit(session, user_id, job_type)
            self._log_rate_limited(user_id, job_type, limit)
            raise RateLimitExceeded(
                job_type.value, 0, limit.reset_at, now=self.clock()
            )

        await session.commit()
        job = await session.get(Job, job_id, populate_existing=True)

        logger.info(
            "Job enqueued",
            job_id=str(job_id),
            job_type=job_type.value,
            user_id=str(user_id),
            priority=priority,
            remaining=max(0, limit.remaining - 1),
        )
        return job

    async def enqueue_child_job(
        self,
        session: AsyncSession,
        job_type: JobType | str,
        user_id: UUID,
        payload: dict[str, Any],
        priority: int = 0,
        parent_id: UUID | None = None,
    ) -> Job:
        """
        Insert a job on behalf of a running parent job.

        Admission was paid by the parent, so the rate limiter is not consulted.
        The row is only flushed: it becomes visible when the caller's
        transaction commits and disappears if it rolls back.
        """
        job_type = self.parse_job_type(job_type)
        job = Job(
            id=uuid4(),
            type=job_type.value,
            user_id=user_id,
            parent_id=parent_id,
            payload=self.validate_payload(job_type, payload),
            status=JobStatus.PENDING.value,
            priority=priority,
            attempts=0,
            max_attempts=self.settings.job_max_attempts,
            created_at=self.clock(),
        )
        session.add(job)
        await session.flush()
        return job

    async def _lock_admission(
        self, session: AsyncSession, user_id: UUID, job_type: JobType
    ) -> None:
        # READ COMMITTED lets two conditional inserts see the same count;
        # serialize admissions per (user, type) for the transaction.
        if session.get_bind().dialect.name == "postgresql":
            await session.execute(
                select(
                    func.pg_advisory_xact_lock(
                        func.hashtext(f"job-admission:{user_id}:{job_type.value}")
                    )
                )
            )

    def _log_rate_limited(
        self, user_id: UUID, job_type: JobType, limit: RateLimitResult
    ) -> None:
        logger.info(
            "Job rejected by rate limit",
            user_id=str(user_id),
            job_type=job_type.value,
            reset_at=limit.reset_at.isoformat(),
        )

    # ------------------------------------------------------------------
    # Claiming and transitions
    # ------------------------------------------------------------------

    async def claim_next_job(self, session: AsyncSession) -> Job | None:
        """
        Move the next eligible pending job to processing and return it.

        Eligible means pending with no retry time or one that has passed;
        the lowest priority number wins, then the oldest. Returns None when
        nothing is eligible or every candidate was taken by other workers.
        """
        now = self.clock()

        for _ in range(CLAIM_ATTEMPTS):
            candidate = await session.execute(
                select(Job.id)
                .where(
                    Job.status == JobStatus.PENDING.value,
                    or_(Job.next_retry_at.is_(None), Job.next_retry_at <= now),
                )
                .order_by(Job.priority, Job.created_at, Job.id)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            job_id = candidate.scalar_one_or_none()
            if job_id is None:
                await session.commit()
                return None

            claimed = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.PENDING.value)
                .values(
                    status=JobStatus.PROCESSING.value,
                    attempts=Job.attempts + 1,
                    started_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 1:
                await session.commit()
                job = await session.get(Job, job_id, populate_existing=True)
                logger.info(
                    "Claimed job",
                    job_id=str(job.id),
                    job_type=job.type,
                    attempt=job.attempts,
                )
                return job

            await session.rollback()
            logger.debug("Lost claim race", job_id=str(job_id))

        return None

    async def update_job_status(
        self,
        session: AsyncSession,
        job_id: UUID,
        status: JobStatus | str,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        next_retry_at: datetime | None = None,
        non_retryable: bool = False,
        attempt: int | None = None,
        commit: bool = True,
    ) -> Job:
        """
        Apply a state machine transition to a job.

        Pass ``attempt`` when leaving processing on behalf of a particular
        claim: the update then only applies while that claim is current, so a
        worker whose job was requeued and claimed again cannot finish it.

        Raises:
            JobNotFound: no job with this id
            InvalidTransition: the move is not allowed from the current state,
                a field precondition fails, or the job changed concurrently
        """
        status = JobStatus(status)
        job = await session.get(Job, job_id, populate_existing=True)
        if job is None:
            raise JobNotFound(job_id)

        current = job.job_status
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(job_id, current.value, status.value)

        def reject(reason: str) -> InvalidTransition:
            return InvalidTransition(job_id, current.value, status.value, reason)

        if result is not None and status != JobStatus.COMPLETED:
            raise reject("result is only stored on completed jobs")
        if attempt is not None and job.attempts != attempt:
            raise reject("job was claimed again")

        now = self.clock()
        values: dict[str, Any] = {"status": status.value}

        if status == JobStatus.PROCESSING:
            if job.attempts_exhausted():
                raise reject("attempts exhausted")
            values.update(attempts=Job.attempts + 1, started_at=now)
        elif status == JobStatus.COMPLETED:
            if result is None:
                raise reject("completed jobs require a result")
            values.update(result=result, completed_at=now)
        elif status == JobStatus.PENDING:
            if job.attempts_exhausted():
                raise reject("attempts exhausted")
            values.update(error=error, next_retry_at=next_retry_at)
        elif status == JobStatus.FAILED:
            if not non_retryable and not job.attempts_exhausted():
                raise reject("attempts remain and the error is retryable")
            values.update(error=error, completed_at=now)

        criteria = [Job.id == job_id, Job.status == current.value]
        if attempt is not None:
            criteria.append(Job.attempts == attempt)
        updated = await session.execute(
            update(Job)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount != 1:
            raise reject("job changed concurrently")

        if commit:
            await session.commit()
        await session.refresh(job)
        return job

    async def reset_stale_jobs(self, session: AsyncSession) -> int:
        """
        Recover jobs stuck in processing past ``job_stale_after_s``.

        A worker that died mid-job never reports back; its job is put back in
        the queue for immediate retry, or failed if it had no attempts left.
        """
        now = self.clock()
        cutoff = now - timedelta(seconds=self.settings.job_stale_after_s)
        stale = await session.execute(
            select(Job.id, Job.attempts, Job.max_attempts).where(
                Job.status == JobStatus.PROCESSING.value,
                Job.started_at < cutoff,
            )
        )

        recovered = 0
        message = f"Job timed out after {self.settings.job_stale_after_s}s in processing"
        for job_id, attempts, max_attempts in stale.all():
            try:
                if attempts >= max_attempts:
                    await self.update_job_status(
                        session,
                        job_id,
                        JobStatus.FAILED,
                        error=message,
                        attempt=attempts,
                        commit=False,
                    )
                else:
                    await self.update_job_status(
                        session,
                        job_id,
                        JobStatus.PENDING,
                        error=message,
                        next_retry_at=now,
                        attempt=attempts,
                        commit=False,
                    )
                recovered += 1
            except InvalidTransition:
                # Finished between the scan and the update
                continue

        await session.commit()
        if recovered:
            logger.warning(
                "Recovered stale jobs",
                recovered=recovered,
                stale_after_s=self.settings.job_stale_after_s,
            )
        return recovered

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_job_by_id(
        self, session: AsyncSession, job_id: UUID, user_id: UUID | None = None
    ) -> Job | None:
        """Get job by ID with optional user scoping."""
        query = select(Job).where(Job.id == job_id)
        if user_id:
            query = query.where(Job.user_id == user_id)

        result = await session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        session: AsyncSession,
        user_id: UUID,
        job_type: JobType | str | None = None,
        status: JobStatus | str | None = None,
        limit: int = 20,
    ) -> list[Job]:
        """Newest first, capped at 100."""
        query = select(Job).where(Job.user_id == user_id)
        if job_type:
            query = query.where(Job.type == self.parse_job_type(job_type).value)
        if status:
            query = query.where(Job.status == JobStatus(status).value)

        query = query.order_by(Job.created_at.desc()).limit(min(max(limit, 1), 100))
        result = await session.execute(query)
        return list(result.scalars().all())

    async def get_job_stats(
        self, session: AsyncSession, user_id: UUID | None = None
    ) -> JobStatsResponse:
        """Get job statistics, optionally scoped to a user."""
        base_filter = Job.user_id == user_id if user_id else true()

        total_result = await session.execute(
            select(func.count(Job.id)).where(base_filter)
        )
        total_jobs = total_result.scalar() or 0

        status_result = await session.execute(
            select(Job.status, func.count(Job.id))
            .where(base_filter)
            .group_by(Job.status)
        )
        by_status = dict(status_result.all())

        type_result = await session.execute(
            select(Job.type, func.count(Job.id)).where(base_filter).group_by(Job.type)
        )
        by_type = dict(type_result.all())

        queue_depth = by_status.get(JobStatus.PENDING.value, 0) + by_status.get(
            JobStatus.PROCESSING.value, 0
        )

        failed_recent_result = await session.execute(
            select(func.count(Job.id)).where(
                base_filter,
                Job.status == JobStatus.FAILED.value,
                Job.completed_at >= self.clock() - timedelta(hours=1),
            )
        )
        failed_last_hour = failed_recent_result.scalar() or 0

        return JobStatsResponse(
            total_jobs=total_jobs,
            by_status=by_status,
            by_type=by_type,
            queue_depth=queue_depth,
            failed_last_hour=failed_last_hour,
        )

    async def retry_failed_job(
        self, session: AsyncSession, job_id: UUID, user_id: UUID
    ) -> Job:
        """
        Manually retry a failed job.

        Failed is terminal, so this creates a fresh job with the same type,
        payload and priority. It goes through admission like any other job.
        """
        original = await self.get_job_by_id(session, job_id, user_id)
        if original is None:
            raise JobNotFound(job_id)
        if original.status != JobStatus.FAILED.value:
            raise InvalidTransition(
                job_id,
                original.status,
                JobStatus.PENDING.value,
                "only failed jobs can be retried",
            )

        job = await self.create_job(
            session,
            original.type,
            user_id,
            dict(original.payload),
            priority=original.priority,
        )
        logger.info("Job retried", original_job_id=str(job_id), job_id=str(job.id))
        return job
