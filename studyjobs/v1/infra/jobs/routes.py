"""
Job API endpoints: enqueue, poll, list, stats and manual retry, plus the
per-goal card generation progress view.

Completion is never pushed; clients poll ``GET /jobs/{job_id}``.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from studyjobs.config.logging import get_logger
from studyjobs.config.settings import Settings, SettingsDep
from studyjobs.infra.database import get_session
from studyjobs.v1.core.exceptions import JobNotFound, create_success_response
from studyjobs.v1.core.security import Principal, PrincipalDep
from studyjobs.v1.infra.jobs.fanout import goal_content_jobs
from studyjobs.v1.infra.jobs.models import JobStatus, JobType
from studyjobs.v1.infra.jobs.schemas import (
    JobCreateRequest,
    JobListResponse,
    JobResponse,
    RateLimitResponse,
)
from studyjobs.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])
goals_router = APIRouter(prefix="/goals", tags=["goals"])


def get_job_store(settings: Settings = SettingsDep) -> JobStore:
    """Dependency injection for the job store."""
    return JobStore(settings)


JobStoreDep = Depends(get_job_store)


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def enqueue_job(
    job_request: JobCreateRequest,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    store: JobStore = JobStoreDep,
) -> dict[str, Any]:
    """Enqueue a new background job; 429 when the user's window is full."""
    job = await store.create_job(
        session,
        job_request.type,
        principal.user_uuid,
        job_request.payload,
        priority=job_request.priority,
    )

    logger.info(
        "Job enqueued via API",
        job_id=str(job.id),
        job_type=job.type,
        user_id=principal.user_id,
    )
    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json"),
        message="Job created",
    )


@router.get("", response_model=dict)
async def list_jobs(
    type: JobType | None = Query(default=None, description="Filter by job type"),
    status: JobStatus | None = Query(default=None, description="Filter by status"),
    limit: int = Query(default=20, ge=1, le=100, description="Maximum results"),
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    store: JobStore = JobStoreDep,
) -> dict[str, Any]:
    """List the caller's jobs, newest first."""
    jobs = await store.list_jobs(
        session, principal.user_uuid, job_type=type, status=status, limit=limit
    )
    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        count=len(jobs),
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    store: JobStore = JobStoreDep,
) -> dict[str, Any]:
    """Get job statistics for the caller."""
    stats = await store.get_job_stats(session, principal.user_uuid)
    return create_success_response(data=stats.model_dump())


@router.get("/rate-limit/{job_type}", response_model=dict)
async def get_rate_limit(
    job_type: JobType,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    store: JobStore = JobStoreDep,
) -> dict[str, Any]:
    """How many more jobs of this type the caller may create right now."""
    limit = await store.rate_limiter.check_rate_limit(
        session, principal.user_uuid, job_type
    )
    response_data = RateLimitResponse(
        allowed=limit.allowed, remaining=limit.remaining, reset_at=limit.reset_at
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    store: JobStore = JobStoreDep,
) -> dict[str, Any]:
    """Get a specific job by ID; other users' jobs are reported as missing."""
    job = await store.get_job_by_id(session, job_id, principal.user_uuid)
    if not job:
        raise JobNotFound(job_id)

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.post("/{job_id}/retry", response_model=dict, status_code=status.HTTP_201_CREATED)
async def retry_job(
    job_id: UUID,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    store: JobStore = JobStoreDep,
) -> dict[str, Any]:
    """Retry a failed job as a new job with the same type and payload."""
    job = await store.retry_failed_job(session, job_id, principal.user_uuid)

    logger.info(
        "Job retried via API",
        original_job_id=str(job_id),
        job_id=str(job.id),
        user_id=principal.user_id,
    )
    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json"),
        message="Job retried",
    )


@goals_router.get("/{goal_id}/content-jobs", response_model=dict)
async def get_goal_content_jobs(
    goal_id: UUID,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    store: JobStore = JobStoreDep,
) -> dict[str, Any]:
    """
    Card generation progress for a goal's nodes.

    Nodes that have no cards and no content job get one enqueued, so a lost
    fan-out heals on the next poll.
    """
    summary = await goal_content_jobs(
        store,
        session,
        principal.user_uuid,
        goal_id,
        max_cards=store.settings.job_default_max_cards,
    )
    if summary.created:
        await session.commit()
        logger.info(
            "Goal content jobs backfilled via API",
            goal_id=str(goal_id),
            created=summary.created,
            user_id=principal.user_id,
        )

    return create_success_response(data=summary.model_dump(mode="json"))
