from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from studyjobs.config.logging import get_logger
from studyjobs.config.settings import Settings, SettingsDep
from studyjobs.infra.database import get_session
from studyjobs.v1.core.exceptions import create_success_response
from studyjobs.v1.infra.jobs.models import Job, JobStatus

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue status."""

    queue_depth: int = 0
    processing: int = 0
    stale_jobs_count: int = 0
    oldest_pending_age_seconds: int | None = None


class HealthResponse(BaseModel):
    """Health response with database and queue status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    database: DatabaseHealth
    queue: QueueHealth | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check endpoint with database and job queue status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)

    queue_health = None
    if db_health.connected:
        try:
            queue_health = await _check_queue_health(session, settings)
        except Exception:
            # Queue stats are informational; they don't fail overall health
            logger.exception("Queue health check failed")

    health_data = HealthResponse(
        ok=db_health.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=timestamp,
        database=db_health,
        queue=queue_health,
    )

    return create_success_response(data=health_data.model_dump())


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        # Simple query to test database connectivity
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(session: AsyncSession, settings: Settings) -> QueueHealth:
    """Queue depth and jobs that look abandoned by their worker."""
    now = datetime.now(UTC)

    counts_result = await session.execute(
        select(Job.status, func.count(Job.id))
        .where(Job.status.in_([JobStatus.PENDING.value, JobStatus.PROCESSING.value]))
        .group_by(Job.status)
    )
    counts = dict(counts_result.all())
    pending = counts.get(JobStatus.PENDING.value, 0)
    processing = counts.get(JobStatus.PROCESSING.value, 0)

    # Processing jobs past the stale threshold
    stale_cutoff = now - timedelta(seconds=settings.job_stale_after_s)
    stale_result = await session.execute(
        select(func.count(Job.id)).where(
            Job.status == JobStatus.PROCESSING.value, Job.started_at < stale_cutoff
        )
    )
    stale_jobs_count = stale_result.scalar() or 0

    oldest_result = await session.execute(
        select(func.min(Job.created_at)).where(Job.status == JobStatus.PENDING.value)
    )
    oldest_pending = oldest_result.scalar()
    oldest_pending_age_seconds = None
    if oldest_pending:
        oldest_pending_age_seconds = int((now - oldest_pending).total_seconds())

    return QueueHealth(
        queue_depth=pending + processing,
        processing=processing,
        stale_jobs_count=stale_jobs_count,
        oldest_pending_age_seconds=oldest_pending_age_seconds,
    )
