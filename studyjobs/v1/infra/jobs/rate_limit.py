"""
Sliding-window admission control for job creation.

The window is computed from the jobs table itself: the number of jobs of a
type a user created in the trailing window. There is no separate counter to
drift out of sync with the rows it limits. Jobs enqueued by other jobs carry a
``parent_id`` and are not counted; only admissions are.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import ColumnElement, and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from studyjobs.config.logging import get_logger
from studyjobs.config.settings import Settings
from studyjobs.v1.infra.jobs.models import Job, JobType, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


class RateLimiter:
    """Per (user, job type) cap over a trailing time window."""

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utcnow):
        self.settings = settings
        self.clock = clock

    @property
    def limit(self) -> int:
        return self.settings.job_rate_limit_max

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.settings.job_rate_limit_window_minutes)

    def window_filter(
        self, user_id: UUID, job_type: JobType, now: datetime
    ) -> ColumnElement[bool]:
        """Rows counted against the user's window at ``now``."""
        return and_(
            Job.user_id == user_id,
            Job.type == job_type.value,
            Job.parent_id.is_(None),
            Job.created_at > now - self.window,
        )

    def window_count(self, user_id: UUID, job_type: JobType, now: datetime):
        """Scalar subquery counting the window; embedded in the admission insert."""
        return (
            select(func.count(Job.id))
            .where(self.window_filter(user_id, job_type, now))
            .scalar_subquery()
        )

    async def check_rate_limit(
        self, session: AsyncSession, user_id: UUID, job_type: JobType
    ) -> RateLimitResult:
        """
        Report whether the user may create another job of this type.

        Fails closed: when the count cannot be read the answer is "not
        allowed", with the earliest plausible reset one window from now.
        """
        now = self.clock()
        try:
            result = await session.execute(
                select(func.count(Job.id), func.min(Job.created_at)).where(
                    self.window_filter(user_id, job_type, now)
                )
            )
            count, oldest = result.one()
        except SQLAlchemyError:
            logger.exception(
                "Rate limit check failed, denying",
                user_id=str(user_id),
                job_type=job_type.value,
            )
            return RateLimitResult(allowed=False, remaining=0, reset_at=now + self.window)

        return self.evaluate(count or 0, oldest, now)

    def evaluate(
        self, count: int, oldest: datetime | None, now: datetime
    ) -> RateLimitResult:
        reset_at = oldest + self.window if oldest is not None else now
        return RateLimitResult(
            allowed=count < self.limit,
            remaining=max(0, self.limit - count),
            reset_at=reset_at,
        )
