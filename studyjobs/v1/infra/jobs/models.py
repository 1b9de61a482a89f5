"""
Background job model and its lifecycle enums.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from studyjobs.infra.database import Base, UTCDateTime


def utcnow() -> datetime:
    return datetime.now(UTC)


class JobType(str, Enum):
    """Closed set of job types understood by the processor."""

    CONTENT_GENERATION = "content_generation"
    DISTRACTOR_GENERATION = "distractor_generation"
    HIERARCHY_GENERATION = "hierarchy_generation"


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# pending -> processing -> completed | pending (retry) | failed
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.COMPLETED, JobStatus.PENDING, JobStatus.FAILED}
    ),
    **{status: frozenset() for status in TERMINAL_STATUSES},
}


class Job(Base):
    """
    Persisted unit of asynchronous work.

    The row is the queue: workers claim it with a conditional update, retries
    wait on ``next_retry_at`` and terminal rows stay behind as an audit trail.
    """

    __tablename__ = "background_jobs"

    # Core fields
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(
        String(50), nullable=False, comment="Job type identifier"
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid, nullable=False, comment="Owning user, rate limit scope"
    )
    parent_id: Mapped[UUID | None] = mapped_column(
        Uuid, nullable=True, comment="Job whose fan-out created this job"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Job-specific parameters"
    )

    # Job state
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|processing|completed|failed",
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Lower is scheduled sooner"
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Number of attempts made"
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, comment="Attempts before failing"
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Not claimable before this time"
    )

    # Outcome
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Job result data"
    )
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="background_jobs_status_check",
        ),
        CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts",
            name="background_jobs_attempts_check",
        ),
        Index("ix_background_jobs_claim", "status", "priority", "created_at"),
        Index("ix_background_jobs_user_type_created", "user_id", "type", "created_at"),
        Index("ix_background_jobs_parent_id", "parent_id"),
    )

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    def is_claimable(self, now: datetime) -> bool:
        """Pending and past its retry time, if any."""
        if self.status != JobStatus.PENDING.value:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now

    def attempts_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts
