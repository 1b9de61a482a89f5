"""
Job system Pydantic schemas: per-type payloads and API shapes.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from studyjobs.v1.infra.jobs.models import JobType


class ContentGenerationPayload(BaseModel):
    """Cards from either a chat message or a hierarchy node."""

    model_config = ConfigDict(extra="forbid")

    message_id: str | None = None
    content: str | None = None
    node_id: str | None = None
    node_title: str | None = None
    node_description: str | None = None
    max_cards: int | None = Field(default=None, ge=1, le=50)

    @model_validator(mode="after")
    def _one_source(self) -> "ContentGenerationPayload":
        if bool(self.message_id) == bool(self.node_id):
            raise ValueError("exactly one of message_id or node_id is required")
        return self


class DistractorGenerationPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    card_id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


class HierarchyGenerationPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    goal_id: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1, max_length=500)
    feedback: str | None = None


PAYLOAD_SCHEMAS: dict[JobType, type[BaseModel]] = {
    JobType.CONTENT_GENERATION: ContentGenerationPayload,
    JobType.DISTRACTOR_GENERATION: DistractorGenerationPayload,
    JobType.HIERARCHY_GENERATION: HierarchyGenerationPayload,
}


class JobCreateRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    type: str = Field(..., description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    priority: int = Field(
        default=0, ge=-100, le=100, description="Lower is scheduled sooner"
    )


class JobResponse(BaseModel):
    """What pollers see for a job."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    status: str
    payload: dict[str, Any]
    result: dict[str, Any] | None = None
    error: str | None = None
    attempts: int
    max_attempts: int
    priority: int
    parent_id: UUID | None = None
    next_retry_at: datetime | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    count: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + processing
    failed_last_hour: int


class RateLimitResponse(BaseModel):
    allowed: bool
    remaining: int
    reset_at: datetime


class GoalContentJobsResponse(BaseModel):
    """Progress of card generation across a goal's nodes."""

    goal_id: UUID
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
    created: int = 0  # jobs backfilled by this request
