"""
Fan-out: jobs enqueued on behalf of a running job.

Hierarchy jobs fan out one content generation job per node, and content jobs
one distractor job per card. Both steps run in the parent's transaction and
set ``parent_id``, so children are never rate limited and never outlive a
rolled back parent.
"""

from collections import Counter
from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyjobs.config.logging import get_logger
from studyjobs.v1.core.exceptions import GoalNotFound
from studyjobs.v1.infra.jobs.models import Job, JobStatus, JobType
from studyjobs.v1.infra.jobs.schemas import GoalContentJobsResponse
from studyjobs.v1.infra.jobs.store import JobStore
from studyjobs.v1.learning.models import Card, Node
from studyjobs.v1.learning.repository import LearningRepository

logger = get_logger(__name__)

# Child jobs run at default priority alongside user-created jobs
FANOUT_PRIORITY = 0
# Distractors wait until pending card generation has drained
DISTRACTOR_PRIORITY = 10


def node_content_payload(node: Node, max_cards: int) -> dict:
    payload = {
        "node_id": str(node.id),
        "node_title": node.title,
        "max_cards": max_cards,
    }
    if node.description:
        payload["node_description"] = node.description
    return payload


def card_distractor_payload(card: Card) -> dict:
    return {
        "card_id": str(card.id),
        "question": card.question,
        "answer": card.answer,
    }


async def enqueue_node_content_jobs(
    store: JobStore,
    session: AsyncSession,
    user_id: UUID,
    nodes: Sequence[Node],
    parent_job_id: UUID | None = None,
    max_cards: int = 5,
) -> list[Job]:
    """
    Enqueue one content generation job per node.

    Runs in the caller's transaction: the children become visible only when
    the nodes they point at are committed, and vanish with them on rollback.
    """
    children = []
    for node in nodes:
        child = await store.enqueue_child_job(
            session,
            JobType.CONTENT_GENERATION,
            user_id,
            node_content_payload(node, max_cards),
            priority=FANOUT_PRIORITY,
            parent_id=parent_job_id,
        )
        children.append(child)

    logger.info(
        "Enqueued node content jobs",
        parent_job_id=str(parent_job_id) if parent_job_id else None,
        node_count=len(nodes),
        child_count=len(children),
    )
    return children


async def enqueue_card_distractor_jobs(
    store: JobStore,
    session: AsyncSession,
    user_id: UUID,
    cards: Sequence[Card],
    parent_job_id: UUID,
) -> list[Job]:
    """Enqueue one distractor generation job per freshly created card."""
    children = []
    for card in cards:
        child = await store.enqueue_child_job(
            session,
            JobType.DISTRACTOR_GENERATION,
            user_id,
            card_distractor_payload(card),
            priority=DISTRACTOR_PRIORITY,
            parent_id=parent_job_id,
        )
        children.append(child)

    logger.debug(
        "Enqueued card distractor jobs",
        parent_job_id=str(parent_job_id),
        child_count=len(children),
    )
    return children


async def _node_content_jobs(
    session: AsyncSession, user_id: UUID, node_ids: Sequence[str]
) -> list[Job]:
    result = await session.execute(
        select(Job).where(
            Job.user_id == user_id,
            Job.type == JobType.CONTENT_GENERATION.value,
            Job.payload["node_id"].as_string().in_(node_ids),
        )
    )
    return list(result.scalars().all())


async def _hierarchy_job_id(
    session: AsyncSession, user_id: UUID, goal_id: UUID
) -> UUID | None:
    result = await session.execute(
        select(Job.id)
        .where(
            Job.user_id == user_id,
            Job.type == JobType.HIERARCHY_GENERATION.value,
            Job.status == JobStatus.COMPLETED.value,
            Job.payload["goal_id"].as_string() == str(goal_id),
        )
        .order_by(Job.completed_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def goal_content_jobs(
    store: JobStore,
    session: AsyncSession,
    user_id: UUID,
    goal_id: UUID | str,
    repository: LearningRepository | None = None,
    max_cards: int = 5,
) -> GoalContentJobsResponse:
    """
    Summarize content generation for a goal's nodes, backfilling lost jobs.

    Nodes without cards and without any content job get a new one. Backfilled
    jobs are attributed to the goal's hierarchy job when there is one. The
    caller commits.

    Raises:
        GoalNotFound: the goal does not exist or belongs to another user
    """
    repository = repository or LearningRepository()
    goal = await repository.get_goal_for_user(session, goal_id, user_id)
    if goal is None:
        raise GoalNotFound(goal_id)

    hierarchy = await repository.get_hierarchy_for_goal(session, goal.id)
    if hierarchy is None:
        return GoalContentJobsResponse(goal_id=goal.id)

    nodes = await repository.list_nodes(session, hierarchy.id)
    if not nodes:
        return GoalContentJobsResponse(goal_id=goal.id)

    jobs = await _node_content_jobs(session, user_id, [str(node.id) for node in nodes])
    covered = {job.payload.get("node_id") for job in jobs}
    missing = [
        node for node in nodes if node.card_count == 0 and str(node.id) not in covered
    ]

    if missing:
        parent_job_id = await _hierarchy_job_id(session, user_id, goal.id)
        backfilled = await enqueue_node_content_jobs(
            store,
            session,
            user_id,
            missing,
            parent_job_id=parent_job_id,
            max_cards=max_cards,
        )
        jobs.extend(backfilled)
        logger.info(
            "Backfilled node content jobs",
            goal_id=str(goal.id),
            created=len(backfilled),
        )

    counts = Counter(job.status for job in jobs)
    return GoalContentJobsResponse(
        goal_id=goal.id,
        pending=counts[JobStatus.PENDING.value],
        processing=counts[JobStatus.PROCESSING.value],
        completed=counts[JobStatus.COMPLETED.value],
        failed=counts[JobStatus.FAILED.value],
        total=len(jobs),
        created=len(missing),
    )
