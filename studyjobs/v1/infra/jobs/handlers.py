"""
Job handlers for AI generation of learning material.

Handlers implement the JobHandler protocol: they read and write learning
entities through the session they are given and return a result dict. They
never touch job rows; the processor owns every job transition and commits
the handler's writes together with the completion.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from studyjobs.config.logging import get_logger
from studyjobs.config.settings import Settings
from studyjobs.v1.core.exceptions import (
    CardNotFound,
    GoalNotFound,
    HierarchyAlreadyExists,
    MessageNotFound,
    NodeNotFound,
    TransientHandlerFailure,
)
from studyjobs.v1.core.registries import ContentGenerator, generator_registry
from studyjobs.v1.infra.jobs.fanout import (
    enqueue_card_distractor_jobs,
    enqueue_node_content_jobs,
)
from studyjobs.v1.infra.jobs.processor import JobContext
from studyjobs.v1.infra.jobs.schemas import (
    ContentGenerationPayload,
    DistractorGenerationPayload,
    HierarchyGenerationPayload,
)
from studyjobs.v1.infra.jobs.store import JobStore
from studyjobs.v1.learning.repository import LearningRepository

logger = get_logger(__name__)


class GenerationHandler:
    """Shared wiring: settings, generator and repository."""

    def __init__(
        self,
        settings: Settings,
        generator: ContentGenerator | None = None,
        repository: LearningRepository | None = None,
    ):
        self.settings = settings
        self._generator = generator
        self.repository = repository or LearningRepository()

    @property
    def generator(self) -> ContentGenerator:
        # Resolved lazily so registration order at startup does not matter
        if self._generator is None:
            self._generator = generator_registry.get(self.settings.generator.value)
        return self._generator


class ContentGenerationHandler(GenerationHandler):
    """
    Generate question/answer cards from a chat message or a hierarchy node.

    Each new card gets a distractor generation child job unless
    ``job_enqueue_distractors`` is off.

    Payload expected:
    {
        "message_id": "uuid-string",   # or node_id
        "content": "...",              # optional, overrides message content
        "node_id": "uuid-string",
        "node_title": "...",           # optional, falls back to the node
        "node_description": "...",     # optional
        "max_cards": 5                 # optional
    }
    """

    def __init__(
        self,
        settings: Settings,
        store: JobStore | None = None,
        generator: ContentGenerator | None = None,
        repository: LearningRepository | None = None,
    ):
        super().__init__(settings, generator=generator, repository=repository)
        self.store = store or JobStore(settings)

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        params = ContentGenerationPayload.model_validate(payload)
        max_cards = params.max_cards or self.settings.job_default_max_cards

        node = None
        message = None
        if params.node_id:
            node = await self.repository.get_node(session, params.node_id, ctx.user_id)
            if node is None:
                raise NodeNotFound(params.node_id)
            title = params.node_title or node.title
            description = params.node_description or node.description
            content = f"{title}. {description}" if description else title
        else:
            message = await self.repository.get_message_for_user(
                session, params.message_id, ctx.user_id
            )
            if message is None:
                raise MessageNotFound(params.message_id)
            content = params.content or message.content

        pairs = await self.generator.generate_pairs(content, max_cards)
        # Generators may overshoot the requested count
        pairs = pairs[:max_cards]

        cards = await self.repository.create_cards(
            session,
            ctx.user_id,
            pairs,
            message_id=message.id if message else None,
            node_id=node.id if node else None,
        )
        if node is not None and cards:
            await self.repository.increment_card_count(session, node.id, len(cards))

        distractor_jobs = []
        if self.settings.job_enqueue_distractors and cards:
            distractor_jobs = await enqueue_card_distractor_jobs(
                self.store, session, ctx.user_id, cards, parent_job_id=ctx.job_id
            )

        logger.info(
            "Cards generated",
            job_id=str(ctx.job_id),
            source="node" if node else "message",
            requested=max_cards,
            created=len(cards),
            distractor_jobs=len(distractor_jobs),
        )
        return {
            "created_ids": [str(card.id) for card in cards],
            "count": len(cards),
            "distractor_job_ids": [str(job.id) for job in distractor_jobs],
        }


class HierarchyGenerationHandler(GenerationHandler):
    """
    Generate a topic hierarchy for a goal, then fan out card generation.

    Payload expected:
    {
        "goal_id": "uuid-string",
        "topic": "...",
        "feedback": "..."  # optional
    }
    """

    def __init__(
        self,
        settings: Settings,
        store: JobStore | None = None,
        generator: ContentGenerator | None = None,
        repository: LearningRepository | None = None,
    ):
        super().__init__(settings, generator=generator, repository=repository)
        self.store = store or JobStore(settings)

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        params = HierarchyGenerationPayload.model_validate(payload)

        goal = await self.repository.get_goal_for_user(session, params.goal_id, ctx.user_id)
        if goal is None:
            raise GoalNotFound(params.goal_id)
        if await self.repository.get_hierarchy_for_goal(session, goal.id) is not None:
            raise HierarchyAlreadyExists(goal.id)

        generated = await self.generator.generate_hierarchy(params.topic, params.feedback)

        hierarchy, nodes = await self.repository.create_hierarchy(
            session, goal, generated, generated_by=self.settings.generator.value
        )
        children = await enqueue_node_content_jobs(
            self.store,
            session,
            ctx.user_id,
            nodes,
            parent_job_id=ctx.job_id,
            max_cards=self.settings.job_default_max_cards,
        )

        logger.info(
            "Hierarchy generated",
            job_id=str(ctx.job_id),
            goal_id=str(goal.id),
            node_count=len(nodes),
            child_jobs=len(children),
        )
        return {
            "hierarchy_id": str(hierarchy.id),
            "node_count": len(nodes),
            "depth": hierarchy.max_depth,
            "child_job_ids": [str(child.id) for child in children],
        }


class DistractorGenerationHandler(GenerationHandler):
    """
    Generate wrong answers for a card so it can be asked as multiple choice.

    Payload expected:
    {
        "card_id": "uuid-string",
        "question": "...",
        "answer": "..."
    }
    """

    distractor_count = 3

    async def handle(
        self,
        session: AsyncSession,
        ctx: JobContext,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        params = DistractorGenerationPayload.model_validate(payload)

        card = await self.repository.get_card_for_user(session, params.card_id, ctx.user_id)
        if card is None:
            raise CardNotFound(params.card_id)

        distractors = await self.generator.generate_distractors(
            params.question, params.answer, self.distractor_count
        )
        distractors = [d for d in distractors if d and d.strip()][: self.distractor_count]
        if not distractors:
            raise TransientHandlerFailure(
                "Generator returned no distractors", details={"card_id": str(card.id)}
            )

        await self.repository.set_distractors(session, card, distractors)
        return {"card_id": str(card.id), "distractors": distractors}
