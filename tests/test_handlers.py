"""Tests for the generation job handlers, run through the processor."""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from studyjobs.v1.core.exceptions import (
    GoalNotFound,
    HierarchyAlreadyExists,
    MessageNotFound,
    TransientHandlerFailure,
)
from studyjobs.v1.gen.schemas import (
    GeneratedHierarchy,
    GeneratedNode,
    QuestionAnswerPair,
)
from studyjobs.v1.infra.jobs.handlers import (
    ContentGenerationHandler,
    DistractorGenerationHandler,
    HierarchyGenerationHandler,
)
from studyjobs.v1.infra.jobs.models import Job, JobStatus, JobType
from studyjobs.v1.infra.jobs.processor import JobContext
from studyjobs.v1.learning.models import Card, Hierarchy, Node
from studyjobs.v1.learning.repository import LearningRepository


class FakeGenerator:
    """Generator returning canned output, for exact counts."""

    def __init__(self, pair_count=10, distractors=None, hierarchy=None):
        self.pair_count = pair_count
        self.distractors = ["wrong"] if distractors is None else distractors
        self.hierarchy = hierarchy
        self.contents = []

    async def generate_pairs(self, content, count):
        self.contents.append(content)
        return [
            QuestionAnswerPair(question=f"Q{i}?", answer=f"A{i}")
            for i in range(self.pair_count)
        ]

    async def generate_hierarchy(self, topic, feedback=None):
        return self.hierarchy

    async def generate_distractors(self, question, answer, count=3):
        return list(self.distractors)


async def count_rows(session, model, *criteria) -> int:
    query = select(func.count(model.id))
    if criteria:
        query = query.where(*criteria)
    result = await session.execute(query)
    return result.scalar()


def context(user_id) -> JobContext:
    return JobContext(job_id=uuid4(), user_id=user_id, attempt=1)


async def make_hierarchy(session, goal, titles=("Syntax", "Typing")):
    generated = GeneratedHierarchy(
        topic="Python",
        nodes=[GeneratedNode(title=t, description=f"About {t}") for t in titles],
    )
    hierarchy, nodes = await LearningRepository().create_hierarchy(
        session, goal, generated, generated_by="test"
    )
    await session.commit()
    return hierarchy, nodes


class TestContentGeneration:
    @pytest.mark.parametrize("generated,max_cards,expected", [(10, 3, 3), (2, 5, 2)])
    async def test_card_count_is_capped(
        self,
        test_settings,
        db_session,
        sample_message,
        user_id,
        generated,
        max_cards,
        expected,
    ):
        handler = ContentGenerationHandler(
            test_settings, generator=FakeGenerator(pair_count=generated)
        )

        result = await handler.handle(
            db_session,
            context(user_id),
            {"message_id": str(sample_message.id), "max_cards": max_cards},
        )
        await db_session.commit()

        assert result["count"] == expected
        assert len(result["created_ids"]) == expected
        assert await count_rows(db_session, Card, Card.message_id == sample_message.id) == expected

    async def test_default_card_count(
        self, test_settings, db_session, sample_message, user_id
    ):
        handler = ContentGenerationHandler(test_settings, generator=FakeGenerator())

        result = await handler.handle(
            db_session, context(user_id), {"message_id": str(sample_message.id)}
        )

        assert result["count"] == test_settings.job_default_max_cards

    async def test_message_content_override(
        self, test_settings, db_session, sample_message, user_id
    ):
        generator = FakeGenerator()
        handler = ContentGenerationHandler(test_settings, generator=generator)

        await handler.handle(
            db_session,
            context(user_id),
            {"message_id": str(sample_message.id), "content": "Only this text."},
        )

        assert generator.contents == ["Only this text."]

    async def test_other_users_message_not_found(
        self, test_settings, db_session, sample_message, other_user_id
    ):
        handler = ContentGenerationHandler(test_settings, generator=FakeGenerator())

        with pytest.raises(MessageNotFound):
            await handler.handle(
                db_session,
                context(other_user_id),
                {"message_id": str(sample_message.id)},
            )

    async def test_node_cards_update_card_count(
        self, test_settings, db_session, sample_goal, user_id
    ):
        _, nodes = await make_hierarchy(db_session, sample_goal)
        generator = FakeGenerator(pair_count=4)
        handler = ContentGenerationHandler(test_settings, generator=generator)

        result = await handler.handle(
            db_session,
            context(user_id),
            {"node_id": str(nodes[0].id), "max_cards": 3},
        )
        await db_session.commit()

        assert result["count"] == 3
        assert generator.contents == ["Syntax. About Syntax"]
        node = await db_session.get(Node, nodes[0].id, populate_existing=True)
        assert node.card_count == 3
        cards = await LearningRepository().list_cards(db_session, user_id, node_id=node.id)
        assert {card.node_id for card in cards} == {node.id}

    async def test_basic_rules_generates_from_message(
        self, processor, store, db_session, sample_message, user_id
    ):
        await store.create_job(
            db_session,
            JobType.CONTENT_GENERATION,
            user_id,
            {"message_id": str(sample_message.id), "max_cards": 3},
        )

        job = await processor.run_once()

        assert job.status == JobStatus.COMPLETED.value
        assert 1 <= job.result["count"] <= 3
        cards = await LearningRepository().list_cards(
            db_session, user_id, message_id=sample_message.id
        )
        assert len(cards) == job.result["count"]
        questions = [card.question for card in cards]
        assert "What is A closure?" in questions

    async def test_missing_node_fails_after_retries(
        self, processor, store, db_session, user_id, clock
    ):
        await store.create_job(
            db_session,
            JobType.CONTENT_GENERATION,
            user_id,
            {"node_id": str(uuid4()), "max_cards": 5},
        )

        first = await processor.run_once()
        assert first.status == JobStatus.PENDING.value
        assert first.error == "Node not found"

        clock.advance(seconds=1)
        second = await processor.run_once()
        assert second.status == JobStatus.PENDING.value

        clock.advance(seconds=2)
        third = await processor.run_once()
        assert third.status == JobStatus.FAILED.value
        assert third.attempts == 3
        assert await count_rows(db_session, Card) == 0

    async def test_cards_fan_out_distractor_jobs(
        self, processor, store, db_session, sample_message, user_id
    ):
        parent = await store.create_job(
            db_session,
            JobType.CONTENT_GENERATION,
            user_id,
            {"message_id": str(sample_message.id), "max_cards": 3},
        )

        job = await processor.run_once()

        assert job.status == JobStatus.COMPLETED.value
        children = (
            (await db_session.execute(select(Job).where(Job.parent_id == parent.id)))
            .scalars()
            .all()
        )
        assert len(children) == job.result["count"]
        assert sorted(str(c.id) for c in children) == sorted(job.result["distractor_job_ids"])
        assert {c.type for c in children} == {JobType.DISTRACTOR_GENERATION.value}
        assert {c.payload["card_id"] for c in children} == set(job.result["created_ids"])

        distractor_job = await processor.run_once()
        assert distractor_job.type == JobType.DISTRACTOR_GENERATION.value
        assert distractor_job.parent_id == parent.id

    async def test_distractor_fanout_can_be_disabled(
        self, test_settings, store, db_session, sample_message, user_id
    ):
        test_settings.job_enqueue_distractors = False
        handler = ContentGenerationHandler(
            test_settings, store=store, generator=FakeGenerator(pair_count=2)
        )

        result = await handler.handle(
            db_session, context(user_id), {"message_id": str(sample_message.id)}
        )
        await db_session.commit()

        assert result["count"] == 2
        assert result["distractor_job_ids"] == []
        assert await count_rows(db_session, Job) == 0


class TestHierarchyGeneration:
    async def test_hierarchy_fans_out_content_jobs(
        self, processor, store, db_session, sample_goal, user_id
    ):
        parent = await store.create_job(
            db_session,
            JobType.HIERARCHY_GENERATION,
            user_id,
            {"goal_id": str(sample_goal.id), "topic": "Python: syntax, typing and asyncio"},
        )

        job = await processor.run_once()

        assert job.status == JobStatus.COMPLETED.value
        assert job.result["node_count"] == 6
        assert job.result["depth"] == 1
        assert len(job.result["child_job_ids"]) == 6

        hierarchy = await LearningRepository().get_hierarchy_for_goal(
            db_session, sample_goal.id
        )
        assert str(hierarchy.id) == job.result["hierarchy_id"]
        assert hierarchy.generated_by == "basic_rules"
        nodes = await LearningRepository().list_nodes(db_session, hierarchy.id)
        assert [n.path for n in nodes] == ["1", "1.1", "2", "2.1", "3", "3.1"]
        assert [n.depth for n in nodes] == [0, 1, 0, 1, 0, 1]
        assert nodes[1].parent_id == nodes[0].id

        children = (
            (await db_session.execute(select(Job).where(Job.parent_id == parent.id)))
            .scalars()
            .all()
        )
        assert len(children) == 6
        assert {c.type for c in children} == {JobType.CONTENT_GENERATION.value}
        assert {c.priority for c in children} == {0}
        assert {c.status for c in children} == {JobStatus.PENDING.value}
        assert {c.payload["node_id"] for c in children} == {str(n.id) for n in nodes}
        assert all(c.payload["max_cards"] == 5 for c in children)

    async def test_children_process_into_node_cards(
        self, processor, store, db_session, sample_goal, user_id
    ):
        await store.create_job(
            db_session,
            JobType.HIERARCHY_GENERATION,
            user_id,
            {"goal_id": str(sample_goal.id), "topic": "Rust: ownership and lifetimes"},
        )
        await processor.run_once()

        processed = [await processor.run_once() for _ in range(4)]

        assert all(job.status == JobStatus.COMPLETED.value for job in processed)
        assert {job.type for job in processed} == {JobType.CONTENT_GENERATION.value}
        pending = await db_session.execute(
            select(Job.type).where(Job.status == JobStatus.PENDING.value)
        )
        assert set(pending.scalars().all()) == {JobType.DISTRACTOR_GENERATION.value}
        result = await db_session.execute(select(Node.card_count))
        assert all(count >= 1 for count in result.scalars().all())

    async def test_existing_hierarchy_fails_without_retry(
        self, processor, store, db_session, sample_goal, user_id
    ):
        await make_hierarchy(db_session, sample_goal)
        await store.create_job(
            db_session,
            JobType.HIERARCHY_GENERATION,
            user_id,
            {"goal_id": str(sample_goal.id), "topic": "Python"},
        )

        job = await processor.run_once()

        assert job.status == JobStatus.FAILED.value
        assert job.attempts == 1
        assert job.error == "Hierarchy already exists for goal"
        assert await count_rows(db_session, Hierarchy) == 1

    async def test_direct_handler_errors(
        self, test_settings, store, db_session, sample_goal, user_id, other_user_id
    ):
        handler = HierarchyGenerationHandler(
            test_settings, store=store, generator=FakeGenerator()
        )

        with pytest.raises(GoalNotFound):
            await handler.handle(
                db_session,
                context(other_user_id),
                {"goal_id": str(sample_goal.id), "topic": "Python"},
            )

        await make_hierarchy(db_session, sample_goal)
        with pytest.raises(HierarchyAlreadyExists):
            await handler.handle(
                db_session,
                context(user_id),
                {"goal_id": str(sample_goal.id), "topic": "Python"},
            )


class TestDistractorGeneration:
    async def _card(self, session, user_id, question="When was Python released?", answer="1991"):
        card = Card(user_id=user_id, question=question, answer=answer)
        session.add(card)
        await session.commit()
        return card

    async def test_distractors_stored_on_card(
        self, processor, store, db_session, user_id
    ):
        card = await self._card(db_session, user_id)
        await store.create_job(
            db_session,
            JobType.DISTRACTOR_GENERATION,
            user_id,
            {"card_id": str(card.id), "question": card.question, "answer": card.answer},
        )

        job = await processor.run_once()

        assert job.status == JobStatus.COMPLETED.value
        assert len(job.result["distractors"]) == 3
        assert "1991" not in job.result["distractors"]
        refreshed = await db_session.get(Card, card.id, populate_existing=True)
        assert refreshed.distractors == job.result["distractors"]

    async def test_empty_output_is_transient(self, test_settings, db_session, user_id):
        card = await self._card(db_session, user_id)
        handler = DistractorGenerationHandler(
            test_settings, generator=FakeGenerator(distractors=["", "  "])
        )

        with pytest.raises(TransientHandlerFailure):
            await handler.handle(
                db_session,
                context(user_id),
                {"card_id": str(card.id), "question": "q", "answer": "a"},
            )

    async def test_missing_card_is_retried(self, processor, store, db_session, user_id):
        await store.create_job(
            db_session,
            JobType.DISTRACTOR_GENERATION,
            user_id,
            {"card_id": "not-a-uuid", "question": "q", "answer": "a"},
        )

        job = await processor.run_once()

        assert job.status == JobStatus.PENDING.value
        assert job.error == "Card not found or unauthorized"
