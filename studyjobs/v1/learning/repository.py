"""
Persistence for the learning entities that generation jobs read and write.

Nothing here commits. Handlers run inside the processor's transaction, which
commits their writes together with the job's completion.
"""

from collections.abc import Iterable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studyjobs.v1.gen.schemas import GeneratedHierarchy, GeneratedNode, QuestionAnswerPair
from studyjobs.v1.learning.models import Card, Goal, Hierarchy, Message, Node


def parse_uuid(value: UUID | str | None) -> UUID | None:
    """Payload ids are strings; anything that is not a UUID matches nothing."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class LearningRepository:
    """Lookups scoped to the owning user, plus the writes jobs perform."""

    async def get_goal_for_user(
        self, session: AsyncSession, goal_id: UUID | str, user_id: UUID
    ) -> Goal | None:
        goal_uuid = parse_uuid(goal_id)
        if goal_uuid is None:
            return None
        result = await session.execute(
            select(Goal).where(Goal.id == goal_uuid, Goal.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_message_for_user(
        self, session: AsyncSession, message_id: UUID | str, user_id: UUID
    ) -> Message | None:
        message_uuid = parse_uuid(message_id)
        if message_uuid is None:
            return None
        result = await session.execute(
            select(Message).where(Message.id == message_uuid, Message.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_node(
        self, session: AsyncSession, node_id: UUID | str, user_id: UUID | None = None
    ) -> Node | None:
        """Node by id; with ``user_id``, only nodes under that user's goals."""
        node_uuid = parse_uuid(node_id)
        if node_uuid is None:
            return None
        query = select(Node).where(Node.id == node_uuid)
        if user_id is not None:
            query = (
                query.join(Hierarchy, Node.hierarchy_id == Hierarchy.id)
                .join(Goal, Hierarchy.goal_id == Goal.id)
                .where(Goal.user_id == user_id)
            )
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_card_for_user(
        self, session: AsyncSession, card_id: UUID | str, user_id: UUID
    ) -> Card | None:
        card_uuid = parse_uuid(card_id)
        if card_uuid is None:
            return None
        result = await session.execute(
            select(Card).where(Card.id == card_uuid, Card.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_hierarchy_for_goal(
        self, session: AsyncSession, goal_id: UUID
    ) -> Hierarchy | None:
        result = await session.execute(
            select(Hierarchy).where(Hierarchy.goal_id == goal_id)
        )
        return result.scalar_one_or_none()

    async def list_nodes(self, session: AsyncSession, hierarchy_id: UUID) -> list[Node]:
        result = await session.execute(
            select(Node)
            .where(Node.hierarchy_id == hierarchy_id)
            .order_by(Node.sort_order)
        )
        return list(result.scalars().all())

    async def list_cards(
        self,
        session: AsyncSession,
        user_id: UUID,
        node_id: UUID | None = None,
        message_id: UUID | None = None,
    ) -> list[Card]:
        query = select(Card).where(Card.user_id == user_id)
        if node_id is not None:
            query = query.where(Card.node_id == node_id)
        if message_id is not None:
            query = query.where(Card.message_id == message_id)
        result = await session.execute(query.order_by(Card.created_at))
        return list(result.scalars().all())

    async def create_cards(
        self,
        session: AsyncSession,
        user_id: UUID,
        pairs: Iterable[QuestionAnswerPair],
        message_id: UUID | None = None,
        node_id: UUID | None = None,
    ) -> list[Card]:
        cards = [
            Card(
                user_id=user_id,
                message_id=message_id,
                node_id=node_id,
                question=pair.question,
                answer=pair.answer,
            )
            for pair in pairs
        ]
        session.add_all(cards)
        await session.flush()
        return cards

    async def create_hierarchy(
        self,
        session: AsyncSession,
        goal: Goal,
        generated: GeneratedHierarchy,
        generated_by: str,
    ) -> tuple[Hierarchy, list[Node]]:
        """
        Persist a hierarchy and all of its nodes, depth first.

        Nodes get their parent link, depth, a dotted ``path`` of sibling
        positions (``"1.2.1"``) and a ``sort_order`` in document order.
        """
        hierarchy = Hierarchy(
            goal_id=goal.id,
            generated_by=generated_by,
            node_count=generated.node_count,
            max_depth=generated.max_depth,
        )
        session.add(hierarchy)
        await session.flush()

        nodes: list[Node] = []

        def add_level(
            children: Sequence[GeneratedNode],
            parent: Node | None,
            depth: int,
            prefix: str,
        ) -> None:
            for position, generated_node in enumerate(children, start=1):
                path = f"{prefix}.{position}" if prefix else str(position)
                node = Node(
                    id=uuid4(),
                    hierarchy_id=hierarchy.id,
                    parent_id=parent.id if parent else None,
                    title=generated_node.title,
                    description=generated_node.description,
                    depth=depth,
                    path=path,
                    sort_order=len(nodes),
                    card_count=0,
                )
                nodes.append(node)
                add_level(generated_node.children, node, depth + 1, path)

        add_level(generated.nodes, None, 0, "")
        session.add_all(nodes)
        await session.flush()
        return hierarchy, nodes

    async def increment_card_count(
        self, session: AsyncSession, node_id: UUID, count: int
    ) -> None:
        await session.execute(
            update(Node)
            .where(Node.id == node_id)
            .values(card_count=Node.card_count + count)
            .execution_options(synchronize_session=False)
        )

    async def set_distractors(
        self, session: AsyncSession, card: Card, distractors: list[str]
    ) -> Card:
        card.distractors = list(distractors)
        await session.flush()
        return card
