from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from studyjobs.infra.database import Base, UTCDateTime
from studyjobs.v1.infra.jobs.models import utcnow


class TimestampMixin:
    """Mixin for timestamp fields."""

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )


class Goal(Base, TimestampMixin):
    """Learning goal a user wants a topic hierarchy for."""

    __tablename__ = "goals"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)

    hierarchy: Mapped["Hierarchy | None"] = relationship(back_populates="goal")


class Message(Base, TimestampMixin):
    """Chat message that cards can be generated from."""

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    conversation_id: Mapped[UUID | None] = mapped_column(Uuid)
    content: Mapped[str] = mapped_column(Text, nullable=False)


class Hierarchy(Base, TimestampMixin):
    """Generated topic tree for a goal, at most one per goal."""

    __tablename__ = "hierarchies"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    goal_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    generated_by: Mapped[str] = mapped_column(String(50), nullable=False)
    node_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    goal: Mapped["Goal"] = relationship(back_populates="hierarchy")
    nodes: Mapped[list["Node"]] = relationship(
        back_populates="hierarchy",
        cascade="all, delete-orphan",
        order_by="Node.sort_order",
    )


class Node(Base, TimestampMixin):
    """One topic in a hierarchy; content jobs turn it into cards."""

    __tablename__ = "nodes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    hierarchy_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("hierarchies.id", ondelete="CASCADE"), nullable=False
    )
    parent_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("nodes.id", ondelete="CASCADE")
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    card_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    hierarchy: Mapped["Hierarchy"] = relationship(back_populates="nodes")

    __table_args__ = (Index("ix_nodes_hierarchy_sort", "hierarchy_id", "sort_order"),)


class Card(Base, TimestampMixin):
    """Question/answer card generated from a message or a node."""

    __tablename__ = "cards"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    message_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="SET NULL"), index=True
    )
    node_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("nodes.id", ondelete="CASCADE"), index=True
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    distractors: Mapped[list[str] | None] = mapped_column(JSON)
