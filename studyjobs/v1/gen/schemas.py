"""
Shapes exchanged with content generators.
"""

from pydantic import BaseModel, Field


class QuestionAnswerPair(BaseModel):
    """A single generated card."""

    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


class GeneratedNode(BaseModel):
    """A topic in a generated hierarchy; children nest arbitrarily deep."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    children: list["GeneratedNode"] = Field(default_factory=list)


class GeneratedHierarchy(BaseModel):
    """Output of hierarchy generation."""

    topic: str
    nodes: list[GeneratedNode] = Field(default_factory=list)

    @property
    def node_count(self) -> int:
        def count(nodes: list[GeneratedNode]) -> int:
            return sum(1 + count(n.children) for n in nodes)

        return count(self.nodes)

    @property
    def max_depth(self) -> int:
        def depth(nodes: list[GeneratedNode], level: int) -> int:
            if not nodes:
                return level - 1
            return max(depth(n.children, level + 1) for n in nodes)

        return max(depth(self.nodes, 0), 0)
