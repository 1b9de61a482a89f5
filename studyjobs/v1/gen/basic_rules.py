"""
Basic rules generator for learning material.

Deterministic, dependency-free stand-in for an LLM backed generator:
- Definitions ("X is Y") -> question/answer cards
- Other sentences -> cloze cards masking their most salient word
- Topics -> a two level hierarchy built from the topic's clauses
- Cards -> distractors from numeric variations or shuffled key terms
"""

import hashlib
import re

from studyjobs.v1.gen.schemas import (
    GeneratedHierarchy,
    GeneratedNode,
    QuestionAnswerPair,
)

# Sentence splitter good enough for plain prose
SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
WORD_RE = re.compile(r"[A-Za-z][A-Za-z\-]{2,}")

STOPWORDS = frozenset(
    {
        "the", "and", "for", "are", "was", "were", "with", "that", "this",
        "from", "into", "which", "their", "there", "these", "those", "have",
        "has", "had", "been", "being", "also", "such", "than", "then", "they",
        "them", "its", "not", "but", "can", "will", "may", "use", "used",
        "what", "when", "where", "who", "why", "how",
    }
)

PRONOUNS = frozenset({"it", "this", "that", "he", "she", "they", "there", "which"})

# Common subtopics used when a topic has no clauses of its own
DEFAULT_ASPECTS = (
    ("Fundamentals", "Core vocabulary and ideas of {topic}"),
    ("Key Concepts", "The central principles behind {topic}"),
    ("Applications", "Where {topic} is used in practice"),
    ("Common Pitfalls", "Mistakes people make when learning {topic}"),
)


class BasicRulesGenerator:
    """Rule-based implementation of the content generator protocol."""

    name = "basic_rules"

    def __init__(self, min_sentence_length: int = 20, max_sentence_length: int = 300):
        self.min_sentence_length = min_sentence_length
        self.max_sentence_length = max_sentence_length

        # Phrases that introduce a definition, longest first
        self.definition_markers = (
            "is defined as",
            "refers to",
            "is known as",
            "is called",
            "represents",
            "denotes",
            "means",
            "are",
            "is",
        )

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    async def generate_pairs(self, content: str, count: int) -> list[QuestionAnswerPair]:
        """Up to ``count`` cards: definitions first, then cloze deletions."""
        if count <= 0:
            return []

        sentences = self._split_sentences(content)
        pairs: list[QuestionAnswerPair] = []
        seen: set[str] = set()

        for sentence in sentences:
            pair = self._definition_pair(sentence)
            if pair:
                self._add_unique(pairs, seen, pair)

        for sentence in sentences:
            if len(pairs) >= count:
                break
            if self._definition_pair(sentence):
                continue
            pair = self._cloze_pair(sentence)
            if pair:
                self._add_unique(pairs, seen, pair)

        if not pairs and content.strip():
            # Short input such as a bare node title
            subject = content.strip().rstrip(".")
            self._add_unique(
                pairs,
                seen,
                QuestionAnswerPair(
                    question=f"What is {subject}?",
                    answer=f"{subject} is the topic being studied.",
                ),
            )

        return pairs[:count]

    def _split_sentences(self, content: str) -> list[str]:
        sentences = []
        for raw in SENTENCE_RE.split(re.sub(r"\s+", " ", content or "").strip()):
            sentence = raw.strip()
            if self.min_sentence_length <= len(sentence) <= self.max_sentence_length:
                sentences.append(sentence)
        return sentences

    def _definition_pair(self, sentence: str) -> QuestionAnswerPair | None:
        body = sentence.rstrip(".!?")
        for marker in self.definition_markers:
            match = re.search(rf"\s{re.escape(marker)}\s", body, re.IGNORECASE)
            if not match:
                continue
            term = body[: match.start()].strip()
            definition = body[match.end() :].strip()
            # Terms are short noun phrases; long subjects are ordinary clauses
            if (
                1 <= len(term.split()) <= 5
                and term.lower() not in PRONOUNS
                and len(definition) >= 5
            ):
                verb = "are" if marker == "are" else "is"
                return QuestionAnswerPair(
                    question=f"What {verb} {term}?",
                    answer=definition[0].upper() + definition[1:],
                )
        return None

    def _cloze_pair(self, sentence: str) -> QuestionAnswerPair | None:
        numbers = NUMBER_RE.findall(sentence)
        if numbers:
            target = max(numbers, key=len)
        else:
            words = [w for w in WORD_RE.findall(sentence) if w.lower() not in STOPWORDS]
            if not words:
                return None
            # Longest word, capitalised words win ties
            target = max(words, key=lambda w: (len(w), w[0].isupper()))

        question = sentence.replace(target, "_____", 1)
        return QuestionAnswerPair(
            question=f"Fill in the blank: {question}", answer=target
        )

    @staticmethod
    def _add_unique(
        pairs: list[QuestionAnswerPair], seen: set[str], pair: QuestionAnswerPair
    ) -> None:
        key = hashlib.md5(
            re.sub(r"\s+", " ", pair.question.lower()).encode()
        ).hexdigest()
        if key not in seen:
            seen.add(key)
            pairs.append(pair)

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    async def generate_hierarchy(
        self, topic: str, feedback: str | None = None
    ) -> GeneratedHierarchy:
        """
        Two level outline of a topic.

        Clauses of the topic ("Python: syntax, typing and asyncio") become
        top level nodes; otherwise a fixed set of aspects is used. Feedback
        clauses are appended as extra top level nodes.
        """
        topic = topic.strip()
        head, _, tail = topic.partition(":")
        subject = head.strip() or topic

        clauses = self._clauses(tail) if tail else []
        if clauses:
            nodes = [self._clause_node(clause, subject) for clause in clauses]
        else:
            nodes = [
                GeneratedNode(
                    title=title,
                    description=description.format(topic=subject),
                    children=[
                        GeneratedNode(
                            title=f"{subject} {title.lower()}"[:200],
                            description=None,
                        )
                    ],
                )
                for title, description in DEFAULT_ASPECTS
            ]

        if feedback:
            nodes.extend(
                self._clause_node(clause, subject)
                for clause in self._clauses(feedback)
                if clause not in clauses
            )

        return GeneratedHierarchy(topic=subject, nodes=nodes)

    @staticmethod
    def _clause_node(clause: str, subject: str) -> GeneratedNode:
        return GeneratedNode(
            title=clause[:200],
            description=f"{clause} in the context of {subject}",
            children=[
                GeneratedNode(
                    title=f"{clause} basics"[:200],
                    description=f"Introductory ideas of {clause}",
                )
            ],
        )

    @staticmethod
    def _clauses(text: str) -> list[str]:
        parts = re.split(r",|;|\band\b", text)
        return [p.strip().rstrip(".") for p in parts if p.strip().rstrip(".")]

    # ------------------------------------------------------------------
    # Distractors
    # ------------------------------------------------------------------

    async def generate_distractors(
        self, question: str, answer: str, count: int = 3
    ) -> list[str]:
        """Plausible wrong answers: numeric variations or perturbed terms."""
        answer = answer.strip()
        number = NUMBER_RE.fullmatch(answer)
        if number:
            candidates = self._numeric_distractors(float(answer))
        else:
            candidates = self._term_distractors(question, answer)

        distractors: list[str] = []
        for candidate in candidates:
            if candidate.lower() != answer.lower() and candidate not in distractors:
                distractors.append(candidate)
            if len(distractors) >= count:
                break
        return distractors

    @staticmethod
    def _numeric_distractors(correct_value: float) -> list[str]:
        """Heuristic variations around a number."""
        values: list[float] = []
        for factor in (0.5, 2.0, 0.9, 1.1, 10.0, 0.1):
            values.append(round(correct_value * factor, 2))
        if correct_value >= 1:
            values.extend([correct_value + 1, correct_value - 1])

        def fmt(value: float) -> str:
            return str(int(value)) if float(value).is_integer() else str(value)

        return [fmt(v) for v in values if v != correct_value]

    @staticmethod
    def _term_distractors(question: str, answer: str) -> list[str]:
        words = [
            w
            for w in WORD_RE.findall(question)
            if w.lower() not in STOPWORDS and w.lower() not in answer.lower()
        ]
        candidates = [f"{answer} {w.lower()}" for w in words[:2]]
        candidates.extend(
            [f"Not {answer[0].lower()}{answer[1:]}", f"The opposite of {answer}"]
        )
        candidates.extend(f"{w}" for w in words)
        candidates.append("None of the above")
        return candidates
