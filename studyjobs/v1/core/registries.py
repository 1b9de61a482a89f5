import inspect
from typing import Any, Generic, Protocol, TypeVar

from studyjobs.v1.core.exceptions import UnknownJobType
from studyjobs.v1.gen.schemas import GeneratedHierarchy, QuestionAnswerPair
from studyjobs.v1.infra.jobs.models import JobType

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Generator Registry - external content generation collaborators
class ContentGenerator(Protocol):
    """Protocol for generators that turn text into learning material.

    Implementations are expected to be slow and unreliable (LLM calls), so
    every method is async and may raise; callers run them inside jobs.
    """

    async def generate_pairs(
        self, content: str, count: int
    ) -> list[QuestionAnswerPair]:
        """Return up to ``count`` question/answer pairs for ``content``."""
        ...

    async def generate_hierarchy(
        self, topic: str, feedback: str | None = None
    ) -> GeneratedHierarchy:
        """Return a nested topic structure for ``topic``."""
        ...

    async def generate_distractors(
        self, question: str, answer: str, count: int = 3
    ) -> list[str]:
        """Return plausible wrong answers for a card."""
        ...


class GeneratorRegistry(Registry[ContentGenerator]):
    """Registry for content generators (basic_rules, ...)."""

    def __init__(self):
        super().__init__("Generator")


# Job Registry - background processing handlers
class JobHandler(Protocol):
    """Protocol for job handlers that process background tasks."""

    async def handle(
        self,
        session: Any,  # AsyncSession
        ctx: Any,  # JobContext with job_id/user_id/attempt
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Handle a background job.

        Args:
            session: Database session; the processor commits it together
                with the completion of the job
            ctx: Job context carrying the owning user
            payload: Job-specific parameters

        Returns:
            Result dictionary stored with the completed job
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Closed dispatch table from ``JobType`` to its single handler."""

    def __init__(self):
        super().__init__("Job")

    @staticmethod
    def _coerce(job_type: JobType | str) -> JobType:
        try:
            return JobType(job_type)
        except ValueError:
            raise UnknownJobType(job_type) from None

    def register(self, name: JobType | str, implementation: JobHandler) -> None:
        job_type = self._coerce(name)
        if job_type.value in self._implementations:
            raise ValueError(f"Handler already registered for job type: {job_type.value}")
        handle = getattr(implementation, "handle", None)
        if handle is None or not inspect.iscoroutinefunction(handle):
            raise TypeError(
                f"Handler for {job_type.value} must define an async handle() method"
            )
        super().register(job_type.value, implementation)

    def get_handler(self, job_type: JobType | str) -> JobHandler:
        key = self._coerce(job_type).value
        if key not in self._implementations:
            raise UnknownJobType(key)
        return self._implementations[key]

    def get(self, name: JobType | str) -> JobHandler:
        return self.get_handler(name)

    def missing(self) -> list[str]:
        """Job types that have no handler yet."""
        return [t.value for t in JobType if t.value not in self._implementations]

    def ensure_complete(self) -> None:
        """Fail fast when some job type could never be processed."""
        missing = self.missing()
        if missing:
            raise RuntimeError(f"No handler registered for job types: {missing}")


# Global registry instances (singletons)
generator_registry = GeneratorRegistry()
job_registry = JobRegistry()
