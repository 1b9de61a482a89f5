from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime, timedelta
from uuid import NAMESPACE_DNS, UUID, uuid5

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from studyjobs.config.settings import AuthMode, Settings, get_settings
from studyjobs.infra.database import Base, get_session
from studyjobs.main import create_app
from studyjobs.v1.core.registries import JobRegistry
from studyjobs.v1.gen.basic_rules import BasicRulesGenerator
from studyjobs.v1.gen.registry_init import init_generator_registry
from studyjobs.v1.infra.jobs.handlers import (
    ContentGenerationHandler,
    DistractorGenerationHandler,
    HierarchyGenerationHandler,
)
from studyjobs.v1.infra.jobs.models import JobType
from studyjobs.v1.infra.jobs.processor import JobProcessor
from studyjobs.v1.infra.jobs.store import JobStore

# Import models to ensure they're registered
from studyjobs.v1.infra.jobs import models as job_models  # noqa: F401
from studyjobs.v1.learning import models as learning_models  # noqa: F401


class FakeClock:
    """Controllable replacement for ``utcnow``."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        auth_mode=AuthMode.DEV,
        job_handler_timeout_s=5,
        job_stale_after_s=300,
    )


@pytest.fixture
async def test_engine(test_settings):
    """Create a test database engine with all tables.

    Connections are not pooled: the TestClient serves requests on its own
    event loop.
    """
    engine = create_async_engine(
        test_settings.database_url, echo=False, poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(test_settings, clock) -> JobStore:
    return JobStore(test_settings, clock=clock)


@pytest.fixture
def generator() -> BasicRulesGenerator:
    return BasicRulesGenerator()


@pytest.fixture
def registry(test_settings, store, generator) -> JobRegistry:
    """A complete registry wired to the test store and generator."""
    registry = JobRegistry()
    registry.register(
        JobType.CONTENT_GENERATION,
        ContentGenerationHandler(test_settings, store=store, generator=generator),
    )
    registry.register(
        JobType.DISTRACTOR_GENERATION,
        DistractorGenerationHandler(test_settings, generator=generator),
    )
    registry.register(
        JobType.HIERARCHY_GENERATION,
        HierarchyGenerationHandler(test_settings, store=store, generator=generator),
    )
    return registry


@pytest.fixture
def processor(test_settings, session_factory, registry, store, clock) -> JobProcessor:
    return JobProcessor(test_settings, session_factory, registry, store=store, clock=clock)


@pytest.fixture
def user_id() -> UUID:
    return uuid5(NAMESPACE_DNS, "test_user_123")


@pytest.fixture
def other_user_id() -> UUID:
    return uuid5(NAMESPACE_DNS, "someone_else")


@pytest.fixture
def app(test_settings, session_factory):
    """Create a test FastAPI application with the test database."""
    init_generator_registry()
    app = create_app()

    async def get_test_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = get_test_session
    app.dependency_overrides[get_settings] = lambda: test_settings

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    """Default auth headers for testing."""
    return {"X-User-ID": "test_user_123"}


@pytest.fixture
async def sample_goal(db_session, user_id):
    from studyjobs.v1.learning.models import Goal

    goal = Goal(user_id=user_id, title="Learn Python")
    db_session.add(goal)
    await db_session.commit()
    return goal


@pytest.fixture
async def sample_message(db_session, user_id):
    from studyjobs.v1.learning.models import Message

    message = Message(
        user_id=user_id,
        content=(
            "A closure is a function that captures variables from its enclosing scope. "
            "Generators are functions that yield values lazily. "
            "Python was first released in 1991 by Guido van Rossum."
        ),
    )
    db_session.add(message)
    await db_session.commit()
    return message
