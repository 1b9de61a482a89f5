"""Tests for the sliding window rate limiter."""

from datetime import timedelta
from unittest.mock import AsyncMock, Mock

from sqlalchemy.exc import OperationalError

from studyjobs.v1.infra.jobs.models import JobType
from studyjobs.v1.infra.jobs.rate_limit import RateLimiter

PAYLOAD = {"message_id": "m1"}


class TestEvaluate:
    def test_empty_window(self, test_settings, clock):
        limiter = RateLimiter(test_settings, clock=clock)

        result = limiter.evaluate(0, None, clock.now)

        assert result.allowed is True
        assert result.remaining == 20
        assert result.reset_at == clock.now

    def test_partially_used_window(self, test_settings, clock):
        limiter = RateLimiter(test_settings, clock=clock)
        oldest = clock.now - timedelta(minutes=10)

        result = limiter.evaluate(5, oldest, clock.now)

        assert result.allowed is True
        assert result.remaining == 15
        assert result.reset_at == oldest + timedelta(hours=1)

    def test_full_window(self, test_settings, clock):
        limiter = RateLimiter(test_settings, clock=clock)

        result = limiter.evaluate(20, clock.now, clock.now)

        assert result.allowed is False
        assert result.remaining == 0

    def test_limit_follows_settings(self, test_settings, clock):
        test_settings.job_rate_limit_max = 2
        test_settings.job_rate_limit_window_minutes = 5
        limiter = RateLimiter(test_settings, clock=clock)

        assert limiter.limit == 2
        assert limiter.window == timedelta(minutes=5)
        assert limiter.evaluate(2, clock.now, clock.now).allowed is False


class TestCheckRateLimit:
    async def test_counts_per_user_and_type(
        self, store, db_session, user_id, other_user_id, clock
    ):
        first = clock.now
        for _ in range(3):
            await store.create_job(db_session, JobType.CONTENT_GENERATION, user_id, PAYLOAD)
            clock.advance(minutes=5)
        await store.create_job(db_session, JobType.CONTENT_GENERATION, other_user_id, PAYLOAD)

        limiter = store.rate_limiter
        mine = await limiter.check_rate_limit(db_session, user_id, JobType.CONTENT_GENERATION)
        other_type = await limiter.check_rate_limit(
            db_session, user_id, JobType.HIERARCHY_GENERATION
        )

        assert mine.allowed is True
        assert mine.remaining == 17
        assert mine.reset_at == first + timedelta(hours=1)
        assert other_type.remaining == 20
        assert other_type.reset_at == clock.now

    async def test_old_jobs_leave_the_window(self, store, db_session, user_id, clock):
        await store.create_job(db_session, JobType.CONTENT_GENERATION, user_id, PAYLOAD)

        clock.advance(minutes=60)
        result = await store.rate_limiter.check_rate_limit(
            db_session, user_id, JobType.CONTENT_GENERATION
        )

        assert result.remaining == 20

    async def test_fails_closed_on_database_error(self, test_settings, clock, user_id):
        limiter = RateLimiter(test_settings, clock=clock)
        session = Mock()
        session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))

        result = await limiter.check_rate_limit(session, user_id, JobType.CONTENT_GENERATION)

        assert result.allowed is False
        assert result.remaining == 0
        assert result.reset_at == clock.now + timedelta(hours=1)
