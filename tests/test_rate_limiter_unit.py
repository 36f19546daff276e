"""Unit tests for the Redis claim rate limiter.

Tests cover:
- Configuration validation
- Fixed-window counting shared through Redis
- Window roll-over and retry_after
- Disabled limiter
"""

from unittest.mock import MagicMock

import pytest

from vigil_core.infrastructure.rate_limiter import (
    ClaimRateLimitConfig,
    ClaimRateLimiter,
    RateLimitExceeded,
)


class MockPipeline:
    """Mock Redis pipeline that queues commands against MockRedis."""

    def __init__(self, redis):
        self.redis = redis
        self.commands = []

    def incr(self, key):
        self.commands.append(("incr", key))
        return self

    def pexpire(self, key, milliseconds):
        self.commands.append(("pexpire", key, milliseconds))
        return self

    def execute(self):
        results = []
        for command in self.commands:
            if command[0] == "incr":
                results.append(self.redis.incr(command[1]))
            else:
                self.redis.expirations[command[1]] = command[2]
                results.append(True)
        self.commands = []
        return results


class MockRedis:
    """Dict-backed stand-in for the synchronous Redis client."""

    def __init__(self):
        self.data = {}
        self.expirations = {}

    def get(self, key):
        value = self.data.get(key)
        return None if value is None else str(value).encode()

    def incr(self, key):
        self.data[key] = self.data.get(key, 0) + 1
        return self.data[key]

    def delete(self, *keys):
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    def pipeline(self):
        return MockPipeline(self)


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def limiter_clock():
    return Clock()


@pytest.fixture
def limiter(redis_client, limiter_clock):
    config = ClaimRateLimitConfig(topic="moderation", max_claims=3, window_seconds=1.0)
    return ClaimRateLimiter(redis_client, config, clock=limiter_clock)


class TestClaimRateLimitConfig:
    """Tests for rate limit configuration."""

    def test_defaults(self):
        config = ClaimRateLimitConfig(topic="moderation")

        assert config.max_claims == 10
        assert config.window_seconds == 1.0
        assert config.enabled
        assert config.window_ms == 1000

    def test_zero_disables(self):
        assert not ClaimRateLimitConfig(topic="notification", max_claims=0).enabled

    def test_rejects_negative_max(self):
        with pytest.raises(ValueError):
            ClaimRateLimitConfig(topic="moderation", max_claims=-1)

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            ClaimRateLimitConfig(topic="moderation", window_seconds=0)


class TestTryAcquire:
    """Tests for fixed-window claim counting."""

    def test_allows_up_to_max_claims(self, limiter):
        assert [limiter.try_acquire() for _ in range(4)] == [True, True, True, False]

    def test_key_expires_after_two_windows(self, limiter, redis_client):
        limiter.try_acquire()

        assert redis_client.expirations == {"claims:moderation:1000": 2000}

    def test_new_window_resets_count(self, limiter, limiter_clock):
        for _ in range(3):
            limiter.try_acquire()
        assert not limiter.try_acquire()

        limiter_clock.now += 1.0

        assert limiter.try_acquire()

    def test_limit_shared_between_workers(self, redis_client, limiter_clock):
        config = ClaimRateLimitConfig(topic="moderation", max_claims=2, window_seconds=1.0)
        worker_a = ClaimRateLimiter(redis_client, config, clock=limiter_clock)
        worker_b = ClaimRateLimiter(redis_client, config, clock=limiter_clock)

        assert worker_a.try_acquire()
        assert worker_b.try_acquire()
        assert not worker_a.try_acquire()

    def test_topics_counted_separately(self, redis_client, limiter_clock):
        moderation = ClaimRateLimiter(
            redis_client, ClaimRateLimitConfig(topic="moderation", max_claims=1), clock=limiter_clock
        )
        notification = ClaimRateLimiter(
            redis_client, ClaimRateLimitConfig(topic="notification", max_claims=1), clock=limiter_clock
        )

        assert moderation.try_acquire()
        assert notification.try_acquire()

    def test_disabled_limiter_never_touches_redis(self):
        redis_client = MagicMock()
        limiter = ClaimRateLimiter(
            redis_client, ClaimRateLimitConfig(topic="notification", max_claims=0)
        )

        assert all(limiter.try_acquire() for _ in range(100))
        redis_client.pipeline.assert_not_called()


class TestRetryAfter:
    """Tests for time until the next window."""

    def test_remaining_window(self, limiter, limiter_clock):
        limiter_clock.now = 1000.25

        assert limiter.retry_after() == pytest.approx(0.75)

    def test_disabled_is_zero(self, redis_client):
        limiter = ClaimRateLimiter(
            redis_client, ClaimRateLimitConfig(topic="notification", max_claims=0)
        )

        assert limiter.retry_after() == 0.0


class TestAcquire:
    """Tests for acquire and the context manager."""

    def test_acquire_without_wait_fails_when_full(self, limiter):
        for _ in range(3):
            assert limiter.acquire()

        assert limiter.acquire() is False

    def test_context_manager_raises_when_full(self, limiter):
        for _ in range(3):
            limiter.try_acquire()

        with pytest.raises(RateLimitExceeded) as exc_info:
            with limiter:
                pass

        assert exc_info.value.topic == "moderation"
        assert exc_info.value.retry_after > 0


class TestStats:
    """Tests for stats and reset."""

    def test_stats_report_usage(self, limiter):
        limiter.try_acquire()
        limiter.try_acquire()

        stats = limiter.get_stats()

        assert stats["topic"] == "moderation"
        assert stats["claims_in_window"] == 2
        assert stats["claims_available"] == 1

    def test_reset_clears_window(self, limiter):
        for _ in range(3):
            limiter.try_acquire()

        limiter.reset()

        assert limiter.try_acquire()
