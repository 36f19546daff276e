"""Redis-backed claim rate limiter for job workers.

Implements a fixed-window counter shared by every worker process of a topic:
at most ``max_claims`` jobs may be claimed per ``window_seconds``.

Usage:
    config = ClaimRateLimitConfig(topic="moderation", max_claims=10, window_seconds=1.0)
    limiter = ClaimRateLimiter(redis.Redis.from_url(url), config)

    if not limiter.try_acquire():
        retry_in = limiter.retry_after()
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol


class RedisProtocol(Protocol):
    """Protocol for the subset of the Redis client the limiter uses."""

    def get(self, key: str) -> Optional[bytes]: ...
    def incr(self, key: str) -> int: ...
    def delete(self, *keys: str) -> int: ...
    def pexpire(self, key: str, milliseconds: int) -> bool: ...
    def pttl(self, key: str) -> int: ...
    def pipeline(self) -> Any: ...


class RateLimitExceeded(Exception):
    """Raised when a claim slot cannot be acquired."""

    def __init__(self, topic: str, retry_after: float):
        self.topic = topic
        self.retry_after = retry_after
        super().__init__(
            f"Claim rate limit exceeded for topic {topic}, retry in {retry_after:.2f}s"
        )


@dataclass
class ClaimRateLimitConfig:
    """Configuration for rate limiting claims on a topic.

    Attributes:
        topic: Queue topic the limit applies to.
        max_claims: Maximum claims per window. 0 disables the limiter.
        window_seconds: Window length in seconds.
    """

    topic: str
    max_claims: int = 10
    window_seconds: float = 1.0

    def __post_init__(self):
        if self.max_claims < 0:
            raise ValueError("max_claims must not be negative")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

    @property
    def enabled(self) -> bool:
        return self.max_claims > 0

    @property
    def window_ms(self) -> int:
        return max(1, int(self.window_seconds * 1000))


class ClaimRateLimiter:
    """Fixed-window rate limiter using ``INCR`` + ``PEXPIRE``.

    Uses Redis keys:
    - claims:{topic}:{window_index} - Claims made in the current window
    """

    def __init__(
        self,
        redis: RedisProtocol,
        config: ClaimRateLimitConfig,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the rate limiter.

        Args:
            redis: Redis client.
            config: Rate limit configuration.
            clock: Source of the current time in seconds.
        """
        self.redis = redis
        self.config = config
        self._clock = clock

    def _window_index(self) -> int:
        return int(self._clock() * 1000) // self.config.window_ms

    def _key(self, window_index: Optional[int] = None) -> str:
        if window_index is None:
            window_index = self._window_index()
        return f"claims:{self.config.topic}:{window_index}"

    def try_acquire(self) -> bool:
        """Attempt to take one claim slot in the current window.

        Returns:
            True if the claim may proceed, False if the window is full.
        """
        if not self.config.enabled:
            return True

        key = self._key()
        pipe = self.redis.pipeline()
        pipe.incr(key)
        # Keep the key a little longer than the window to tolerate clock skew
        pipe.pexpire(key, self.config.window_ms * 2)
        count, _ = pipe.execute()

        return int(count) <= self.config.max_claims

    def retry_after(self) -> float:
        """Seconds until the current window closes."""
        if not self.config.enabled:
            return 0.0
        now_ms = int(self._clock() * 1000)
        window_ms = self.config.window_ms
        remaining_ms = window_ms - (now_ms % window_ms)
        return remaining_ms / 1000.0

    def acquire(self, wait: bool = False, timeout: float = 30.0) -> bool:
        """Acquire a claim slot, optionally waiting for the next window.

        Args:
            wait: Whether to wait for availability.
            timeout: Maximum time to wait in seconds.

        Returns:
            True if acquired, False if not available (and not waiting).
        """
        start_time = self._clock()

        while True:
            if self.try_acquire():
                return True

            elapsed = self._clock() - start_time
            if not wait or elapsed >= timeout:
                return False

            time.sleep(min(self.retry_after(), max(timeout - elapsed, 0.0)))

    def __enter__(self) -> "ClaimRateLimiter":
        if not self.acquire():
            raise RateLimitExceeded(self.config.topic, self.retry_after())
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        # Claims are not returned to the window
        return None

    def get_stats(self) -> dict[str, Any]:
        """Get current rate limiter statistics.

        Returns:
            Dictionary with current state.
        """
        used_raw = self.redis.get(self._key()) if self.config.enabled else None
        used = int(used_raw) if used_raw else 0

        return {
            "topic": self.config.topic,
            "enabled": self.config.enabled,
            "max_claims": self.config.max_claims,
            "window_seconds": self.config.window_seconds,
            "claims_in_window": used,
            "claims_available": max(self.config.max_claims - used, 0),
        }

    def reset(self) -> None:
        """Clear the counter of the current window."""
        self.redis.delete(self._key())
