"""Redis-backed subject id to user id cache for identity sync.

Entries expire after ``ttl_seconds``. A stale entry (the user was deleted or
re-keyed) is harmless: ``IdentitySync`` verifies every hit against the store
and drops entries that no longer match.

Uses Redis keys:
- identity:subject:{subject_id} - Local user id
"""

import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

KEY_PREFIX = "identity:subject:"


class RedisProtocol(Protocol):
    """Subset of the Redis client the cache uses."""

    def get(self, key: str) -> Optional[bytes]: ...
    def setex(self, key: str, seconds: int, value: int) -> bool: ...
    def delete(self, *keys: str) -> int: ...


class RedisIdentityCache:
    """``IdentityCache`` stored in Redis, shared by every API process."""

    def __init__(self, redis: RedisProtocol, ttl_seconds: int = 3600, prefix: str = KEY_PREFIX):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, subject_id: str) -> str:
        return f"{self.prefix}{subject_id}"

    def get(self, subject_id: str) -> Optional[int]:
        raw = self.redis.get(self._key(subject_id))
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Dropping malformed identity cache entry for {subject_id}: {raw!r}")
            self.delete(subject_id)
            return None

    def set(self, subject_id: str, user_id: int) -> None:
        self.redis.setex(self._key(subject_id), self.ttl_seconds, user_id)

    def delete(self, subject_id: str) -> None:
        self.redis.delete(self._key(subject_id))


__all__ = ["KEY_PREFIX", "RedisIdentityCache"]
