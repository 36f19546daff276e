"""Process-wide collaborators for worker tasks.

Providers, the Redis client and the dispatcher are built once per worker
process. Handlers are built per job, bound to that job's session.
"""

from functools import lru_cache
from typing import Optional

import redis
from sqlalchemy.orm import Session as DBSession

from vigil_core.config import get_settings
from vigil_core.domain.models import Topic
from vigil_core.domain.services.admin_action import AdminActionService
from vigil_core.domain.services.jobs import JobOptions, JobQueue
from vigil_core.domain.services.moderation import ModerationService
from vigil_core.domain.services.notification import NotificationService
from vigil_core.domain.services.store import SqlRecordStore
from vigil_core.infrastructure.dispatch import CeleryDispatcher
from vigil_core.infrastructure.rate_limiter import ClaimRateLimitConfig, ClaimRateLimiter
from vigil_core.observability.sink import OperationalSink
from vigil_core.providers.base import Classifier, Notifier
from vigil_core.providers.classifier import get_classifier
from vigil_core.providers.notifier import get_notifier
from vigil_worker.runner import HandlerFactory, JobRunner


@lru_cache
def classifier() -> Classifier:
    return get_classifier()


@lru_cache
def notifier() -> Notifier:
    return get_notifier()


@lru_cache
def redis_client() -> redis.Redis:
    return redis.Redis.from_url(get_settings().redis_url)


@lru_cache
def dispatcher() -> CeleryDispatcher:
    from vigil_worker.celery_app import app

    return CeleryDispatcher(app)


def rate_limiter(topic: str) -> Optional[ClaimRateLimiter]:
    """Claim rate limiter for a topic, or None when the topic is unlimited."""
    max_claims, window_seconds = get_settings().rate_limit_for(topic)
    if max_claims <= 0:
        return None
    return ClaimRateLimiter(
        redis_client(),
        ClaimRateLimitConfig(topic=topic, max_claims=max_claims, window_seconds=window_seconds),
    )


# =============================================================================
# HANDLERS
# =============================================================================


def moderation_handler(db: DBSession, queue: JobQueue):
    service = ModerationService(
        store=SqlRecordStore(db),
        classifier=classifier(),
        jobs=queue,
        min_length=get_settings().moderation_min_length,
        notification_options=JobOptions.from_settings(),
    )
    return service.process


def admin_action_handler(db: DBSession, queue: JobQueue):
    service = AdminActionService(
        store=SqlRecordStore(db),
        jobs=queue,
        notification_options=JobOptions.from_settings(),
    )
    return service.process


def notification_handler(db: DBSession, queue: JobQueue):
    service = NotificationService(store=SqlRecordStore(db), notifier=notifier())
    return service.process


HANDLERS: dict[str, HandlerFactory] = {
    Topic.MODERATION: moderation_handler,
    Topic.ADMIN_ACTION: admin_action_handler,
    Topic.NOTIFICATION: notification_handler,
}


def build_runner(topic: str) -> JobRunner:
    """Wire a JobRunner for ``topic`` from settings."""
    if topic not in HANDLERS:
        raise ValueError(f"Unknown topic: {topic}")

    return JobRunner(
        topic,
        HANDLERS[topic],
        dispatcher=dispatcher(),
        limiter=rate_limiter(topic),
        sink=OperationalSink(),
    )


__all__ = [
    "HANDLERS",
    "build_runner",
    "classifier",
    "dispatcher",
    "notifier",
    "rate_limiter",
    "redis_client",
]
