"""API dependencies for dependency injection."""

import secrets
from functools import lru_cache
from typing import Annotated, Optional

import redis
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from vigil_core.config import get_settings
from vigil_core.domain.services.identity import IdentitySync
from vigil_core.domain.services.jobs import JobQueue
from vigil_core.domain.services.store import SqlRecordStore
from vigil_core.infra.db import get_sync_session_factory
from vigil_core.infrastructure.dispatch import CeleryDispatcher, Dispatcher
from vigil_core.infrastructure.identity_cache import RedisIdentityCache
from vigil_core.providers.base import IdentityProvider
from vigil_core.providers.identity import get_identity_provider


def get_db() -> Session:
    """Get a database session."""
    session_factory = get_sync_session_factory()
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@lru_cache
def get_dispatcher() -> Dispatcher:
    """Get the broker dispatcher."""
    return CeleryDispatcher()


def get_job_queue(
    db: Annotated[Session, Depends(get_db)],
    dispatcher: Annotated[Dispatcher, Depends(get_dispatcher)],
) -> JobQueue:
    """Get the job queue."""
    return JobQueue(db, dispatcher=dispatcher)


@lru_cache
def get_redis() -> redis.Redis:
    return redis.Redis.from_url(get_settings().redis_url)


@lru_cache
def get_identity_provider_client() -> IdentityProvider:
    return get_identity_provider()


def get_identity_sync(db: Annotated[Session, Depends(get_db)]) -> IdentitySync:
    """Identity sync bound to the request session, cached in Redis when enabled."""
    ttl = get_settings().identity_cache_ttl_seconds
    cache = RedisIdentityCache(get_redis(), ttl_seconds=ttl) if ttl > 0 else None
    return IdentitySync(SqlRecordStore(db), get_identity_provider_client(), cache=cache)


def require_ops_token(
    x_ops_token: Annotated[Optional[str], Header()] = None,
) -> None:
    """Check the operations token when one is configured.

    Raises:
        HTTPException: If the token is missing or wrong.
    """
    expected = get_settings().ops_api_token
    if not expected:
        return
    if not x_ops_token or not secrets.compare_digest(x_ops_token, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid operations token",
        )


# Type aliases for cleaner route signatures
DBSession = Annotated[Session, Depends(get_db)]
JobQueueDep = Annotated[JobQueue, Depends(get_job_queue)]
IdentitySyncDep = Annotated[IdentitySync, Depends(get_identity_sync)]
