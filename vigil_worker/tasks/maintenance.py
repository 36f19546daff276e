"""Maintenance tasks for the job ledger.

- ``maintenance.pump``: releases expired leases and re-sends wake-ups for
  due jobs whose last wake-up may have been lost.
- ``maintenance.cleanup_finished_jobs``: deletes old done/discarded jobs.
"""

import logging
from typing import Any, Optional

from sqlalchemy.orm import sessionmaker

from vigil_core.config import get_settings
from vigil_core.domain.services.jobs import JobQueue
from vigil_core.infra.db import get_sync_session_factory, session_scope
from vigil_core.infrastructure.dispatch import Dispatcher
from vigil_core.observability.metrics import collect_job_gauges
from vigil_core.observability.sink import OperationalSink
from vigil_worker.celery_app import app
from vigil_worker import runtime

logger = logging.getLogger(__name__)

PUMP_BATCH_SIZE = 100


def run_pump(
    session_factory: sessionmaker,
    dispatcher: Optional[Dispatcher],
    sink: OperationalSink,
    limit: int = PUMP_BATCH_SIZE,
) -> dict[str, Any]:
    """One pump pass.

    Wake-ups are sent only after the pass commits.

    Args:
        session_factory: Session factory for the pass.
        dispatcher: Dispatcher for re-sent wake-ups.
        sink: Operational sink for released leases.
        limit: Maximum wake-ups to re-send.

    Returns:
        Dictionary with released and re-dispatched job ids and job counts.
    """
    with session_scope(session_factory) as db:
        queue = JobQueue(db, dispatcher=dispatcher)
        released = queue.release_expired_leases()
        redispatched = [job.id for job in queue.due_for_dispatch(limit=limit)]
        gauges = collect_job_gauges(db, sink.metrics)

    for outcome in released:
        sink.lease_expired(outcome.job_id, outcome.topic, outcome.attempts, dead=outcome.is_dead)

    if released or redispatched:
        logger.info(
            "Pump released %d expired leases, re-dispatched %d jobs",
            len(released),
            len(redispatched),
        )

    return {
        "status": "success",
        "released": [outcome.job_id for outcome in released],
        "redispatched": redispatched,
        "jobs": gauges["topics"],
    }


@app.task(name="maintenance.pump")
def pump(limit: int = PUMP_BATCH_SIZE) -> dict:
    """Periodic job pump (Celery beat)."""
    return run_pump(
        get_sync_session_factory(),
        runtime.dispatcher(),
        OperationalSink(),
        limit=limit,
    )


@app.task(name="maintenance.cleanup_finished_jobs")
def cleanup_finished_jobs(retention_days: Optional[int] = None) -> dict:
    """Delete done and discarded jobs older than the retention window.

    Dead jobs are kept for operators to inspect or requeue.

    Args:
        retention_days: Days to keep finished jobs (default from settings).

    Returns:
        Dictionary with the number of deleted jobs.
    """
    if retention_days is None:
        retention_days = get_settings().job_retention_days

    with session_scope(get_sync_session_factory()) as db:
        deleted = JobQueue(db).cleanup_finished(older_than_days=retention_days)

    logger.info("Deleted %d finished jobs older than %d days", deleted, retention_days)
    return {"status": "success", "deleted": deleted, "retention_days": retention_days}
