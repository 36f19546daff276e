"""Job runner: claim, execute, settle.

The runner is the only code that calls ``claim``/``ack``/``fail`` on the job
queue. Each wake-up is handled in three steps:

1. Claim the job in its own committed transaction (optionally gated by the
   topic's claim rate limiter).
2. Run the handler and ``ack`` in a single transaction. If ``ack`` reports a
   lost lease the handler's writes are rolled back.
3. On error, roll back and settle the job in a fresh transaction according
   to the error taxonomy:

   - ``PoisonJobError`` (including ``InvalidJobPayload``): discarded
   - ``InconsistentStateError``: buried as dead, reported as fatal, re-raised
   - anything else: failed, so it is retried with backoff or goes dead
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session as DBSession, sessionmaker

from vigil_core.domain.errors import InconsistentStateError, PoisonJobError
from vigil_core.domain.models import Job, utcnow
from vigil_core.domain.schemas.jobs import JobPayload, parse_job_payload
from vigil_core.domain.services.jobs import ClaimResult, JobQueue
from vigil_core.infra.db import get_sync_session_factory
from vigil_core.infrastructure.dispatch import Dispatcher
from vigil_core.infrastructure.rate_limiter import ClaimRateLimiter
from vigil_core.observability.sink import OperationalSink

logger = logging.getLogger(__name__)

# Builds the handler for one job, bound to the job's session and queue
HandlerFactory = Callable[[DBSession, JobQueue], Callable[[JobPayload], Any]]


@dataclass(frozen=True)
class RunResult:
    """What a single wake-up did."""

    DONE = "done"
    RETRYING = "retrying"
    DEAD = "dead"
    DISCARDED = "discarded"
    LEASE_LOST = "lease_lost"
    NOT_FOUND = "not_found"
    NOT_CLAIMABLE = "not_claimable"
    DEFERRED = "deferred"
    RATE_LIMITED = "rate_limited"

    status: str
    job_id: int
    outcome: Any = None
    error: Optional[str] = None
    retry_in: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status, "job_id": self.job_id}
        outcome_status = getattr(self.outcome, "status", None)
        if outcome_status is not None:
            result["outcome"] = outcome_status
        if self.error:
            result["error"] = self.error
        if self.retry_in is not None:
            result["retry_in"] = self.retry_in
        return result


class JobRunner:
    """Executes jobs of one topic."""

    def __init__(
        self,
        topic: str,
        handler_factory: HandlerFactory,
        session_factory: Optional[sessionmaker] = None,
        dispatcher: Optional[Dispatcher] = None,
        limiter: Optional[ClaimRateLimiter] = None,
        sink: Optional[OperationalSink] = None,
        lease_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the runner.

        Args:
            topic: Topic this runner serves.
            handler_factory: Builds the handler for a job's session.
            session_factory: SQLAlchemy session factory (default: global).
            dispatcher: Broker dispatcher for follow-up wake-ups.
            limiter: Optional claim rate limiter for the topic.
            sink: Operational sink (default: logs + global metrics).
            lease_seconds: Lease granted on claim (default from settings).
            clock: Source of naive UTC "now".
        """
        self.topic = topic
        self.handler_factory = handler_factory
        self.session_factory = session_factory or get_sync_session_factory()
        self.dispatcher = dispatcher
        self.limiter = limiter
        self.sink = sink or OperationalSink()
        self.lease_seconds = lease_seconds
        self._clock = clock

    def _queue(self, db: DBSession) -> JobQueue:
        return JobQueue(
            db,
            dispatcher=self.dispatcher,
            lease_seconds=self.lease_seconds,
            clock=self._clock,
        )

    def _redispatch(self, job_id: int, countdown: Optional[float]) -> None:
        if self.dispatcher is None:
            return
        try:
            self.dispatcher.dispatch(self.topic, job_id, countdown)
        except Exception:
            # The pump picks the job up once the wake-up is considered lost
            logger.exception("Failed to re-dispatch %s job %s", self.topic, job_id)

    def run(self, job_id: int) -> RunResult:
        """Handle one wake-up for ``job_id``.

        Args:
            job_id: Job named by the wake-up.

        Returns:
            RunResult describing what happened.

        Raises:
            InconsistentStateError: After the job has been buried.
        """
        if self.limiter is not None and not self.limiter.try_acquire():
            retry_in = self.limiter.retry_after()
            logger.debug("Claim rate limit hit for %s, deferring job %s", self.topic, job_id)
            self._redispatch(job_id, retry_in)
            return RunResult(RunResult.RATE_LIMITED, job_id, retry_in=retry_in)

        db = self.session_factory()
        try:
            queue = self._queue(db)
            claim = queue.claim_job(job_id)
            if claim.claimed:
                # Detach so the claimed lease token survives commits and rollbacks
                db.expunge(claim.job)
            db.commit()

            if claim.status == ClaimResult.NOT_DUE:
                self._redispatch(job_id, claim.retry_after)
                return RunResult(RunResult.DEFERRED, job_id, retry_in=claim.retry_after)

            if claim.status == ClaimResult.NOT_FOUND:
                logger.warning("Job %s not found, dropping wake-up", job_id)
                return RunResult(RunResult.NOT_FOUND, job_id)

            if not claim.claimed:
                # Duplicate wake-up, or the job is held or settled elsewhere
                logger.debug("Job %s not claimable", job_id)
                return RunResult(RunResult.NOT_CLAIMABLE, job_id)

            job = claim.job
            if job.topic != self.topic:
                logger.warning(
                    "Job %s belongs to topic %s, not %s", job_id, job.topic, self.topic
                )

            return self._execute(db, queue, job)
        finally:
            db.close()

    def _execute(self, db: DBSession, queue: JobQueue, job: Job) -> RunResult:
        started = time.monotonic()

        try:
            payload = parse_job_payload(job.topic, job.payload_json)
            handler = self.handler_factory(db, queue)
            outcome = handler(payload)

            if not queue.ack(job):
                db.rollback()
                self.sink.lease_lost(job.id, job.topic, job.attempts)
                return RunResult(RunResult.LEASE_LOST, job.id, outcome=outcome)

            db.commit()
        except PoisonJobError as exc:
            db.rollback()
            return self._discard(db, queue, job, exc)
        except InconsistentStateError as exc:
            db.rollback()
            self._bury(db, queue, job, exc)
            raise
        except Exception as exc:
            db.rollback()
            return self._fail(db, queue, job, exc)

        self.sink.completed(
            job.id,
            job.topic,
            job.attempts,
            getattr(outcome, "status", RunResult.DONE),
            time.monotonic() - started,
        )
        return RunResult(RunResult.DONE, job.id, outcome=outcome)

    def _discard(self, db: DBSession, queue: JobQueue, job: Job, exc: Exception) -> RunResult:
        error = queue.serialize_error(exc)
        held = queue.discard(job, error)
        db.commit()

        if not held:
            self.sink.lease_lost(job.id, job.topic, job.attempts)
            return RunResult(RunResult.LEASE_LOST, job.id, error=error)

        self.sink.poisoned(job.id, job.topic, job.attempts, error)
        return RunResult(RunResult.DISCARDED, job.id, error=error)

    def _bury(self, db: DBSession, queue: JobQueue, job: Job, exc: Exception) -> None:
        error = queue.serialize_error(exc)
        held = queue.bury(job, error)
        db.commit()

        if held:
            self.sink.fatal(job.id, job.topic, job.attempts, error)
        else:
            self.sink.lease_lost(job.id, job.topic, job.attempts)

    def _fail(self, db: DBSession, queue: JobQueue, job: Job, exc: Exception) -> RunResult:
        failure = queue.fail(job, exc)
        db.commit()

        if failure.lease_lost:
            self.sink.lease_lost(job.id, job.topic, job.attempts)
            return RunResult(RunResult.LEASE_LOST, job.id, error=failure.error)

        if failure.is_dead:
            self.sink.dead(job.id, job.topic, job.attempts, failure.error)
            return RunResult(RunResult.DEAD, job.id, error=failure.error)

        self.sink.retrying(job.id, job.topic, job.attempts, failure.error, failure.retry_in)
        return RunResult(
            RunResult.RETRYING, job.id, error=failure.error, retry_in=failure.retry_in
        )


__all__ = ["HandlerFactory", "JobRunner", "RunResult"]
