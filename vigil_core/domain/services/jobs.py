"""Job queue service for Vigil.

Durable, at-least-once work queue backed by the ``jobs`` table. Provides job
creation, deduplication, lease-based claiming, retry with exponential backoff
and status management.

A job row is the source of truth; a broker message is only a wake-up. When a
dispatcher is configured, wake-ups are sent after the enclosing transaction
commits and dropped if it rolls back, so a worker can never be woken for a
job it cannot see.
"""

import hashlib
import json
import logging
import traceback
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union

from sqlalchemy import event, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from vigil_core.config import get_settings
from vigil_core.domain.models import Job, JobStatus, utcnow
from vigil_core.domain.schemas.jobs import JobPayload, dump_job_payload, parse_job_payload
from vigil_core.infrastructure.dispatch import Dispatcher

logger = logging.getLogger(__name__)

# Maximum length for error messages
MAX_ERROR_LENGTH = 5000

BACKOFF_MULTIPLIER = 2

LEASE_EXPIRED_ERROR = "lease expired"


# =============================================================================
# POLICY
# =============================================================================


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: ``min(base * multiplier ** (attempt - 1), cap)``."""

    base_seconds: float = 1.0
    max_seconds: float = 60.0
    multiplier: float = BACKOFF_MULTIPLIER

    def delay(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt ``attempt`` (1-based)."""
        attempt = max(attempt, 1)
        return min(self.base_seconds * (self.multiplier ** (attempt - 1)), self.max_seconds)


@dataclass(frozen=True)
class JobOptions:
    """Per-job retry policy.

    Attributes:
        max_attempts: Attempts before the job is moved to ``dead``.
        backoff: Retry delay policy.
        run_at: Earliest time the job may run (naive UTC).
        dedupe: Return the existing job id if an identical payload is
            already pending on the topic.
    """

    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    run_at: Optional[datetime] = None
    dedupe: bool = False

    @classmethod
    def from_settings(cls, **overrides: Any) -> "JobOptions":
        settings = get_settings()
        values: dict[str, Any] = {
            "max_attempts": settings.job_max_attempts,
            "backoff": BackoffPolicy(
                base_seconds=settings.job_backoff_base_seconds,
                max_seconds=settings.job_backoff_max_seconds,
            ),
        }
        values.update(overrides)
        return cls(**values)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class ClaimResult:
    """Result of claiming a specific job by id."""

    CLAIMED = "claimed"
    NOT_FOUND = "not_found"
    NOT_CLAIMABLE = "not_claimable"
    NOT_DUE = "not_due"

    status: str
    job: Optional[Job] = None
    retry_after: Optional[float] = None

    @property
    def claimed(self) -> bool:
        return self.status == self.CLAIMED


@dataclass(frozen=True)
class FailureOutcome:
    """What happened to a job after a failed attempt.

    ``status`` is ``retrying`` or ``dead``. ``lease_lost`` is set when the
    caller no longer held the job's lease and nothing was changed.
    """

    job_id: int
    topic: str
    status: Optional[str]
    attempts: int
    max_attempts: int
    error: str
    retry_in: Optional[float] = None
    lease_lost: bool = False

    @property
    def is_dead(self) -> bool:
        return self.status == JobStatus.DEAD


# =============================================================================
# AFTER-COMMIT DISPATCH
# =============================================================================

_PENDING_KEY = "vigil.pending_dispatches"
_HOOKED_KEY = "vigil.dispatch_hooks"


def _current_transaction(db: DBSession):
    return db.get_nested_transaction() or db.get_transaction()


def _descends_from(transaction, ancestor) -> bool:
    while transaction is not None:
        if transaction is ancestor:
            return True
        transaction = transaction.parent
    return False


def _send_pending(session: DBSession) -> None:
    # Savepoint releases also fire after_commit; wait for the outermost commit
    if session.get_nested_transaction() is not None:
        return
    pending = session.info.pop(_PENDING_KEY, [])
    for _, dispatcher, topic, job_id, countdown in pending:
        try:
            dispatcher.dispatch(topic, job_id, countdown)
        except Exception:
            # The row is committed; the pump re-sends the wake-up later
            logger.exception("Failed to dispatch %s job %s", topic, job_id)


def _drop_rolled_back(session: DBSession, previous_transaction) -> None:
    pending = session.info.get(_PENDING_KEY)
    if pending:
        session.info[_PENDING_KEY] = [
            entry for entry in pending
            if not _descends_from(entry[0], previous_transaction)
        ]


def _drop_on_end(session: DBSession, transaction) -> None:
    if transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)


def _install_dispatch_hooks(db: DBSession) -> None:
    if db.info.get(_HOOKED_KEY):
        return
    event.listen(db, "after_commit", _send_pending)
    event.listen(db, "after_soft_rollback", _drop_rolled_back)
    event.listen(db, "after_transaction_end", _drop_on_end)
    db.info[_HOOKED_KEY] = True


# =============================================================================
# QUEUE
# =============================================================================


class JobQueue:
    """Service for job queue operations."""

    def __init__(
        self,
        db: DBSession,
        dispatcher: Optional[Dispatcher] = None,
        lease_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the job queue.

        Args:
            db: SQLAlchemy database session.
            dispatcher: Optional broker dispatcher for wake-ups.
            lease_seconds: Lease granted on claim (default from settings).
            clock: Source of naive UTC "now".
        """
        self.db = db
        self.dispatcher = dispatcher
        self.lease_seconds = lease_seconds or get_settings().job_lease_seconds
        self._clock = clock

        if dispatcher is not None:
            _install_dispatch_hooks(db)

    # -------------------------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------------------------

    def compute_dedupe_key(self, topic: str, payload: dict[str, Any]) -> str:
        """Compute a dedupe key from the topic and payload.

        Args:
            topic: The queue topic.
            payload: The serialized job payload.

        Returns:
            A hex string hash that uniquely identifies this topic/payload pair.
        """
        canonical = json.dumps(
            {"topic": topic, "payload": payload},
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode()).hexdigest()

    def enqueue(
        self,
        topic: str,
        payload: Union[dict[str, Any], JobPayload],
        options: Optional[JobOptions] = None,
    ) -> int:
        """Validate and persist a job, then schedule its wake-up.

        Args:
            topic: The queue topic.
            payload: Raw dict or typed payload for the topic.
            options: Retry policy (defaults from settings).

        Returns:
            The job id (an existing one when deduplicated).

        Raises:
            InvalidJobPayload: If the payload does not match the topic.
        """
        typed = parse_job_payload(topic, payload)
        body = dump_job_payload(typed)
        options = options or JobOptions.from_settings()

        if options.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        dedupe_key = None
        if options.dedupe:
            dedupe_key = self.compute_dedupe_key(topic, body)
            existing = self.get_job_by_dedupe_key(dedupe_key)
            if existing is not None:
                return existing.id

        now = self._clock()
        job = Job(
            topic=topic,
            payload_json=body,
            status=JobStatus.QUEUED,
            attempts=0,
            max_attempts=options.max_attempts,
            backoff_base_seconds=options.backoff.base_seconds,
            backoff_max_seconds=options.backoff.max_seconds,
            next_run_at=options.run_at,
            dedupe_key=dedupe_key,
            dispatched_at=now if self.dispatcher is not None else None,
            created_at=now,
            updated_at=now,
        )

        if dedupe_key is None:
            self.db.add(job)
            self.db.flush()
        else:
            try:
                with self.db.begin_nested():
                    self.db.add(job)
                    self.db.flush()
            except IntegrityError:
                existing = self.get_job_by_dedupe_key(dedupe_key)
                if existing is None:
                    raise
                return existing.id

        countdown = None
        if options.run_at is not None:
            countdown = max((options.run_at - now).total_seconds(), 0.0)
        self.schedule_dispatch(topic, job.id, countdown)

        logger.info("Enqueued %s job %s", topic, job.id)
        return job.id

    def schedule_dispatch(
        self, topic: str, job_id: int, countdown: Optional[float] = None
    ) -> None:
        """Send a wake-up for ``job_id`` once the current transaction commits."""
        if self.dispatcher is None:
            return
        self.db.info.setdefault(_PENDING_KEY, []).append(
            (_current_transaction(self.db), self.dispatcher, topic, job_id, countdown)
        )

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get_job(self, job_id: int) -> Optional[Job]:
        """Get a job by ID.

        Args:
            job_id: The job ID.

        Returns:
            The Job or None if not found.
        """
        return self.db.get(Job, job_id, populate_existing=True)

    def get_job_by_dedupe_key(self, dedupe_key: str) -> Optional[Job]:
        return self.db.query(Job).filter(Job.dedupe_key == dedupe_key).first()

    # -------------------------------------------------------------------------
    # Claim
    # -------------------------------------------------------------------------

    def _try_claim(self, job_id: int, now: datetime) -> Optional[Job]:
        """Compare-and-set a due job to ``running`` with a fresh lease."""
        token = uuid.uuid4().hex
        result = self.db.execute(
            update(Job)
            .where(
                Job.id == job_id,
                Job.status.in_(JobStatus.PENDING),
                or_(Job.next_run_at.is_(None), Job.next_run_at <= now),
            )
            .values(
                status=JobStatus.RUNNING,
                attempts=Job.attempts + 1,
                lease_token=token,
                lease_expires_at=now + timedelta(seconds=self.lease_seconds),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        job = self.get_job(job_id)
        if job is None or job.lease_token != token:
            return None
        return job

    def claim(self, topic: str) -> Optional[Job]:
        """Claim the oldest due job of a topic.

        Jobs are selected in FIFO order, respecting scheduled times.

        Args:
            topic: The queue topic.

        Returns:
            The claimed Job (status ``running``, lease set) or None.
        """
        now = self._clock()
        candidates = (
            self.db.query(Job.id)
            .filter(
                Job.topic == topic,
                Job.status.in_(JobStatus.PENDING),
                or_(Job.next_run_at.is_(None), Job.next_run_at <= now),
            )
            .order_by(Job.created_at.asc(), Job.id.asc())
            .limit(10)
            .all()
        )

        # Another worker may win a candidate; move on to the next one
        for (job_id,) in candidates:
            job = self._try_claim(job_id, now)
            if job is not None:
                return job

        return None

    def claim_job(self, job_id: int) -> ClaimResult:
        """Claim a specific job, as named by a broker wake-up.

        Args:
            job_id: The job ID.

        Returns:
            ClaimResult describing whether the job was claimed and, if not,
            why.
        """
        now = self._clock()
        job = self.get_job(job_id)
        if job is None:
            return ClaimResult(ClaimResult.NOT_FOUND)

        if job.status not in JobStatus.PENDING:
            return ClaimResult(ClaimResult.NOT_CLAIMABLE, job=job)

        if job.next_run_at is not None and job.next_run_at > now:
            return ClaimResult(
                ClaimResult.NOT_DUE,
                job=job,
                retry_after=(job.next_run_at - now).total_seconds(),
            )

        claimed = self._try_claim(job_id, now)
        if claimed is None:
            return ClaimResult(ClaimResult.NOT_CLAIMABLE, job=self.get_job(job_id))
        return ClaimResult(ClaimResult.CLAIMED, job=claimed)

    # -------------------------------------------------------------------------
    # Settle
    # -------------------------------------------------------------------------

    def _held(self, job: Job, require_unexpired: bool = False, now: Optional[datetime] = None):
        conditions = [
            Job.id == job.id,
            Job.status == JobStatus.RUNNING,
            Job.lease_token == job.lease_token,
        ]
        if require_unexpired:
            conditions.append(Job.lease_expires_at > (now or self._clock()))
        return conditions

    def ack(self, job: Job) -> bool:
        """Mark a claimed job as done.

        Clears the dedupe key to allow enqueueing the same payload later.

        Args:
            job: The job as returned by ``claim``/``claim_job``.

        Returns:
            True if the caller still held an unexpired lease. False means the
            lease was lost and the caller must roll back its work.
        """
        if job.lease_token is None:
            return False

        now = self._clock()
        result = self.db.execute(
            update(Job)
            .where(*self._held(job, require_unexpired=True, now=now))
            .values(
                status=JobStatus.DONE,
                lease_token=None,
                lease_expires_at=None,
                dedupe_key=None,
                last_error=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        return result.rowcount == 1

    def fail(
        self,
        job: Job,
        error: Union[str, Exception],
        include_traceback: bool = False,
    ) -> FailureOutcome:
        """Record a failed attempt.

        If attempts remain, marks the job as retrying with exponential
        backoff and schedules a delayed wake-up. Otherwise marks it dead.

        Args:
            job: The claimed job.
            error: The error message or exception.
            include_traceback: Whether to include traceback in error.

        Returns:
            FailureOutcome for the job.
        """
        error_str = self.serialize_error(error, include_traceback)
        now = self._clock()

        if job.attempts < job.max_attempts:
            delay = self.backoff_delay(job)
            values = dict(
                status=JobStatus.RETRYING,
                next_run_at=now + timedelta(seconds=delay),
                dispatched_at=now,
            )
        else:
            delay = None
            values = dict(status=JobStatus.DEAD, dedupe_key=None)

        result = self.db.execute(
            update(Job)
            .where(*self._held(job))
            .values(
                lease_token=None,
                lease_expires_at=None,
                last_error=error_str,
                updated_at=now,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.flush()

        if result.rowcount != 1:
            logger.warning("Job %s lease lost before failure could be recorded", job.id)
            return FailureOutcome(
                job_id=job.id,
                topic=job.topic,
                status=None,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                error=error_str,
                lease_lost=True,
            )

        if delay is not None:
            self.schedule_dispatch(job.topic, job.id, delay)

        return FailureOutcome(
            job_id=job.id,
            topic=job.topic,
            status=values["status"],
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            error=error_str,
            retry_in=delay,
        )

    def _terminate(self, job: Job, status: str, error: Union[str, Exception]) -> bool:
        now = self._clock()
        result = self.db.execute(
            update(Job)
            .where(*self._held(job))
            .values(
                status=status,
                lease_token=None,
                lease_expires_at=None,
                dedupe_key=None,
                last_error=self.serialize_error(error),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        return result.rowcount == 1

    def discard(self, job: Job, error: Union[str, Exception]) -> bool:
        """Settle a poison job as ``discarded`` without retrying.

        Returns:
            True if the caller held the lease.
        """
        return self._terminate(job, JobStatus.DISCARDED, error)

    def bury(self, job: Job, error: Union[str, Exception]) -> bool:
        """Move a job to ``dead`` regardless of remaining attempts.

        Returns:
            True if the caller held the lease.
        """
        return self._terminate(job, JobStatus.DEAD, error)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def release_expired_leases(self, now: Optional[datetime] = None) -> list[FailureOutcome]:
        """Count expired leases as failed attempts.

        A running job whose lease expired is retried with backoff or, when
        its attempts are exhausted, moved to ``dead``.

        Args:
            now: Reference time (default: now).

        Returns:
            One FailureOutcome per released job.
        """
        now = now or self._clock()
        expired = (
            self.db.query(Job)
            .filter(
                Job.status == JobStatus.RUNNING,
                Job.lease_expires_at.is_not(None),
                Job.lease_expires_at <= now,
            )
            .order_by(Job.lease_expires_at.asc())
            .all()
        )

        outcomes = []
        for job in expired:
            if job.attempts < job.max_attempts:
                delay = self.backoff_delay(job)
                values = dict(
                    status=JobStatus.RETRYING,
                    next_run_at=now + timedelta(seconds=delay),
                    dispatched_at=now,
                )
            else:
                delay = None
                values = dict(status=JobStatus.DEAD, dedupe_key=None)

            result = self.db.execute(
                update(Job)
                .where(
                    Job.id == job.id,
                    Job.status == JobStatus.RUNNING,
                    Job.lease_token == job.lease_token,
                )
                .values(
                    lease_token=None,
                    lease_expires_at=None,
                    last_error=LEASE_EXPIRED_ERROR,
                    updated_at=now,
                    **values,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                continue

            if delay is not None:
                self.schedule_dispatch(job.topic, job.id, delay)

            outcomes.append(
                FailureOutcome(
                    job_id=job.id,
                    topic=job.topic,
                    status=values["status"],
                    attempts=job.attempts,
                    max_attempts=job.max_attempts,
                    error=LEASE_EXPIRED_ERROR,
                    retry_in=delay,
                )
            )

        self.db.flush()
        return outcomes

    def due_for_dispatch(
        self,
        limit: int = 100,
        redispatch_after: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[Job]:
        """Find due jobs whose last wake-up may have been lost.

        Stamps ``dispatched_at`` on the returned jobs and, when a dispatcher
        is configured, schedules a wake-up for each.

        Args:
            limit: Maximum number of jobs to return.
            redispatch_after: Seconds after which a wake-up is considered
                lost (default from settings).
            now: Reference time (default: now).

        Returns:
            The jobs to wake up.
        """
        now = now or self._clock()
        if redispatch_after is None:
            redispatch_after = get_settings().redispatch_after_seconds
        stale_before = now - timedelta(seconds=redispatch_after)

        jobs = (
            self.db.query(Job)
            .filter(
                Job.status.in_(JobStatus.PENDING),
                or_(Job.next_run_at.is_(None), Job.next_run_at <= now),
                or_(Job.dispatched_at.is_(None), Job.dispatched_at <= stale_before),
            )
            .order_by(Job.created_at.asc(), Job.id.asc())
            .limit(limit)
            .all()
        )

        for job in jobs:
            job.dispatched_at = now
            self.schedule_dispatch(job.topic, job.id)

        self.db.flush()
        return jobs

    def backoff_delay(self, job: Job) -> float:
        """Retry delay for the attempt ``job`` just used up."""
        policy = BackoffPolicy(
            base_seconds=job.backoff_base_seconds,
            max_seconds=job.backoff_max_seconds,
        )
        return policy.delay(job.attempts)

    def serialize_error(
        self,
        error: Union[str, Exception],
        include_traceback: bool = False,
    ) -> str:
        """Serialize an error to a string suitable for storage.

        Args:
            error: The error message or exception.
            include_traceback: Whether to include traceback.

        Returns:
            Serialized error string (truncated if too long).
        """
        if isinstance(error, str):
            error_str = error
        elif isinstance(error, Exception):
            if include_traceback:
                error_str = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
            else:
                error_str = f"{type(error).__name__}: {error}"
        else:
            error_str = str(error)

        # Truncate if too long
        if len(error_str) > MAX_ERROR_LENGTH:
            error_str = error_str[: MAX_ERROR_LENGTH - 3] + "..."

        return error_str

    # -------------------------------------------------------------------------
    # Operator functions
    # -------------------------------------------------------------------------

    def list_jobs(
        self,
        topic: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> list[Job]:
        """List jobs with optional filtering, newest first.

        Args:
            topic: Filter by topic.
            status: Filter by status.
            limit: Maximum number of jobs to return.

        Returns:
            List of matching jobs.
        """
        query = self.db.query(Job)

        if topic:
            query = query.filter(Job.topic == topic)
        if status:
            query = query.filter(Job.status == status)

        query = query.order_by(Job.created_at.desc(), Job.id.desc())

        return query.limit(limit).all()

    def count_by_status(self, topic: Optional[str] = None) -> dict[str, int]:
        """Count jobs per status.

        Args:
            topic: Optional topic filter.

        Returns:
            Mapping of every job status to its count.
        """
        counts = {status: 0 for status in JobStatus.ALL}
        query = self.db.query(Job.status, func.count(Job.id))
        if topic:
            query = query.filter(Job.topic == topic)
        for status, count in query.group_by(Job.status).all():
            counts[status] = count
        return counts

    def requeue(self, job_id: int, max_attempts: Optional[int] = None) -> Job:
        """Requeue a dead or discarded job with a fresh attempt budget.

        Args:
            job_id: The job ID.
            max_attempts: New max attempts (default: keep existing).

        Returns:
            The requeued job.

        Raises:
            ValueError: If the job does not exist or is not dead/discarded.
        """
        job = self.get_job(job_id)
        if job is None:
            raise ValueError(f"Job {job_id} not found")

        if job.status not in (JobStatus.DEAD, JobStatus.DISCARDED):
            raise ValueError(
                f"Can only requeue dead or discarded jobs, got status '{job.status}'"
            )

        now = self._clock()
        job.status = JobStatus.QUEUED
        job.attempts = 0
        job.last_error = None
        job.next_run_at = None
        job.lease_token = None
        job.lease_expires_at = None
        job.dispatched_at = now if self.dispatcher is not None else None
        job.updated_at = now
        if max_attempts is not None:
            job.max_attempts = max_attempts

        self.db.flush()
        self.schedule_dispatch(job.topic, job.id)
        return job

    def cleanup_finished(
        self,
        older_than_days: int = 30,
        statuses: Optional[list[str]] = None,
    ) -> int:
        """Delete old finished jobs.

        Args:
            older_than_days: Delete jobs last updated before this many days ago.
            statuses: Statuses to clean up (default: done, discarded).

        Returns:
            Number of jobs deleted.
        """
        if statuses is None:
            statuses = [JobStatus.DONE, JobStatus.DISCARDED]

        cutoff = self._clock() - timedelta(days=older_than_days)

        result = (
            self.db.query(Job)
            .filter(
                Job.status.in_(statuses),
                Job.updated_at < cutoff,
            )
            .delete(synchronize_session=False)
        )

        self.db.flush()
        return result


__all__ = [
    "BackoffPolicy",
    "ClaimResult",
    "FailureOutcome",
    "JobOptions",
    "JobQueue",
    "LEASE_EXPIRED_ERROR",
    "MAX_ERROR_LENGTH",
]
