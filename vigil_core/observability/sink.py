"""Operational sink for job lifecycle events.

Every terminal or notable job event is written as a structured log record
and counted in the metrics collector, labelled by topic. Poison and dead
jobs are only ever reported here; nothing retries them automatically.
"""

from typing import Optional

from vigil_core.observability.logging import LogContext, StructuredLogger, get_logger
from vigil_core.observability.metrics import MetricsCollector, get_metrics

JOBS_COMPLETED = "jobs_completed_total"
JOBS_RETRIED = "jobs_retried_total"
JOBS_POISONED = "jobs_poisoned_total"
JOBS_DEAD = "jobs_dead_total"
JOBS_FATAL = "jobs_fatal_total"
JOBS_LEASE_EXPIRED = "jobs_lease_expired_total"
JOBS_LEASE_LOST = "jobs_lease_lost_total"
JOB_DURATION = "job_duration_seconds"


class OperationalSink:
    """Reports job outcomes to logs and metrics."""

    def __init__(
        self,
        metrics: Optional[MetricsCollector] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.metrics = metrics or get_metrics()
        self.logger = logger or get_logger("vigil.jobs")

    def _context(self, job_id: int, topic: str, attempts: Optional[int]) -> LogContext:
        return LogContext(job_id=job_id, topic=topic, attempt=attempts)

    def completed(
        self, job_id: int, topic: str, attempts: int, status: str, duration: float
    ) -> None:
        labels = {"topic": topic}
        self.metrics.increment(JOBS_COMPLETED, labels=labels)
        self.metrics.record_histogram(JOB_DURATION, duration, labels=labels)
        self.logger.info(
            f"Job {job_id} done ({status})",
            self._context(job_id, topic, attempts),
            outcome=status,
            duration_seconds=round(duration, 4),
        )

    def retrying(
        self, job_id: int, topic: str, attempts: int, error: str, retry_in: Optional[float]
    ) -> None:
        self.metrics.increment(JOBS_RETRIED, labels={"topic": topic})
        self.logger.warning(
            f"Job {job_id} failed, retrying in {retry_in}s",
            self._context(job_id, topic, attempts),
            error=error,
            retry_in=retry_in,
        )

    def dead(self, job_id: int, topic: str, attempts: int, error: str) -> None:
        self.metrics.increment(JOBS_DEAD, labels={"topic": topic})
        self.logger.error(
            f"Job {job_id} is dead after {attempts} attempts",
            self._context(job_id, topic, attempts),
            error=error,
        )

    def poisoned(self, job_id: int, topic: str, attempts: Optional[int], error: str) -> None:
        self.metrics.increment(JOBS_POISONED, labels={"topic": topic})
        self.logger.error(
            f"Job {job_id} discarded as poison",
            self._context(job_id, topic, attempts),
            error=error,
        )

    def fatal(self, job_id: int, topic: str, attempts: int, error: str) -> None:
        self.metrics.increment(JOBS_FATAL, labels={"topic": topic})
        self.metrics.increment(JOBS_DEAD, labels={"topic": topic})
        self.logger.critical(
            f"Job {job_id} hit an inconsistent state and was buried",
            self._context(job_id, topic, attempts),
            error=error,
        )

    def lease_expired(self, job_id: int, topic: str, attempts: int, dead: bool) -> None:
        self.metrics.increment(JOBS_LEASE_EXPIRED, labels={"topic": topic})
        if dead:
            self.dead(job_id, topic, attempts, "lease expired")
        else:
            self.logger.warning(
                f"Job {job_id} lease expired, released for retry",
                self._context(job_id, topic, attempts),
            )

    def lease_lost(self, job_id: int, topic: str, attempts: int) -> None:
        self.metrics.increment(JOBS_LEASE_LOST, labels={"topic": topic})
        self.logger.warning(
            f"Job {job_id} lost its lease, work rolled back",
            self._context(job_id, topic, attempts),
        )


__all__ = [
    "JOB_DURATION",
    "JOBS_COMPLETED",
    "JOBS_DEAD",
    "JOBS_FATAL",
    "JOBS_LEASE_EXPIRED",
    "JOBS_LEASE_LOST",
    "JOBS_POISONED",
    "JOBS_RETRIED",
    "OperationalSink",
]
