"""Celery application configuration for the Vigil worker."""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from vigil_core.config import get_settings
from vigil_core.domain.models import Topic
from vigil_core.infrastructure.dispatch import task_name_for
from vigil_core.observability.logging import configure_logging

settings = get_settings()

app = Celery(
    "vigil_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "vigil_worker.tasks.moderation",
        "vigil_worker.tasks.admin_action",
        "vigil_worker.tasks.notification",
        "vigil_worker.tasks.maintenance",
    ],
)

# Celery configuration
app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution: a wake-up is only acked once the runner has settled the job
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Time limits (seconds); job tasks override the soft limit with the lease
    task_soft_time_limit=settings.job_lease_seconds,
    task_time_limit=settings.job_lease_seconds * 2,
    # Retries are owned by the job ledger, never by Celery
    task_max_retries=0,
    # Queue routing: one queue per topic
    task_routes={
        **{task_name_for(topic): {"queue": topic} for topic in Topic.ALL},
        "maintenance.*": {"queue": "maintenance"},
    },
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Expire leases and re-send lost wake-ups
    "job-pump-periodic": {
        "task": "maintenance.pump",
        "schedule": settings.pump_interval_seconds,
        "args": (),
    },
    # Daily finished-job cleanup at 3 AM UTC
    "daily-job-cleanup": {
        "task": "maintenance.cleanup_finished_jobs",
        "schedule": crontab(hour=3, minute=0),
        "args": (settings.job_retention_days,),
    },
}


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="vigil-worker",
    )


if __name__ == "__main__":
    app.start()
