"""Broker dispatch of job wake-ups.

The job row is the source of truth. A dispatch only tells a worker of the
job's topic that ``job_id`` may be claimable; a lost message delays the job
until the maintenance pump sends another one.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from celery import Celery

from vigil_core.config import get_settings

logger = logging.getLogger(__name__)


def task_name_for(topic: str) -> str:
    """Celery task name that processes jobs of a topic."""
    return f"{topic}.process_job"


class Dispatcher(ABC):
    """Sends wake-ups for committed jobs."""

    @abstractmethod
    def dispatch(self, topic: str, job_id: int, countdown: Optional[float] = None) -> None:
        """Wake a worker of ``topic`` for ``job_id``, optionally after a delay."""
        ...


class CeleryDispatcher(Dispatcher):
    """Dispatcher that publishes ``<topic>.process_job(job_id)`` via ``send_task``.

    Only needs the broker, so the core service can dispatch without importing
    the worker package.
    """

    def __init__(self, app: Optional[Celery] = None):
        if app is None:
            settings = get_settings()
            app = Celery(
                "vigil",
                broker=settings.celery_broker_url,
                backend=settings.celery_result_backend,
            )
            app.conf.update(
                task_serializer="json",
                accept_content=["json"],
                result_serializer="json",
                timezone="UTC",
                enable_utc=True,
            )
        self.app = app

    def dispatch(self, topic: str, job_id: int, countdown: Optional[float] = None) -> None:
        self.app.send_task(
            task_name_for(topic),
            args=[job_id],
            queue=topic,
            countdown=countdown if countdown and countdown > 0 else None,
        )
        logger.debug("Dispatched %s job %s (countdown=%s)", topic, job_id, countdown)
