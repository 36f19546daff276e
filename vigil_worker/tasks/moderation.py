"""Moderation job task.

Classifies submitted content and flags violations. See
``vigil_core.domain.services.moderation`` for the handler itself.
"""

from vigil_core.config import get_settings
from vigil_core.domain.models import Topic
from vigil_worker.celery_app import app
from vigil_worker.runtime import build_runner


@app.task(
    name="moderation.process_job",
    acks_late=True,
    max_retries=0,  # Retries are scheduled by the job ledger
    soft_time_limit=get_settings().job_lease_seconds,
)
def process_job(job_id: int) -> dict:
    """Claim and run moderation job ``job_id``.

    Args:
        job_id: Job named by the wake-up.

    Returns:
        Dictionary with the run status and, when the handler ran, its outcome.
    """
    return build_runner(Topic.MODERATION).run(job_id).to_dict()
