"""Admin action job task."""

from vigil_core.config import get_settings
from vigil_core.domain.models import Topic
from vigil_worker.celery_app import app
from vigil_worker.runtime import build_runner


@app.task(
    name="admin-action.process_job",
    acks_late=True,
    max_retries=0,
    soft_time_limit=get_settings().job_lease_seconds,
)
def process_job(job_id: int) -> dict:
    """Claim and apply admin decision job ``job_id``."""
    return build_runner(Topic.ADMIN_ACTION).run(job_id).to_dict()
