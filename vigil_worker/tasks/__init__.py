"""Vigil worker tasks."""

# Import all tasks to register them with Celery
from vigil_worker.tasks import admin_action  # noqa: F401
from vigil_worker.tasks import maintenance  # noqa: F401
from vigil_worker.tasks import moderation  # noqa: F401
from vigil_worker.tasks import notification  # noqa: F401
