"""Vigil worker: Celery tasks that run moderation pipeline jobs."""
