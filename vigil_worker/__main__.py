"""Start a worker for one topic.

    python -m vigil_worker moderation
    python -m vigil_worker notification --concurrency 20
    python -m vigil_worker maintenance --beat
"""

import click

from vigil_core.config import get_settings
from vigil_core.domain.models import Topic

MAINTENANCE_QUEUE = "maintenance"


@click.command()
@click.argument("topic", type=click.Choice([*Topic.ALL, MAINTENANCE_QUEUE]))
@click.option("--concurrency", "-c", type=int, default=None, help="Pool size (default from settings)")
@click.option("--beat", is_flag=True, help="Also run the periodic scheduler")
def main(topic: str, concurrency: int, beat: bool):
    """Run a Celery worker bound to TOPIC's queue."""
    from vigil_worker.celery_app import app

    settings = get_settings()
    if concurrency is None:
        concurrency = 1 if topic == MAINTENANCE_QUEUE else settings.concurrency_for(topic)

    argv = [
        "worker",
        "--queues",
        topic,
        "--concurrency",
        str(concurrency),
        "--hostname",
        f"{topic}@%h",
        "--loglevel",
        settings.log_level,
    ]
    if beat:
        argv.append("--beat")

    app.worker_main(argv=argv)


if __name__ == "__main__":
    main()
