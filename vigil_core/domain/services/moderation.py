"""Moderation worker logic.

Classifies submitted content and, on a violation, creates the flag and
queues the author's notification. Safe to run more than once for the same
job: a redelivery finds the existing flag and does nothing further.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from vigil_core.domain.models import Topic
from vigil_core.domain.schemas.jobs import ModerationJob, NotificationJob, Recipient, parse_job_payload
from vigil_core.domain.services.jobs import JobOptions, JobQueue
from vigil_core.domain.services.store import Inserted, RecordStore
from vigil_core.providers.base import Classifier
from vigil_core.providers.classifier import DEFAULT_VIOLATION_REASON

logger = logging.getLogger(__name__)

DEFAULT_MIN_LENGTH = 5


@dataclass(frozen=True)
class ModerationOutcome:
    """Result of moderating one piece of content.

    ``status`` is one of ``flagged``, ``already_flagged``, ``clean``,
    ``skipped`` or ``noop`` (the content or its author no longer exists).
    """

    status: str
    flagged: bool = False
    skipped: bool = False
    reason: Optional[str] = None
    flagged_content_id: Optional[int] = None
    notification_job_id: Optional[int] = None


class ModerationService:
    """Runs the moderation flow for one job."""

    def __init__(
        self,
        store: RecordStore,
        classifier: Classifier,
        jobs: JobQueue,
        min_length: int = DEFAULT_MIN_LENGTH,
        notification_options: Optional[JobOptions] = None,
    ):
        self.store = store
        self.classifier = classifier
        self.jobs = jobs
        self.min_length = min_length
        self.notification_options = notification_options

    def process(self, job: Union[ModerationJob, dict]) -> ModerationOutcome:
        """Moderate one piece of content.

        Args:
            job: Moderation payload.

        Returns:
            ModerationOutcome.

        Raises:
            InvalidJobPayload: Malformed payload.
            ClassifierUnavailable: Classifier failed transiently; retry.
        """
        payload = parse_job_payload(Topic.MODERATION, job)
        kind = payload.content_kind

        if len(payload.body.strip()) < self.min_length:
            logger.debug(f"Skipping {kind} {payload.content_id}: body too short")
            return ModerationOutcome(status="skipped", skipped=True, reason="too_short")

        content = self.store.get_content(payload.content_id, kind)
        if content is None:
            logger.info(f"{kind} {payload.content_id} no longer exists, nothing to moderate")
            return ModerationOutcome(status="noop", skipped=True, reason="content_missing")

        verdict = self.classifier.classify(payload.body)

        if verdict.unanalyzable:
            logger.warning(
                f"Classifier could not analyze {kind} {payload.content_id}: {verdict.reason}"
            )
            return ModerationOutcome(status="skipped", skipped=True, reason="unanalyzable")

        if not verdict.is_violation:
            return ModerationOutcome(status="clean")

        author = self.store.get_user(payload.author_id)
        if author is None:
            logger.info(f"Author {payload.author_id} of {kind} {payload.content_id} is gone")
            return ModerationOutcome(status="noop", reason="author_missing")

        reason = verdict.reason or DEFAULT_VIOLATION_REASON
        result = self.store.insert_flagged_content_if_absent(
            content_id=payload.content_id,
            content_kind=kind,
            author_id=author.id,
            reason=reason,
        )

        if not isinstance(result, Inserted):
            logger.info(f"{kind} {payload.content_id} already flagged, not notifying again")
            return ModerationOutcome(status="already_flagged", flagged=True, reason=reason)

        flag = result.row
        notification_job_id = self.jobs.enqueue(
            Topic.NOTIFICATION,
            NotificationJob(
                kind="content-flagged",
                recipient=Recipient(
                    id=author.id,
                    email=author.email,
                    display_name=author.display_name,
                ),
                content_kind=kind,
                reason=reason,
                flagged_content_id=flag.id,
            ),
            self.notification_options,
        )

        logger.info(
            f"Flagged {kind} {payload.content_id} as flag {flag.id} ({reason}), "
            f"notification job {notification_job_id}"
        )
        return ModerationOutcome(
            status="flagged",
            flagged=True,
            reason=reason,
            flagged_content_id=flag.id,
            notification_job_id=notification_job_id,
        )


__all__ = ["DEFAULT_MIN_LENGTH", "ModerationOutcome", "ModerationService"]
