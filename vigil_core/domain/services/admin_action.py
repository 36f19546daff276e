"""Admin action worker logic.

Applies an administrator's APPROVE/REJECT decision to a pending flag with a
compare-and-set, and queues the author's notification only when this job is
the one that changed the status.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from vigil_core.domain.models import FlagStatus, Topic
from vigil_core.domain.schemas.jobs import AdminActionJob, NotificationJob, Recipient, parse_job_payload
from vigil_core.domain.services.jobs import JobOptions, JobQueue
from vigil_core.domain.services.store import RecordStore, StatusUpdate

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "Content rejected by moderator."

TARGET_STATUS = {
    "APPROVE": FlagStatus.APPROVED,
    "REJECT": FlagStatus.REJECTED,
}

NOTIFICATION_KIND = {
    FlagStatus.APPROVED: "content-approved",
    FlagStatus.REJECTED: "content-rejected",
}


@dataclass(frozen=True)
class AdminActionOutcome:
    """Result of applying one decision.

    ``status`` is ``updated``, ``already_in_state``, ``conflict`` or
    ``noop`` (the flag is gone).
    """

    status: str
    flag_status: Optional[str] = None
    notification_job_id: Optional[int] = None


class AdminActionService:
    """Runs the admin-action flow for one job."""

    def __init__(
        self,
        store: RecordStore,
        jobs: JobQueue,
        notification_options: Optional[JobOptions] = None,
    ):
        self.store = store
        self.jobs = jobs
        self.notification_options = notification_options

    def process(self, job: Union[AdminActionJob, dict]) -> AdminActionOutcome:
        """Apply an admin decision.

        Args:
            job: Admin action payload.

        Returns:
            AdminActionOutcome.

        Raises:
            InvalidJobPayload: Malformed payload.
        """
        payload = parse_job_payload(Topic.ADMIN_ACTION, job)

        flag = self.store.get_flagged_content(payload.flagged_content_id)
        if flag is None:
            logger.info(f"Flag {payload.flagged_content_id} not found, ignoring {payload.action}")
            return AdminActionOutcome(status="noop")

        target = TARGET_STATUS[payload.action]
        resolution_reason = None
        if target == FlagStatus.REJECTED:
            resolution_reason = payload.reason or flag.reason or DEFAULT_REJECTION_REASON

        update = self.store.update_flagged_content_status_if_pending(
            flag.id,
            target,
            reviewed_by_id=payload.acting_admin_id,
            resolution_reason=resolution_reason,
        )

        if update is StatusUpdate.NOT_FOUND:
            return AdminActionOutcome(status="noop")

        if update is StatusUpdate.ALREADY_IN_STATE:
            logger.info(f"Flag {flag.id} already {target}, duplicate delivery")
            return AdminActionOutcome(status="already_in_state", flag_status=target)

        if update is StatusUpdate.CONFLICT:
            logger.warning(
                f"Stale decision {payload.action} by admin {payload.acting_admin_id} "
                f"for flag {flag.id}: already resolved differently"
            )
            return AdminActionOutcome(status="conflict")

        author = flag.author
        notification_job_id = self.jobs.enqueue(
            Topic.NOTIFICATION,
            NotificationJob(
                kind=NOTIFICATION_KIND[target],
                recipient=Recipient(
                    id=author.id,
                    email=author.email,
                    display_name=author.display_name,
                ),
                content_kind=flag.content_kind,
                reason=resolution_reason,
                flagged_content_id=flag.id,
            ),
            self.notification_options,
        )

        logger.info(
            f"Flag {flag.id} {target} by admin {payload.acting_admin_id}, "
            f"notification job {notification_job_id}"
        )
        return AdminActionOutcome(
            status="updated",
            flag_status=target,
            notification_job_id=notification_job_id,
        )


__all__ = ["AdminActionOutcome", "AdminActionService", "DEFAULT_REJECTION_REASON"]
