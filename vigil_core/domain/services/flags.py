"""Flagged content service.

Status queries through which moderation outcomes become visible, and the
synchronous admin entry point that queues decisions.
"""

import logging
from typing import Optional

from vigil_core.domain.errors import FlaggedContentNotFound, NotAuthorized
from vigil_core.domain.models import FlaggedContent, Topic, User, UserRole
from vigil_core.domain.schemas.jobs import AdminActionJob
from vigil_core.domain.services.jobs import JobOptions, JobQueue
from vigil_core.domain.services.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class FlagService:
    """Service for flagged content operations."""

    def __init__(
        self,
        store: RecordStore,
        jobs: JobQueue,
        admin_action_options: Optional[JobOptions] = None,
    ):
        """Initialize the flag service.

        Args:
            store: Record store.
            jobs: Job queue sharing the store's session.
            admin_action_options: Retry policy for admin-action jobs.
        """
        self.store = store
        self.jobs = jobs
        self.admin_action_options = admin_action_options

    def submit_decision(
        self,
        admin: User,
        flag_id: int,
        action: str,
        reason: Optional[str] = None,
    ) -> int:
        """Queue an APPROVE/REJECT decision.

        Args:
            admin: The acting user.
            flag_id: The flag to resolve.
            action: APPROVE or REJECT.
            reason: Optional rejection reason.

        Returns:
            The admin-action job id.

        Raises:
            NotAuthorized: The actor is not an admin.
            FlaggedContentNotFound: No such flag.
            InvalidJobPayload: Unknown action.
        """
        if admin.role != UserRole.ADMIN:
            raise NotAuthorized("only admins can review flagged content")

        if self.store.get_flagged_content(flag_id) is None:
            raise FlaggedContentNotFound(flag_id)

        job_id = self.jobs.enqueue(
            Topic.ADMIN_ACTION,
            {
                "flagged_content_id": flag_id,
                "action": action,
                "reason": reason,
                "acting_admin_id": admin.id,
            },
            self.admin_action_options,
        )
        logger.info(f"Admin {admin.id} queued {action} for flag {flag_id} as job {job_id}")
        return job_id

    def get(self, flag_id: int) -> FlaggedContent:
        """Get a flag by id.

        Raises:
            FlaggedContentNotFound: No such flag.
        """
        flag = self.store.get_flagged_content(flag_id)
        if flag is None:
            raise FlaggedContentNotFound(flag_id)
        return flag

    def list_for_author(
        self,
        author_id: int,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[FlaggedContent], int]:
        """Flags on one author's content, newest first."""
        return self.store.list_flagged_content(
            author_id=author_id,
            status=status,
            page=page,
            limit=_clamp(limit),
        )

    def list_all(
        self,
        status: Optional[str] = None,
        content_kind: Optional[str] = None,
        author_id: Optional[int] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> tuple[list[FlaggedContent], int]:
        """All flags, filtered and paginated, newest first."""
        return self.store.list_flagged_content(
            author_id=author_id,
            status=status,
            content_kind=content_kind,
            page=page,
            limit=_clamp(limit),
        )

    def stats(self) -> dict[str, int]:
        """Number of flags per status, plus ``total``."""
        counts = self.store.count_flagged_content_by_status()
        counts["total"] = sum(counts.values())
        return counts


def _clamp(limit: int) -> int:
    return max(1, min(limit, MAX_PAGE_SIZE))


__all__ = ["FlagService"]
