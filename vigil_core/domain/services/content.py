"""Content submission service.

The synchronous half of the pipeline: content is written and committed by
the caller regardless of whether the moderation job could be queued.
"""

import logging
from typing import Optional

from vigil_core.domain.errors import ContentNotFound, NotAuthorized
from vigil_core.domain.models import Content, ContentKind, Topic, User
from vigil_core.domain.schemas.jobs import ModerationJob
from vigil_core.domain.services.jobs import JobOptions, JobQueue
from vigil_core.domain.services.store import RecordStore

logger = logging.getLogger(__name__)


class ContentService:
    """Creates and edits comments and reviews."""

    def __init__(
        self,
        store: RecordStore,
        jobs: JobQueue,
        moderation_options: Optional[JobOptions] = None,
    ):
        """Initialize the content service.

        Args:
            store: Record store.
            jobs: Job queue sharing the store's session.
            moderation_options: Retry policy for moderation jobs.
        """
        self.store = store
        self.jobs = jobs
        self.moderation_options = moderation_options or JobOptions.from_settings(dedupe=True)

    def submit(
        self,
        author: User,
        kind: str,
        body: str,
        parent_post_id: Optional[int] = None,
    ) -> Content:
        """Create content and queue it for moderation.

        Args:
            author: The authenticated author.
            kind: COMMENT or REVIEW.
            body: Content text.
            parent_post_id: Post the content belongs to.

        Returns:
            The created Content.

        Raises:
            ValueError: Unknown kind or empty body.
        """
        if kind not in ContentKind.ALL:
            raise ValueError(f"unknown content kind: {kind}")
        if not body or not body.strip():
            raise ValueError("body must not be empty")

        content = self.store.insert_content(kind, body, author.id, parent_post_id)
        self._queue_moderation(content)
        return content

    def update_body(self, author: User, content_id: int, kind: str, body: str) -> Content:
        """Edit content and queue the new body for moderation.

        Raises:
            ContentNotFound: No such content.
            NotAuthorized: The editor is not the author.
            ValueError: Empty body.
        """
        if not body or not body.strip():
            raise ValueError("body must not be empty")

        content = self.store.get_content(content_id, kind)
        if content is None:
            raise ContentNotFound(content_id, kind)
        if content.author_id != author.id:
            raise NotAuthorized(f"user {author.id} cannot edit {kind.lower()} {content_id}")

        content = self.store.update_content_body(content_id, kind, body)
        self._queue_moderation(content)
        return content

    def _queue_moderation(self, content: Content) -> Optional[int]:
        """Enqueue moderation; failures are logged and never fail the write."""
        try:
            with self.jobs.db.begin_nested():
                job_id = self.jobs.enqueue(
                    Topic.MODERATION,
                    ModerationJob(
                        content_id=content.id,
                        content_kind=content.kind,
                        body=content.body,
                        author_id=content.author_id,
                    ),
                    self.moderation_options,
                )
        except Exception:
            logger.exception(
                f"Failed to queue moderation for {content.kind} {content.id}"
            )
            return None
        return job_id


__all__ = ["ContentService"]
