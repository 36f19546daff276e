"""Notification worker logic.

This service handles:
1. Re-reading the recipient so the *current* opt-out preference applies
2. Rendering the kind-specific template data
3. Delivery through the notifier, mapping failures onto retry or poison

The job payload carries a point-in-time copy of the recipient's email and
display name but never the preference; a user who opts out after the job
was queued receives nothing.

Usage:
    service = NotificationService(store=SqlRecordStore(db), notifier=get_notifier())
    outcome = service.process(payload)
    print(outcome.status)  # "sent", "opted_out" or "noop"
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from vigil_core.domain.errors import NotifierTransportError, PoisonJobError
from vigil_core.domain.models import Topic
from vigil_core.domain.schemas.jobs import NotificationJob, parse_job_payload
from vigil_core.domain.services.email_templates import EMAIL_TEMPLATES
from vigil_core.domain.services.store import RecordStore
from vigil_core.providers.base import Notifier

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class NotificationOutcome:
    """Result of processing a notification job.

    ``status`` is ``sent``, ``opted_out`` or ``noop`` (recipient gone).
    """

    status: str
    message_id: Optional[str] = None
    reason: Optional[str] = None


# =============================================================================
# SERVICE
# =============================================================================


class NotificationService:
    """Delivers moderation notifications."""

    def __init__(self, store: RecordStore, notifier: Notifier):
        """Initialize the notification service.

        Args:
            store: Record store used to re-read the recipient.
            notifier: Mail transport.
        """
        self.store = store
        self.notifier = notifier

    def template_data(self, payload: NotificationJob) -> dict[str, Any]:
        """Template variables for a notification."""
        data: dict[str, Any] = {"content_kind": payload.content_kind}
        if payload.reason:
            data["reason"] = payload.reason
        if payload.flagged_content_id is not None:
            data["flagged_content_id"] = payload.flagged_content_id
        return data

    def process(self, job: Union[NotificationJob, dict]) -> NotificationOutcome:
        """Send one notification if the recipient still wants it.

        Args:
            job: Notification payload.

        Returns:
            NotificationOutcome.

        Raises:
            InvalidJobPayload: Malformed payload.
            PoisonJobError: Unknown kind or permanently refused recipient.
            NotifierTransportError: Retryable transport failure.
        """
        payload = parse_job_payload(Topic.NOTIFICATION, job)
        recipient = payload.recipient

        user = self.store.get_user(recipient.id)
        if user is None:
            logger.info(f"Recipient {recipient.id} no longer exists, dropping {payload.kind}")
            return NotificationOutcome(status="noop", reason="recipient_missing")

        if not user.notify_on_moderation:
            logger.info(
                f"Email notifications disabled for user {user.id}. "
                f"Skipping {payload.kind} notification."
            )
            return NotificationOutcome(status="opted_out", reason="opted_out")

        if payload.kind not in EMAIL_TEMPLATES:
            raise PoisonJobError(f"no template for notification kind {payload.kind}")

        logger.info(f"Attempting to send '{payload.kind}' email to {recipient.email}")
        result = self.notifier.send(
            payload.kind,
            recipient.email,
            recipient.display_name,
            self.template_data(payload),
        )

        if result.success:
            return NotificationOutcome(status="sent", message_id=result.message_id)

        if result.retryable:
            raise NotifierTransportError(result.error_message or "delivery failed")

        raise PoisonJobError(
            f"{payload.kind} to {recipient.email} permanently rejected: {result.error_message}"
        )


__all__ = ["NotificationOutcome", "NotificationService"]
