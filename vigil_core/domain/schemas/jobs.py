"""Job payload schemas.

Each queue topic carries exactly one payload shape. Payloads are validated
when enqueued and again when a worker picks them up, so a malformed job is
rejected before it reaches a handler.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vigil_core.domain.errors import InvalidJobPayload
from vigil_core.domain.models import Topic

ContentKindLiteral = Literal["COMMENT", "REVIEW"]
AdminActionLiteral = Literal["APPROVE", "REJECT"]
NotificationKindLiteral = Literal["content-flagged", "content-approved", "content-rejected"]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ModerationJob(_Payload):
    """Classify one piece of content."""

    content_id: int = Field(..., ge=1)
    content_kind: ContentKindLiteral
    body: str
    author_id: int = Field(..., ge=1)


class AdminActionJob(_Payload):
    """Apply an administrator's decision to a flag."""

    flagged_content_id: int = Field(..., ge=1)
    action: AdminActionLiteral
    reason: Optional[str] = None
    acting_admin_id: int = Field(..., ge=1)


class Recipient(_Payload):
    """Point-in-time copy of the notified user's contact details."""

    id: int = Field(..., ge=1)
    email: str = Field(..., min_length=3)
    display_name: str


class NotificationJob(_Payload):
    """Tell a user about a moderation outcome."""

    kind: NotificationKindLiteral
    recipient: Recipient
    content_kind: ContentKindLiteral
    reason: Optional[str] = None
    flagged_content_id: Optional[int] = None


JobPayload = Union[ModerationJob, AdminActionJob, NotificationJob]

PAYLOAD_TYPES: dict[str, type[_Payload]] = {
    Topic.MODERATION: ModerationJob,
    Topic.ADMIN_ACTION: AdminActionJob,
    Topic.NOTIFICATION: NotificationJob,
}


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error["loc"]) or "payload"
        parts.append(f"{loc}: {error['msg']}")
    return "; ".join(parts)


def parse_job_payload(topic: str, payload) -> JobPayload:
    """Validate a raw payload for a topic.

    Args:
        topic: Queue topic name.
        payload: A dict, a payload model, or anything else (rejected).

    Returns:
        The typed payload.

    Raises:
        InvalidJobPayload: Unknown topic, wrong shape, unknown enum value or
            unexpected field.
    """
    payload_type = PAYLOAD_TYPES.get(topic)
    if payload_type is None:
        raise InvalidJobPayload(topic, "unknown topic")

    if isinstance(payload, payload_type):
        return payload
    if isinstance(payload, BaseModel):
        raise InvalidJobPayload(topic, f"expected {payload_type.__name__}")
    if not isinstance(payload, dict):
        raise InvalidJobPayload(topic, "payload must be a JSON object")

    try:
        return payload_type.model_validate(payload)
    except ValidationError as e:
        raise InvalidJobPayload(topic, _describe(e)) from e


def dump_job_payload(payload: JobPayload) -> dict:
    """Serialize a typed payload to its JSON wire form."""
    return payload.model_dump(mode="json", exclude_none=True)


__all__ = [
    "ModerationJob",
    "AdminActionJob",
    "NotificationJob",
    "Recipient",
    "JobPayload",
    "PAYLOAD_TYPES",
    "parse_job_payload",
    "dump_job_payload",
]
