"""Typed job payloads."""

from vigil_core.domain.schemas.jobs import (
    AdminActionJob,
    JobPayload,
    ModerationJob,
    NotificationJob,
    Recipient,
    dump_job_payload,
    parse_job_payload,
)

__all__ = [
    "AdminActionJob",
    "JobPayload",
    "ModerationJob",
    "NotificationJob",
    "Recipient",
    "dump_job_payload",
    "parse_job_payload",
]
