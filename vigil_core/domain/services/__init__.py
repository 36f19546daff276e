"""Domain services for Vigil."""

from vigil_core.domain.services.admin_action import AdminActionOutcome, AdminActionService
from vigil_core.domain.services.content import ContentService
from vigil_core.domain.services.flags import FlagService
from vigil_core.domain.services.identity import IdentitySync
from vigil_core.domain.services.jobs import (
    BackoffPolicy,
    ClaimResult,
    FailureOutcome,
    JobOptions,
    JobQueue,
)
from vigil_core.domain.services.moderation import ModerationOutcome, ModerationService
from vigil_core.domain.services.notification import NotificationOutcome, NotificationService
from vigil_core.domain.services.store import (
    AlreadyExists,
    Inserted,
    RecordStore,
    SqlRecordStore,
    StatusUpdate,
)
from vigil_core.domain.services.users import UserService

__all__ = [
    "AdminActionOutcome",
    "AdminActionService",
    "AlreadyExists",
    "BackoffPolicy",
    "ClaimResult",
    "ContentService",
    "FailureOutcome",
    "FlagService",
    "IdentitySync",
    "Inserted",
    "JobOptions",
    "JobQueue",
    "ModerationOutcome",
    "ModerationService",
    "NotificationOutcome",
    "NotificationService",
    "RecordStore",
    "SqlRecordStore",
    "StatusUpdate",
    "UserService",
]
