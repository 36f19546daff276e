"""Error taxonomy for the moderation pipeline.

The job runner classifies handler failures by exception type:

- ``PoisonJobError`` (and ``InvalidJobPayload``): the job can never succeed.
  It is discarded without retry.
- ``InconsistentStateError``: an invariant that should be impossible was
  violated. The job is buried and the error escalated.
- Anything else is transient and retried with backoff.

Unique-constraint conflicts are not errors at all; the store reports them as
``AlreadyExists`` results.
"""


class VigilError(Exception):
    """Base exception for all Vigil errors."""

    pass


# =============================================================================
# JOB CLASSIFICATION
# =============================================================================


class PoisonJobError(VigilError):
    """The job cannot be processed no matter how often it is retried."""

    pass


class InvalidJobPayload(PoisonJobError):
    """Job payload does not match its topic's schema."""

    def __init__(self, topic: str, detail: str):
        self.topic = topic
        self.detail = detail
        super().__init__(f"invalid {topic} payload: {detail}")


class InconsistentStateError(VigilError):
    """An invariant of the store was violated; retrying will not help."""

    pass


# =============================================================================
# IDENTITY
# =============================================================================


class IdentityProviderError(VigilError):
    """The identity provider could not be reached or returned an error."""

    pass


class IdentitySubjectNotFound(IdentityProviderError):
    """The identity provider has no record of the subject."""

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(f"subject {subject_id} not found at identity provider")


class IdentityProfileIncomplete(VigilError):
    """The external profile has no usable primary email address."""

    pass


class IdentitySyncInconsistent(InconsistentStateError):
    """Insert reported a duplicate but the existing row cannot be read back."""

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(
            f"user for subject {subject_id} reported as existing but not found"
        )


# =============================================================================
# PROVIDERS
# =============================================================================


class ClassifierUnavailable(VigilError):
    """Transient classifier failure (network, timeout, throttling, 5xx)."""

    pass


class ClassifierResponseError(ClassifierUnavailable):
    """Classifier answered with a body that could not be interpreted."""

    pass


class NotifierTransportError(VigilError):
    """Retryable mail transport failure."""

    pass


# =============================================================================
# SYNCHRONOUS ENTRY POINTS
# =============================================================================


class NotAuthorized(VigilError):
    """The acting user lacks the required role."""

    pass


class UserNotFound(VigilError):
    """No user with the given id."""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"user {user_id} not found")


class ContentNotFound(VigilError):
    """No content with the given id and kind."""

    def __init__(self, content_id: int, kind: str):
        self.content_id = content_id
        self.kind = kind
        super().__init__(f"{kind.lower()} {content_id} not found")


class FlaggedContentNotFound(VigilError):
    """No flagged content with the given id."""

    def __init__(self, flag_id: int):
        self.flag_id = flag_id
        super().__init__(f"flagged content {flag_id} not found")


__all__ = [
    "VigilError",
    "PoisonJobError",
    "InvalidJobPayload",
    "InconsistentStateError",
    "IdentityProviderError",
    "IdentitySubjectNotFound",
    "IdentityProfileIncomplete",
    "IdentitySyncInconsistent",
    "ClassifierUnavailable",
    "ClassifierResponseError",
    "NotifierTransportError",
    "NotAuthorized",
    "UserNotFound",
    "ContentNotFound",
    "FlaggedContentNotFound",
]
