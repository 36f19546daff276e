"""Provider interfaces and DTOs.

This module defines the interfaces of the external collaborators the
pipeline depends on, along with the normalized data transfer objects they
exchange:

- Verdict: Classifier decision for one text
- ExternalProfile / ExternalEmailAddress: Identity provider user record
- DeliveryResult: Outcome of one notification send

Usage:
    class HttpClassifier(Classifier):
        def classify(self, text: str) -> Verdict:
            # Implementation
            pass
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class Verdict:
    """Classifier decision for a piece of text.

    ``unanalyzable`` is set when the classifier rejected the input itself
    (too long, unsupported encoding). Such content is skipped, not retried.
    """

    is_violation: bool
    reason: Optional[str] = None
    unanalyzable: bool = False
    scores: dict[str, float] = field(default_factory=dict)

    @classmethod
    def clean(cls, scores: Optional[dict[str, float]] = None) -> "Verdict":
        return cls(is_violation=False, scores=scores or {})

    @classmethod
    def violation(cls, reason: str, scores: Optional[dict[str, float]] = None) -> "Verdict":
        return cls(is_violation=True, reason=reason, scores=scores or {})

    @classmethod
    def rejected_input(cls, reason: str) -> "Verdict":
        return cls(is_violation=False, reason=reason, unanalyzable=True)


@dataclass(frozen=True)
class ExternalEmailAddress:
    """One email address on an external profile."""

    id: str
    address: str


@dataclass(frozen=True)
class ExternalProfile:
    """User record as returned by the identity provider."""

    subject_id: str
    username: Optional[str]
    primary_email_id: Optional[str]
    email_addresses: list[ExternalEmailAddress] = field(default_factory=list)

    @property
    def primary_email(self) -> Optional[str]:
        """The address whose id matches ``primary_email_id``."""
        for email in self.email_addresses:
            if email.id == self.primary_email_id:
                return email.address
        return None


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a notification send.

    Attributes:
        success: Whether the transport accepted the message.
        message_id: Transport message id, when known.
        error_message: Failure description.
        retryable: Whether a later attempt may succeed.
    """

    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False


# =============================================================================
# INTERFACES
# =============================================================================


class Classifier(ABC):
    """Text classifier used by the moderation worker."""

    @abstractmethod
    def classify(self, text: str) -> Verdict:
        """Classify ``text``.

        Raises:
            ClassifierUnavailable: Transient failure; the job is retried.
        """
        ...


class IdentityProvider(ABC):
    """External identity provider."""

    @abstractmethod
    def fetch_profile(self, subject_id: str) -> ExternalProfile:
        """Fetch the profile of an authenticated subject.

        Raises:
            IdentitySubjectNotFound: The provider has no such subject.
            IdentityProviderError: The provider could not be reached.
        """
        ...


class Notifier(ABC):
    """Outbound notification transport."""

    @abstractmethod
    def send(
        self,
        kind: str,
        recipient_email: str,
        recipient_name: str,
        template_data: dict[str, Any],
    ) -> DeliveryResult:
        """Send a notification of ``kind`` to one recipient."""
        ...
