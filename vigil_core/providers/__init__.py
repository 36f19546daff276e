"""Provider integrations for Vigil.

This package contains the external collaborators of the pipeline:
- Base: Abstract interfaces and DTOs
- Classifier: HTTP text classification client
- Identity: HTTP identity provider client
- Notifier: SMTP mail transport
"""

from vigil_core.providers.base import (
    Classifier,
    DeliveryResult,
    ExternalEmailAddress,
    ExternalProfile,
    IdentityProvider,
    Notifier,
    Verdict,
)

__all__ = [
    "Classifier",
    "DeliveryResult",
    "ExternalEmailAddress",
    "ExternalProfile",
    "IdentityProvider",
    "Notifier",
    "Verdict",
]
