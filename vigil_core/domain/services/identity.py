"""Identity sync service for Vigil.

Resolves an external identity-provider subject to a local User, creating the
user on first contact. Concurrent first-contact requests for the same subject
all resolve to the single row that won the insert.
"""

import logging
from typing import Optional, Protocol

from vigil_core.domain.errors import IdentityProfileIncomplete, IdentitySyncInconsistent
from vigil_core.domain.models import User, UserRole
from vigil_core.domain.services.store import Inserted, RecordStore
from vigil_core.providers.base import ExternalProfile, IdentityProvider

logger = logging.getLogger(__name__)

# Length of the subject-id prefix used for generated display names
DEFAULT_NAME_PREFIX_LENGTH = 8


class IdentityCache(Protocol):
    """Subject id to local user id cache.

    ``vigil_core.infrastructure.identity_cache.RedisIdentityCache`` is the
    implementation the API wires in through ``get_identity_sync``.
    """

    def get(self, subject_id: str) -> Optional[int]: ...
    def set(self, subject_id: str, user_id: int) -> None: ...
    def delete(self, subject_id: str) -> None: ...


def primary_email(profile: ExternalProfile) -> str:
    """Primary email of an external profile.

    Raises:
        IdentityProfileIncomplete: If no address matches the primary email id.
    """
    email = profile.primary_email
    if not email:
        raise IdentityProfileIncomplete(
            f"profile {profile.subject_id} has no primary email address"
        )
    return email


def default_display_name(profile: ExternalProfile) -> str:
    """Username, or ``user-<first 8 chars of subject id>`` when absent."""
    if profile.username and profile.username.strip():
        return profile.username.strip()
    return f"user-{profile.subject_id[:DEFAULT_NAME_PREFIX_LENGTH]}"


class IdentitySync:
    """Race-safe first-contact user provisioning."""

    def __init__(
        self,
        store: RecordStore,
        provider: IdentityProvider,
        cache: Optional[IdentityCache] = None,
    ):
        """Initialize identity sync.

        Args:
            store: Record store.
            provider: External identity provider.
            cache: Optional subject id to user id cache.
        """
        self.store = store
        self.provider = provider
        self.cache = cache

    def resolve_user(self, external_subject_id: str) -> User:
        """Return the local user for a subject, creating it if needed.

        Args:
            external_subject_id: Subject id issued by the identity provider.

        Returns:
            The User. Every concurrent caller for the same subject gets the
            same row.

        Raises:
            IdentityProviderError: Provider unreachable (transient).
            IdentitySubjectNotFound: Provider does not know the subject.
            IdentityProfileIncomplete: Profile has no primary email.
            IdentitySyncInconsistent: Insert reported a duplicate that
                cannot be read back.
        """
        user = self._from_cache(external_subject_id)
        if user is not None:
            return user

        user = self.store.get_user_by_external_id(external_subject_id)
        if user is not None:
            self._remember(external_subject_id, user)
            return user

        profile = self.provider.fetch_profile(external_subject_id)
        email = primary_email(profile)
        display_name = default_display_name(profile)

        result = self.store.insert_user_if_absent(
            external_subject_id, email, display_name, role=UserRole.USER
        )
        if isinstance(result, Inserted):
            logger.info(f"Provisioned user {result.row.id} for subject {external_subject_id}")
            self._remember(external_subject_id, result.row)
            return result.row

        # A concurrent request created the user first; its row is newer than
        # this transaction's snapshot
        user = self.store.get_user_by_external_id(external_subject_id, latest=True)
        if user is None:
            raise IdentitySyncInconsistent(external_subject_id)

        logger.debug(f"Subject {external_subject_id} provisioned concurrently as user {user.id}")
        self._remember(external_subject_id, user)
        return user

    def _from_cache(self, subject_id: str) -> Optional[User]:
        if self.cache is None:
            return None
        user_id = self.cache.get(subject_id)
        if user_id is None:
            return None
        user = self.store.get_user(user_id)
        if user is None or user.external_subject_id != subject_id:
            self.cache.delete(subject_id)
            return None
        return user

    def _remember(self, subject_id: str, user: User) -> None:
        if self.cache is not None:
            self.cache.set(subject_id, user.id)


__all__ = [
    "DEFAULT_NAME_PREFIX_LENGTH",
    "IdentityCache",
    "IdentitySync",
    "default_display_name",
    "primary_email",
]
