"""User management service for Vigil."""

from vigil_core.domain.errors import NotAuthorized, UserNotFound
from vigil_core.domain.models import User, UserRole
from vigil_core.domain.services.store import RecordStore


class UserService:
    """Preference and role changes."""

    def __init__(self, store: RecordStore):
        self.store = store

    def set_notification_preference(self, user_id: int, enabled: bool) -> User:
        """Turn moderation emails on or off for a user.

        Notification jobs already queued observe the new value, since the
        preference is read at send time.

        Raises:
            UserNotFound: If the user does not exist.
        """
        user = self.store.update_user_preference(user_id, enabled)
        if user is None:
            raise UserNotFound(user_id)
        return user

    def set_role(self, actor: User, user_id: int, role: str) -> User:
        """Change a user's role.

        Args:
            actor: The acting user; must be an admin.
            user_id: The user to change.
            role: USER or ADMIN.

        Raises:
            NotAuthorized: If the actor is not an admin.
            UserNotFound: If the user does not exist.
            ValueError: If the role is unknown.
        """
        if actor.role != UserRole.ADMIN:
            raise NotAuthorized("only admins can change roles")

        user = self.store.update_user_role(user_id, role)
        if user is None:
            raise UserNotFound(user_id)
        return user
