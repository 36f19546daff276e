"""Record store adapter.

Typed accessors over users, content and flags. Inserts that can race with a
concurrent writer report the outcome as a value (``Inserted`` or
``AlreadyExists``) instead of leaking the database's duplicate-key error.
"""

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession
from sqlalchemy.orm import joinedload

from vigil_core.domain.models import (
    Content,
    FlaggedContent,
    FlagStatus,
    User,
    UserRole,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Inserted(Generic[T]):
    """The row was created by this call."""

    row: T


@dataclass(frozen=True)
class AlreadyExists:
    """A row with the same unique key already existed."""

    pass


ALREADY_EXISTS = AlreadyExists()

InsertResult = Union[Inserted[T], AlreadyExists]


class StatusUpdate(enum.Enum):
    """Outcome of a compare-and-set on a flag's status."""

    UPDATED = "updated"
    ALREADY_IN_STATE = "already_in_state"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


class RecordStore(ABC):
    """Persistence operations the pipeline depends on."""

    # Users

    @abstractmethod
    def get_user_by_external_id(self, subject_id: str, latest: bool = False) -> Optional[User]:
        """Look up a user by identity-provider subject id.

        With ``latest``, read the newest committed row instead of the
        transaction's snapshot, so a row committed by a concurrent writer
        after this transaction began is visible.
        """

    @abstractmethod
    def insert_user_if_absent(
        self,
        subject_id: str,
        email: str,
        display_name: str,
        role: str = UserRole.USER,
    ) -> InsertResult[User]:
        ...

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]:
        ...

    @abstractmethod
    def update_user_preference(
        self, user_id: int, notify_on_moderation: bool
    ) -> Optional[User]:
        ...

    @abstractmethod
    def update_user_role(self, user_id: int, role: str) -> Optional[User]:
        ...

    # Content

    @abstractmethod
    def insert_content(
        self, kind: str, body: str, author_id: int, parent_post_id: Optional[int] = None
    ) -> Content:
        ...

    @abstractmethod
    def get_content(self, content_id: int, kind: str) -> Optional[Content]:
        ...

    @abstractmethod
    def update_content_body(self, content_id: int, kind: str, body: str) -> Optional[Content]:
        ...

    # Flags

    @abstractmethod
    def insert_flagged_content_if_absent(
        self, content_id: int, content_kind: str, author_id: int, reason: str
    ) -> InsertResult[FlaggedContent]:
        ...

    @abstractmethod
    def get_flagged_content(self, flag_id: int) -> Optional[FlaggedContent]:
        ...

    @abstractmethod
    def update_flagged_content_status_if_pending(
        self,
        flag_id: int,
        target: str,
        reviewed_by_id: Optional[int] = None,
        resolution_reason: Optional[str] = None,
    ) -> StatusUpdate:
        ...

    @abstractmethod
    def list_flagged_content(
        self,
        author_id: Optional[int] = None,
        status: Optional[str] = None,
        content_kind: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[FlaggedContent], int]:
        ...

    @abstractmethod
    def count_flagged_content_by_status(self) -> dict[str, int]:
        ...


class SqlRecordStore(RecordStore):
    """SQLAlchemy implementation of the record store.

    Operates inside the caller's session and transaction; it flushes but
    never commits.
    """

    def __init__(self, db: DBSession):
        """Initialize the store.

        Args:
            db: SQLAlchemy database session.
        """
        self.db = db

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    def user_by_subject_query(self, subject_id: str, latest: bool = False):
        query = self.db.query(User).filter(User.external_subject_id == subject_id)
        if latest:
            # A locking read sees the latest committed version under
            # REPEATABLE READ, where a plain SELECT reuses the snapshot
            query = query.with_for_update(read=True).populate_existing()
        return query

    def get_user_by_external_id(self, subject_id: str, latest: bool = False) -> Optional[User]:
        return self.user_by_subject_query(subject_id, latest=latest).first()

    def insert_user_if_absent(
        self,
        subject_id: str,
        email: str,
        display_name: str,
        role: str = UserRole.USER,
    ) -> InsertResult[User]:
        user = User(
            external_subject_id=subject_id,
            email=email,
            display_name=display_name,
            role=role,
            notify_on_moderation=True,
        )
        return self._insert_if_absent(user)

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id, populate_existing=True)

    def update_user_preference(
        self, user_id: int, notify_on_moderation: bool
    ) -> Optional[User]:
        user = self.get_user(user_id)
        if user is None:
            return None
        user.notify_on_moderation = notify_on_moderation
        self.db.flush()
        return user

    def update_user_role(self, user_id: int, role: str) -> Optional[User]:
        if role not in (UserRole.USER, UserRole.ADMIN):
            raise ValueError(f"unknown role: {role}")
        user = self.get_user(user_id)
        if user is None:
            return None
        user.role = role
        self.db.flush()
        return user

    # -------------------------------------------------------------------------
    # Content
    # -------------------------------------------------------------------------

    def insert_content(
        self, kind: str, body: str, author_id: int, parent_post_id: Optional[int] = None
    ) -> Content:
        content = Content(
            kind=kind,
            body=body,
            author_id=author_id,
            parent_post_id=parent_post_id,
        )
        self.db.add(content)
        self.db.flush()
        return content

    def get_content(self, content_id: int, kind: str) -> Optional[Content]:
        return (
            self.db.query(Content)
            .filter(Content.id == content_id, Content.kind == kind)
            .first()
        )

    def update_content_body(self, content_id: int, kind: str, body: str) -> Optional[Content]:
        content = self.get_content(content_id, kind)
        if content is None:
            return None
        content.body = body
        self.db.flush()
        return content

    # -------------------------------------------------------------------------
    # Flags
    # -------------------------------------------------------------------------

    def insert_flagged_content_if_absent(
        self, content_id: int, content_kind: str, author_id: int, reason: str
    ) -> InsertResult[FlaggedContent]:
        flag = FlaggedContent(
            content_id=content_id,
            content_kind=content_kind,
            author_id=author_id,
            reason=reason,
            status=FlagStatus.PENDING,
        )
        return self._insert_if_absent(flag)

    def get_flagged_content(self, flag_id: int) -> Optional[FlaggedContent]:
        return (
            self.db.query(FlaggedContent)
            .options(joinedload(FlaggedContent.author))
            .filter(FlaggedContent.id == flag_id)
            .populate_existing()
            .first()
        )

    def update_flagged_content_status_if_pending(
        self,
        flag_id: int,
        target: str,
        reviewed_by_id: Optional[int] = None,
        resolution_reason: Optional[str] = None,
    ) -> StatusUpdate:
        if target not in (FlagStatus.APPROVED, FlagStatus.REJECTED):
            raise ValueError(f"invalid target status: {target}")

        now = utcnow()
        result = self.db.execute(
            update(FlaggedContent)
            .where(
                FlaggedContent.id == flag_id,
                FlaggedContent.status == FlagStatus.PENDING,
            )
            .values(
                status=target,
                reviewed_by_id=reviewed_by_id,
                resolution_reason=resolution_reason,
                reviewed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return StatusUpdate.UPDATED

        current = (
            self.db.query(FlaggedContent.status)
            .filter(FlaggedContent.id == flag_id)
            .scalar()
        )
        if current is None:
            return StatusUpdate.NOT_FOUND
        if current == target:
            return StatusUpdate.ALREADY_IN_STATE
        return StatusUpdate.CONFLICT

    def list_flagged_content(
        self,
        author_id: Optional[int] = None,
        status: Optional[str] = None,
        content_kind: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[FlaggedContent], int]:
        query = self.db.query(FlaggedContent)
        if author_id is not None:
            query = query.filter(FlaggedContent.author_id == author_id)
        if status is not None:
            query = query.filter(FlaggedContent.status == status)
        if content_kind is not None:
            query = query.filter(FlaggedContent.content_kind == content_kind)

        total = query.count()
        page = max(page, 1)
        rows = (
            query.options(joinedload(FlaggedContent.author))
            .order_by(FlaggedContent.created_at.desc(), FlaggedContent.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    def count_flagged_content_by_status(self) -> dict[str, int]:
        counts = {status: 0 for status in FlagStatus.ALL}
        rows = (
            self.db.query(FlaggedContent.status, func.count(FlaggedContent.id))
            .group_by(FlaggedContent.status)
            .all()
        )
        for status, count in rows:
            counts[status] = count
        return counts

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _insert_if_absent(self, row: T) -> InsertResult[T]:
        """Insert under a savepoint so a duplicate leaves the outer transaction usable."""
        try:
            with self.db.begin_nested():
                self.db.add(row)
                self.db.flush()
        except IntegrityError as e:
            logger.debug("Insert of %s hit unique constraint: %s", type(row).__name__, e.orig)
            return ALREADY_EXISTS
        return Inserted(row)


__all__ = [
    "ALREADY_EXISTS",
    "AlreadyExists",
    "InsertResult",
    "Inserted",
    "RecordStore",
    "SqlRecordStore",
    "StatusUpdate",
]
