"""Domain models for Vigil.

This module defines the SQLAlchemy ORM models for users, moderated content,
flags and the job ledger.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# ENUMS
# =============================================================================


class UserRole(str):
    """User role values."""

    USER = "USER"
    ADMIN = "ADMIN"


class ContentKind(str):
    """Kinds of moderated content."""

    COMMENT = "COMMENT"
    REVIEW = "REVIEW"

    ALL = (COMMENT, REVIEW)


class FlagStatus(str):
    """Flagged content review status values."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    ALL = (PENDING, APPROVED, REJECTED)


class JobStatus(str):
    """Job status values."""

    QUEUED = "queued"
    RUNNING = "running"
    RETRYING = "retrying"
    DONE = "done"
    DEAD = "dead"
    DISCARDED = "discarded"

    ALL = (QUEUED, RUNNING, RETRYING, DONE, DEAD, DISCARDED)
    PENDING = (QUEUED, RETRYING)
    TERMINAL = (DONE, DEAD, DISCARDED)


class Topic(str):
    """Job queue topics."""

    MODERATION = "moderation"
    NOTIFICATION = "notification"
    ADMIN_ACTION = "admin-action"

    ALL = (MODERATION, NOTIFICATION, ADMIN_ACTION)


# =============================================================================
# MODELS
# =============================================================================


class User(Base):
    """Local user, provisioned lazily from the external identity provider."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    # Immutable identifier issued by the identity provider
    external_subject_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(
        Enum(UserRole.USER, UserRole.ADMIN, name="user_role_enum"),
        nullable=False,
        default=UserRole.USER,
    )
    notify_on_moderation: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    contents: Mapped[list["Content"]] = relationship(back_populates="author")
    flags: Mapped[list["FlaggedContent"]] = relationship(
        back_populates="author", foreign_keys="FlaggedContent.author_id"
    )


class Content(Base):
    """A comment or review submitted by a user.

    Only the fields that moderation needs are modeled here.
    """

    __tablename__ = "contents"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(
        Enum(*ContentKind.ALL, name="content_kind_enum"), nullable=False
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    parent_post_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_contents_author", "author_id"),
        Index("idx_contents_post", "parent_post_id"),
    )

    # Relationships
    author: Mapped["User"] = relationship(back_populates="contents")


class FlaggedContent(Base):
    """Review record created when the classifier reports a violation.

    One row per (content_id, content_kind); a second insert for the same
    content is rejected by the unique constraint.
    """

    __tablename__ = "flagged_contents"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    content_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_kind: Mapped[str] = mapped_column(
        Enum(*ContentKind.ALL, name="flag_content_kind_enum"), nullable=False
    )
    author_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[str] = mapped_column(
        Enum(*FlagStatus.ALL, name="flag_status_enum"),
        nullable=False,
        default=FlagStatus.PENDING,
    )

    # Review
    reviewed_by_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )
    resolution_reason: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("content_id", "content_kind", name="uq_flagged_content"),
        Index("idx_flagged_status", "status", "created_at"),
        Index("idx_flagged_author", "author_id"),
    )

    # Relationships
    author: Mapped["User"] = relationship(back_populates="flags", foreign_keys=[author_id])
    reviewed_by: Mapped[Optional["User"]] = relationship(foreign_keys=[reviewed_by_id])


class Job(Base):
    """Durable job ledger; the broker only carries wake-ups for these rows."""

    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    topic: Mapped[str] = mapped_column(String(64), nullable=False)
    payload_json: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(
        Enum(*JobStatus.ALL, name="job_status_enum"),
        nullable=False,
        default=JobStatus.QUEUED,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    backoff_base_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    backoff_max_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=60.0)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Lease held by the worker currently running the job
    lease_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Last time a wake-up was sent to the broker
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dedupe_key: Mapped[Optional[str]] = mapped_column(String(256), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_jobs_status", "status", "next_run_at"),
        Index("idx_jobs_topic_status", "topic", "status"),
    )


# Export all models
__all__ = [
    "Base",
    "User",
    "Content",
    "FlaggedContent",
    "Job",
    "utcnow",
    # Enums
    "UserRole",
    "ContentKind",
    "FlagStatus",
    "JobStatus",
    "Topic",
]
