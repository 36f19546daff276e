"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-17

Creates the moderation pipeline tables:
- users
- contents
- flagged_contents
- jobs
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CONTENT_KINDS = ("COMMENT", "REVIEW")


def upgrade() -> None:
    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("external_subject_id", sa.String(128), nullable=False, unique=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(128), nullable=False),
        sa.Column(
            "role",
            sa.Enum("USER", "ADMIN", name="user_role_enum"),
            nullable=False,
            server_default="USER",
        ),
        sa.Column(
            "notify_on_moderation", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )

    # Contents table (comments and reviews)
    op.create_table(
        "contents",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column(
            "kind", sa.Enum(*CONTENT_KINDS, name="content_kind_enum"), nullable=False
        ),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column(
            "author_id", sa.BigInteger, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("parent_post_id", sa.BigInteger, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("idx_contents_author", "contents", ["author_id"])
    op.create_index("idx_contents_post", "contents", ["parent_post_id"])

    # Flagged contents table
    op.create_table(
        "flagged_contents",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("content_id", sa.BigInteger, nullable=False),
        sa.Column(
            "content_kind",
            sa.Enum(*CONTENT_KINDS, name="flag_content_kind_enum"),
            nullable=False,
        ),
        sa.Column(
            "author_id", sa.BigInteger, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("reason", sa.String(512), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PENDING", "APPROVED", "REJECTED", name="flag_status_enum"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column(
            "reviewed_by_id", sa.BigInteger, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("resolution_reason", sa.String(512), nullable=True),
        sa.Column("reviewed_at", sa.DateTime, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("content_id", "content_kind", name="uq_flagged_content"),
    )
    op.create_index("idx_flagged_status", "flagged_contents", ["status", "created_at"])
    op.create_index("idx_flagged_author", "flagged_contents", ["author_id"])

    # Jobs table
    op.create_table(
        "jobs",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("topic", sa.String(64), nullable=False),
        sa.Column("payload_json", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "queued",
                "running",
                "retrying",
                "done",
                "dead",
                "discarded",
                name="job_status_enum",
            ),
            nullable=False,
            server_default="queued",
        ),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("backoff_base_seconds", sa.Float, nullable=False, server_default="1"),
        sa.Column("backoff_max_seconds", sa.Float, nullable=False, server_default="60"),
        sa.Column("next_run_at", sa.DateTime, nullable=True),
        sa.Column("lease_token", sa.String(64), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime, nullable=True),
        sa.Column("dispatched_at", sa.DateTime, nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("dedupe_key", sa.String(256), nullable=True, unique=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("idx_jobs_status", "jobs", ["status", "next_run_at"])
    op.create_index("idx_jobs_topic_status", "jobs", ["topic", "status"])


def downgrade() -> None:
    # Drop tables in reverse order of creation (respecting foreign keys)
    op.drop_table("jobs")
    op.drop_table("flagged_contents")
    op.drop_table("contents")
    op.drop_table("users")
