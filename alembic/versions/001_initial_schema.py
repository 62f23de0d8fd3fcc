"""Initial schema - subjects, access grants, reports, validations, audit, messaging.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Reference data --
    op.create_table(
        "subjects",
        sa.Column("subject_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("subject_type", sa.String(100), nullable=False),
        sa.Column("registry_code", sa.String(50), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "access_grants",
        sa.Column("grant_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("subject_id", sa.Integer,
                  sa.ForeignKey("subjects.subject_id"), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "subject_id", name="uq_access_grant_user_subject"),
    )

    # -- Reports (OPERATIONAL) --
    op.create_table(
        "reports",
        sa.Column("report_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("subject_id", sa.Integer,
                  sa.ForeignKey("subjects.subject_id"), nullable=False, index=True),
        sa.Column("period", sa.String(50), nullable=False),
        sa.Column("register", sa.String(100), nullable=False),
        sa.Column("file_name", sa.String(500), nullable=False),
        sa.Column("original_name", sa.String(500), nullable=False),
        sa.Column("content_type", sa.String(200), nullable=False),
        sa.Column("size_bytes", sa.Integer, nullable=False),
        sa.Column("storage_key", sa.String(1000), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, index=True),
        sa.Column("corrects_report_id", UUID(as_uuid=True),
                  sa.ForeignKey("reports.report_id"), nullable=True),
        sa.Column("created_by", UUID(as_uuid=True), nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "subject_id", "period", "register", "file_name",
            name="uq_report_submission",
        ),
    )

    op.create_table(
        "report_validations",
        sa.Column("attempt_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("report_id", UUID(as_uuid=True),
                  sa.ForeignKey("reports.report_id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("status", sa.String(50), nullable=False, index=True),
        sa.Column("outcome", sa.String(50), nullable=True),
        sa.Column("errors", JSONB, nullable=False, server_default="[]"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deadline_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )

    # -- Audit / messaging (APPEND-ONLY) --
    op.create_table(
        "audit_log",
        sa.Column("audit_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("action", sa.String(100), nullable=False, index=True),
        sa.Column("entity", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False, index=True),
        sa.Column("actor_id", UUID(as_uuid=True), nullable=True),
        sa.Column("before", JSONB, nullable=True),
        sa.Column("after", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "message_threads",
        sa.Column("thread_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("subject_id", sa.Integer,
                  sa.ForeignKey("subjects.subject_id"), nullable=False, index=True),
        sa.Column("report_id", UUID(as_uuid=True), nullable=True),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("priority", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "messages",
        sa.Column("message_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("thread_id", UUID(as_uuid=True),
                  sa.ForeignKey("message_threads.thread_id"), nullable=False, index=True),
        sa.Column("author_id", UUID(as_uuid=True), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("is_internal", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("messages")
    op.drop_table("message_threads")
    op.drop_table("audit_log")
    op.drop_table("report_validations")
    op.drop_table("reports")
    op.drop_table("access_grants")
    op.drop_table("subjects")
