"""SQLAlchemy ORM table models for the report portal.

Uses FlexJSON (JSONB on Postgres, JSON on SQLite) for structured payloads.

Categories:
- REFERENCE: Subject, AccessGrant (owned by other portal modules, read here)
- OPERATIONAL: Report (status transitions only, guarded by compare-and-set)
- APPEND-ONLY: ReportValidation, AuditLog, MessageThread, Message
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from src.db.session import Base

# JSONB on PostgreSQL, plain JSON on SQLite (for tests)
FlexJSON = JSONB().with_variant(JSON(), "sqlite")


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class SubjectRow(Base):
    """Supervised entity (bank, fund, ...) that reports belong to."""

    __tablename__ = "subjects"

    subject_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    subject_type: Mapped[str] = mapped_column(String(100), nullable=False)
    registry_code: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AccessGrantRow(Base):
    """User-to-subject access request. Only APPROVED rows authorize."""

    __tablename__ = "access_grants"
    __table_args__ = (
        UniqueConstraint("user_id", "subject_id", name="uq_access_grant_user_subject"),
    )

    grant_id: Mapped[UUID] = mapped_column(primary_key=True)
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    subject_id: Mapped[int] = mapped_column(
        ForeignKey("subjects.subject_id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Reports - OPERATIONAL
# ---------------------------------------------------------------------------


class ReportRow(Base):
    """One regulatory submission.

    ``version`` increments on every status change; status writes are
    conditional on the expected current status.
    """

    __tablename__ = "reports"
    __table_args__ = (
        UniqueConstraint(
            "subject_id", "period", "register", "file_name",
            name="uq_report_submission",
        ),
    )

    report_id: Mapped[UUID] = mapped_column(primary_key=True)
    subject_id: Mapped[int] = mapped_column(
        ForeignKey("subjects.subject_id"), nullable=False, index=True
    )
    period: Mapped[str] = mapped_column(String(50), nullable=False)
    register: Mapped[str] = mapped_column(String(100), nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    content_type: Mapped[str] = mapped_column(String(200), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_key: Mapped[str] = mapped_column(String(1000), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    corrects_report_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("reports.report_id"), nullable=True
    )
    created_by: Mapped[UUID] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReportValidationRow(Base):
    """Append-only validation attempt. Terminal once COMPLETED or FAILED."""

    __tablename__ = "report_validations"

    attempt_id: Mapped[UUID] = mapped_column(primary_key=True)
    report_id: Mapped[UUID] = mapped_column(
        ForeignKey("reports.report_id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    outcome: Mapped[str | None] = mapped_column(String(50), nullable=True)
    errors = mapped_column(FlexJSON, nullable=False, default=list)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deadline_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Audit / messaging - APPEND-ONLY
# ---------------------------------------------------------------------------


class AuditLogRow(Base):
    __tablename__ = "audit_log"

    audit_id: Mapped[UUID] = mapped_column(primary_key=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    before = mapped_column(FlexJSON, nullable=True)
    after = mapped_column(FlexJSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class MessageThreadRow(Base):
    __tablename__ = "message_threads"

    thread_id: Mapped[UUID] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    subject_id: Mapped[int] = mapped_column(
        ForeignKey("subjects.subject_id"), nullable=False, index=True
    )
    report_id: Mapped[UUID | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class MessageRow(Base):
    __tablename__ = "messages"

    message_id: Mapped[UUID] = mapped_column(primary_key=True)
    thread_id: Mapped[UUID] = mapped_column(
        ForeignKey("message_threads.thread_id"), nullable=False, index=True
    )
    author_id: Mapped[UUID] = mapped_column(nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
