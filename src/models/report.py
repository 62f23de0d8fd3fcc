"""Regulatory report models.

A Report is one regulatory submission (subject + period + register + file).
A ValidationAttempt is one run of business validation against a Report.
Attempts are append-only; the latest attempt drives the Report status.
"""

from datetime import datetime
from enum import StrEnum
from uuid import UUID

from pydantic import Field

from src.models.common import (
    PortalBase,
    UTCTimestamp,
    UUIDv7,
    new_uuid7,
    utc_now,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ReportStatus(StrEnum):
    """Report lifecycle states."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    VALIDATION_ERRORS = "VALIDATION_ERRORS"
    TECH_ERROR = "TECH_ERROR"
    TIMEOUT = "TIMEOUT"
    DISPUTED_BY_UKNF = "DISPUTED_BY_UKNF"


class ValidationAttemptStatus(StrEnum):
    """Lifecycle status for a validation attempt."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ValidationOutcome(StrEnum):
    """Classification reported by the validation runner."""

    SUCCESS = "SUCCESS"
    VALIDATION_ERRORS = "VALIDATION_ERRORS"
    TECH_ERROR = "TECH_ERROR"


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class FileDescriptor(PortalBase):
    """Uploaded report file metadata. Bytes live in object storage."""

    file_name: str = Field(..., min_length=1, max_length=500)
    original_name: str = Field(..., min_length=1, max_length=500)
    content_type: str = Field(..., min_length=1, max_length=200)
    size_bytes: int = Field(..., gt=0)
    storage_key: str = Field(
        default="", description="Object storage key, assigned on draft creation."
    )


class ValidationErrorItem(PortalBase):
    """One business-rule violation, e.g. a bad spreadsheet cell."""

    field: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class Report(PortalBase):
    """One regulatory submission and its current lifecycle status."""

    report_id: UUIDv7 = Field(default_factory=new_uuid7)
    subject_id: int
    period: str = Field(..., min_length=1, max_length=50)
    register_code: str = Field(..., alias="register", min_length=1, max_length=100)
    file: FileDescriptor
    status: ReportStatus = ReportStatus.DRAFT
    corrects_report_id: UUID | None = None
    created_by: UUID
    version: int = Field(default=0, ge=0)
    created_at: UTCTimestamp = Field(default_factory=utc_now)
    updated_at: UTCTimestamp = Field(default_factory=utc_now)


class ValidationAttempt(PortalBase):
    """One invocation of the validation runner against a report."""

    attempt_id: UUIDv7 = Field(default_factory=new_uuid7)
    report_id: UUID
    status: ValidationAttemptStatus = ValidationAttemptStatus.PENDING
    outcome: ValidationOutcome | None = None
    errors: list[ValidationErrorItem] = Field(default_factory=list)
    error_message: str | None = None
    created_at: UTCTimestamp = Field(default_factory=utc_now)
    deadline_at: datetime
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != ValidationAttemptStatus.PENDING
