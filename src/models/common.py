"""Shared types, enums, and base models used across the portal domain models."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_extensions import uuid7


def utc_now() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(tz=timezone.utc)


def new_uuid7() -> UUID:
    """Generate a new time-sortable UUID v7."""
    return uuid7()


# --- Reusable annotated types ---

UUIDv7 = Annotated[UUID, Field(description="Time-sortable UUID v7.")]
UTCTimestamp = Annotated[
    datetime, Field(description="UTC timezone-aware timestamp.")
]


# --- Shared enums ---


class AccessGrantStatus(StrEnum):
    """Lifecycle status of a user's access request for a subject."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REVOKED = "REVOKED"


class Permission(StrEnum):
    """Capability strings carried on an authenticated session."""

    REPORTS_VIEW = "REPORTS_VIEW"
    REPORTS_CREATE = "REPORTS_CREATE"
    REPORTS_EDIT = "REPORTS_EDIT"
    REPORTS_DELETE = "REPORTS_DELETE"
    REPORTS_VALIDATE = "REPORTS_VALIDATE"
    REPORTS_DISPUTE = "REPORTS_DISPUTE"


class ThreadPriority(StrEnum):
    """Message thread priority."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ThreadStatus(StrEnum):
    """Whose turn it is on a message thread."""

    WAITING_FOR_UKNF = "WAITING_FOR_UKNF"
    WAITING_FOR_USER = "WAITING_FOR_USER"
    CLOSED = "CLOSED"


# --- Base model ---


class PortalBase(BaseModel):
    """Base model with common configuration for all portal Pydantic models."""

    model_config = {
        "populate_by_name": True,
        "ser_json_timedelta": "iso8601",
        "protected_namespaces": (),
    }
