"""Typed failures raised by the report lifecycle.

Each class keeps a distinct meaning for callers:
- NotFoundError: the report or attempt does not exist
- AccessDeniedError: the actor may not do this
- InvalidStateError: not possible in the current status (do not auto-retry)
- InputValidationError: malformed input
"""

from uuid import UUID


class ReportLifecycleError(Exception):
    """Base class for all lifecycle failures."""

    code = "LIFECYCLE_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ReportLifecycleError):
    code = "NOT_FOUND"

    @classmethod
    def report(cls, report_id: UUID) -> "NotFoundError":
        return cls(f"Report {report_id} not found.")

    @classmethod
    def attempt(cls, attempt_id: UUID) -> "NotFoundError":
        return cls(f"Validation attempt {attempt_id} not found.")


class AccessDeniedError(ReportLifecycleError):
    code = "ACCESS_DENIED"


class InvalidStateError(ReportLifecycleError):
    code = "INVALID_STATE"


class InputValidationError(ReportLifecycleError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
