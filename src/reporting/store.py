"""Report entity store interface and in-memory implementation.

Status writes are compare-and-set: they succeed only if the row still holds
the expected status, so concurrent callers cannot both win a transition.
The SQL implementation lives in src.repositories.reports.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from src.models.common import utc_now
from src.models.report import (
    Report,
    ReportStatus,
    ValidationAttempt,
    ValidationAttemptStatus,
    ValidationErrorItem,
    ValidationOutcome,
)
from src.reporting.errors import InvalidStateError

SORTABLE_FIELDS = frozenset({"created_at", "updated_at", "period", "register", "status"})

# Sort keys whose model attribute differs from the API name.
_SORT_ATTRIBUTES = {"register": "register_code"}


@dataclass(frozen=True)
class ReportQuery:
    """Filters and paging for report listings."""

    status: ReportStatus | None = None
    period: str | None = None
    subject_id: int | None = None
    register: str | None = None
    # None = unrestricted; [] = nothing visible
    visible_subject_ids: list[int] | None = None
    page: int = 1
    page_size: int = 20
    sort_by: str = "created_at"
    sort_order: str = "desc"


class ReportStore(Protocol):
    async def get_report(self, report_id: UUID) -> Report | None: ...

    async def find_duplicate(
        self, subject_id: int, period: str, register: str, file_name: str,
    ) -> Report | None: ...

    async def create_report(self, report: Report) -> Report: ...

    async def update_report_status(
        self, report_id: UUID, expected: ReportStatus, new: ReportStatus,
    ) -> bool: ...

    async def delete_report(self, report_id: UUID, expected: ReportStatus) -> bool: ...

    async def list_reports(self, query: ReportQuery) -> tuple[list[Report], int]: ...

    async def create_validation_attempt(
        self, report_id: UUID, deadline_at: datetime,
    ) -> ValidationAttempt: ...

    async def get_validation_attempt(self, attempt_id: UUID) -> ValidationAttempt | None: ...

    async def list_validation_attempts(self, report_id: UUID) -> list[ValidationAttempt]: ...

    async def complete_validation_attempt(
        self,
        attempt_id: UUID,
        *,
        status: ValidationAttemptStatus,
        outcome: ValidationOutcome | None,
        errors: list[ValidationErrorItem] | None = None,
        error_message: str | None = None,
        expected: ValidationAttemptStatus = ValidationAttemptStatus.PENDING,
    ) -> bool: ...

    async def find_pending_attempts_past_deadline(
        self, now: datetime,
    ) -> list[ValidationAttempt]: ...


class InMemoryReportStore:
    """Dict-backed store for tests and local runs.

    A per-key asyncio.Lock stands in for the row lock. Locks are dropped once
    the report is deleted or the attempt is closed.
    """

    def __init__(self) -> None:
        self._reports: dict[UUID, Report] = {}
        self._attempts: dict[UUID, ValidationAttempt] = {}
        self._locks: dict[UUID, asyncio.Lock] = {}

    def _lock(self, key: UUID) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    async def get_report(self, report_id: UUID) -> Report | None:
        report = self._reports.get(report_id)
        return report.model_copy(deep=True) if report is not None else None

    async def find_duplicate(
        self, subject_id: int, period: str, register: str, file_name: str,
    ) -> Report | None:
        for report in self._reports.values():
            if (
                report.subject_id == subject_id
                and report.period == period
                and report.register_code == register
                and report.file.file_name == file_name
            ):
                return report.model_copy(deep=True)
        return None

    async def create_report(self, report: Report) -> Report:
        if await self.find_duplicate(
            report.subject_id, report.period, report.register_code, report.file.file_name,
        ) is not None:
            msg = "A report with this subject, period, register and file already exists."
            raise InvalidStateError(msg)
        self._reports[report.report_id] = report.model_copy(deep=True)
        return report

    async def update_report_status(
        self, report_id: UUID, expected: ReportStatus, new: ReportStatus,
    ) -> bool:
        async with self._lock(report_id):
            current = self._reports.get(report_id)
            if current is None or current.status != expected:
                return False
            self._reports[report_id] = current.model_copy(update={
                "status": new,
                "version": current.version + 1,
                "updated_at": utc_now(),
            })
            return True

    async def delete_report(self, report_id: UUID, expected: ReportStatus) -> bool:
        async with self._lock(report_id):
            current = self._reports.get(report_id)
            if current is None or current.status != expected:
                return False
            del self._reports[report_id]
            for attempt_id in [a.attempt_id for a in self._attempts.values()
                               if a.report_id == report_id]:
                del self._attempts[attempt_id]
                self._locks.pop(attempt_id, None)
        self._locks.pop(report_id, None)
        return True

    async def list_reports(self, query: ReportQuery) -> tuple[list[Report], int]:
        rows = [
            r for r in self._reports.values()
            if (query.status is None or r.status == query.status)
            and (query.period is None or r.period == query.period)
            and (query.subject_id is None or r.subject_id == query.subject_id)
            and (query.register is None or r.register_code == query.register)
            and (query.visible_subject_ids is None
                 or r.subject_id in query.visible_subject_ids)
        ]
        rows.sort(
            key=lambda r: getattr(r, _SORT_ATTRIBUTES.get(query.sort_by, query.sort_by)),
            reverse=query.sort_order == "desc",
        )
        start = (query.page - 1) * query.page_size
        page = rows[start:start + query.page_size]
        return [r.model_copy(deep=True) for r in page], len(rows)

    async def create_validation_attempt(
        self, report_id: UUID, deadline_at: datetime,
    ) -> ValidationAttempt:
        attempt = ValidationAttempt(report_id=report_id, deadline_at=deadline_at)
        self._attempts[attempt.attempt_id] = attempt
        return attempt.model_copy(deep=True)

    async def get_validation_attempt(self, attempt_id: UUID) -> ValidationAttempt | None:
        attempt = self._attempts.get(attempt_id)
        return attempt.model_copy(deep=True) if attempt is not None else None

    async def list_validation_attempts(self, report_id: UUID) -> list[ValidationAttempt]:
        attempts = [a for a in self._attempts.values() if a.report_id == report_id]
        attempts.sort(key=lambda a: (a.created_at, a.attempt_id), reverse=True)
        return [a.model_copy(deep=True) for a in attempts]

    async def complete_validation_attempt(
        self,
        attempt_id: UUID,
        *,
        status: ValidationAttemptStatus,
        outcome: ValidationOutcome | None,
        errors: list[ValidationErrorItem] | None = None,
        error_message: str | None = None,
        expected: ValidationAttemptStatus = ValidationAttemptStatus.PENDING,
    ) -> bool:
        async with self._lock(attempt_id):
            current = self._attempts.get(attempt_id)
            if current is None or current.status != expected:
                return False
            self._attempts[attempt_id] = current.model_copy(update={
                "status": status,
                "outcome": outcome,
                "errors": list(errors or []),
                "error_message": error_message,
                "completed_at": utc_now(),
            })
        self._locks.pop(attempt_id, None)
        return True

    async def find_pending_attempts_past_deadline(
        self, now: datetime,
    ) -> list[ValidationAttempt]:
        return [
            a.model_copy(deep=True) for a in self._attempts.values()
            if a.status == ValidationAttemptStatus.PENDING and a.deadline_at <= now
        ]
