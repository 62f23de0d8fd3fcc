"""Report and validation-attempt repositories, plus the SQL ReportStore.

Status writes are conditional UPDATEs (``WHERE status = :expected``); the
rowcount tells the caller whether it won. Repositories never commit.
"""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import ReportRow, ReportValidationRow
from src.models.common import new_uuid7, utc_now
from src.models.report import (
    FileDescriptor,
    Report,
    ReportStatus,
    ValidationAttempt,
    ValidationAttemptStatus,
    ValidationErrorItem,
    ValidationOutcome,
)
from src.reporting.errors import InvalidStateError
from src.reporting.state_machine import parse_status
from src.reporting.store import ReportQuery


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; everything stored is UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ReportRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, report_id: UUID, subject_id: int, period: str,
                     register: str, file_name: str, original_name: str,
                     content_type: str, size_bytes: int, storage_key: str,
                     created_by: UUID, status: str = "DRAFT",
                     corrects_report_id: UUID | None = None) -> ReportRow:
        now = utc_now()
        row = ReportRow(
            report_id=report_id, subject_id=subject_id, period=period,
            register=register, file_name=file_name, original_name=original_name,
            content_type=content_type, size_bytes=size_bytes,
            storage_key=storage_key, status=status,
            corrects_report_id=corrects_report_id, created_by=created_by,
            version=0, created_at=now, updated_at=now,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, report_id: UUID) -> ReportRow | None:
        return await self._session.get(ReportRow, report_id, populate_existing=True)

    async def find_by_submission(self, subject_id: int, period: str, register: str,
                                 file_name: str) -> ReportRow | None:
        result = await self._session.execute(
            select(ReportRow).where(
                ReportRow.subject_id == subject_id,
                ReportRow.period == period,
                ReportRow.register == register,
                ReportRow.file_name == file_name,
            )
        )
        return result.scalars().first()

    async def compare_and_set_status(self, report_id: UUID, expected: str,
                                     new: str) -> bool:
        result = await self._session.execute(
            update(ReportRow)
            .where(ReportRow.report_id == report_id, ReportRow.status == expected)
            .values(status=new, version=ReportRow.version + 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete_if_status(self, report_id: UUID, expected: str) -> bool:
        result = await self._session.execute(
            delete(ReportRow)
            .where(ReportRow.report_id == report_id, ReportRow.status == expected)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def search(self, query: ReportQuery) -> tuple[list[ReportRow], int]:
        stmt = select(ReportRow)
        if query.status is not None:
            stmt = stmt.where(ReportRow.status == query.status.value)
        if query.period is not None:
            stmt = stmt.where(ReportRow.period == query.period)
        if query.subject_id is not None:
            stmt = stmt.where(ReportRow.subject_id == query.subject_id)
        if query.register is not None:
            stmt = stmt.where(ReportRow.register == query.register)
        if query.visible_subject_ids is not None:
            stmt = stmt.where(ReportRow.subject_id.in_(query.visible_subject_ids))

        total = await self._session.scalar(
            select(func.count()).select_from(stmt.subquery())
        )

        column = getattr(ReportRow, query.sort_by)
        order = column.desc() if query.sort_order == "desc" else column.asc()
        result = await self._session.execute(
            stmt.order_by(order, ReportRow.report_id)
            .offset((query.page - 1) * query.page_size)
            .limit(query.page_size)
        )
        return list(result.scalars().all()), int(total or 0)


class ReportValidationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, attempt_id: UUID, report_id: UUID,
                     deadline_at: datetime) -> ReportValidationRow:
        row = ReportValidationRow(
            attempt_id=attempt_id, report_id=report_id,
            status=ValidationAttemptStatus.PENDING.value, outcome=None,
            errors=[], error_message=None, created_at=utc_now(),
            deadline_at=deadline_at, completed_at=None,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, attempt_id: UUID) -> ReportValidationRow | None:
        return await self._session.get(
            ReportValidationRow, attempt_id, populate_existing=True,
        )

    async def list_by_report(self, report_id: UUID) -> list[ReportValidationRow]:
        result = await self._session.execute(
            select(ReportValidationRow)
            .where(ReportValidationRow.report_id == report_id)
            .order_by(ReportValidationRow.created_at.desc(),
                      ReportValidationRow.attempt_id.desc())
        )
        return list(result.scalars().all())

    async def compare_and_complete(self, attempt_id: UUID, *, expected: str,
                                   status: str, outcome: str | None,
                                   errors: list[dict], error_message: str | None) -> bool:
        result = await self._session.execute(
            update(ReportValidationRow)
            .where(ReportValidationRow.attempt_id == attempt_id,
                   ReportValidationRow.status == expected)
            .values(status=status, outcome=outcome, errors=errors,
                    error_message=error_message, completed_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_pending_past_deadline(self, now: datetime) -> list[ReportValidationRow]:
        result = await self._session.execute(
            select(ReportValidationRow)
            .where(ReportValidationRow.status == ValidationAttemptStatus.PENDING.value,
                   ReportValidationRow.deadline_at <= now)
            .order_by(ReportValidationRow.deadline_at)
        )
        return list(result.scalars().all())

    async def delete_by_report(self, report_id: UUID) -> None:
        await self._session.execute(
            delete(ReportValidationRow)
            .where(ReportValidationRow.report_id == report_id)
            .execution_options(synchronize_session=False)
        )


# ---------------------------------------------------------------------------
# Row ↔ model
# ---------------------------------------------------------------------------


def report_from_row(row: ReportRow) -> Report:
    return Report(
        report_id=row.report_id,
        subject_id=row.subject_id,
        period=row.period,
        register=row.register,
        file=FileDescriptor(
            file_name=row.file_name,
            original_name=row.original_name,
            content_type=row.content_type,
            size_bytes=row.size_bytes,
            storage_key=row.storage_key,
        ),
        status=parse_status(row.status),
        corrects_report_id=row.corrects_report_id,
        created_by=row.created_by,
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def attempt_from_row(row: ReportValidationRow) -> ValidationAttempt:
    return ValidationAttempt(
        attempt_id=row.attempt_id,
        report_id=row.report_id,
        status=ValidationAttemptStatus(row.status),
        outcome=ValidationOutcome(row.outcome) if row.outcome else None,
        errors=[ValidationErrorItem.model_validate(e) for e in (row.errors or [])],
        error_message=row.error_message,
        created_at=_aware(row.created_at),
        deadline_at=_aware(row.deadline_at),
        completed_at=_aware(row.completed_at),
    )


class SqlReportStore:
    """ReportStore over the two repositories above (one session, one unit of work)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._reports = ReportRepository(session)
        self._attempts = ReportValidationRepository(session)

    async def get_report(self, report_id: UUID) -> Report | None:
        row = await self._reports.get(report_id)
        return report_from_row(row) if row is not None else None

    async def find_duplicate(self, subject_id: int, period: str, register: str,
                             file_name: str) -> Report | None:
        row = await self._reports.find_by_submission(subject_id, period, register, file_name)
        return report_from_row(row) if row is not None else None

    async def create_report(self, report: Report) -> Report:
        try:
            async with self._session.begin_nested():
                row = await self._reports.create(
                    report_id=report.report_id,
                    subject_id=report.subject_id,
                    period=report.period,
                    register=report.register_code,
                    file_name=report.file.file_name,
                    original_name=report.file.original_name,
                    content_type=report.file.content_type,
                    size_bytes=report.file.size_bytes,
                    storage_key=report.file.storage_key,
                    created_by=report.created_by,
                    status=report.status.value,
                    corrects_report_id=report.corrects_report_id,
                )
        except IntegrityError:
            msg = "A report with this subject, period, register and file already exists."
            raise InvalidStateError(msg) from None
        return report_from_row(row)

    async def update_report_status(self, report_id: UUID, expected: ReportStatus,
                                   new: ReportStatus) -> bool:
        return await self._reports.compare_and_set_status(report_id, expected.value, new.value)

    async def delete_report(self, report_id: UUID, expected: ReportStatus) -> bool:
        if not await self._reports.delete_if_status(report_id, expected.value):
            return False
        await self._attempts.delete_by_report(report_id)
        return True

    async def list_reports(self, query: ReportQuery) -> tuple[list[Report], int]:
        rows, total = await self._reports.search(query)
        return [report_from_row(r) for r in rows], total

    async def create_validation_attempt(self, report_id: UUID,
                                        deadline_at: datetime) -> ValidationAttempt:
        row = await self._attempts.create(
            attempt_id=new_uuid7(), report_id=report_id, deadline_at=deadline_at,
        )
        return attempt_from_row(row)

    async def get_validation_attempt(self, attempt_id: UUID) -> ValidationAttempt | None:
        row = await self._attempts.get(attempt_id)
        return attempt_from_row(row) if row is not None else None

    async def list_validation_attempts(self, report_id: UUID) -> list[ValidationAttempt]:
        return [attempt_from_row(r) for r in await self._attempts.list_by_report(report_id)]

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
        return await self._attempts.compare_and_complete(
            attempt_id,
            expected=expected.value,
            status=status.value,
            outcome=outcome.value if outcome is not None else None,
            errors=[e.model_dump() for e in (errors or [])],
            error_message=error_message,
        )

    async def find_pending_attempts_past_deadline(self, now: datetime) -> list[ValidationAttempt]:
        return [attempt_from_row(r) for r in await self._attempts.list_pending_past_deadline(now)]
