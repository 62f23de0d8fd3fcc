"""Validation runner contract and default spreadsheet validator.

The lifecycle hands a ValidationRequest to a ValidationDispatcher and returns
immediately. Whatever executes the request (background task, Celery worker,
asyncio task) runs ValidationRunner and reports the outcome back through
``ReportLifecycleManager.record_validation_outcome`` at most once.

Runner failures never escape: they become a TECH_ERROR outcome.
"""

import asyncio
import io
import logging
import zipfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from src.models.report import FileDescriptor, ValidationErrorItem, ValidationOutcome
from src.reporting.errors import InvalidStateError, NotFoundError
from src.reporting.storage import ReportStorageService

if TYPE_CHECKING:
    from src.reporting.lifecycle import ReportLifecycleManager

logger = logging.getLogger(__name__)

EXCEL_ERROR_VALUES = frozenset({
    "#NULL!", "#DIV/0!", "#VALUE!", "#REF!", "#NAME?", "#NUM!", "#N/A",
})

SPREADSHEET_SUFFIXES = (".xlsx", ".xlsm")


@dataclass(frozen=True)
class ValidationRequest:
    """Everything a runner needs to validate one attempt."""

    report_id: UUID
    attempt_id: UUID
    file: FileDescriptor

    def to_payload(self) -> dict:
        return {
            "report_id": str(self.report_id),
            "attempt_id": str(self.attempt_id),
            "file": self.file.model_dump(mode="json"),
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "ValidationRequest":
        return cls(
            report_id=UUID(payload["report_id"]),
            attempt_id=UUID(payload["attempt_id"]),
            file=FileDescriptor.model_validate(payload["file"]),
        )


@dataclass
class ValidationResult:
    outcome: ValidationOutcome
    errors: list[ValidationErrorItem] = field(default_factory=list)
    error_message: str | None = None


class ValidationDispatcher(Protocol):
    """Hands a request to whatever runs validation. Must not block on it."""

    async def dispatch(self, request: ValidationRequest) -> None: ...


class ReportValidator(Protocol):
    """Pluggable business rules. Returns an empty list when the file is valid."""

    def validate(self, file: FileDescriptor, content: bytes) -> list[ValidationErrorItem]: ...


class SpreadsheetReportValidator:
    """Structural checks for XLSX report templates.

    Flags non-workbook uploads, workbooks with no data, and cells holding
    Excel error values (#REF!, #DIV/0!, ...).
    """

    def __init__(self, max_errors: int = 100) -> None:
        self._max_errors = max_errors

    def validate(self, file: FileDescriptor, content: bytes) -> list[ValidationErrorItem]:
        if not file.file_name.lower().endswith(SPREADSHEET_SUFFIXES):
            return [ValidationErrorItem(
                field="file",
                message=f"Unsupported report format: {file.file_name}. Expected XLSX.",
            )]
        try:
            workbook = load_workbook(io.BytesIO(content), data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError):
            return [ValidationErrorItem(
                field="file", message="File is not a readable XLSX workbook.",
            )]

        try:
            errors, has_data = self._scan(workbook)
        finally:
            workbook.close()

        if not has_data:
            errors.append(ValidationErrorItem(field="file", message="Workbook contains no data."))
        return errors

    def _scan(self, workbook) -> tuple[list[ValidationErrorItem], bool]:
        errors: list[ValidationErrorItem] = []
        has_data = False
        multi_sheet = len(workbook.worksheets) > 1
        for sheet in workbook.worksheets:
            for row in sheet.iter_rows():
                for cell in row:
                    if cell.value is None:
                        continue
                    has_data = True
                    if isinstance(cell.value, str) and cell.value.strip() in EXCEL_ERROR_VALUES:
                        ref = f"{sheet.title}!{cell.coordinate}" if multi_sheet else cell.coordinate
                        errors.append(ValidationErrorItem(
                            field=ref,
                            message=f"Cell contains error value {cell.value.strip()}.",
                        ))
                        if len(errors) >= self._max_errors:
                            return errors, has_data
        return errors, has_data


class ValidationRunner:
    """Load the stored file and apply the validator."""

    def __init__(self, storage: ReportStorageService, validator: ReportValidator) -> None:
        self._storage = storage
        self._validator = validator

    async def run(self, request: ValidationRequest) -> ValidationResult:
        try:
            try:
                content = self._storage.retrieve(request.file.storage_key)
            except FileNotFoundError:
                return ValidationResult(
                    outcome=ValidationOutcome.VALIDATION_ERRORS,
                    errors=[ValidationErrorItem(
                        field="file", message="Report file was not uploaded.",
                    )],
                )
            errors = await asyncio.to_thread(self._validator.validate, request.file, content)
        except Exception as exc:
            logger.exception(
                "Validation attempt %s for report %s failed: %s",
                request.attempt_id, request.report_id, exc,
            )
            return ValidationResult(outcome=ValidationOutcome.TECH_ERROR, error_message=str(exc))

        if errors:
            return ValidationResult(outcome=ValidationOutcome.VALIDATION_ERRORS, errors=errors)
        return ValidationResult(outcome=ValidationOutcome.SUCCESS)


async def run_validation(
    manager: "ReportLifecycleManager",
    runner: ValidationRunner,
    request: ValidationRequest,
) -> ValidationOutcome | None:
    """Run one attempt and report its outcome.

    Returns the recorded outcome, or None if the attempt was already closed
    (timed out, or reported by someone else).
    """
    result = await runner.run(request)
    try:
        await manager.record_validation_outcome(
            request.attempt_id,
            result.outcome,
            result.errors,
            error_message=result.error_message,
        )
    except (InvalidStateError, NotFoundError) as exc:
        logger.warning(
            "Discarding outcome %s for attempt %s: %s",
            result.outcome, request.attempt_id, exc,
        )
        return None
    return result.outcome


class AsyncioTaskDispatcher:
    """Runs each request as an asyncio task in the current loop.

    Keeps strong references until tasks finish; ``drain`` awaits them.
    """

    def __init__(self, handler: Callable[[ValidationRequest], Awaitable[object]]) -> None:
        self._handler = handler
        self._tasks: set[asyncio.Task] = set()

    async def dispatch(self, request: ValidationRequest) -> None:
        task = asyncio.create_task(self._handler(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
