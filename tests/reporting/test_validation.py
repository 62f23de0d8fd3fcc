"""Tests for the spreadsheet validator, ValidationRunner and dispatch helpers."""

import io

import pytest
from openpyxl import Workbook
from uuid_extensions import uuid7

from src.models.report import (
    FileDescriptor,
    ReportStatus,
    ValidationErrorItem,
    ValidationOutcome,
)
from src.reporting.storage import ReportStorageService
from src.reporting.validation import (
    AsyncioTaskDispatcher,
    SpreadsheetReportValidator,
    ValidationRequest,
    ValidationRunner,
    run_validation,
)
from tests.reporting.helpers import Harness


def _xlsx(rows: list[list], *, extra_sheet: list[list] | None = None) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Liquidity"
    for row in rows:
        ws.append(row)
    if extra_sheet is not None:
        other = wb.create_sheet("Capital")
        for row in extra_sheet:
            other.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _descriptor(file_name: str = "q3.xlsx", key: str = "reports/x/q3.xlsx") -> FileDescriptor:
    return FileDescriptor(
        file_name=file_name, original_name=file_name,
        content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        size_bytes=100, storage_key=key,
    )


class TestSpreadsheetReportValidator:

    def test_clean_workbook(self) -> None:
        content = _xlsx([["Item", "Amount"], ["Cash", 1200.5]])
        assert SpreadsheetReportValidator().validate(_descriptor(), content) == []

    def test_error_values_reported_by_cell(self) -> None:
        content = _xlsx([["Item", "Amount"], ["Cash", "#REF!"], ["Bonds", "#DIV/0!"]])
        errors = SpreadsheetReportValidator().validate(_descriptor(), content)
        assert errors == [
            ValidationErrorItem(field="B2", message="Cell contains error value #REF!."),
            ValidationErrorItem(field="B3", message="Cell contains error value #DIV/0!."),
        ]

    def test_multi_sheet_references_include_sheet(self) -> None:
        content = _xlsx([["ok"]], extra_sheet=[["#N/A"]])
        [error] = SpreadsheetReportValidator().validate(_descriptor(), content)
        assert error.field == "Capital!A1"

    def test_empty_workbook(self) -> None:
        [error] = SpreadsheetReportValidator().validate(_descriptor(), _xlsx([]))
        assert error.message == "Workbook contains no data."

    def test_wrong_extension(self) -> None:
        [error] = SpreadsheetReportValidator().validate(_descriptor("q3.pdf"), b"%PDF-1.7")
        assert error.field == "file"
        assert "Unsupported" in error.message

    def test_not_a_workbook(self) -> None:
        [error] = SpreadsheetReportValidator().validate(_descriptor(), b"plain text, not zip")
        assert error.message == "File is not a readable XLSX workbook."

    def test_error_cap(self) -> None:
        content = _xlsx([["#VALUE!"] * 10])
        errors = SpreadsheetReportValidator(max_errors=3).validate(_descriptor(), content)
        assert len(errors) == 3


class TestValidationRunner:

    @pytest.fixture
    def storage(self, storage_root) -> ReportStorageService:
        return ReportStorageService(storage_root)

    def _request(self) -> ValidationRequest:
        return ValidationRequest(report_id=uuid7(), attempt_id=uuid7(), file=_descriptor())

    @pytest.mark.anyio
    async def test_success(self, storage: ReportStorageService) -> None:
        storage.put("reports/x/q3.xlsx", _xlsx([["Cash", 10]]))
        result = await ValidationRunner(storage, SpreadsheetReportValidator()).run(self._request())
        assert result.outcome == ValidationOutcome.SUCCESS
        assert result.errors == []

    @pytest.mark.anyio
    async def test_validation_errors(self, storage: ReportStorageService) -> None:
        storage.put("reports/x/q3.xlsx", _xlsx([["Cash", "#NAME?"]]))
        result = await ValidationRunner(storage, SpreadsheetReportValidator()).run(self._request())
        assert result.outcome == ValidationOutcome.VALIDATION_ERRORS
        assert result.errors[0].field == "B1"

    @pytest.mark.anyio
    async def test_missing_file(self, storage: ReportStorageService) -> None:
        result = await ValidationRunner(storage, SpreadsheetReportValidator()).run(self._request())
        assert result.outcome == ValidationOutcome.VALIDATION_ERRORS
        assert result.errors[0].message == "Report file was not uploaded."

    @pytest.mark.anyio
    async def test_validator_crash_becomes_tech_error(self, storage: ReportStorageService) -> None:
        class _Exploding:
            def validate(self, file, content):
                raise RuntimeError("workbook too large")

        storage.put("reports/x/q3.xlsx", b"data")
        result = await ValidationRunner(storage, _Exploding()).run(self._request())
        assert result.outcome == ValidationOutcome.TECH_ERROR
        assert result.error_message == "workbook too large"


class TestRequestPayload:

    def test_payload_is_json_safe(self) -> None:
        request = ValidationRequest(report_id=uuid7(), attempt_id=uuid7(), file=_descriptor())
        payload = request.to_payload()
        assert isinstance(payload["report_id"], str)
        assert ValidationRequest.from_payload(payload) == request


class TestEndToEndValidation:
    """Submit through the manager, validate with the real runner."""

    @pytest.mark.anyio
    async def test_asyncio_dispatcher_runs_validation(self, storage_root) -> None:
        holder: dict = {}

        async def handler(request: ValidationRequest):
            harness = holder["harness"]
            runner = ValidationRunner(harness.storage, SpreadsheetReportValidator())
            return await run_validation(harness.manager, runner, request)

        dispatcher = AsyncioTaskDispatcher(handler)
        harness = Harness(storage_root, dispatcher=dispatcher)
        holder["harness"] = harness

        report = await harness.draft()
        await harness.manager.upload_file(report.report_id, harness.user, _xlsx([["Cash", 5]]))
        await harness.manager.submit(report.report_id, harness.user)
        await dispatcher.drain()

        assert dispatcher.pending == 0
        final = await harness.store.get_report(report.report_id)
        assert final.status == ReportStatus.SUCCESS

    @pytest.mark.anyio
    async def test_outcome_after_timeout_is_discarded(self, harness: Harness) -> None:
        report, attempt = await harness.processing()
        harness.clock.advance(301)
        await harness.manager.sweep_timeouts()

        [request] = harness.dispatcher.requests
        runner = ValidationRunner(harness.storage, SpreadsheetReportValidator())
        assert await run_validation(harness.manager, runner, request) is None
        assert (await harness.store.get_report(report.report_id)).status == ReportStatus.TIMEOUT
