"""Lifecycle scenarios against the SQL store, audit log and messaging tables."""

import io
from datetime import timedelta

import pytest
from openpyxl import Workbook
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.config.settings import Settings
from src.db.session import session_scope
from src.db.tables import ReportValidationRow
from src.models.common import AccessGrantStatus, utc_now
from src.models.report import ReportStatus, ValidationErrorItem, ValidationOutcome
from src.reporting.errors import InvalidStateError, NotFoundError
from src.reporting.service import build_lifecycle_manager
from src.reporting.storage import ReportStorageService
from src.reporting.sweeper import TimeoutSweeper
from src.reporting.tasks import run_validation_job
from src.repositories.access import AccessGrantRepository, SubjectRepository
from src.repositories.audit import AuditLogRepository
from src.repositories.messages import MessageThreadRepository
from src.repositories.reports import SqlReportStore
from tests.reporting.helpers import RecordingDispatcher, external_actor, staff_actor


def _settings(storage_root: str, **overrides) -> Settings:
    return Settings(OBJECT_STORAGE_PATH=storage_root, **overrides)


async def _seed_subject_and_user(session):
    subject = await SubjectRepository(session).create(name="Bank A", subject_type="BANK")
    user = external_actor()
    await AccessGrantRepository(session).create(
        user_id=user.user_id, subject_id=subject.subject_id,
        status=AccessGrantStatus.APPROVED.value,
    )
    return subject.subject_id, user


def _xlsx(value) -> bytes:
    wb = Workbook()
    wb.active.append(["Cash", value])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


class TestSqlLifecycle:

    @pytest.mark.anyio
    async def test_submit_and_validation_errors(self, db_session, storage_root) -> None:
        subject_id, user = await _seed_subject_and_user(db_session)
        dispatcher = RecordingDispatcher()
        manager = build_lifecycle_manager(
            db_session, dispatcher=dispatcher,
            storage=ReportStorageService(storage_root), settings=_settings(storage_root),
        )

        created = await manager.create_draft(
            subject_id=subject_id, period="2026-Q3", register="LIQUIDITY",
            file_name="q3.xlsx", original_name="q3.xlsx",
            content_type="application/vnd.ms-excel", size_bytes=10, actor=user,
        )
        rid = created.report.report_id
        attempt = await manager.submit(rid, user)
        assert (await manager.get_report(rid, user)).status == ReportStatus.PROCESSING

        errors = [ValidationErrorItem(field="A1", message="Must be numeric.")]
        updated = await manager.record_validation_outcome(
            attempt.attempt_id, ValidationOutcome.VALIDATION_ERRORS, errors,
        )
        assert updated.status == ReportStatus.VALIDATION_ERRORS
        assert updated.version == 3

        [stored] = await manager.list_validation_attempts(rid, user)
        assert stored.errors == errors

        audit = await AuditLogRepository(db_session).list_by_entity(str(rid))
        assert [r.action for r in audit] == [
            "REPORT_CREATE", "REPORT_SUBMIT", "REPORT_PROCESSING", "REPORT_VALIDATED",
        ]

    @pytest.mark.anyio
    async def test_dispute_opens_thread(self, db_session, storage_root) -> None:
        subject_id, user = await _seed_subject_and_user(db_session)
        manager = build_lifecycle_manager(
            db_session, dispatcher=RecordingDispatcher(),
            storage=ReportStorageService(storage_root), settings=_settings(storage_root),
        )
        created = await manager.create_draft(
            subject_id=subject_id, period="2026-Q3", register="LIQUIDITY",
            file_name="q3.xlsx", original_name="q3.xlsx",
            content_type="application/vnd.ms-excel", size_bytes=10, actor=user,
        )
        rid = created.report.report_id
        attempt = await manager.submit(rid, user)
        await manager.record_validation_outcome(
            attempt.attempt_id, ValidationOutcome.VALIDATION_ERRORS,
            [ValidationErrorItem(field="A1", message="bad")],
        )

        disputed = await manager.dispute(rid, staff_actor(), "Incomplete financial data for Q1")
        assert disputed.status == ReportStatus.DISPUTED_BY_UKNF

        [thread] = await MessageThreadRepository(db_session).list_by_report(rid)
        assert thread.priority == "HIGH"

    @pytest.mark.anyio
    async def test_delete_draft(self, db_session, storage_root) -> None:
        subject_id, user = await _seed_subject_and_user(db_session)
        manager = build_lifecycle_manager(
            db_session, storage=ReportStorageService(storage_root),
            settings=_settings(storage_root),
        )
        created = await manager.create_draft(
            subject_id=subject_id, period="2026-Q3", register="LIQUIDITY",
            file_name="q3.xlsx", original_name="q3.xlsx",
            content_type="application/vnd.ms-excel", size_bytes=10, actor=user,
        )
        await manager.delete(created.report.report_id, user)
        with pytest.raises(NotFoundError):
            await manager.get_report(created.report.report_id, user)


class TestBackgroundWork:
    """Validation job and timeout sweeper, each in its own committed unit of work."""

    @pytest.fixture
    def factory(self, db_engine):
        return async_sessionmaker(bind=db_engine, expire_on_commit=False)

    async def _submitted(self, factory, storage_root, content: bytes | None):
        storage = ReportStorageService(storage_root)
        dispatcher = RecordingDispatcher()
        async with session_scope(factory) as session:
            subject_id, user = await _seed_subject_and_user(session)
            manager = build_lifecycle_manager(
                session, dispatcher=dispatcher, storage=storage,
                settings=_settings(storage_root),
            )
            created = await manager.create_draft(
                subject_id=subject_id, period="2026-Q3", register="LIQUIDITY",
                file_name="q3.xlsx", original_name="q3.xlsx",
                content_type="application/vnd.ms-excel", size_bytes=10, actor=user,
            )
            if content is not None:
                await manager.upload_file(created.report.report_id, user, content)
            await manager.submit(created.report.report_id, user)
        return created.report.report_id, dispatcher.requests[0]

    @pytest.mark.anyio
    async def test_validation_job_records_success(
        self, factory, storage_root, monkeypatch,
    ) -> None:
        monkeypatch.setenv("OBJECT_STORAGE_PATH", storage_root)
        rid, request = await self._submitted(factory, storage_root, _xlsx(120))

        outcome = await run_validation_job(request.to_payload(), session_factory=factory)
        assert outcome == "SUCCESS"

        async with session_scope(factory) as session:
            report = await SqlReportStore(session).get_report(rid)
        assert report.status == ReportStatus.SUCCESS

    @pytest.mark.anyio
    async def test_validation_job_reports_errors(
        self, factory, storage_root, monkeypatch,
    ) -> None:
        monkeypatch.setenv("OBJECT_STORAGE_PATH", storage_root)
        rid, request = await self._submitted(factory, storage_root, _xlsx("#REF!"))

        outcome = await run_validation_job(request.to_payload(), session_factory=factory)
        assert outcome == "VALIDATION_ERRORS"

        async with session_scope(factory) as session:
            [attempt] = await SqlReportStore(session).list_validation_attempts(rid)
        assert attempt.errors[0].field == "B1"

    @pytest.mark.anyio
    async def test_second_job_run_is_discarded(
        self, factory, storage_root, monkeypatch,
    ) -> None:
        monkeypatch.setenv("OBJECT_STORAGE_PATH", storage_root)
        _, request = await self._submitted(factory, storage_root, _xlsx(1))
        await run_validation_job(request.to_payload(), session_factory=factory)
        assert await run_validation_job(request.to_payload(), session_factory=factory) is None

    @pytest.mark.anyio
    async def test_sweeper_times_out_overdue_attempt(self, factory, storage_root) -> None:
        rid, request = await self._submitted(factory, storage_root, None)
        sweeper = TimeoutSweeper(
            interval=60, session_factory=factory,
            settings=_settings(storage_root),
        )
        assert await sweeper.run_once() == []

        # pull the deadline into the past
        async with session_scope(factory) as session:
            await session.execute(
                update(ReportValidationRow)
                .where(ReportValidationRow.attempt_id == request.attempt_id)
                .values(deadline_at=utc_now() - timedelta(seconds=1))
            )

        assert await sweeper.run_once() == [rid]
        async with session_scope(factory) as session:
            report = await SqlReportStore(session).get_report(rid)
        assert report.status == ReportStatus.TIMEOUT

        with pytest.raises(InvalidStateError):
            async with session_scope(factory) as session:
                manager = build_lifecycle_manager(
                    session, storage=ReportStorageService(storage_root),
                    settings=_settings(storage_root),
                )
                await manager.record_validation_outcome(
                    request.attempt_id, ValidationOutcome.SUCCESS,
                )

    @pytest.mark.anyio
    async def test_sweeper_start_stop(self, factory, storage_root) -> None:
        sweeper = TimeoutSweeper(
            interval=0.01, session_factory=factory, settings=_settings(storage_root),
        )
        sweeper.start()
        assert sweeper.running
        await sweeper.stop()
        assert not sweeper.running


class TestCommitOrdering:
    """Dispatch and file removal happen only once the unit of work commits."""

    @pytest.fixture
    def factory(self, db_engine):
        return async_sessionmaker(bind=db_engine, expire_on_commit=False)

    async def _draft(self, session, storage, storage_root, dispatcher=None):
        subject_id, user = await _seed_subject_and_user(session)
        manager = build_lifecycle_manager(
            session, dispatcher=dispatcher, storage=storage, settings=_settings(storage_root),
        )
        created = await manager.create_draft(
            subject_id=subject_id, period="2026-Q3", register="LIQUIDITY",
            file_name="q3.xlsx", original_name="q3.xlsx",
            content_type="application/vnd.ms-excel", size_bytes=10, actor=user,
        )
        return manager, user, created.report

    @pytest.mark.anyio
    async def test_dispatch_follows_commit(self, factory, storage_root) -> None:
        storage = ReportStorageService(storage_root)
        dispatcher = RecordingDispatcher()
        async with session_scope(factory) as session:
            manager, user, report = await self._draft(session, storage, storage_root, dispatcher)
            attempt = await manager.submit(report.report_id, user)
            assert dispatcher.requests == []

        [request] = dispatcher.requests
        assert request.attempt_id == attempt.attempt_id
        async with session_scope(factory) as session:
            stored = await SqlReportStore(session).get_validation_attempt(request.attempt_id)
        assert stored is not None

    @pytest.mark.anyio
    async def test_rolled_back_submit_is_not_dispatched(self, factory, storage_root) -> None:
        storage = ReportStorageService(storage_root)
        dispatcher = RecordingDispatcher()
        with pytest.raises(RuntimeError):
            async with session_scope(factory) as session:
                manager, user, report = await self._draft(
                    session, storage, storage_root, dispatcher,
                )
                await manager.submit(report.report_id, user)
                raise RuntimeError("request failed after submit")
        assert dispatcher.requests == []

    @pytest.mark.anyio
    async def test_file_removed_after_delete_commits(self, factory, storage_root) -> None:
        storage = ReportStorageService(storage_root)
        async with session_scope(factory) as session:
            manager, user, report = await self._draft(session, storage, storage_root)
            await manager.upload_file(report.report_id, user, b"PK\x03\x04data")

        async with session_scope(factory) as session:
            manager = build_lifecycle_manager(
                session, storage=storage, settings=_settings(storage_root),
            )
            await manager.delete(report.report_id, user)
            assert storage.exists(report.file.storage_key)

        assert not storage.exists(report.file.storage_key)

    @pytest.mark.anyio
    async def test_failed_delete_keeps_row_and_file(self, factory, storage_root) -> None:
        storage = ReportStorageService(storage_root)
        async with session_scope(factory) as session:
            manager, user, report = await self._draft(session, storage, storage_root)
            await manager.upload_file(report.report_id, user, b"PK\x03\x04data")

        with pytest.raises(RuntimeError):
            async with session_scope(factory) as session:
                manager = build_lifecycle_manager(
                    session, storage=storage, settings=_settings(storage_root),
                )
                await manager.delete(report.report_id, user)
                raise RuntimeError("commit never reached")

        assert storage.exists(report.file.storage_key)
        async with session_scope(factory) as session:
            assert await SqlReportStore(session).get_report(report.report_id) is not None
