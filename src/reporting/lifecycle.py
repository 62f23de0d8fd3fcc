"""Report lifecycle manager.

Owns every report status change:
- create_draft / delete: DRAFT rows only
- submit: DRAFT → SUBMITTED → PROCESSING, then hands off validation
- record_validation_outcome: PROCESSING → SUCCESS | VALIDATION_ERRORS | TECH_ERROR
- sweep_timeouts: PROCESSING → TIMEOUT for attempts past their deadline
- dispute: VALIDATION_ERRORS → DISPUTED_BY_UKNF (internal staff)
- reopen: VALIDATION_ERRORS | TECH_ERROR | TIMEOUT → DRAFT

Guards (permission, subject access, state, input) all run before the first
write. Writes are compare-and-set on the store, so a lost race surfaces as
InvalidStateError instead of overwriting a status. Each applied transition
emits one audit record and one ReportStatusChanged event.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from uuid import UUID

from pydantic import ValidationError

from src.config.settings import Settings
from src.models.common import Permission, new_uuid7, utc_now
from src.models.report import (
    FileDescriptor,
    Report,
    ReportStatus,
    ValidationAttempt,
    ValidationAttemptStatus,
    ValidationErrorItem,
    ValidationOutcome,
)
from src.reporting.access import AccessEvaluator, Actor
from src.reporting.audit import AuditAction, AuditTrail
from src.reporting.errors import (
    InputValidationError,
    InvalidStateError,
    NotFoundError,
)
from src.reporting.events import LifecycleEventBus, ReportDisputed, ReportStatusChanged
from src.reporting.state_machine import (
    OUTCOME_RESOLUTION,
    REOPENABLE_STATES,
    require_transition,
)
from src.reporting.storage import ReportStorageService, UploadTarget
from src.reporting.store import ReportQuery, ReportStore, SORTABLE_FIELDS
from src.reporting.validation import ValidationDispatcher, ValidationRequest

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Validation deadline exceeded."

PostCommitAction = Callable[[], Awaitable[None]]


async def run_immediately(action: PostCommitAction) -> None:
    """Post-commit scheduler for stores without a surrounding transaction."""
    await action()


@dataclass(frozen=True)
class LifecyclePolicy:
    """Tunable lifecycle limits."""

    validation_deadline: timedelta = timedelta(seconds=300)
    dispute_reason_min_length: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "LifecyclePolicy":
        return cls(
            validation_deadline=timedelta(seconds=settings.VALIDATION_DEADLINE_SECONDS),
            dispute_reason_min_length=settings.DISPUTE_REASON_MIN_LENGTH,
        )


@dataclass(frozen=True)
class DraftCreated:
    report: Report
    upload: UploadTarget


class ReportLifecycleManager:
    """State machine over persisted reports. All collaborators are injected."""

    def __init__(
        self,
        *,
        store: ReportStore,
        access: AccessEvaluator,
        dispatcher: ValidationDispatcher,
        storage: ReportStorageService,
        audit: AuditTrail,
        events: LifecycleEventBus | None = None,
        policy: LifecyclePolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
        after_commit: Callable[[PostCommitAction], Awaitable[None]] = run_immediately,
    ) -> None:
        self._store = store
        self._access = access
        self._dispatcher = dispatcher
        self._storage = storage
        self._audit = audit
        self._events = events or LifecycleEventBus()
        self._policy = policy or LifecyclePolicy()
        self._clock = clock
        self._after_commit = after_commit

    @property
    def events(self) -> LifecycleEventBus:
        return self._events

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_report(self, report_id: UUID, actor: Actor) -> Report:
        self._access.require_permission(actor, Permission.REPORTS_VIEW)
        report = await self._load_report(report_id)
        await self._access.require_subject_access(actor, report.subject_id)
        return report

    async def list_validation_attempts(
        self, report_id: UUID, actor: Actor,
    ) -> list[ValidationAttempt]:
        """Attempt history, most recent first."""
        await self.get_report(report_id, actor)
        return await self._store.list_validation_attempts(report_id)

    async def list_reports(self, actor: Actor, query: ReportQuery) -> tuple[list[Report], int]:
        """Filtered page of reports visible to the actor, plus the total count."""
        self._access.require_permission(actor, Permission.REPORTS_VIEW)
        if query.sort_by not in SORTABLE_FIELDS:
            msg = f"Cannot sort by {query.sort_by!r}. Allowed: {sorted(SORTABLE_FIELDS)}."
            raise InputValidationError(msg, field="sort_by")
        if query.sort_order not in ("asc", "desc"):
            raise InputValidationError("sort_order must be 'asc' or 'desc'.", field="sort_order")
        if query.page < 1 or not 1 <= query.page_size <= 100:
            raise InputValidationError("page must be >= 1 and page_size in 1..100.", field="page")

        visible = await self._access.visible_subject_ids(actor)
        scoped = ReportQuery(
            status=query.status,
            period=query.period,
            subject_id=query.subject_id,
            register=query.register,
            visible_subject_ids=visible,
            page=query.page,
            page_size=query.page_size,
            sort_by=query.sort_by,
            sort_order=query.sort_order,
        )
        return await self._store.list_reports(scoped)

    # ------------------------------------------------------------------
    # Draft creation / deletion
    # ------------------------------------------------------------------

    async def create_draft(
        self,
        *,
        subject_id: int,
        period: str,
        register: str,
        file_name: str,
        original_name: str,
        content_type: str,
        size_bytes: int,
        actor: Actor,
        corrects_report_id: UUID | None = None,
    ) -> DraftCreated:
        """Register upload intent and return the DRAFT report plus its upload target.

        Raises:
            AccessDeniedError: Missing permission or no approved grant for the subject.
            InputValidationError: Missing or malformed fields.
            NotFoundError: ``corrects_report_id`` does not exist.
            InvalidStateError: The same submission already exists.
        """
        self._access.require_permission(actor, Permission.REPORTS_CREATE)
        await self._access.require_subject_access(actor, subject_id)

        period = (period or "").strip()
        register = (register or "").strip()
        if not period:
            raise InputValidationError("Reporting period is required.", field="period")
        if not register:
            raise InputValidationError("Register is required.", field="register")

        report_id = new_uuid7()
        try:
            file = FileDescriptor(
                file_name=file_name,
                original_name=original_name,
                content_type=content_type,
                size_bytes=size_bytes,
                storage_key=self._storage.storage_key_for(report_id, file_name or ""),
            )
        except ValidationError as exc:
            first = exc.errors()[0]
            field_name = ".".join(str(p) for p in first["loc"])
            msg = f"Invalid file descriptor: {field_name}: {first['msg']}"
            raise InputValidationError(msg, field=field_name) from None

        if corrects_report_id is not None:
            corrected = await self._store.get_report(corrects_report_id)
            if corrected is None:
                raise NotFoundError.report(corrects_report_id)
            if corrected.subject_id != subject_id:
                msg = "A correction must belong to the same subject as the corrected report."
                raise InputValidationError(msg, field="corrects_report_id")

        if await self._store.find_duplicate(subject_id, period, register, file.file_name):
            msg = "A report with this subject, period, register and file already exists."
            raise InvalidStateError(msg)

        report = await self._store.create_report(Report(
            report_id=report_id,
            subject_id=subject_id,
            period=period,
            register=register,
            file=file,
            corrects_report_id=corrects_report_id,
            created_by=actor.user_id,
        ))
        logger.info("Report %s created as DRAFT for subject %s", report_id, subject_id)

        await self._audit.emit(
            AuditAction.REPORT_CREATE,
            entity_id=report_id, before=None, after=report, actor_id=actor.user_id,
        )
        await self._events.publish(ReportStatusChanged(
            report_id=report_id, subject_id=subject_id,
            new_status=ReportStatus.DRAFT, previous_status=None,
        ))
        return DraftCreated(
            report=report,
            upload=self._storage.upload_target(report_id, file.storage_key),
        )

    async def upload_file(self, report_id: UUID, actor: Actor, content: bytes) -> str:
        """Store the draft's file bytes. Returns the sha256 digest."""
        self._access.require_permission(actor, Permission.REPORTS_CREATE)
        report = await self._load_report(report_id)
        await self._access.require_subject_access(actor, report.subject_id)
        if report.status != ReportStatus.DRAFT:
            raise InvalidStateError("Files can only be uploaded to draft reports.")
        try:
            return self._storage.put(report.file.storage_key, content)
        except ValueError as exc:
            raise InputValidationError(str(exc), field="file") from None

    async def delete(self, report_id: UUID, actor: Actor) -> None:
        """Remove a DRAFT report.

        Raises:
            NotFoundError, AccessDeniedError, InvalidStateError (not DRAFT).
        """
        self._access.require_permission(actor, Permission.REPORTS_DELETE)
        report = await self._load_report(report_id)
        await self._access.require_subject_access(actor, report.subject_id)
        if report.status != ReportStatus.DRAFT:
            raise InvalidStateError("Only draft reports can be deleted.")

        if not await self._store.delete_report(report_id, ReportStatus.DRAFT):
            raise InvalidStateError("Report changed status before it could be deleted.")
        await self._after_commit(partial(self._remove_file, report.file.storage_key))
        logger.info("Report %s deleted by %s", report_id, actor.user_id)

        await self._audit.emit(
            AuditAction.REPORT_DELETE,
            entity_id=report_id, before=report, after=None, actor_id=actor.user_id,
        )
        await self._events.publish(ReportStatusChanged(
            report_id=report_id, subject_id=report.subject_id,
            new_status=None, previous_status=ReportStatus.DRAFT,
        ))

    # ------------------------------------------------------------------
    # Submission and validation
    # ------------------------------------------------------------------

    async def submit(self, report_id: UUID, actor: Actor) -> ValidationAttempt:
        """Submit a DRAFT for validation and return the PENDING attempt.

        Does not wait for validation; the dispatcher runs it out of band once
        the PENDING attempt is committed.

        Raises:
            NotFoundError, AccessDeniedError, InvalidStateError (not DRAFT or lost race).
        """
        self._access.require_permission(actor, Permission.REPORTS_CREATE)
        report = await self._load_report(report_id)
        await self._access.require_subject_access(actor, report.subject_id)
        if report.status != ReportStatus.DRAFT:
            raise InvalidStateError("Only draft reports can be submitted.")

        submitted = await self._transition(
            report, ReportStatus.SUBMITTED, AuditAction.REPORT_SUBMIT, actor.user_id,
        )
        attempt = await self._store.create_validation_attempt(
            report_id, self._clock() + self._policy.validation_deadline,
        )
        processing = await self._transition(
            submitted, ReportStatus.PROCESSING, AuditAction.REPORT_PROCESSING, actor.user_id,
        )

        request = ValidationRequest(
            report_id=report_id, attempt_id=attempt.attempt_id, file=processing.file,
        )
        await self._after_commit(partial(self._dispatch, request, attempt.deadline_at))
        return attempt

    async def record_validation_outcome(
        self,
        attempt_id: UUID,
        outcome: ValidationOutcome,
        errors: list[ValidationErrorItem] | None = None,
        *,
        error_message: str | None = None,
    ) -> Report:
        """Close a PENDING attempt and move its report to the matching status.

        Single-writer callback: a second call for the same attempt, or a call
        after the timeout sweep closed it, raises InvalidStateError.
        """
        errors = list(errors or [])
        if outcome == ValidationOutcome.VALIDATION_ERRORS and not errors:
            raise InputValidationError(
                "VALIDATION_ERRORS outcome requires at least one error.", field="errors",
            )
        if outcome != ValidationOutcome.VALIDATION_ERRORS and errors:
            raise InputValidationError(
                f"{outcome} outcome must not carry validation errors.", field="errors",
            )

        attempt = await self._store.get_validation_attempt(attempt_id)
        if attempt is None:
            raise NotFoundError.attempt(attempt_id)
        if attempt.is_terminal:
            msg = f"Validation attempt {attempt_id} is already {attempt.status}."
            raise InvalidStateError(msg)

        report = await self._load_report(attempt.report_id)
        attempt_status, target = OUTCOME_RESOLUTION[outcome]
        require_transition(report.status, target)

        closed = await self._store.complete_validation_attempt(
            attempt_id,
            status=attempt_status,
            outcome=outcome,
            errors=errors,
            error_message=error_message,
        )
        if not closed:
            msg = f"Validation attempt {attempt_id} was closed concurrently."
            raise InvalidStateError(msg)

        return await self._transition(report, target, AuditAction.REPORT_VALIDATED, None)

    async def sweep_timeouts(self, now: datetime | None = None) -> list[UUID]:
        """Fail PENDING attempts past their deadline and mark their reports TIMEOUT.

        Safe to run repeatedly and concurrently with late callbacks: whoever
        closes the attempt first wins. Returns the ids of timed-out reports.
        """
        now = now or self._clock()
        timed_out: list[UUID] = []
        for attempt in await self._store.find_pending_attempts_past_deadline(now):
            closed = await self._store.complete_validation_attempt(
                attempt.attempt_id,
                status=ValidationAttemptStatus.FAILED,
                outcome=None,
                error_message=TIMEOUT_MESSAGE,
            )
            if not closed:
                continue
            report = await self._store.get_report(attempt.report_id)
            if report is None:
                continue
            try:
                await self._transition(report, ReportStatus.TIMEOUT, AuditAction.REPORT_TIMEOUT, None)
            except InvalidStateError:
                logger.warning(
                    "Attempt %s timed out but report %s is %s; status left unchanged",
                    attempt.attempt_id, report.report_id, report.status,
                )
                continue
            timed_out.append(report.report_id)
        if timed_out:
            logger.info("Timeout sweep closed %d validation attempt(s)", len(timed_out))
        return timed_out

    # ------------------------------------------------------------------
    # Post-validation actions
    # ------------------------------------------------------------------

    async def dispute(self, report_id: UUID, actor: Actor, reason: str) -> Report:
        """Internal staff contest a VALIDATION_ERRORS result.

        Raises:
            AccessDeniedError: Actor is external or lacks REPORTS_DISPUTE.
            InputValidationError: Reason shorter than the configured minimum.
            NotFoundError, InvalidStateError (not VALIDATION_ERRORS).
        """
        self._access.require_internal(actor, "dispute reports")
        self._access.require_permission(actor, Permission.REPORTS_DISPUTE)
        min_len = self._policy.dispute_reason_min_length
        if reason is None or len(reason.strip()) < min_len:
            msg = f"Dispute reason must be at least {min_len} characters."
            raise InputValidationError(msg, field="reason")

        report = await self._load_report(report_id)
        if report.status != ReportStatus.VALIDATION_ERRORS:
            raise InvalidStateError("Only reports with validation errors can be disputed.")

        disputed = await self._transition(
            report, ReportStatus.DISPUTED_BY_UKNF, AuditAction.REPORT_DISPUTE, actor.user_id,
        )
        await self._events.publish(ReportDisputed(
            report_id=report_id,
            subject_id=report.subject_id,
            reason=reason,
            raised_by=actor.user_id,
            original_name=report.file.original_name,
        ))
        return disputed

    async def reopen(self, report_id: UUID, actor: Actor) -> Report:
        """Return a failed report to DRAFT for a fresh submission cycle."""
        self._access.require_permission(actor, Permission.REPORTS_EDIT)
        report = await self._load_report(report_id)
        await self._access.require_subject_access(actor, report.subject_id)
        if report.status not in REOPENABLE_STATES:
            allowed = sorted(s.value for s in REOPENABLE_STATES)
            raise InvalidStateError(f"Only reports in {allowed} can be reopened.")
        return await self._transition(
            report, ReportStatus.DRAFT, AuditAction.REPORT_REOPEN, actor.user_id,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch(self, request: ValidationRequest, deadline_at: datetime) -> None:
        try:
            await self._dispatcher.dispatch(request)
        except Exception:
            logger.exception(
                "Dispatch of validation attempt %s failed; it will time out at %s",
                request.attempt_id, deadline_at,
            )

    async def _remove_file(self, storage_key: str) -> None:
        if self._storage.exists(storage_key):
            self._storage.delete(storage_key)

    async def _load_report(self, report_id: UUID) -> Report:
        report = await self._store.get_report(report_id)
        if report is None:
            raise NotFoundError.report(report_id)
        return report

    async def _transition(
        self,
        report: Report,
        target: ReportStatus,
        action: AuditAction,
        actor_id: UUID | None,
    ) -> Report:
        """Compare-and-set ``report.status → target``; audit and publish on success."""
        require_transition(report.status, target)
        if not await self._store.update_report_status(report.report_id, report.status, target):
            msg = f"Report {report.report_id} is no longer {report.status}."
            raise InvalidStateError(msg)

        updated = await self._load_report(report.report_id)
        logger.info("Report %s: %s -> %s", report.report_id, report.status, target)

        await self._audit.emit(
            action, entity_id=report.report_id, before=report, after=updated, actor_id=actor_id,
        )
        await self._events.publish(ReportStatusChanged(
            report_id=report.report_id,
            subject_id=report.subject_id,
            new_status=target,
            previous_status=report.status,
        ))
        return updated
