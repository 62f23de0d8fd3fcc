"""Builders shared by the lifecycle tests."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

from uuid_extensions import uuid7

from src.models.common import Permission
from src.reporting.access import AccessEvaluator, Actor, StaticGrantLookup
from src.reporting.audit import AuditTrail, InMemoryAuditSink
from src.reporting.events import LifecycleEventBus
from src.reporting.lifecycle import LifecyclePolicy, ReportLifecycleManager, run_immediately
from src.reporting.storage import ReportStorageService
from src.reporting.store import InMemoryReportStore
from src.reporting.validation import ValidationRequest

SUBJECT_ID = 1
OTHER_SUBJECT_ID = 2

EXTERNAL_PERMISSIONS = frozenset({
    Permission.REPORTS_VIEW, Permission.REPORTS_CREATE,
    Permission.REPORTS_EDIT, Permission.REPORTS_DELETE,
})
STAFF_PERMISSIONS = frozenset(p.value for p in Permission)


def external_actor(user_id: UUID | None = None, permissions=EXTERNAL_PERMISSIONS) -> Actor:
    return Actor(user_id=user_id or uuid7(), is_internal=False,
                 permissions=frozenset(str(p) for p in permissions))


def staff_actor(permissions=STAFF_PERMISSIONS) -> Actor:
    return Actor(user_id=uuid7(), is_internal=True,
                 permissions=frozenset(str(p) for p in permissions))


class RecordingDispatcher:
    def __init__(self) -> None:
        self.requests: list[ValidationRequest] = []

    async def dispatch(self, request: ValidationRequest) -> None:
        self.requests.append(request)


class FailingDispatcher:
    async def dispatch(self, request: ValidationRequest) -> None:
        raise ConnectionError("broker unreachable")


class DeferredActions:
    """Post-commit scheduler that holds actions until commit() or rollback()."""

    def __init__(self) -> None:
        self.actions: list = []

    async def __call__(self, action) -> None:
        self.actions.append(action)

    async def commit(self) -> None:
        actions, self.actions = self.actions, []
        for action in actions:
            await action()

    def rollback(self) -> None:
        self.actions.clear()


class ManualClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class Harness:
    """ReportLifecycleManager over in-memory collaborators."""

    def __init__(self, storage_root: str, *, dispatcher=None, deadline: int = 300,
                 audit_sink=None, after_commit=None) -> None:
        self.store = InMemoryReportStore()
        self.grants = StaticGrantLookup()
        self.audit_sink = audit_sink or InMemoryAuditSink()
        self.events = LifecycleEventBus()
        self.published: list = []
        self.events.subscribe(self._record)
        self.dispatcher = dispatcher or RecordingDispatcher()
        self.storage = ReportStorageService(storage_root)
        self.clock = ManualClock()
        self.manager = ReportLifecycleManager(
            store=self.store,
            access=AccessEvaluator(self.grants),
            dispatcher=self.dispatcher,
            storage=self.storage,
            audit=AuditTrail(self.audit_sink),
            events=self.events,
            policy=LifecyclePolicy(validation_deadline=timedelta(seconds=deadline)),
            clock=self.clock,
            after_commit=after_commit or run_immediately,
        )
        self.user = external_actor()
        self.grants.approve(self.user.user_id, SUBJECT_ID)

    async def _record(self, event) -> None:
        self.published.append(event)

    async def draft(self, *, file_name: str = "q3.xlsx", period: str = "2026-Q3",
                    register: str = "LIQUIDITY", actor: Actor | None = None,
                    subject_id: int = SUBJECT_ID, **kwargs):
        created = await self.manager.create_draft(
            subject_id=subject_id, period=period, register=register,
            file_name=file_name, original_name=file_name,
            content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            size_bytes=2048, actor=actor or self.user, **kwargs,
        )
        return created.report

    async def processing(self, **kwargs):
        report = await self.draft(**kwargs)
        attempt = await self.manager.submit(report.report_id, self.user)
        return report, attempt
