"""Wiring of ReportLifecycleManager over a database session.

Request handlers, validation jobs and the timeout sweeper each build their
own manager around the session of their unit of work. Dispatches and file
removals wait for that session to commit.
"""

import logging
from functools import partial

from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import Settings, get_settings
from src.db.session import defer_until_commit
from src.reporting.access import AccessEvaluator
from src.reporting.audit import AuditTrail, RepositoryAuditSink
from src.reporting.events import LifecycleEventBus
from src.reporting.lifecycle import LifecyclePolicy, ReportLifecycleManager
from src.reporting.messaging import DisputeThreadOpener
from src.reporting.storage import ReportStorageService
from src.reporting.validation import ValidationDispatcher, ValidationRequest
from src.repositories.access import AccessGrantRepository
from src.repositories.audit import AuditLogRepository
from src.repositories.messages import MessageThreadRepository
from src.repositories.reports import SqlReportStore

logger = logging.getLogger(__name__)


class NoDispatch:
    """Dispatcher for managers that never submit (callbacks, sweeps)."""

    async def dispatch(self, request: ValidationRequest) -> None:
        logger.warning(
            "Validation attempt %s dispatched without a runner; it will time out",
            request.attempt_id,
        )


def build_lifecycle_manager(
    session: AsyncSession,
    *,
    dispatcher: ValidationDispatcher | None = None,
    storage: ReportStorageService | None = None,
    settings: Settings | None = None,
) -> ReportLifecycleManager:
    settings = settings or get_settings()
    events = LifecycleEventBus()
    DisputeThreadOpener(MessageThreadRepository(session)).register(events)
    return ReportLifecycleManager(
        store=SqlReportStore(session),
        access=AccessEvaluator(AccessGrantRepository(session)),
        dispatcher=dispatcher or NoDispatch(),
        storage=storage or ReportStorageService(settings.OBJECT_STORAGE_PATH),
        audit=AuditTrail(RepositoryAuditSink(AuditLogRepository(session))),
        events=events,
        policy=LifecyclePolicy.from_settings(settings),
        after_commit=partial(defer_until_commit, session),
    )
