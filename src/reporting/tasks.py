"""Validation jobs and their dispatchers.

When CELERY_BROKER_URL is configured, validation runs in a Celery worker.
When empty (dev/test), it runs as a FastAPI background task after the
submitting request has committed.

run_validation_job holds the shared logic used by both paths.
"""

import asyncio
import logging

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config.settings import get_settings
from src.db.session import session_scope
from src.reporting.service import build_lifecycle_manager
from src.reporting.storage import ReportStorageService
from src.reporting.validation import (
    SpreadsheetReportValidator,
    ValidationRequest,
    ValidationRunner,
    run_validation,
)

logger = logging.getLogger(__name__)

VALIDATE_TASK_NAME = "uknf.validate_report"

# ---------------------------------------------------------------------------
# Celery app (lazy init, only created when a broker URL is configured)
# ---------------------------------------------------------------------------

_celery_app = None


def get_celery_app():
    """Get or create the Celery application."""
    global _celery_app
    if _celery_app is None:
        from celery import Celery

        settings = get_settings()
        broker_url = settings.CELERY_BROKER_URL or settings.REDIS_URL
        _celery_app = Celery(
            "uknf_reports",
            broker=broker_url,
            backend=broker_url,
        )
        _celery_app.conf.task_serializer = "json"
        _celery_app.conf.result_serializer = "json"
    return _celery_app


# ---------------------------------------------------------------------------
# Shared validation job
# ---------------------------------------------------------------------------


async def run_validation_job(
    payload: dict,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    storage: ReportStorageService | None = None,
) -> str | None:
    """Validate one attempt in its own unit of work.

    Returns the recorded outcome, or None when the attempt was already closed.
    """
    settings = get_settings()
    request = ValidationRequest.from_payload(payload)
    storage = storage or ReportStorageService(settings.OBJECT_STORAGE_PATH)
    runner = ValidationRunner(storage, SpreadsheetReportValidator())

    async with session_scope(session_factory) as session:
        manager = build_lifecycle_manager(session, storage=storage, settings=settings)
        outcome = await run_validation(manager, runner, request)

    logger.info("Validation attempt %s finished: %s", request.attempt_id, outcome)
    return outcome.value if outcome is not None else None


# ---------------------------------------------------------------------------
# Dispatchers
# ---------------------------------------------------------------------------


class BackgroundTaskDispatcher:
    """Schedule validation to run after the response is sent."""

    def __init__(
        self,
        background_tasks: BackgroundTasks,
        *,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        storage: ReportStorageService | None = None,
    ) -> None:
        self._tasks = background_tasks
        self._session_factory = session_factory
        self._storage = storage

    async def dispatch(self, request: ValidationRequest) -> None:
        self._tasks.add_task(
            run_validation_job,
            request.to_payload(),
            session_factory=self._session_factory,
            storage=self._storage,
        )


def _celery_validate_task(payload: dict) -> str | None:
    """Celery task that runs validation in a worker process."""
    return asyncio.run(run_validation_job(payload))


class CeleryValidationDispatcher:
    """Send validation to a Celery worker. Payload is JSON-safe."""

    async def dispatch(self, request: ValidationRequest) -> None:
        app = get_celery_app()
        task = app.task(name=VALIDATE_TASK_NAME)(_celery_validate_task)
        task.delay(request.to_payload())
