"""FastAPI dependency injection factories.

Factories bind the request AsyncSession, storage and validation dispatcher
into a ReportLifecycleManager. API endpoints use these via Depends().

Authentication happens at the gateway. It forwards the caller as headers:
X-Actor-Id (UUID), X-Actor-Internal (bool) and X-Actor-Permissions
(comma-separated permission strings).
"""

from uuid import UUID

from fastapi import BackgroundTasks, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config.settings import Settings, get_settings
from src.db.session import get_async_session, get_session_factory
from src.reporting.access import Actor
from src.reporting.lifecycle import ReportLifecycleManager
from src.reporting.service import build_lifecycle_manager
from src.reporting.storage import ReportStorageService
from src.reporting.tasks import BackgroundTaskDispatcher, CeleryValidationDispatcher
from src.reporting.validation import ValidationDispatcher

# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


async def get_current_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_internal: bool = Header(default=False),
    x_actor_permissions: str = Header(default=""),
) -> Actor:
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id header.")
    try:
        user_id = UUID(x_actor_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="X-Actor-Id must be a UUID.") from None
    permissions = frozenset(
        p.strip() for p in x_actor_permissions.split(",") if p.strip()
    )
    return Actor(user_id=user_id, is_internal=x_actor_internal, permissions=permissions)


# ---------------------------------------------------------------------------
# Reporting services
# ---------------------------------------------------------------------------


def get_storage_service(
    settings: Settings = Depends(get_settings),
) -> ReportStorageService:
    return ReportStorageService(settings.OBJECT_STORAGE_PATH)


async def get_validation_dispatcher(
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    storage: ReportStorageService = Depends(get_storage_service),
) -> ValidationDispatcher:
    if settings.uses_celery:
        return CeleryValidationDispatcher()
    return BackgroundTaskDispatcher(
        background_tasks, session_factory=session_factory, storage=storage,
    )


async def get_lifecycle_manager(
    session: AsyncSession = Depends(get_async_session),
    dispatcher: ValidationDispatcher = Depends(get_validation_dispatcher),
    storage: ReportStorageService = Depends(get_storage_service),
    settings: Settings = Depends(get_settings),
) -> ReportLifecycleManager:
    return build_lifecycle_manager(
        session, dispatcher=dispatcher, storage=storage, settings=settings,
    )
