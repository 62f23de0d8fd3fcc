"""SQLAlchemy async session setup for the report portal.

Request handlers get a session through ``get_async_session``; background
work (validation jobs, the timeout sweeper) opens its own unit of work with
``session_scope``. Both commit once on success and roll back on error.

Side effects outside the database (queueing a validation job, removing a
stored file) are registered with ``defer_until_commit`` and run only after
the transaction has committed. A rollback discards them.
"""

import logging
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.config.settings import LogLevel, get_settings

logger = logging.getLogger(__name__)

PostCommitAction = Callable[[], Awaitable[None]]

_AFTER_COMMIT_KEY = "after_commit_actions"


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


_settings = get_settings()

engine = create_async_engine(
    _settings.DATABASE_URL,
    echo=(_settings.LOG_LEVEL == LogLevel.DEBUG),
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Post-commit actions
# ---------------------------------------------------------------------------


async def defer_until_commit(session: AsyncSession, action: PostCommitAction) -> None:
    """Queue ``action`` to run once ``session`` commits."""
    session.info.setdefault(_AFTER_COMMIT_KEY, []).append(action)


async def commit_unit_of_work(session: AsyncSession) -> None:
    """Commit, then run the actions queued on the session in order.

    A failing action is logged and does not affect the committed data or
    the remaining actions.
    """
    await session.commit()
    for action in session.info.pop(_AFTER_COMMIT_KEY, []):
        try:
            await action()
        except Exception:
            logger.exception("Post-commit action %r failed", action)


async def rollback_unit_of_work(session: AsyncSession) -> None:
    session.info.pop(_AFTER_COMMIT_KEY, None)
    await session.rollback()


# ---------------------------------------------------------------------------
# Session providers
# ---------------------------------------------------------------------------


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Open a session outside a request and commit it as one unit of work."""
    async with (factory or async_session_factory)() as session:
        try:
            yield session
            await commit_unit_of_work(session)
        except Exception:
            await rollback_unit_of_work(session)
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for request sessions and the background jobs they schedule."""
    return async_session_factory


async def get_async_session(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session.

    Repositories only call add()/flush(). The commit happens once when the
    request succeeds. Endpoints that schedule work reading the new rows
    (submit, delete) call ``commit_unit_of_work`` themselves before
    returning, so the work never runs against uncommitted data.
    """
    async with session_scope(factory) as session:
        yield session
