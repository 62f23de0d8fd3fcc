"""Shared pytest fixtures for the report portal test suite.

Provides:
- db_engine: in-memory SQLite async engine with all tables
- db_session: SAVEPOINT-isolated async session (app commits don't leak)
- storage_root: temp directory used as object storage
- client: AsyncClient with dependency overrides for DB-backed testing
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.session import Base, get_async_session
import src.db.tables  # noqa: F401 - register ORM models on Base.metadata


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine with all tables."""
    eng = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Provide a SAVEPOINT-isolated session.

    The outer transaction is never committed; it rolls back at teardown.
    The session joins it in "create_savepoint" mode, so application
    commit() and rollback() only act on a SAVEPOINT, and nested savepoints
    opened by repositories behave as they do against Postgres.
    """
    async with db_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(
            bind=conn,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def storage_root(tmp_path) -> str:
    return str(tmp_path / "uploads")


@pytest.fixture
async def client(db_session, storage_root):
    """AsyncClient over the app with the test session and temp storage.

    Validation dispatch is recorded on ``app.state.dispatched`` instead of
    running; tests drive outcomes through the callback endpoint.
    """
    from src.api.dependencies import get_storage_service, get_validation_dispatcher
    from src.api.main import app
    from src.reporting.storage import ReportStorageService

    dispatched: list = []

    class _RecordingDispatcher:
        async def dispatch(self, request) -> None:
            dispatched.append(request)

    async def _override_session():
        yield db_session

    app.dependency_overrides[get_async_session] = _override_session
    app.dependency_overrides[get_storage_service] = lambda: ReportStorageService(storage_root)
    app.dependency_overrides[get_validation_dispatcher] = lambda: _RecordingDispatcher()
    app.state.dispatched = dispatched

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
