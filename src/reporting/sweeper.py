"""Periodic timeout sweep over PENDING validation attempts.

Started from the API lifespan when TIMEOUT_SWEEP_ENABLED is set. Each pass
is its own unit of work; a failed pass is logged and the loop carries on.
"""

import asyncio
import logging
from uuid import UUID

from src.config.settings import Settings, get_settings
from src.db.session import session_scope
from src.reporting.service import build_lifecycle_manager

logger = logging.getLogger(__name__)


class TimeoutSweeper:
    def __init__(self, *, interval: float, session_factory=None,
                 settings: Settings | None = None) -> None:
        self._interval = interval
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TimeoutSweeper":
        return cls(interval=settings.TIMEOUT_SWEEP_INTERVAL_SECONDS, settings=settings)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> list[UUID]:
        async with session_scope(self._session_factory) as session:
            manager = build_lifecycle_manager(session, settings=self._settings)
            return await manager.sweep_timeouts()

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Timeout sweep failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info("Timeout sweeper started (every %ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Timeout sweeper stopped")
