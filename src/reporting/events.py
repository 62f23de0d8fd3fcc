"""Lifecycle events published after report transitions.

Listeners (messaging, notifications) are best-effort: a failing listener is
logged and never undoes the transition that produced the event.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from src.models.common import utc_now
from src.models.report import ReportStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportStatusChanged:
    report_id: UUID
    subject_id: int
    new_status: ReportStatus | None
    previous_status: ReportStatus | None
    occurred_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class ReportDisputed:
    """Raised when internal staff dispute a report's validation result."""

    report_id: UUID
    subject_id: int
    reason: str
    raised_by: UUID
    original_name: str
    occurred_at: datetime = field(default_factory=utc_now)


LifecycleEvent = ReportStatusChanged | ReportDisputed
EventListener = Callable[[LifecycleEvent], Awaitable[None]]


class LifecycleEventBus:
    """In-process fan-out of lifecycle events to registered listeners."""

    def __init__(self) -> None:
        self._listeners: list[tuple[type | None, EventListener]] = []

    def subscribe(self, listener: EventListener, event_type: type | None = None) -> None:
        """Register a listener, optionally only for one event class."""
        self._listeners.append((event_type, listener))

    async def publish(self, event: LifecycleEvent) -> None:
        for event_type, listener in self._listeners:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                await listener(event)
            except Exception:
                logger.exception(
                    "Lifecycle listener %r failed for %s on report %s",
                    listener, type(event).__name__, event.report_id,
                )
