"""Lifecycle listeners that write to the messaging module.

A dispute opens a high-priority thread with the reporting subject, waiting
for the subject's reply, and posts the dispute reason as its first message.
"""

import logging

from src.models.common import ThreadPriority, ThreadStatus
from src.reporting.events import LifecycleEventBus, ReportDisputed

logger = logging.getLogger(__name__)


class DisputeThreadOpener:
    """Open a message thread for every ReportDisputed event."""

    def __init__(self, thread_repo) -> None:
        self._threads = thread_repo

    async def __call__(self, event: ReportDisputed) -> None:
        thread = await self._threads.open_thread(
            title=f"Dispute of report {event.original_name}",
            subject_id=event.subject_id,
            report_id=event.report_id,
            status=ThreadStatus.WAITING_FOR_USER.value,
            priority=ThreadPriority.HIGH.value,
            author_id=event.raised_by,
            content=f"UKNF disputed the validation result of this report:\n\n{event.reason}",
            is_internal=True,
        )
        logger.info("Opened dispute thread %s for report %s", thread.thread_id, event.report_id)

    def register(self, bus: LifecycleEventBus) -> None:
        bus.subscribe(self, ReportDisputed)
