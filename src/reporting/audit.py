"""Audit emission for report transitions.

One record per transition: {action, entity_id, before, after}. Delivery is
best-effort; AuditTrail swallows and logs sink failures.
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol
from uuid import UUID

from src.models.report import Report

logger = logging.getLogger(__name__)

AUDIT_ENTITY_REPORT = "REPORT"


class AuditAction(StrEnum):
    REPORT_CREATE = "REPORT_CREATE"
    REPORT_SUBMIT = "REPORT_SUBMIT"
    REPORT_PROCESSING = "REPORT_PROCESSING"
    REPORT_VALIDATED = "REPORT_VALIDATED"
    REPORT_TIMEOUT = "REPORT_TIMEOUT"
    REPORT_DISPUTE = "REPORT_DISPUTE"
    REPORT_REOPEN = "REPORT_REOPEN"
    REPORT_DELETE = "REPORT_DELETE"


@dataclass(frozen=True)
class AuditRecord:
    action: AuditAction
    entity_id: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    actor_id: UUID | None = None
    entity: str = AUDIT_ENTITY_REPORT


class AuditSink(Protocol):
    async def record(self, record: AuditRecord) -> None: ...


@dataclass
class InMemoryAuditSink:
    """Collects records in a list. Production uses RepositoryAuditSink."""

    records: list[AuditRecord] = field(default_factory=list)

    async def record(self, record: AuditRecord) -> None:
        self.records.append(record)


class RepositoryAuditSink:
    """Writes audit records through AuditLogRepository."""

    def __init__(self, repo) -> None:
        self._repo = repo

    async def record(self, record: AuditRecord) -> None:
        await self._repo.create(
            action=record.action.value,
            entity=record.entity,
            entity_id=record.entity_id,
            actor_id=record.actor_id,
            before=record.before,
            after=record.after,
        )


def snapshot(report: Report | None) -> dict[str, Any] | None:
    """JSON-safe view of a report for before/after payloads."""
    if report is None:
        return None
    return report.model_dump(mode="json", by_alias=True)


class AuditTrail:
    """Front for an AuditSink that never lets a sink failure escape."""

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    async def emit(
        self,
        action: AuditAction,
        *,
        entity_id: UUID,
        before: Report | None,
        after: Report | None,
        actor_id: UUID | None = None,
    ) -> None:
        record = AuditRecord(
            action=action,
            entity_id=str(entity_id),
            before=snapshot(before),
            after=snapshot(after),
            actor_id=actor_id,
        )
        try:
            await self._sink.record(record)
        except Exception:
            logger.exception("Audit %s for report %s was not recorded", action, entity_id)
