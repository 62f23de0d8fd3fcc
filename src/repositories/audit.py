"""Audit log repository.

Each insert runs in its own SAVEPOINT so a failed audit write cannot poison
the surrounding unit of work.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import AuditLogRow
from src.models.common import new_uuid7, utc_now


class AuditLogRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, action: str, entity: str, entity_id: str,
                     actor_id: UUID | None = None, before: dict | None = None,
                     after: dict | None = None) -> AuditLogRow:
        row = AuditLogRow(
            audit_id=new_uuid7(), action=action, entity=entity,
            entity_id=entity_id, actor_id=actor_id, before=before,
            after=after, created_at=utc_now(),
        )
        async with self._session.begin_nested():
            self._session.add(row)
            await self._session.flush()
        return row

    async def list_by_entity(self, entity_id: str) -> list[AuditLogRow]:
        result = await self._session.execute(
            select(AuditLogRow)
            .where(AuditLogRow.entity_id == entity_id)
            .order_by(AuditLogRow.created_at, AuditLogRow.audit_id)
        )
        return list(result.scalars().all())
