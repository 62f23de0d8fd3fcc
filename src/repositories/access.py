"""Subject and access-grant repositories.

Grants are owned by the access-request workflow; the report lifecycle only
reads them through the GrantLookup methods.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import AccessGrantRow, SubjectRow
from src.models.common import AccessGrantStatus, new_uuid7, utc_now


class SubjectRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, name: str, subject_type: str,
                     registry_code: str | None = None) -> SubjectRow:
        row = SubjectRow(
            name=name, subject_type=subject_type,
            registry_code=registry_code, created_at=utc_now(),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, subject_id: int) -> SubjectRow | None:
        return await self._session.get(SubjectRow, subject_id)

    async def get_by_registry_code(self, registry_code: str) -> SubjectRow | None:
        result = await self._session.execute(
            select(SubjectRow).where(SubjectRow.registry_code == registry_code)
        )
        return result.scalars().first()


class AccessGrantRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, *, user_id: UUID, subject_id: int,
                     status: str = AccessGrantStatus.PENDING.value) -> AccessGrantRow:
        now = utc_now()
        row = AccessGrantRow(
            grant_id=new_uuid7(), user_id=user_id, subject_id=subject_id,
            status=status, created_at=now,
            decided_at=None if status == AccessGrantStatus.PENDING else now,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def set_status(self, grant_id: UUID, status: str) -> AccessGrantRow | None:
        row = await self._session.get(AccessGrantRow, grant_id)
        if row is not None:
            row.status = status
            row.decided_at = utc_now()
            await self._session.flush()
        return row

    async def has_approved_grant(self, user_id: UUID, subject_id: int) -> bool:
        result = await self._session.execute(
            select(AccessGrantRow.grant_id).where(
                AccessGrantRow.user_id == user_id,
                AccessGrantRow.subject_id == subject_id,
                AccessGrantRow.status == AccessGrantStatus.APPROVED.value,
            ).limit(1)
        )
        return result.first() is not None

    async def approved_subject_ids(self, user_id: UUID) -> list[int]:
        result = await self._session.execute(
            select(AccessGrantRow.subject_id).where(
                AccessGrantRow.user_id == user_id,
                AccessGrantRow.status == AccessGrantStatus.APPROVED.value,
            ).order_by(AccessGrantRow.subject_id)
        )
        return list(result.scalars().all())
