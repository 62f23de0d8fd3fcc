"""Message thread repository (write side used by lifecycle listeners)."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.tables import MessageRow, MessageThreadRow
from src.models.common import new_uuid7, utc_now


class MessageThreadRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def open_thread(self, *, title: str, subject_id: int, status: str,
                          priority: str, author_id: UUID, content: str,
                          is_internal: bool = True,
                          report_id: UUID | None = None) -> MessageThreadRow:
        """Create a thread together with its first message."""
        now = utc_now()
        thread = MessageThreadRow(
            thread_id=new_uuid7(), title=title, subject_id=subject_id,
            report_id=report_id, status=status, priority=priority, created_at=now,
        )
        async with self._session.begin_nested():
            self._session.add(thread)
            await self._session.flush()
            self._session.add(MessageRow(
                message_id=new_uuid7(), thread_id=thread.thread_id,
                author_id=author_id, content=content, is_internal=is_internal,
                created_at=now,
            ))
            await self._session.flush()
        return thread

    async def list_by_report(self, report_id: UUID) -> list[MessageThreadRow]:
        result = await self._session.execute(
            select(MessageThreadRow).where(MessageThreadRow.report_id == report_id)
        )
        return list(result.scalars().all())

    async def get_messages(self, thread_id: UUID) -> list[MessageRow]:
        result = await self._session.execute(
            select(MessageRow)
            .where(MessageRow.thread_id == thread_id)
            .order_by(MessageRow.created_at)
        )
        return list(result.scalars().all())
