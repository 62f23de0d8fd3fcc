"""Tests for MessageThreadRepository and the dispute thread listener."""

import pytest
from uuid_extensions import uuid7

from src.models.common import ThreadPriority, ThreadStatus
from src.reporting.events import LifecycleEventBus, ReportDisputed
from src.reporting.messaging import DisputeThreadOpener
from src.repositories.access import SubjectRepository
from src.repositories.messages import MessageThreadRepository


class TestMessageThreadRepository:

    @pytest.mark.anyio
    async def test_open_thread_with_first_message(self, db_session) -> None:
        subject = await SubjectRepository(db_session).create(name="Bank A", subject_type="BANK")
        repo = MessageThreadRepository(db_session)
        author = uuid7()
        thread = await repo.open_thread(
            title="Question", subject_id=subject.subject_id,
            status=ThreadStatus.WAITING_FOR_UKNF.value, priority=ThreadPriority.LOW.value,
            author_id=author, content="Hello", is_internal=False,
        )
        [message] = await repo.get_messages(thread.thread_id)
        assert message.author_id == author
        assert message.content == "Hello"
        assert message.is_internal is False


class TestDisputeThreadOpener:

    @pytest.mark.anyio
    async def test_dispute_opens_high_priority_thread(self, db_session) -> None:
        subject = await SubjectRepository(db_session).create(name="Bank A", subject_type="BANK")
        repo = MessageThreadRepository(db_session)
        bus = LifecycleEventBus()
        DisputeThreadOpener(repo).register(bus)

        report_id = uuid7()
        staff = uuid7()
        await bus.publish(ReportDisputed(
            report_id=report_id, subject_id=subject.subject_id,
            reason="Incomplete financial data for Q1", raised_by=staff,
            original_name="liquidity_Q1.xlsx",
        ))

        [thread] = await repo.list_by_report(report_id)
        assert thread.priority == "HIGH"
        assert thread.status == "WAITING_FOR_USER"
        assert thread.subject_id == subject.subject_id
        assert thread.title == "Dispute of report liquidity_Q1.xlsx"
        [message] = await repo.get_messages(thread.thread_id)
        assert message.author_id == staff
        assert message.is_internal is True
        assert "Incomplete financial data for Q1" in message.content
