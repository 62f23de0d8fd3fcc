"""Seed script - load sample data into the report portal database.

Creates:
1. Three supervised subjects (bank, investment fund, insurer)
2. A demo external user with an APPROVED grant for the bank and a PENDING
   grant for the fund
3. A sample DRAFT report for the bank (quarterly liquidity register)

Idempotent: safe to run multiple times; skips if the demo bank already exists.

Usage:
    python -m scripts.seed          # against DATABASE_URL from .env
    pytest tests/scripts/test_seed.py  # against aiosqlite in-memory
"""

import asyncio
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.common import AccessGrantStatus, new_uuid7
from src.models.report import ReportStatus
from src.reporting.storage import ReportStorageService
from src.repositories.access import AccessGrantRepository, SubjectRepository
from src.repositories.reports import ReportRepository

# Fixed so the demo user can be used from API clients across re-seeds.
DEMO_USER_ID = UUID("01890a5d-ac96-774b-bcce-b302099a8057")

DEMO_SUBJECTS = [
    {"name": "Bank Przykładowy S.A.", "subject_type": "BANK", "registry_code": "UKNF-B-0001"},
    {"name": "Fundusz Inwestycyjny Demo", "subject_type": "INVESTMENT_FUND", "registry_code": "UKNF-F-0001"},
    {"name": "Towarzystwo Ubezpieczeń Demo", "subject_type": "INSURER", "registry_code": "UKNF-I-0001"},
]

DEMO_REPORT = {
    "period": "2026-Q3",
    "register": "LIQUIDITY",
    "file_name": "liquidity_2026Q3.xlsx",
    "content_type": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "size_bytes": 18_432,
}


async def seed_subjects(session: AsyncSession) -> list[int]:
    repo = SubjectRepository(session)
    rows = [await repo.create(**s) for s in DEMO_SUBJECTS]
    return [r.subject_id for r in rows]


async def seed_grants(session: AsyncSession, bank_id: int, fund_id: int) -> None:
    repo = AccessGrantRepository(session)
    await repo.create(user_id=DEMO_USER_ID, subject_id=bank_id,
                      status=AccessGrantStatus.APPROVED.value)
    await repo.create(user_id=DEMO_USER_ID, subject_id=fund_id,
                      status=AccessGrantStatus.PENDING.value)


async def seed_draft_report(session: AsyncSession, subject_id: int) -> UUID:
    report_id = new_uuid7()
    await ReportRepository(session).create(
        report_id=report_id,
        subject_id=subject_id,
        original_name=DEMO_REPORT["file_name"],
        storage_key=ReportStorageService.storage_key_for(report_id, DEMO_REPORT["file_name"]),
        created_by=DEMO_USER_ID,
        status=ReportStatus.DRAFT.value,
        **DEMO_REPORT,
    )
    return report_id


async def seed_demo(session: AsyncSession) -> dict:
    """Seed all demo data. Returns ``created=False`` if already seeded."""
    existing = await SubjectRepository(session).get_by_registry_code(
        DEMO_SUBJECTS[0]["registry_code"],
    )
    if existing is not None:
        return {"created": False, "bank_id": existing.subject_id}

    bank_id, fund_id, _insurer_id = await seed_subjects(session)
    await seed_grants(session, bank_id, fund_id)
    report_id = await seed_draft_report(session, bank_id)
    return {
        "created": True,
        "bank_id": bank_id,
        "fund_id": fund_id,
        "report_id": report_id,
        "user_id": DEMO_USER_ID,
    }


async def _run_seed() -> None:
    """Run the seed against the real database (idempotent)."""
    from src.db.session import async_session_factory

    async with async_session_factory() as session:
        result = await seed_demo(session)

        if not result["created"]:
            print(f"Demo data already seeded (subject {result['bank_id']} exists). Skipping.")
            return

        await session.commit()

        print("Seed complete.")
        print(f"  Bank subject: {result['bank_id']}")
        print(f"  Fund subject: {result['fund_id']} (grant PENDING)")
        print(f"  Demo user:    {result['user_id']}")
        print(f"  Draft report: {result['report_id']}")


if __name__ == "__main__":
    asyncio.run(_run_seed())
