"""Pytest configuration and fixtures."""

from datetime import date
from typing import Iterable, Optional

import pytest
import pytest_asyncio

from core.constants import AdminRole
from database import close_db_pool, init_db_pool, run_migrations
from database.base_repository import BaseRepository
from services.cache import init_cache
from services.job_worker import LotteryWorker
from services.lottery_service import LotteryJobManager
from web.auth import hash_password

# Spring event: the school year ends in 2026, so class of 2026 is grade 12
EVENT_DATE = date(2026, 3, 15)
ADMIN_PASSWORD = "correct horse battery staple"


class Seeder:
    """Inserts the minimal rows a lottery run needs."""

    async def school(self, name: str = "Central High") -> int:
        return await BaseRepository.insert("INSERT INTO schools (name) VALUES (?)", (name,))

    async def admin(
        self,
        school_id: int,
        username: str = "coordinator",
        role: AdminRole = AdminRole.FULL,
        password: str = ADMIN_PASSWORD,
    ) -> int:
        return await BaseRepository.insert(
            "INSERT INTO admins (school_id, username, password_hash, role) VALUES (?, ?, ?, ?)",
            (school_id, username, hash_password(password), role.value),
        )

    async def event(self, school_id: int, event_date: date = EVENT_DATE, active: bool = True) -> int:
        return await BaseRepository.insert(
            "INSERT INTO events (school_id, name, event_date, is_active) VALUES (?, ?, ?, ?)",
            (school_id, "Job Shadow Day", event_date.isoformat(), active),
        )

    async def company(self, school_id: int, name: str = "Acme") -> int:
        return await BaseRepository.insert(
            "INSERT INTO companies (school_id, company_name) VALUES (?, ?)", (school_id, name)
        )

    async def host(self, company_id: int, name: str = "Pat Host") -> int:
        return await BaseRepository.insert(
            "INSERT INTO hosts (company_id, name) VALUES (?, ?)", (company_id, name)
        )

    async def position(
        self,
        event_id: int,
        host_id: int,
        slots: int,
        title: str = "Engineer",
        published: bool = True,
    ) -> int:
        return await BaseRepository.insert(
            """
            INSERT INTO positions (
                event_id, host_id, title, slots, is_published,
                contact_name, contact_email, address, arrival, start_time, end_time
            )
            VALUES (?, ?, ?, ?, ?, 'Pat Host', 'pat@example.com', '1 Main St', '08:30', '09:00', '14:00')
            """,
            (event_id, host_id, title, slots, published),
        )

    async def student(
        self,
        school_id: int,
        last_name: str,
        class_year: Optional[int] = 2027,
        active: bool = True,
    ) -> int:
        return await BaseRepository.insert(
            """
            INSERT INTO students (school_id, first_name, last_name, email, graduating_class_year, is_active)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (school_id, "Student", last_name, f"{last_name.lower()}@example.com", class_year, active),
        )

    async def preferences(self, student_id: int, position_ids: Iterable[int]) -> None:
        for rank, position_id in enumerate(position_ids, start=1):
            await BaseRepository.insert(
                "INSERT INTO preferences (student_id, position_id, rank) VALUES (?, ?, ?)",
                (student_id, position_id, rank),
            )


@pytest_asyncio.fixture
async def db_path(tmp_path):
    """File-backed database with the full schema, torn down after the test."""
    path = tmp_path / "lottery.sqlite"
    pool = await init_db_pool(str(path), pool_size=4, busy_timeout_ms=5000)
    await run_migrations(pool)
    init_cache(ttl=30)
    yield str(path)
    await close_db_pool()


@pytest.fixture
def seeder(db_path) -> Seeder:
    return Seeder()


@pytest_asyncio.fixture
async def manager(db_path):
    worker = LotteryWorker(progress_batch=1, commit_retries=2, retry_delay=0.01)
    manager = LotteryJobManager(worker)
    yield manager
    await worker.stop()


async def build_scenario(seeder: Seeder) -> dict:
    """Scenario A: P1(2), P2(1), P3(2); A[P1,P2], B[P1], C[P2,P1], D[P3]; E has no choices."""
    school_id = await seeder.school()
    admin_id = await seeder.admin(school_id)
    event_id = await seeder.event(school_id)
    company_id = await seeder.company(school_id)
    host_id = await seeder.host(company_id)
    p1 = await seeder.position(event_id, host_id, slots=2, title="P1")
    p2 = await seeder.position(event_id, host_id, slots=1, title="P2")
    p3 = await seeder.position(event_id, host_id, slots=2, title="P3")

    students = {}
    for name, prefs in (("A", [p1, p2]), ("B", [p1]), ("C", [p2, p1]), ("D", [p3])):
        students[name] = await seeder.student(school_id, name)
        await seeder.preferences(students[name], prefs)
    students["E"] = await seeder.student(school_id, "E")

    return {
        "school_id": school_id,
        "admin_id": admin_id,
        "event_id": event_id,
        "company_id": company_id,
        "host_id": host_id,
        "positions": {"P1": p1, "P2": p2, "P3": p3},
        "students": students,
    }


@pytest_asyncio.fixture
async def scenario(seeder):
    return await build_scenario(seeder)
