"""Database access layer helpers."""

from __future__ import annotations

import json
import sqlite3
from typing import Dict, List, Mapping, Optional, Tuple

from core.constants import GradeOrder, JobStatus, LotteryDefaults, ResultOrigin
from core.exceptions import LotteryAlreadyRunningError, LotteryStateError, NotFoundError
from core.logger import get_logger
from database.base_repository import BaseRepository
from database.connection import get_db_pool
from database.models import Admin, Event, LotteryJob, LotteryResult, PositionDetails
from services.engine import (
    AssignmentOutcome,
    LotterySnapshot,
    ManualPin,
    PositionEntry,
    PreferenceEntry,
    PrefillQuota,
    StudentEntry,
)
from utils.grade_utils import current_grade, has_graduated

logger = get_logger(__name__)


class AdminRepository(BaseRepository):
    """Repository for admin lookups."""

    @staticmethod
    async def get(admin_id: int) -> Optional[Admin]:
        row = await BaseRepository.fetch_one(
            "SELECT id, school_id, username, role, email FROM admins WHERE id=?",
            (admin_id,),
        )
        return Admin.from_row(row) if row else None


class EventRepository(BaseRepository):
    """Repository for event lookups."""

    @staticmethod
    async def get(event_id: int) -> Optional[Event]:
        row = await BaseRepository.fetch_one(
            "SELECT id, school_id, name, event_date, is_active FROM events WHERE id=?",
            (event_id,),
        )
        return Event.from_row(row) if row else None


class LotteryConfigRepository(BaseRepository):
    """Repository for the per-school lottery configuration."""

    @staticmethod
    async def get_or_create(school_id: int) -> Tuple[int, GradeOrder]:
        """Return (configuration id, grade order), creating a NONE config if missing."""
        await BaseRepository.execute(
            "INSERT OR IGNORE INTO lottery_configurations (school_id, grade_order) VALUES (?, ?)",
            (school_id, GradeOrder.NONE.value),
        )
        row = await BaseRepository.fetch_one(
            "SELECT id, grade_order FROM lottery_configurations WHERE school_id=?",
            (school_id,),
        )
        return row["id"], GradeOrder(row["grade_order"])

    @staticmethod
    async def set_grade_order(school_id: int, grade_order: GradeOrder) -> None:
        await BaseRepository.execute(
            """
            INSERT INTO lottery_configurations (school_id, grade_order) VALUES (?, ?)
            ON CONFLICT(school_id) DO UPDATE SET
                grade_order=excluded.grade_order,
                updated_at=CURRENT_TIMESTAMP
            """,
            (school_id, GradeOrder(grade_order).value),
        )

    @staticmethod
    async def upsert_manual_assignment(configuration_id: int, student_id: int, position_id: int) -> None:
        await BaseRepository.execute(
            """
            INSERT INTO manual_assignments (configuration_id, student_id, position_id)
            VALUES (?, ?, ?)
            ON CONFLICT(configuration_id, student_id) DO UPDATE SET
                position_id=excluded.position_id
            """,
            (configuration_id, student_id, position_id),
        )

    @staticmethod
    async def delete_manual_assignment(configuration_id: int, student_id: int) -> int:
        return await BaseRepository.execute(
            "DELETE FROM manual_assignments WHERE configuration_id=? AND student_id=?",
            (configuration_id, student_id),
        )

    @staticmethod
    async def upsert_prefill(
        configuration_id: int,
        company_id: int,
        position_id: int,
        slots: int,
        percentage: int,
    ) -> None:
        await BaseRepository.execute(
            """
            INSERT INTO prefill_settings (configuration_id, company_id, position_id, slots, percentage)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(configuration_id, company_id, position_id) DO UPDATE SET
                slots=excluded.slots,
                percentage=excluded.percentage
            """,
            (configuration_id, company_id, position_id, slots, percentage),
        )

    @staticmethod
    async def delete_prefill(configuration_id: int, company_id: int) -> int:
        return await BaseRepository.execute(
            "DELETE FROM prefill_settings WHERE configuration_id=? AND company_id=?",
            (configuration_id, company_id),
        )

    @staticmethod
    async def position_owner(position_id: int) -> Optional[Tuple[int, int, int]]:
        """Return (school of the position's event, company id, school of the company)."""
        row = await BaseRepository.fetch_one(
            """
            SELECT e.school_id AS event_school_id, c.id AS company_id, c.school_id AS company_school_id
            FROM positions p
            JOIN events e ON e.id = p.event_id
            JOIN hosts h ON h.id = p.host_id
            JOIN companies c ON c.id = h.company_id
            WHERE p.id=?
            """,
            (position_id,),
        )
        if row is None:
            return None
        return row["event_school_id"], row["company_id"], row["company_school_id"]

    @staticmethod
    async def student_school(student_id: int) -> Optional[int]:
        return await BaseRepository.fetch_value(
            "SELECT school_id FROM students WHERE id=?", (student_id,)
        )


class SnapshotRepository(BaseRepository):
    """Builds the immutable engine input for one event."""

    @staticmethod
    async def load(event: Event) -> Tuple[LotterySnapshot, Dict[int, PositionDetails]]:
        """Read students, positions, preferences and configuration in one transaction.

        Graduated or inactive students and unpublished positions are left out.
        Pins and quotas pointing outside the snapshot are dropped with a warning.
        """
        pool = get_db_pool()
        async with pool.transaction() as conn:
            student_rows = await (await conn.execute(
                "SELECT id, graduating_class_year FROM students WHERE school_id=? AND is_active ORDER BY id",
                (event.school_id,),
            )).fetchall()
            position_rows = await (await conn.execute(
                """
                SELECT p.id, p.title, p.slots, p.contact_name, p.contact_email, p.address,
                       p.arrival, p.start_time, p.end_time,
                       c.id AS company_id, c.company_name
                FROM positions p
                JOIN hosts h ON h.id = p.host_id
                JOIN companies c ON c.id = h.company_id
                WHERE p.event_id=? AND p.is_published
                ORDER BY p.id
                """,
                (event.id,),
            )).fetchall()
            preference_rows = await (await conn.execute(
                """
                SELECT pr.student_id, pr.position_id, pr.rank
                FROM preferences pr
                JOIN positions p ON p.id = pr.position_id
                WHERE p.event_id=? AND p.is_published
                ORDER BY pr.student_id, pr.id
                """,
                (event.id,),
            )).fetchall()
            pin_rows = await (await conn.execute(
                """
                SELECT ma.student_id, ma.position_id
                FROM manual_assignments ma
                JOIN lottery_configurations lc ON lc.id = ma.configuration_id
                WHERE lc.school_id=?
                ORDER BY ma.id
                """,
                (event.school_id,),
            )).fetchall()
            quota_rows = await (await conn.execute(
                """
                SELECT ps.position_id, ps.percentage
                FROM prefill_settings ps
                JOIN lottery_configurations lc ON lc.id = ps.configuration_id
                WHERE lc.school_id=?
                ORDER BY ps.id
                """,
                (event.school_id,),
            )).fetchall()

        preferences: Dict[int, List[PreferenceEntry]] = {}
        for row in preference_rows:
            preferences.setdefault(row["student_id"], []).append(
                PreferenceEntry(position_id=row["position_id"], rank=row["rank"])
            )

        students = tuple(
            StudentEntry(
                student_id=row["id"],
                grade=current_grade(row["graduating_class_year"], event.event_date),
                preferences=tuple(preferences.get(row["id"], ())),
            )
            for row in student_rows
            if not has_graduated(row["graduating_class_year"], event.event_date)
        )
        positions = tuple(
            PositionEntry(position_id=row["id"], slots=row["slots"], company_id=row["company_id"])
            for row in position_rows
        )
        details = {row["id"]: PositionDetails.from_row(row) for row in position_rows}

        student_ids = {s.student_id for s in students}
        pins = []
        for row in pin_rows:
            if row["student_id"] in student_ids and row["position_id"] in details:
                pins.append(ManualPin(student_id=row["student_id"], position_id=row["position_id"]))
            else:
                logger.warning(
                    "Ignoring pin of student %s to position %s: not part of event %s",
                    row["student_id"], row["position_id"], event.id,
                )
        quotas = []
        for row in quota_rows:
            if row["position_id"] in details:
                quotas.append(PrefillQuota(position_id=row["position_id"], percentage=row["percentage"]))
            else:
                logger.warning(
                    "Ignoring prefill quota for position %s: not part of event %s",
                    row["position_id"], event.id,
                )

        snapshot = LotterySnapshot(
            event_id=event.id,
            students=students,
            positions=positions,
            pins=tuple(pins),
            quotas=tuple(quotas),
        )
        return snapshot, details


class JobRepository(BaseRepository):
    """Repository for lottery job rows."""

    @staticmethod
    async def create(event_id: int, admin_id: int, seed: int, grade_order: GradeOrder) -> int:
        """Insert a RUNNING job; the partial unique index rejects a second one."""
        try:
            return await BaseRepository.insert(
                """
                INSERT INTO lottery_jobs (event_id, admin_id, status, progress, seed, grade_order)
                VALUES (?, ?, ?, 0, ?, ?)
                """,
                (event_id, admin_id, JobStatus.RUNNING.value, seed, GradeOrder(grade_order).value),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise LotteryAlreadyRunningError(event_id) from exc
            raise

    @staticmethod
    async def get(job_id: int) -> Optional[LotteryJob]:
        row = await BaseRepository.fetch_one("SELECT * FROM lottery_jobs WHERE id=?", (job_id,))
        return LotteryJob.from_row(row) if row else None

    @staticmethod
    async def running_for_event(event_id: int) -> Optional[LotteryJob]:
        row = await BaseRepository.fetch_one(
            "SELECT * FROM lottery_jobs WHERE event_id=? AND status=?",
            (event_id, JobStatus.RUNNING.value),
        )
        return LotteryJob.from_row(row) if row else None

    @staticmethod
    async def update_progress(job_id: int, progress: int) -> None:
        await BaseRepository.execute(
            "UPDATE lottery_jobs SET progress=? WHERE id=? AND status=?",
            (progress, job_id, JobStatus.RUNNING.value),
        )

    @staticmethod
    async def mark_failed(job_id: int, error: str) -> None:
        await BaseRepository.execute(
            """
            UPDATE lottery_jobs
            SET status=?, error=?, completed_at=CURRENT_TIMESTAMP
            WHERE id=? AND status=?
            """,
            (
                JobStatus.FAILED.value,
                error[:LotteryDefaults.ERROR_MAX_LENGTH],
                job_id,
                JobStatus.RUNNING.value,
            ),
        )

    @staticmethod
    async def fail_running(error: str) -> List[int]:
        """Fail every job still marked RUNNING; used once at startup."""
        job_ids = await BaseRepository.fetch_column(
            "SELECT id FROM lottery_jobs WHERE status=?", (JobStatus.RUNNING.value,)
        )
        for job_id in job_ids:
            await JobRepository.mark_failed(job_id, error)
        return job_ids

    @staticmethod
    async def commit_outcome(
        job_id: int,
        outcome: AssignmentOutcome,
        details: Mapping[int, PositionDetails],
    ) -> None:
        """Store every result and complete the job in one transaction.

        ``seed`` keeps the start seed, which replays the whole attempt search;
        the winning attempt's seed goes to ``chosen_seed``.
        """
        records = []
        for assignment in outcome.assignments:
            position = details[assignment.position_id]
            records.append((
                job_id,
                assignment.student_id,
                assignment.position_id,
                assignment.origin.value,
                assignment.choice_rank,
                position.title,
                position.company_name,
                position.contact_name,
                position.contact_email,
                position.address,
                position.arrival,
                position.start_time,
                position.end_time,
            ))
        skipped = json.dumps([
            {"student_id": s.student_id, "position_id": s.position_id, "reason": s.reason}
            for s in outcome.skipped_pins
        ], ensure_ascii=False)

        pool = get_db_pool()
        async with pool.transaction(immediate=True) as conn:
            cursor = await conn.execute("SELECT status FROM lottery_jobs WHERE id=?", (job_id,))
            row = await cursor.fetchone()
            if row is None or row["status"] != JobStatus.RUNNING.value:
                raise LotteryStateError(f"Job {job_id} is no longer running")
            await conn.executemany(
                """
                INSERT INTO lottery_results (
                    job_id, student_id, position_id, origin, choice_rank,
                    position_title, company_name, contact_name, contact_email,
                    address, arrival, start_time, end_time
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                records,
            )
            await conn.execute(
                """
                UPDATE lottery_jobs
                SET status=?, progress=100, completed_at=CURRENT_TIMESTAMP, chosen_seed=?,
                    total_eligible=?, placed_count=?, not_placed_count=?,
                    no_choices_count=?, skipped_pins=?
                WHERE id=?
                """,
                (
                    JobStatus.COMPLETED.value,
                    outcome.seed,
                    outcome.total_eligible,
                    outcome.placed_count,
                    len(outcome.not_placed),
                    len(outcome.no_choices),
                    skipped,
                    job_id,
                ),
            )


class ResultRepository(BaseRepository):
    """Repository for committed lottery results."""

    @staticmethod
    async def get(result_id: int) -> Optional[LotteryResult]:
        row = await BaseRepository.fetch_one("SELECT * FROM lottery_results WHERE id=?", (result_id,))
        return LotteryResult.from_row(row) if row else None

    @staticmethod
    async def list_for_job(job_id: int) -> List[LotteryResult]:
        rows = await BaseRepository.fetch_all(
            "SELECT * FROM lottery_results WHERE job_id=? ORDER BY id", (job_id,)
        )
        return [LotteryResult.from_row(row) for row in rows]

    @staticmethod
    async def delete(result_id: int) -> int:
        return await BaseRepository.execute("DELETE FROM lottery_results WHERE id=?", (result_id,))

    @staticmethod
    async def insert_claim(job_id: int, student_id: int, position_id: int) -> int:
        """Add a post-hoc manual result, checking capacity and uniqueness atomically."""
        pool = get_db_pool()
        async with pool.transaction(immediate=True) as conn:
            job = await (await conn.execute(
                "SELECT status, event_id FROM lottery_jobs WHERE id=?", (job_id,)
            )).fetchone()
            if job is None:
                raise NotFoundError("Lottery job", job_id)
            if job["status"] != JobStatus.COMPLETED.value:
                raise LotteryStateError(f"Job {job_id} is not completed")

            position = await (await conn.execute(
                """
                SELECT p.id, p.event_id, p.title, p.slots, p.contact_name, p.contact_email,
                       p.address, p.arrival, p.start_time, p.end_time, c.company_name
                FROM positions p
                JOIN hosts h ON h.id = p.host_id
                JOIN companies c ON c.id = h.company_id
                WHERE p.id=?
                """,
                (position_id,),
            )).fetchone()
            if position is None or position["event_id"] != job["event_id"]:
                raise NotFoundError("Position", position_id)

            taken = await (await conn.execute(
                "SELECT COUNT(*) FROM lottery_results WHERE job_id=? AND position_id=?",
                (job_id, position_id),
            )).fetchone()
            if taken[0] >= position["slots"]:
                raise LotteryStateError(f"Position {position_id} has no free slots")

            existing = await (await conn.execute(
                "SELECT id FROM lottery_results WHERE job_id=? AND student_id=?",
                (job_id, student_id),
            )).fetchone()
            if existing is not None:
                raise LotteryStateError(f"Student {student_id} already has a placement in job {job_id}")

            rank_row = await (await conn.execute(
                "SELECT rank FROM preferences WHERE student_id=? AND position_id=?",
                (student_id, position_id),
            )).fetchone()

            details = PositionDetails.from_row(position)
            cursor = await conn.execute(
                """
                INSERT INTO lottery_results (
                    job_id, student_id, position_id, origin, choice_rank,
                    position_title, company_name, contact_name, contact_email,
                    address, arrival, start_time, end_time
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    student_id,
                    position_id,
                    ResultOrigin.MANUAL_POST_HOC.value,
                    rank_row["rank"] if rank_row else None,
                    details.title,
                    details.company_name,
                    details.contact_name,
                    details.contact_email,
                    details.address,
                    details.arrival,
                    details.start_time,
                    details.end_time,
                ),
            )
            return cursor.lastrowid
