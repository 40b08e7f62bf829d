"""Synchronous read-only lottery reports for the admin web interface."""

from __future__ import annotations

import sqlite3
from collections import Counter
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.constants import JobStatus, LotteryDefaults, ResultOrigin
from core.exceptions import NotFoundError
from utils.grade_utils import has_graduated

MANUAL_ORIGINS = (ResultOrigin.MANUAL_PIN.value, ResultOrigin.MANUAL_POST_HOC.value)


class LotteryReportDatabase:
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=30.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA cache_size=-64000")
        conn.execute("PRAGMA temp_store=MEMORY")
        return conn

    def get_admin_by_username(self, username: str) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(
                "SELECT id, school_id, username, password_hash, role FROM admins WHERE lower(username)=lower(?)",
                (username,),
            ).fetchone()

    def get_admin(self, admin_id: int) -> Optional[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(
                "SELECT id, school_id, username, role FROM admins WHERE id=?",
                (admin_id,),
            ).fetchone()

    def get_event(self, event_id: int) -> sqlite3.Row:
        with self._connect() as conn:
            event = conn.execute(
                "SELECT id, school_id, name, event_date, is_active FROM events WHERE id=?",
                (event_id,),
            ).fetchone()
        if event is None:
            raise NotFoundError("Event", event_id)
        return event

    def get_job(self, job_id: int) -> sqlite3.Row:
        with self._connect() as conn:
            job = conn.execute("SELECT * FROM lottery_jobs WHERE id=?", (job_id,)).fetchone()
        if job is None:
            raise NotFoundError("Lottery job", job_id)
        return job

    def list_jobs(self, event_id: int, limit: int = 20) -> List[sqlite3.Row]:
        with self._connect() as conn:
            return conn.execute(
                "SELECT * FROM lottery_jobs WHERE event_id=? ORDER BY id DESC LIMIT ?",
                (event_id, limit),
            ).fetchall()

    def latest_completed_job(self, event_id: int) -> Optional[sqlite3.Row]:
        """The authoritative job for an event: its most recent COMPLETED run."""
        with self._connect() as conn:
            return conn.execute(
                """
                SELECT * FROM lottery_jobs
                WHERE event_id=? AND status=?
                ORDER BY completed_at DESC, id DESC
                LIMIT 1
                """,
                (event_id, JobStatus.COMPLETED.value),
            ).fetchone()

    def assignments_by_position(self, job_id: int) -> List[Dict[str, Any]]:
        """Every position of the job's event with the students placed there."""
        job = self.get_job(job_id)
        with self._connect() as conn:
            positions = conn.execute(
                """
                SELECT p.id, p.title, p.slots, c.id AS company_id, c.company_name
                FROM positions p
                JOIN hosts h ON h.id = p.host_id
                JOIN companies c ON c.id = h.company_id
                WHERE p.event_id=? AND p.is_published
                ORDER BY c.company_name, p.title
                """,
                (job["event_id"],),
            ).fetchall()
            results = conn.execute(
                """
                SELECT r.id, r.student_id, r.position_id, r.origin, r.choice_rank, r.created_at,
                       r.position_title, r.company_name,
                       s.first_name, s.last_name, s.email
                FROM lottery_results r
                JOIN students s ON s.id = r.student_id
                WHERE r.job_id=?
                ORDER BY s.last_name, s.first_name, r.id
                """,
                (job_id,),
            ).fetchall()

        groups: Dict[int, Dict[str, Any]] = {}
        for position in positions:
            groups[position["id"]] = {
                "position_id": position["id"],
                "title": position["title"],
                "company_id": position["company_id"],
                "company_name": position["company_name"],
                "slots": position["slots"],
                "students": [],
            }
        for result in results:
            # Positions unpublished after the run still show from the stored copy
            group = groups.setdefault(result["position_id"], {
                "position_id": result["position_id"],
                "title": result["position_title"],
                "company_id": None,
                "company_name": result["company_name"],
                "slots": None,
                "students": [],
            })
            group["students"].append({
                "result_id": result["id"],
                "student_id": result["student_id"],
                "first_name": result["first_name"],
                "last_name": result["last_name"],
                "email": result["email"],
                "choice_rank": result["choice_rank"],
                "origin": result["origin"],
                "created_at": result["created_at"],
            })
        return list(groups.values())

    def unassigned_students(self, job_id: int) -> List[Dict[str, Any]]:
        """Eligible students with at least one choice and no placement in the job."""
        job = self.get_job(job_id)
        with self._connect() as conn:
            event = conn.execute(
                "SELECT school_id, event_date FROM events WHERE id=?", (job["event_id"],)
            ).fetchone()
            rows = conn.execute(
                """
                SELECT s.id, s.first_name, s.last_name, s.email, s.graduating_class_year,
                       COUNT(pr.id) AS choices
                FROM students s
                JOIN preferences pr ON pr.student_id = s.id
                JOIN positions p ON p.id = pr.position_id AND p.event_id=? AND p.is_published
                WHERE s.school_id=? AND s.is_active
                  AND NOT EXISTS (
                      SELECT 1 FROM lottery_results r WHERE r.job_id=? AND r.student_id = s.id
                  )
                GROUP BY s.id
                ORDER BY s.last_name, s.first_name
                """,
                (job["event_id"], event["school_id"], job_id),
            ).fetchall()

        event_date = date.fromisoformat(str(event["event_date"])[:10])
        return [
            {
                "student_id": row["id"],
                "first_name": row["first_name"],
                "last_name": row["last_name"],
                "email": row["email"],
                "choices": row["choices"],
            }
            for row in rows
            if not has_graduated(row["graduating_class_year"], event_date)
        ]

    def rank_distribution(self, job_id: int) -> Dict[str, Any]:
        """Tally how many placements landed on each choice rank."""
        job = self.get_job(job_id)
        with self._connect() as conn:
            results = conn.execute(
                "SELECT origin, choice_rank FROM lottery_results WHERE job_id=?",
                (job_id,),
            ).fetchall()
        return self._tally(job, results)

    def company_rank_tallies(self, job_id: int) -> List[Dict[str, Any]]:
        """Per-company version of ``rank_distribution`` (without not placed counts)."""
        self.get_job(job_id)
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT company_name, origin, choice_rank
                FROM lottery_results
                WHERE job_id=?
                ORDER BY company_name
                """,
                (job_id,),
            ).fetchall()

        by_company: Dict[str, List[sqlite3.Row]] = {}
        for row in rows:
            by_company.setdefault(row["company_name"] or "", []).append(row)

        tallies = []
        for company_name, results in by_company.items():
            counts = _rank_counts(results)
            tallies.append({
                "company_name": company_name,
                "placed": len(results),
                **counts,
            })
        return tallies

    @staticmethod
    def _tally(job: sqlite3.Row, results: List[sqlite3.Row]) -> Dict[str, Any]:
        counts = _rank_counts(results)
        total_eligible = job["total_eligible"] or 0
        no_choices = job["no_choices_count"] or 0
        # Releases grow not placed and claims shrink it
        not_placed = max(total_eligible - no_choices - len(results), 0)
        return {
            "job_id": job["id"],
            "status": job["status"],
            "completed_at": job["completed_at"],
            "total_students": total_eligible,
            "placed": len(results),
            **counts,
            "not_placed": not_placed,
            "no_choices": no_choices,
        }


def _rank_counts(results: List[sqlite3.Row]) -> Dict[str, Any]:
    """Split results into exactly one bucket each: by rank, manual or prefill."""
    ranks: Counter = Counter()
    manual = 0
    prefill = 0
    for result in results:
        if result["origin"] in MANUAL_ORIGINS:
            manual += 1
            continue
        if result["origin"] == ResultOrigin.LOTTERY_PREFILL.value:
            prefill += 1
            continue
        if result["choice_rank"] is not None:
            ranks[result["choice_rank"]] += 1

    max_rank = max([LotteryDefaults.MIN_REPORTED_RANKS, *ranks.keys()])
    return {
        "by_rank": {str(rank): ranks.get(rank, 0) for rank in range(1, max_rank + 1)},
        "manual": manual,
        "prefill": prefill,
    }
