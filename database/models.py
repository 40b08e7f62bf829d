"""Row models for the lottery tables."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, List, Mapping, Optional

from core.constants import AdminRole, GradeOrder, JobStatus, ResultOrigin


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(slots=True)
class Admin:
    id: int
    school_id: int
    username: str
    role: AdminRole
    email: Optional[str] = None

    @property
    def can_run_lottery(self) -> bool:
        return self.role is AdminRole.FULL

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Admin":
        return cls(
            id=row["id"],
            school_id=row["school_id"],
            username=row["username"],
            role=AdminRole(row["role"]),
            email=row["email"],
        )


@dataclass(slots=True)
class Event:
    id: int
    school_id: int
    name: str
    event_date: date
    is_active: bool

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Event":
        event_date = row["event_date"]
        if not isinstance(event_date, date):
            event_date = date.fromisoformat(str(event_date)[:10])
        return cls(
            id=row["id"],
            school_id=row["school_id"],
            name=row["name"],
            event_date=event_date,
            is_active=bool(row["is_active"]),
        )


@dataclass(slots=True)
class LotteryJob:
    id: int
    event_id: int
    admin_id: int
    status: JobStatus
    progress: int
    seed: int
    grade_order: GradeOrder
    started_at: Optional[datetime]
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    total_eligible: Optional[int] = None
    placed_count: Optional[int] = None
    not_placed_count: Optional[int] = None
    no_choices_count: Optional[int] = None
    skipped_pins: List[dict] = field(default_factory=list)
    chosen_seed: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self.status is JobStatus.RUNNING

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LotteryJob":
        return cls(
            id=row["id"],
            event_id=row["event_id"],
            admin_id=row["admin_id"],
            status=JobStatus(row["status"]),
            progress=row["progress"],
            seed=row["seed"],
            grade_order=GradeOrder(row["grade_order"]),
            started_at=_parse_timestamp(row["started_at"]),
            completed_at=_parse_timestamp(row["completed_at"]),
            error=row["error"],
            total_eligible=row["total_eligible"],
            placed_count=row["placed_count"],
            not_placed_count=row["not_placed_count"],
            no_choices_count=row["no_choices_count"],
            skipped_pins=json.loads(row["skipped_pins"]) if row["skipped_pins"] else [],
            chosen_seed=row["chosen_seed"],
        )


@dataclass(slots=True)
class LotteryResult:
    id: int
    job_id: int
    student_id: int
    position_id: int
    origin: ResultOrigin
    choice_rank: Optional[int]
    created_at: Optional[datetime]
    position_title: Optional[str] = None
    company_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LotteryResult":
        return cls(
            id=row["id"],
            job_id=row["job_id"],
            student_id=row["student_id"],
            position_id=row["position_id"],
            origin=ResultOrigin(row["origin"]),
            choice_rank=row["choice_rank"],
            created_at=_parse_timestamp(row["created_at"]),
            position_title=row["position_title"],
            company_name=row["company_name"],
        )


@dataclass(slots=True)
class PositionDetails:
    """Denormalized copy of a position stored alongside each result."""
    position_id: int
    title: str
    company_name: Optional[str]
    contact_name: Optional[str]
    contact_email: Optional[str]
    address: Optional[str]
    arrival: Optional[str]
    start_time: Optional[str]
    end_time: Optional[str]

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PositionDetails":
        return cls(
            position_id=row["id"],
            title=row["title"],
            company_name=row["company_name"],
            contact_name=row["contact_name"],
            contact_email=row["contact_email"],
            address=row["address"],
            arrival=row["arrival"],
            start_time=row["start_time"],
            end_time=row["end_time"],
        )
