"""Lottery job lifecycle: start, status, release and post-hoc claims."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from core.constants import AdminRole, GradeOrder, JobStatus
from core.exceptions import AuthorizationError, NotFoundError, ValidationError
from core.logger import get_job_logger, get_logger
from database.models import Admin, LotteryJob
from database.repositories import (
    AdminRepository,
    EventRepository,
    JobRepository,
    LotteryConfigRepository,
    ResultRepository,
    SnapshotRepository,
)
from services.audit_service import AuditAction, AuditService
from services.cache import ReportCache, get_cache
from services.job_worker import LotteryRun, LotteryWorker
from services.lottery import SecureLottery
from utils.performance import monitor

logger = get_logger(__name__)

INTERRUPTED_ERROR = "interrupted by restart"


@dataclass(frozen=True)
class LotteryPolicy:
    """Caller-supplied options for one run.

    ``grade_order`` of ``None`` keeps the school's saved order; ``seed`` of
    ``None`` draws a fresh seed.
    """
    grade_order: Optional[GradeOrder] = None
    seed: Optional[int] = None


@dataclass(frozen=True)
class JobStatusView:
    job_id: int
    event_id: int
    status: JobStatus
    progress: int
    seed: int
    error: Optional[str]

    @property
    def is_running(self) -> bool:
        return self.status is JobStatus.RUNNING

    @classmethod
    def from_job(cls, job: LotteryJob) -> "JobStatusView":
        return cls(
            job_id=job.id,
            event_id=job.event_id,
            status=job.status,
            progress=job.progress,
            seed=job.seed,
            error=job.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "eventId": self.event_id,
            "status": self.status.value,
            "isRunning": self.is_running,
            "progress": self.progress,
            "seed": self.seed,
            "error": self.error,
        }


async def require_full_admin(admin_id: int, school_id: int) -> Admin:
    """Return the admin if they may change lottery state for ``school_id``."""
    admin = await AdminRepository.get(admin_id)
    if admin is None or admin.school_id != school_id:
        raise AuthorizationError("Admin does not belong to this school")
    if admin.role is not AdminRole.FULL:
        raise AuthorizationError("Admin is not allowed to modify the lottery")
    return admin


class LotteryJobManager:
    """Owns lottery job creation and the writes made against committed results."""

    def __init__(
        self,
        worker: LotteryWorker,
        lottery: Optional[SecureLottery] = None,
        cache: Optional[ReportCache] = None,
    ) -> None:
        self.worker = worker
        self.lottery = lottery or SecureLottery()
        self.cache = cache

    def _cache(self) -> ReportCache:
        return self.cache or get_cache()

    async def start(
        self,
        admin_id: int,
        event_id: int,
        policy: Optional[LotteryPolicy] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        """Create a RUNNING job for the event and hand it to the worker.

        Returns as soon as the job is scheduled. A failed snapshot read still
        returns the job id; the job is FAILED by then.

        Raises:
            NotFoundError: unknown event
            AuthorizationError: admin is not a FULL admin of the event's school
            LotteryAlreadyRunningError: the event already has a RUNNING job
            ValidationError: pinned seed out of range
        """
        policy = policy or LotteryPolicy()
        event = await EventRepository.get(event_id)
        if event is None:
            raise NotFoundError("Event", event_id)
        await require_full_admin(admin_id, event.school_id)

        _, grade_order = await LotteryConfigRepository.get_or_create(event.school_id)
        if policy.grade_order is not None:
            grade_order = GradeOrder(policy.grade_order)

        try:
            seed = self.lottery.resolve_seed(policy.seed)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        job_id = await JobRepository.create(event_id, admin_id, seed, grade_order)
        if policy.grade_order is not None:
            await LotteryConfigRepository.set_grade_order(event.school_id, grade_order)
        job_logger = get_job_logger(__name__, job_id)
        job_logger.info("Created for event %s by admin %s (%s)", event_id, admin_id, grade_order.value)
        await AuditService.log_action(
            admin_id=admin_id,
            action_type=AuditAction.START,
            entity_type="lottery_job",
            entity_id=job_id,
            new_value={"event_id": event_id, "seed": seed, "grade_order": grade_order.value},
            ip_address=ip_address,
        )

        try:
            snapshot, details = await SnapshotRepository.load(event)
        except Exception as exc:
            job_logger.exception("Failed to read lottery snapshot")
            await JobRepository.mark_failed(job_id, f"Lottery failed: {exc}")
            monitor.record_job(JobStatus.FAILED.value)
            return job_id

        self.worker.submit(LotteryRun(
            job_id=job_id,
            seed=seed,
            grade_order=grade_order,
            snapshot=snapshot,
            details=details,
        ))
        return job_id

    async def status(self, job_id: int) -> JobStatusView:
        job = await JobRepository.get(job_id)
        if job is None:
            raise NotFoundError("Lottery job", job_id)
        return JobStatusView.from_job(job)

    async def running_job(self, event_id: int) -> Optional[JobStatusView]:
        job = await JobRepository.running_for_event(event_id)
        return JobStatusView.from_job(job) if job else None

    async def release(self, result_id: int, admin_id: int, ip_address: Optional[str] = None) -> None:
        """Delete one committed result without re-allocating its slot."""
        result = await ResultRepository.get(result_id)
        if result is None:
            raise NotFoundError("Lottery result", result_id)
        await self._authorize_for_job(admin_id, result.job_id)

        if not await ResultRepository.delete(result_id):
            raise NotFoundError("Lottery result", result_id)
        await AuditService.log_action(
            admin_id=admin_id,
            action_type=AuditAction.RELEASE,
            entity_type="lottery_result",
            entity_id=result_id,
            old_value={
                "job_id": result.job_id,
                "student_id": result.student_id,
                "position_id": result.position_id,
                "origin": result.origin.value,
            },
            ip_address=ip_address,
        )
        self._cache().invalidate(result.job_id)
        logger.info("Released result %s of job %s (admin %s)", result_id, result.job_id, admin_id)

    async def claim(
        self,
        admin_id: int,
        job_id: int,
        student_id: int,
        position_id: int,
        ip_address: Optional[str] = None,
    ) -> int:
        """Manually place a student into a free slot of a completed job."""
        school_id = await self._authorize_for_job(admin_id, job_id)
        if await LotteryConfigRepository.student_school(student_id) != school_id:
            raise NotFoundError("Student", student_id)
        result_id = await ResultRepository.insert_claim(job_id, student_id, position_id)
        await AuditService.log_action(
            admin_id=admin_id,
            action_type=AuditAction.CLAIM,
            entity_type="lottery_result",
            entity_id=result_id,
            new_value={"job_id": job_id, "student_id": student_id, "position_id": position_id},
            ip_address=ip_address,
        )
        self._cache().invalidate(job_id)
        logger.info("Claimed position %s for student %s in job %s", position_id, student_id, job_id)
        return result_id

    async def recover_interrupted_jobs(self) -> List[int]:
        """Fail jobs a previous process left RUNNING so their events can run again."""
        job_ids = await JobRepository.fail_running(INTERRUPTED_ERROR)
        for job_id in job_ids:
            logger.warning("Lottery job %s was interrupted by a restart and marked FAILED", job_id)
        return job_ids

    async def _authorize_for_job(self, admin_id: int, job_id: int) -> int:
        """Check the admin may change the job's results; return the school id."""
        job = await JobRepository.get(job_id)
        if job is None:
            raise NotFoundError("Lottery job", job_id)
        event = await EventRepository.get(job.event_id)
        await require_full_admin(admin_id, event.school_id)
        return event.school_id
