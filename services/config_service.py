"""Pre-run lottery configuration: manual pins and prefill quotas."""

from __future__ import annotations

from typing import Optional

from core.exceptions import AuthorizationError, NotFoundError, ValidationError
from core.logger import get_logger
from database.repositories import AdminRepository, LotteryConfigRepository
from services.audit_service import AuditAction, AuditService
from services.lottery_service import require_full_admin

logger = get_logger(__name__)


class LotteryConfigService:
    """Writes to the school's lottery configuration.

    Every method takes the acting admin; the configuration touched is the one
    of the admin's school.
    """

    async def add_manual_assignment(
        self,
        admin_id: int,
        student_id: int,
        position_id: int,
        ip_address: Optional[str] = None,
    ) -> None:
        """Pin a student to a position; replaces any earlier pin of that student."""
        school_id = await self._school_of(admin_id)
        if await LotteryConfigRepository.student_school(student_id) != school_id:
            raise NotFoundError("Student", student_id)
        owner = await LotteryConfigRepository.position_owner(position_id)
        if owner is None:
            raise NotFoundError("Position", position_id)
        if owner[0] != school_id:
            raise AuthorizationError("Position belongs to another school")

        configuration_id, _ = await LotteryConfigRepository.get_or_create(school_id)
        await LotteryConfigRepository.upsert_manual_assignment(configuration_id, student_id, position_id)
        await AuditService.log_action(
            admin_id=admin_id,
            action_type=AuditAction.PIN,
            entity_type="student",
            entity_id=student_id,
            new_value={"position_id": position_id},
            ip_address=ip_address,
        )
        logger.info("Pinned student %s to position %s", student_id, position_id)

    async def remove_manual_assignment(
        self,
        admin_id: int,
        student_id: int,
        ip_address: Optional[str] = None,
    ) -> None:
        school_id = await self._school_of(admin_id)
        configuration_id, _ = await LotteryConfigRepository.get_or_create(school_id)
        if not await LotteryConfigRepository.delete_manual_assignment(configuration_id, student_id):
            raise NotFoundError("Manual assignment for student", student_id)
        await AuditService.log_action(
            admin_id=admin_id,
            action_type=AuditAction.UNPIN,
            entity_type="student",
            entity_id=student_id,
            ip_address=ip_address,
        )

    async def set_prefill_quota(
        self,
        admin_id: int,
        position_id: int,
        company_id: int,
        slots: int,
        percentage: int,
        ip_address: Optional[str] = None,
    ) -> None:
        """Reserve ``percentage`` of the position's slots for its top choosers.

        The engine derives the reserved count from the position's live
        capacity at run time. ``slots`` records the capacity the admin saw
        when setting the quota; the engine never reads it.
        """
        if not 0 <= percentage <= 100:
            raise ValidationError("Prefill percentage must be between 0 and 100")
        if slots < 0:
            raise ValidationError("Prefill slots must not be negative")

        school_id = await self._school_of(admin_id)
        owner = await LotteryConfigRepository.position_owner(position_id)
        if owner is None:
            raise NotFoundError("Position", position_id)
        event_school_id, owner_company_id, company_school_id = owner
        if event_school_id != school_id or company_school_id != school_id:
            raise AuthorizationError("Position belongs to another school")
        if owner_company_id != company_id:
            raise ValidationError(f"Position {position_id} does not belong to company {company_id}")

        configuration_id, _ = await LotteryConfigRepository.get_or_create(school_id)
        await LotteryConfigRepository.upsert_prefill(configuration_id, company_id, position_id, slots, percentage)
        await AuditService.log_action(
            admin_id=admin_id,
            action_type=AuditAction.SET_PREFILL,
            entity_type="position",
            entity_id=position_id,
            new_value={"company_id": company_id, "slots": slots, "percentage": percentage},
            ip_address=ip_address,
        )

    async def remove_prefill_quota(
        self,
        admin_id: int,
        company_id: int,
        ip_address: Optional[str] = None,
    ) -> int:
        """Drop every prefill quota of a company; returns how many were removed."""
        school_id = await self._school_of(admin_id)
        configuration_id, _ = await LotteryConfigRepository.get_or_create(school_id)
        removed = await LotteryConfigRepository.delete_prefill(configuration_id, company_id)
        if not removed:
            raise NotFoundError("Prefill quota for company", company_id)
        await AuditService.log_action(
            admin_id=admin_id,
            action_type=AuditAction.REMOVE_PREFILL,
            entity_type="company",
            entity_id=company_id,
            ip_address=ip_address,
        )
        return removed

    @staticmethod
    async def _school_of(admin_id: int) -> int:
        admin = await AdminRepository.get(admin_id)
        if admin is None:
            raise NotFoundError("Admin", admin_id)
        await require_full_admin(admin_id, admin.school_id)
        return admin.school_id
