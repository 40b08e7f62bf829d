"""Audit log of administrator actions on the lottery."""

from typing import Any, Dict, List, Optional
import json

from database.base_repository import BaseRepository


class AuditAction:
    """Action types written to ``audit_log.action_type``."""
    START = "start"
    RELEASE = "release"
    CLAIM = "claim"
    PIN = "pin"
    UNPIN = "unpin"
    SET_PREFILL = "set_prefill"
    REMOVE_PREFILL = "remove_prefill"


class AuditService:
    """Service for working with the audit log."""

    @staticmethod
    async def log_action(
        admin_id: Optional[int],
        action_type: str,
        entity_type: str,
        entity_id: Optional[int] = None,
        old_value: Optional[Any] = None,
        new_value: Optional[Any] = None,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        """
        Record one admin action.

        Args:
            admin_id: Admin who performed the action
            action_type: One of the ``AuditAction`` values
            entity_type: Affected entity (lottery_job, lottery_result, ...)
            entity_id: Affected entity id
            old_value: Previous value, serialized to JSON
            new_value: New value, serialized to JSON
            reason: Free-text reason
            ip_address: Client address when the action came over HTTP

        Returns:
            Id of the created audit log row
        """
        old_value_str = json.dumps(old_value, default=str) if old_value is not None else None
        new_value_str = json.dumps(new_value, default=str) if new_value is not None else None

        return await BaseRepository.insert(
            """
            INSERT INTO audit_log (
                admin_id, action_type, entity_type, entity_id,
                old_value, new_value, reason, ip_address
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                admin_id,
                action_type,
                entity_type,
                entity_id,
                old_value_str,
                new_value_str,
                reason,
                ip_address,
            ),
        )

    @staticmethod
    async def get_entity_history(entity_type: str, entity_id: int) -> List[Dict]:
        """History of one entity, newest first."""
        rows = await BaseRepository.fetch_all(
            """
            SELECT * FROM audit_log
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY created_at DESC, id DESC
            """,
            (entity_type, entity_id),
        )

        history = []
        for row in rows:
            log = {key: row[key] for key in row.keys()}
            for key in ("old_value", "new_value"):
                if log.get(key):
                    log[key] = json.loads(log[key])
            history.append(log)
        return history
