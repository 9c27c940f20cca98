"""Audit trail of administrative actions."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.models import AuditAction, AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Service for recording and reading audit log entries."""

    async def record(
        self,
        db: AsyncSession,
        action: AuditAction,
        actor_user_id: int | None = None,
        entity_id: int | None = None,
        target_id: int | None = None,
        target_type: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Add an audit entry to the current transaction.

        The entry is committed together with the change it describes.
        """
        entry = AuditLog(
            actor_user_id=actor_user_id,
            action=action.value,
            entity_id=entity_id,
            target_id=target_id,
            target_type=target_type,
            details=details or {},
        )
        db.add(entry)
        logger.debug(
            f"Audit {action.value} by {actor_user_id} on {target_type}:{target_id}"
        )
        return entry

    async def list_entries(
        self,
        db: AsyncSession,
        actor_user_id: int | None = None,
        action: AuditAction | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        """List recent audit entries, newest first."""
        query = select(AuditLog)
        if actor_user_id is not None:
            query = query.where(AuditLog.actor_user_id == actor_user_id)
        if action is not None:
            query = query.where(AuditLog.action == action.value)
        query = query.order_by(AuditLog.occurred_at.desc(), AuditLog.id.desc()).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())


# Singleton instance
_audit_service: AuditService | None = None


def get_audit_service() -> AuditService:
    """Get the audit service singleton."""
    global _audit_service
    if _audit_service is None:
        _audit_service = AuditService()
    return _audit_service
