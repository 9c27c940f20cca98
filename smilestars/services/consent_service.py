"""Per-student parental consent for camps."""

import logging
from typing import Any

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.database import insert_ignoring_conflicts
from smilestars.exceptions import (
    InvalidHierarchyError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from smilestars.models import (
    AuditAction,
    Camp,
    CampStatus,
    Consent,
    ConsentStatus,
    Entity,
    EntityType,
    Role,
    utcnow,
)
from smilestars.models.camp import TERMINAL_STATUSES
from smilestars.services.audit_service import get_audit_service
from smilestars.services.identity_service import get_identity_service
from smilestars.services.notification_service import (
    CampEvent,
    CampEventType,
    Notifier,
    camp_snapshot,
    get_notifier,
    publish,
)
from smilestars.utils.permissions import Action, any_role_allows, get_scoped_roles

logger = logging.getLogger(__name__)

# Camp states in which consent can be requested
REQUESTABLE_CAMP_STATUSES = (CampStatus.SCHEDULED, CampStatus.CONSENT_COLLECTION)


class ConsentService:
    """Service for requesting and deciding consent.

    One consent row exists per (camp, student); requests are idempotent and
    decisions are conditional updates guarded by the current status.
    """

    def __init__(self, notifier: Notifier | None = None):
        self.notifier = notifier or get_notifier()

    async def get_consent(self, db: AsyncSession, consent_id: int) -> Consent:
        """Get a consent record by ID."""
        consent = await db.get(Consent, consent_id)
        if not consent:
            raise NotFoundError("Consent")
        return consent

    async def get_consent_status(
        self,
        db: AsyncSession,
        camp_id: int,
        student_id: int,
    ) -> Consent | None:
        """Get the consent record for a student in a camp, if any."""
        result = await db.execute(
            select(Consent).where(
                Consent.camp_id == camp_id,
                Consent.student_entity_id == student_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_consents(
        self,
        db: AsyncSession,
        camp_id: int,
        status: ConsentStatus | None = None,
    ) -> list[Consent]:
        """List consent records for a camp."""
        query = select(Consent).where(Consent.camp_id == camp_id)
        if status is not None:
            query = query.where(Consent.status == status.value)

        result = await db.execute(query.order_by(Consent.id))
        return list(result.scalars().all())

    async def request_consent(
        self,
        db: AsyncSession,
        camp_id: int,
        student_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Consent:
        """Create a REQUESTED consent, or return the existing one unchanged.

        Raises:
            InvalidStateError: If the camp is not SCHEDULED or CONSENT_COLLECTION
            InvalidHierarchyError: If the student is not at the camp's school
        """
        camp = await db.get(Camp, camp_id)
        if not camp:
            raise NotFoundError("Camp")
        if CampStatus(camp.status) not in REQUESTABLE_CAMP_STATUSES:
            raise InvalidStateError("Camp is not accepting consents at this time")

        student = await db.get(Entity, student_id)
        if not student or student.type != EntityType.STUDENT.value:
            raise NotFoundError("Student")
        if student.parent_id != camp.school_entity_id:
            raise InvalidHierarchyError("Student does not belong to the camp's school")

        result = await db.execute(
            insert_ignoring_conflicts(
                db,
                Consent,
                ["camp_id", "student_entity_id"],
                camp_id=camp_id,
                student_entity_id=student_id,
                status=ConsentStatus.REQUESTED.value,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )
        created = result.rowcount == 1

        consent = await self.get_consent_status(db, camp_id, student_id)
        await db.commit()

        if created:
            logger.info(f"Consent {consent.id} requested for student {student_id} in camp {camp_id}")
            publish(
                self.notifier,
                CampEvent(
                    type=CampEventType.CONSENT_REQUESTED,
                    camp=camp_snapshot(camp),
                    payload={"consent_id": consent.id, "student_entity_id": student_id},
                ),
            )
        return consent

    async def _authorize_decision(self, db: AsyncSession, actor_id: int, consent: Consent, camp: Camp) -> None:
        """Parents must be linked to the student; staff need DECIDE_CONSENT on the school."""
        if await get_identity_service().is_parent_of(db, actor_id, consent.student_entity_id):
            return

        staff_roles = await get_scoped_roles(db, actor_id, camp.school_entity_id)
        staff_roles.discard(Role.PARENT.value)
        if not any_role_allows(staff_roles, Action.DECIDE_CONSENT):
            raise PermissionDeniedError("You can only decide consent for your own children")

    async def _decide(
        self,
        db: AsyncSession,
        consent_id: int,
        target: ConsentStatus,
        actor_id: int | None,
        values: dict[str, Any],
        allowed_from: tuple[ConsentStatus, ...] | None = None,
    ) -> Consent:
        consent = await self.get_consent(db, consent_id)
        camp = await db.get(Camp, consent.camp_id)

        if actor_id is not None:
            await self._authorize_decision(db, actor_id, consent, camp)

        if camp.is_terminal:
            raise InvalidStateError(f"Consent cannot change once the camp is {camp.status}")

        camp_open = (
            exists()
            .where(
                Camp.id == Consent.camp_id,
                Camp.status.not_in([s.value for s in TERMINAL_STATUSES]),
            )
            .correlate(Consent)
        )
        if allowed_from is None:
            status_guard = Consent.status != target.value
        else:
            status_guard = Consent.status.in_([s.value for s in allowed_from])

        result = await db.execute(
            update(Consent)
            .where(Consent.id == consent_id, status_guard, camp_open)
            .values(status=target.value, decided_by=actor_id, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(consent)

        if result.rowcount != 1:
            if consent.status == target.value:
                return consent
            raise InvalidStateError(f"Cannot change consent from {consent.status} to {target.value}")

        await get_audit_service().record(
            db,
            AuditAction.CONSENT_DECISION,
            actor_user_id=actor_id,
            entity_id=camp.school_entity_id,
            target_id=consent_id,
            target_type="CONSENT",
            details={"to": target.value},
        )
        await db.commit()
        await db.refresh(consent)

        logger.info(f"Consent {consent_id} -> {target.value} by user {actor_id}")
        return consent

    async def grant_consent(
        self,
        db: AsyncSession,
        consent_id: int,
        actor_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Consent:
        """Grant consent, clearing any earlier denial. No-op if already GRANTED."""
        return await self._decide(
            db,
            consent_id,
            ConsentStatus.GRANTED,
            actor_id,
            {
                "granted_at": utcnow(),
                "denied_at": None,
                "denial_reason": None,
                "revoked_at": None,
                "ip_address": ip_address,
                "user_agent": user_agent,
            },
        )

    async def deny_consent(
        self,
        db: AsyncSession,
        consent_id: int,
        reason: str | None = None,
        actor_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Consent:
        """Deny consent, clearing any earlier grant or revocation. No-op if already DENIED."""
        return await self._decide(
            db,
            consent_id,
            ConsentStatus.DENIED,
            actor_id,
            {
                "denied_at": utcnow(),
                "denial_reason": reason,
                "granted_at": None,
                "revoked_at": None,
                "ip_address": ip_address,
                "user_agent": user_agent,
            },
        )

    async def revoke_consent(
        self,
        db: AsyncSession,
        consent_id: int,
        actor_id: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Consent:
        """Withdraw a granted consent. No-op if already REVOKED."""
        return await self._decide(
            db,
            consent_id,
            ConsentStatus.REVOKED,
            actor_id,
            {
                "revoked_at": utcnow(),
                "ip_address": ip_address,
                "user_agent": user_agent,
            },
            allowed_from=(ConsentStatus.GRANTED,),
        )


# Singleton instance
_consent_service: ConsentService | None = None


def get_consent_service() -> ConsentService:
    """Get the consent service singleton."""
    global _consent_service
    if _consent_service is None:
        _consent_service = ConsentService()
    return _consent_service
