"""Camp lifecycle state machine.

Every transition is one ``UPDATE camps ... WHERE id = ? AND status IN (...)``
so concurrent requests racing on the same camp produce one success and one
``InvalidStateError``. Scheduling also re-checks that the school is ACTIVE
inside the same statement.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.exceptions import (
    InvalidHierarchyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from smilestars.models import (
    AuditAction,
    CAMP_TRANSITIONS,
    Camp,
    CampStatus,
    Entity,
    EntityStatus,
    EntityType,
    Membership,
    Role,
    as_utc,
    utcnow,
)
from smilestars.models.camp import EDITABLE_STATUSES
from smilestars.services.audit_service import get_audit_service
from smilestars.services.notification_service import (
    CampEvent,
    CampEventType,
    Notifier,
    camp_snapshot,
    get_notifier,
    publish,
)

logger = logging.getLogger(__name__)

# Fields that may only change while the camp is DRAFT or SCHEDULED
STRUCTURAL_FIELDS = ("name", "start_date", "end_date", "expected_students", "assigned_dentist_id")


def validate_camp_dates(start_date: datetime, end_date: datetime, now: datetime | None = None) -> None:
    """Check that both dates are strictly in the future and ordered.

    Raises:
        ValidationError: If either check fails
    """
    now = now or utcnow()
    errors = []
    if as_utc(start_date) <= now:
        errors.append({"field": "start_date", "message": "Start date must be in the future"})
    if as_utc(end_date) <= now:
        errors.append({"field": "end_date", "message": "End date must be in the future"})
    if as_utc(end_date) < as_utc(start_date):
        errors.append({"field": "end_date", "message": "End date must not be before start date"})
    if errors:
        raise ValidationError(errors)


class CampService:
    """Service for creating camps and driving their lifecycle.

    The notifier is injected; events are delivered in the background after
    the transition has been committed.
    """

    def __init__(self, notifier: Notifier | None = None):
        self.notifier = notifier or get_notifier()

    async def get_camp(self, db: AsyncSession, camp_id: int) -> Camp:
        """Get a camp by ID."""
        camp = await db.get(Camp, camp_id)
        if not camp:
            raise NotFoundError("Camp")
        return camp

    async def list_camps(
        self,
        db: AsyncSession,
        school_ids: list[int] | None = None,
        status: CampStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Camp], int]:
        """List camps, optionally restricted to some schools or one status."""
        query = select(Camp)
        if school_ids is not None:
            query = query.where(Camp.school_entity_id.in_(school_ids))
        if status is not None:
            query = query.where(Camp.status == status.value)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar() or 0

        query = query.order_by(Camp.start_date.desc(), Camp.id.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await db.execute(query)
        return list(result.scalars().all()), total

    async def _get_active_school(self, db: AsyncSession, school_id: int) -> Entity:
        school = await db.get(Entity, school_id)
        if not school:
            raise NotFoundError("School")
        if school.type != EntityType.SCHOOL.value:
            raise InvalidHierarchyError("Camps can only be held at a school")
        if not school.is_active:
            raise InvalidStateError("School is not active", status_code=400)
        return school

    async def _validate_dentist(self, db: AsyncSession, user_id: int) -> None:
        result = await db.execute(
            select(Membership).where(
                Membership.user_id == user_id,
                Membership.role == Role.DENTIST.value,
            )
        )
        if not any(m.is_current() for m in result.scalars().all()):
            raise ValidationError(
                [{"field": "assigned_dentist_id", "message": "Assigned user is not a dentist"}]
            )

    async def create_camp(
        self,
        db: AsyncSession,
        actor_id: int,
        school_entity_id: int,
        name: str,
        start_date: datetime,
        end_date: datetime,
        expected_students: int = 0,
        description: str | None = None,
        assigned_dentist_id: int | None = None,
    ) -> Camp:
        """Create a camp in DRAFT at an ACTIVE school.

        Raises:
            InvalidStateError: If the school is not ACTIVE (HTTP 400)
            ValidationError: If the dates are not in the future or out of order
        """
        await self._get_active_school(db, school_entity_id)
        validate_camp_dates(start_date, end_date)
        if assigned_dentist_id is not None:
            await self._validate_dentist(db, assigned_dentist_id)

        camp = Camp(
            school_entity_id=school_entity_id,
            name=name,
            description=description,
            start_date=start_date,
            end_date=end_date,
            expected_students=expected_students,
            status=CampStatus.DRAFT.value,
            assigned_dentist_id=assigned_dentist_id,
            created_by=actor_id,
        )
        db.add(camp)
        await db.flush()

        await get_audit_service().record(
            db,
            AuditAction.CREATE_CAMP,
            actor_user_id=actor_id,
            entity_id=school_entity_id,
            target_id=camp.id,
            target_type="CAMP",
        )
        await db.commit()
        await db.refresh(camp)

        logger.info(f"Camp {camp.id} ({name}) created at school {school_entity_id}")
        return camp

    async def update_camp(
        self,
        db: AsyncSession,
        camp_id: int,
        updates: dict[str, Any],
        actor_id: int | None = None,
    ) -> Camp:
        """Update camp details.

        Structural fields may only change while DRAFT or SCHEDULED; the
        description may change in any state.

        Raises:
            InvalidStateError: If a structural field is edited after the lock
        """
        camp = await self.get_camp(db, camp_id)
        structural = {
            k: v
            for k, v in updates.items()
            if k in STRUCTURAL_FIELDS and (v is not None or k == "assigned_dentist_id")
        }

        if structural:
            if not camp.is_editable:
                raise InvalidStateError(f"Camp details cannot be changed while {camp.status}")

            if "start_date" in structural or "end_date" in structural:
                validate_camp_dates(
                    structural.get("start_date", camp.start_date),
                    structural.get("end_date", camp.end_date),
                )
            if structural.get("assigned_dentist_id") is not None:
                await self._validate_dentist(db, structural["assigned_dentist_id"])

        values = dict(structural)
        if "description" in updates:
            values["description"] = updates["description"]
        if not values:
            return camp

        allowed = EDITABLE_STATUSES if structural else frozenset(CampStatus)
        result = await db.execute(
            update(Camp)
            .where(Camp.id == camp_id, Camp.status.in_([s.value for s in allowed]))
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError("Camp details cannot be changed in its current state")

        await get_audit_service().record(
            db,
            AuditAction.UPDATE_CAMP,
            actor_user_id=actor_id,
            entity_id=camp.school_entity_id,
            target_id=camp_id,
            target_type="CAMP",
            details={"fields": sorted(values)},
        )
        await db.commit()
        await db.refresh(camp)
        return camp

    async def _transition(
        self,
        db: AsyncSession,
        camp_id: int,
        target: CampStatus,
        actor_id: int | None = None,
        extra_conditions: tuple = (),
        values: dict[str, Any] | None = None,
    ) -> Camp:
        """Apply one guarded status change and commit it.

        Raises:
            NotFoundError: If the camp does not exist
            InvalidStateError: If the camp is not in an allowed source state
        """
        sources = [s.value for s in CAMP_TRANSITIONS[target]]
        result = await db.execute(
            update(Camp)
            .where(Camp.id == camp_id, Camp.status.in_(sources), *extra_conditions)
            .values(status=target.value, updated_at=utcnow(), **(values or {}))
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            current = (
                await db.execute(select(Camp.status).where(Camp.id == camp_id))
            ).scalar_one_or_none()
            if current is None:
                raise NotFoundError("Camp")
            if current in sources:
                raise InvalidStateError("School is not active")
            raise InvalidStateError(f"Cannot move camp from {current} to {target.value}")

        camp = await db.get(Camp, camp_id, populate_existing=True)

        await get_audit_service().record(
            db,
            AuditAction.CAMP_TRANSITION,
            actor_user_id=actor_id,
            entity_id=camp.school_entity_id,
            target_id=camp_id,
            target_type="CAMP",
            details={"to": target.value},
        )
        await db.commit()

        logger.info(f"Camp {camp_id} moved to {target.value}")
        return camp

    async def schedule_camp(
        self,
        db: AsyncSession,
        camp_id: int,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        actor_id: int | None = None,
    ) -> Camp:
        """DRAFT -> SCHEDULED.

        The school's ACTIVE status is re-checked inside the UPDATE. On success a
        CAMP_SCHEDULED event with the full camp record is published.

        Raises:
            InvalidStateError: If a transition precondition fails, including
                dates that are past or out of order
        """
        camp = await self.get_camp(db, camp_id)
        if camp.status != CampStatus.DRAFT.value:
            raise InvalidStateError(f"Cannot schedule camp from status {camp.status}")

        start_date = start_date or camp.start_date
        end_date = end_date or camp.end_date
        try:
            validate_camp_dates(start_date, end_date)
        except ValidationError as e:
            raise InvalidStateError("; ".join(err["message"] for err in e.errors)) from e

        school_active = (
            exists()
            .where(
                Entity.id == Camp.school_entity_id,
                Entity.status == EntityStatus.ACTIVE.value,
            )
            .correlate(Camp)
        )
        camp = await self._transition(
            db,
            camp_id,
            CampStatus.SCHEDULED,
            actor_id=actor_id,
            extra_conditions=(school_active,),
            values={"start_date": start_date, "end_date": end_date},
        )

        publish(self.notifier, CampEvent(type=CampEventType.CAMP_SCHEDULED, camp=camp_snapshot(camp)))
        return camp

    async def start_consent_collection(
        self,
        db: AsyncSession,
        camp_id: int,
        actor_id: int | None = None,
    ) -> Camp:
        """SCHEDULED -> CONSENT_COLLECTION."""
        return await self._transition(db, camp_id, CampStatus.CONSENT_COLLECTION, actor_id=actor_id)

    async def start_camp(self, db: AsyncSession, camp_id: int, actor_id: int | None = None) -> Camp:
        """SCHEDULED or CONSENT_COLLECTION -> ACTIVE."""
        return await self._transition(db, camp_id, CampStatus.ACTIVE, actor_id=actor_id)

    async def complete_camp(self, db: AsyncSession, camp_id: int, actor_id: int | None = None) -> Camp:
        """ACTIVE -> COMPLETED."""
        return await self._transition(db, camp_id, CampStatus.COMPLETED, actor_id=actor_id)

    async def cancel_camp(self, db: AsyncSession, camp_id: int, actor_id: int | None = None) -> Camp:
        """Any non-terminal state -> CANCELLED."""
        return await self._transition(db, camp_id, CampStatus.CANCELLED, actor_id=actor_id)


# Singleton instance
_camp_service: CampService | None = None


def get_camp_service() -> CampService:
    """Get the camp service singleton."""
    global _camp_service
    if _camp_service is None:
        _camp_service = CampService()
    return _camp_service
