"""Agreement gating: pending agreements, user activation and entity activation.

Two independent gates live here:

* the user gate flips a PENDING user to ACTIVE once every agreement
  required by their current roles has been accepted;
* the entity gate flips a DRAFT franchisee or school to ACTIVE once its
  primary contact has accepted the entity-class agreement.

Both flips are single conditional UPDATEs guarded by the expected status.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.config import get_settings
from smilestars.database import insert_ignoring_conflicts
from smilestars.exceptions import (
    DuplicateError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from smilestars.models import (
    Agreement,
    AgreementAcceptance,
    AuditAction,
    Entity,
    EntityStatus,
    EntityType,
    Membership,
    PRIMARY_CONTACT_ROLES,
    Role,
    User,
    UserStatus,
    as_utc,
    utcnow,
)
from smilestars.services.audit_service import get_audit_service
from smilestars.services.identity_service import get_identity_service

logger = logging.getLogger(__name__)
settings = get_settings()


def entity_agreement_code(entity_type: EntityType | str) -> str | None:
    """Code of the agreement that gates activation of an entity type."""
    return {
        EntityType.FRANCHISEE: settings.franchise_agreement_code,
        EntityType.SCHOOL: settings.school_agreement_code,
    }.get(EntityType(entity_type))


def latest_effective(agreements: Iterable[Agreement], at: datetime) -> dict[str, Agreement]:
    """Pick the latest effective version of each agreement code.

    A version is effective once ``effective_at <= at``; among effective
    versions the latest ``effective_at`` wins.
    """
    latest: dict[str, Agreement] = {}
    for agreement in agreements:
        effective_at = as_utc(agreement.effective_at)
        if effective_at > at:
            continue
        current = latest.get(agreement.code)
        if current is None or (effective_at, agreement.id) > (as_utc(current.effective_at), current.id):
            latest[agreement.code] = agreement
    return latest


def is_satisfied(
    agreement: Agreement,
    acceptances: Iterable[tuple[AgreementAcceptance, Agreement]],
) -> bool:
    """Check if acceptances cover an agreement version.

    Accepting the version itself counts, and so does accepting any version of
    the same code at or after this version took effect.
    """
    effective_at = as_utc(agreement.effective_at)
    for acceptance, accepted in acceptances:
        if accepted.id == agreement.id:
            return True
        if accepted.code == agreement.code and as_utc(acceptance.accepted_at) >= effective_at:
            return True
    return False


class AgreementService:
    """Service for publishing agreements and applying the activation gates."""

    async def create_agreement(
        self,
        db: AsyncSession,
        code: str,
        version: str,
        title: str,
        body_md: str,
        effective_at: datetime,
        required_roles: list[Role] | None = None,
    ) -> Agreement:
        """Publish an agreement version.

        Raises:
            DuplicateError: If (code, version) already exists
        """
        existing = await db.execute(
            select(Agreement.id).where(Agreement.code == code, Agreement.version == version)
        )
        if existing.first() is not None:
            raise DuplicateError(f"Agreement {code} version {version} already exists")

        agreement = Agreement(
            code=code,
            version=version,
            title=title,
            body_md=body_md,
            effective_at=effective_at,
            required_roles=[Role(r).value for r in required_roles or []],
        )
        db.add(agreement)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise DuplicateError(f"Agreement {code} version {version} already exists")

        await db.commit()
        await db.refresh(agreement)

        logger.info(f"Published agreement {code} v{version} effective {effective_at}")
        return agreement

    async def get_agreement(self, db: AsyncSession, agreement_id: int) -> Agreement:
        """Get an agreement by ID."""
        agreement = await db.get(Agreement, agreement_id)
        if not agreement:
            raise NotFoundError("Agreement")
        return agreement

    async def list_agreements(self, db: AsyncSession, code: str | None = None) -> list[Agreement]:
        """List agreement versions, newest first within each code."""
        query = select(Agreement)
        if code:
            query = query.where(Agreement.code == code)
        query = query.order_by(Agreement.code, Agreement.effective_at.desc(), Agreement.id.desc())

        result = await db.execute(query)
        return list(result.scalars().all())

    async def _get_acceptances(
        self,
        db: AsyncSession,
        user_id: int,
    ) -> list[tuple[AgreementAcceptance, Agreement]]:
        result = await db.execute(
            select(AgreementAcceptance, Agreement)
            .join(Agreement, Agreement.id == AgreementAcceptance.agreement_id)
            .where(AgreementAcceptance.user_id == user_id)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def get_pending_agreements(
        self,
        db: AsyncSession,
        user_id: int,
        roles: Iterable[Role | str] | None = None,
        at: datetime | None = None,
    ) -> list[Agreement]:
        """Agreements the user must still accept for their roles.

        Args:
            db: Database session
            user_id: User to check
            roles: Role set to check against; defaults to the roles of the
                user's current memberships
            at: Point in time to evaluate effectiveness at

        Returns:
            Latest effective versions still pending, ordered by code
        """
        at = at or utcnow()
        if roles is None:
            roles = await get_identity_service().get_user_roles(db, user_id)

        result = await db.execute(select(Agreement))
        latest = latest_effective(result.scalars().all(), at)
        acceptances = await self._get_acceptances(db, user_id)

        pending = [
            agreement
            for agreement in latest.values()
            if agreement.applies_to(roles) and not is_satisfied(agreement, acceptances)
        ]
        return sorted(pending, key=lambda a: a.code)

    async def accept_agreements(
        self,
        db: AsyncSession,
        user_id: int,
        agreement_ids: list[int],
        ip: str | None = None,
        user_agent: str | None = None,
        commit: bool = True,
    ) -> bool:
        """Record acceptances and activate the user if nothing is pending.

        Accepting the same agreement twice is a no-op.

        Returns:
            True if this call flipped the user from PENDING to ACTIVE

        Raises:
            NotFoundError: If an agreement ID is unknown
            InvalidStateError: If an agreement is not yet effective or has been
                superseded by a newer effective version
        """
        user = await get_identity_service().get_user(db, user_id)
        now = utcnow()
        latest = latest_effective((await db.execute(select(Agreement))).scalars().all(), now)

        for agreement_id in dict.fromkeys(agreement_ids):
            agreement = await self.get_agreement(db, agreement_id)
            if as_utc(agreement.effective_at) > now:
                raise InvalidStateError(f"Agreement {agreement.code} v{agreement.version} is not yet in effect")
            if latest[agreement.code].id != agreement.id:
                raise InvalidStateError(
                    f"Agreement {agreement.code} v{agreement.version} has been superseded"
                )

            await db.execute(
                insert_ignoring_conflicts(
                    db,
                    AgreementAcceptance,
                    ["user_id", "agreement_id"],
                    user_id=user_id,
                    agreement_id=agreement.id,
                    version=agreement.version,
                    accepted_at=now,
                    ip=ip,
                    user_agent=user_agent,
                    created_at=now,
                    updated_at=now,
                )
            )

        activated = False
        pending = await self.get_pending_agreements(db, user_id)
        if not pending:
            result = await db.execute(
                update(User)
                .where(User.id == user_id, User.status == UserStatus.PENDING.value)
                .values(status=UserStatus.ACTIVE.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            activated = result.rowcount == 1
        else:
            logger.info(
                f"User {user_id} still has pending agreements: {[a.code for a in pending]}"
            )

        await get_audit_service().record(
            db,
            AuditAction.ACCEPT_AGREEMENTS,
            actor_user_id=user_id,
            target_id=user_id,
            target_type="USER",
            details={"agreement_ids": list(agreement_ids), "activated": activated},
        )
        if commit:
            await db.commit()
        await db.refresh(user)

        if activated:
            logger.info(f"User {user_id} activated after accepting agreements")
        return activated

    # === Entity gate ===

    async def latest_entity_agreement(
        self,
        db: AsyncSession,
        entity_type: EntityType | str,
        at: datetime | None = None,
    ) -> Agreement | None:
        """Latest effective entity-class agreement for an entity type."""
        code = entity_agreement_code(entity_type)
        if code is None:
            return None
        result = await db.execute(select(Agreement).where(Agreement.code == code))
        return latest_effective(result.scalars().all(), at or utcnow()).get(code)

    async def is_primary_contact(self, db: AsyncSession, user_id: int, entity: Entity) -> bool:
        """Check if the user holds the entity's designated primary role."""
        roles = PRIMARY_CONTACT_ROLES.get(EntityType(entity.type), ())
        if not roles:
            return False
        result = await db.execute(
            select(Membership).where(
                Membership.user_id == user_id,
                Membership.entity_id == entity.id,
                Membership.role.in_([r.value for r in roles]),
                Membership.is_primary.is_(True),
            )
        )
        return any(m.is_current() for m in result.scalars().all())

    async def entity_agreement_satisfied(
        self,
        db: AsyncSession,
        user_id: int,
        entity: Entity,
    ) -> bool:
        """Check if the user has accepted the entity-class agreement.

        With no such agreement published the gate is open.
        """
        agreement = await self.latest_entity_agreement(db, entity.type)
        if agreement is None:
            return True
        return is_satisfied(agreement, await self._get_acceptances(db, user_id))

    async def activate_entity(
        self,
        db: AsyncSession,
        user_id: int,
        entity_id: int,
        commit: bool = True,
    ) -> bool:
        """Flip a DRAFT franchisee or school to ACTIVE.

        Only the entity's primary contact may do this, and only after
        accepting the entity-class agreement. Activating an already ACTIVE
        entity is a no-op.

        Returns:
            True if this call activated the entity

        Raises:
            InvalidStateError: If the entity cannot be activated
            PermissionDeniedError: If the user is not the primary contact
        """
        entity = await db.get(Entity, entity_id)
        if not entity:
            raise NotFoundError("Entity")
        if EntityType(entity.type) not in PRIMARY_CONTACT_ROLES:
            raise InvalidStateError(f"A {entity.type} is not activated through agreements")
        if entity.status == EntityStatus.ACTIVE.value:
            return False
        if entity.status != EntityStatus.DRAFT.value:
            raise InvalidStateError(f"Cannot activate a {entity.status} {entity.type.lower()}")

        if not await self.is_primary_contact(db, user_id, entity):
            raise PermissionDeniedError(
                f"Only the primary contact can activate this {entity.type.lower()}"
            )
        if not await self.entity_agreement_satisfied(db, user_id, entity):
            raise InvalidStateError(
                f"The {entity_agreement_code(entity.type)} agreement has not been accepted"
            )

        result = await db.execute(
            update(Entity)
            .where(Entity.id == entity_id, Entity.status == EntityStatus.DRAFT.value)
            .values(status=EntityStatus.ACTIVE.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        activated = result.rowcount == 1

        if activated:
            await get_audit_service().record(
                db,
                AuditAction.ACTIVATE_ENTITY,
                actor_user_id=user_id,
                entity_id=entity.parent_id,
                target_id=entity_id,
                target_type=entity.type,
            )
        if commit:
            await db.commit()
        await db.refresh(entity)

        if activated:
            logger.info(f"{entity.type} {entity_id} activated by user {user_id}")
        return activated


# Singleton instance
_agreement_service: AgreementService | None = None


def get_agreement_service() -> AgreementService:
    """Get the agreement service singleton."""
    global _agreement_service
    if _agreement_service is None:
        _agreement_service = AgreementService()
    return _agreement_service
