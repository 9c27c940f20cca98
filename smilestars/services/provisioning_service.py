"""Provisioning of franchisees and schools with their primary contacts."""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.config import get_settings
from smilestars.exceptions import InvalidStateError, NotFoundError
from smilestars.models import (
    Entity,
    EntityStatus,
    EntityType,
    MagicToken,
    Membership,
    Role,
    TokenPurpose,
    User,
    UserStatus,
)
from smilestars.services.auth_service import get_auth_service
from smilestars.services.email_service import get_email_service
from smilestars.services.entity_service import get_entity_service
from smilestars.services.identity_service import get_identity_service
from smilestars.services.notification_service import fire_and_forget
from smilestars.utils.permissions import Action, ensure_entity_scope

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class ProvisionResult:
    """Everything created when an entity is provisioned."""

    entity: Entity
    contact: User
    membership: Membership
    token: MagicToken


class ProvisioningService:
    """Creates a DRAFT entity, its primary contact and the agreement link.

    All records are written in one transaction.
    """

    async def provision_franchisee(
        self,
        db: AsyncSession,
        actor_id: int,
        organization_id: int,
        name: str,
        contact_name: str,
        contact_email: str,
        contact_phone: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProvisionResult:
        """Provision a franchisee whose FRANCHISE_ADMIN must accept the agreement."""
        await ensure_entity_scope(db, actor_id, Action.MANAGE_FRANCHISEES, organization_id)
        return await self._provision(
            db,
            actor_id=actor_id,
            entity_type=EntityType.FRANCHISEE,
            parent_id=organization_id,
            name=name,
            metadata=metadata,
            contact_role=Role.FRANCHISE_ADMIN,
            purpose=TokenPurpose.FRANCHISE_AGREEMENT,
            contact_name=contact_name,
            contact_email=contact_email,
            contact_phone=contact_phone,
        )

    async def provision_school(
        self,
        db: AsyncSession,
        actor_id: int,
        franchisee_id: int,
        name: str,
        contact_name: str,
        contact_email: str,
        contact_phone: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProvisionResult:
        """Provision a school whose PRINCIPAL must accept the agreement."""
        await ensure_entity_scope(db, actor_id, Action.MANAGE_SCHOOLS, franchisee_id)
        return await self._provision(
            db,
            actor_id=actor_id,
            entity_type=EntityType.SCHOOL,
            parent_id=franchisee_id,
            name=name,
            metadata=metadata,
            contact_role=Role.PRINCIPAL,
            purpose=TokenPurpose.SCHOOL_AGREEMENT,
            contact_name=contact_name,
            contact_email=contact_email,
            contact_phone=contact_phone,
        )

    async def _provision(
        self,
        db: AsyncSession,
        actor_id: int,
        entity_type: EntityType,
        parent_id: int,
        name: str,
        metadata: dict[str, Any] | None,
        contact_role: Role,
        purpose: TokenPurpose,
        contact_name: str,
        contact_email: str,
        contact_phone: str | None,
    ) -> ProvisionResult:
        identity_service = get_identity_service()

        entity = await get_entity_service().create_entity(
            db,
            entity_type,
            name,
            parent_id=parent_id,
            metadata={**(metadata or {}), "contact_email": contact_email.strip().lower()},
            actor_id=actor_id,
            commit=False,
        )

        contact, created = await identity_service.get_or_create_user(
            db,
            contact_email,
            contact_name,
            status=UserStatus.PENDING,
            phone=contact_phone,
        )
        if contact.status == UserStatus.INVITED.value:
            contact.status = UserStatus.PENDING.value

        membership = await identity_service.create_membership(
            db,
            contact.id,
            entity.id,
            contact_role,
            is_primary=True,
            actor_id=actor_id,
            commit=False,
        )

        token = await get_auth_service().issue_magic_token(
            db,
            contact.email,
            purpose,
            metadata={"entity_id": entity.id, "role": contact_role.value},
        )

        await db.commit()
        await db.refresh(entity)

        fire_and_forget(
            get_email_service().send_agreement_request(
                to=contact.email,
                user_name=contact.name,
                entity_name=entity.name,
                entity_type=entity.type,
                accept_url=f"{settings.app_base_url}/agreement?token={token.token}",
                expires_in_days=settings.agreement_token_expire_days,
            ),
            "agreement request email",
        )

        logger.info(
            f"Provisioned {entity_type.value} {entity.id} ({name}) with "
            f"{contact_role.value} {contact.email} (new user: {created})"
        )
        return ProvisionResult(entity=entity, contact=contact, membership=membership, token=token)

    async def resend_agreement_link(
        self,
        db: AsyncSession,
        actor_id: int,
        entity_id: int,
    ) -> MagicToken:
        """Issue a fresh agreement link to a DRAFT entity's primary contact."""
        entity = await get_entity_service().get_entity(db, entity_id)
        if entity.type not in (EntityType.FRANCHISEE.value, EntityType.SCHOOL.value):
            raise InvalidStateError(f"A {entity.type} has no agreement link")
        if entity.status != EntityStatus.DRAFT.value:
            raise InvalidStateError("Only DRAFT entities are awaiting an agreement")
        action = (
            Action.MANAGE_FRANCHISEES
            if entity.type == EntityType.FRANCHISEE.value
            else Action.MANAGE_SCHOOLS
        )
        await ensure_entity_scope(db, actor_id, action, entity.parent_id or entity.id)

        result = await db.execute(
            select(User, Membership)
            .join(Membership, Membership.user_id == User.id)
            .where(Membership.entity_id == entity_id, Membership.is_primary.is_(True))
        )
        row = result.first()
        if row is None:
            raise NotFoundError("Primary contact")
        contact, membership = row

        purpose = (
            TokenPurpose.FRANCHISE_AGREEMENT
            if entity.type == EntityType.FRANCHISEE.value
            else TokenPurpose.SCHOOL_AGREEMENT
        )
        token = await get_auth_service().issue_magic_token(
            db,
            contact.email,
            purpose,
            metadata={"entity_id": entity.id, "role": membership.role},
        )
        await db.commit()

        fire_and_forget(
            get_email_service().send_agreement_request(
                to=contact.email,
                user_name=contact.name,
                entity_name=entity.name,
                entity_type=entity.type,
                accept_url=f"{settings.app_base_url}/agreement?token={token.token}",
                expires_in_days=settings.agreement_token_expire_days,
            ),
            "agreement request email",
        )
        return token


# Singleton instance
_provisioning_service: ProvisioningService | None = None


def get_provisioning_service() -> ProvisioningService:
    """Get the provisioning service singleton."""
    global _provisioning_service
    if _provisioning_service is None:
        _provisioning_service = ProvisioningService()
    return _provisioning_service
