"""Identity and membership directory: users, roles and parent links."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.config import get_settings
from smilestars.exceptions import (
    DependencyError,
    DuplicateError,
    InvalidHierarchyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from smilestars.models import (
    AgreementAcceptance,
    AgreementSession,
    AuditAction,
    Camp,
    CampEnrollment,
    Consent,
    Entity,
    EntityType,
    EXCLUSIVE_ROLES,
    MagicToken,
    Membership,
    ParentStudentLink,
    Relationship,
    Role,
    TokenPurpose,
    ROLE_ENTITY_TYPES,
    User,
    UserStatus,
)
from smilestars.services.audit_service import get_audit_service
from smilestars.utils.permissions import Action, ensure_entity_scope

logger = logging.getLogger(__name__)
settings = get_settings()


class IdentityService:
    """Service for managing users, memberships and parent-student links."""

    # === Users ===

    async def get_user(self, db: AsyncSession, user_id: int) -> User:
        """Get a user by ID."""
        user = await db.get(User, user_id)
        if not user:
            raise NotFoundError("User")
        return user

    async def get_user_by_email(self, db: AsyncSession, email: str) -> User | None:
        """Get a user by email (case-insensitive)."""
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def get_or_create_user(
        self,
        db: AsyncSession,
        email: str,
        name: str,
        status: UserStatus = UserStatus.INVITED,
        phone: str | None = None,
    ) -> tuple[User, bool]:
        """Find a user by email or create one with the given status.

        Returns:
            Tuple of (user, created)
        """
        existing = await self.get_user_by_email(db, email)
        if existing:
            return existing, False

        user = User(
            email=email.strip().lower(),
            name=name,
            phone=phone,
            status=status.value,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise DuplicateError("A user with this email already exists")

        logger.info(f"Created user {user.id} ({user.email}) as {status.value}")
        return user, True

    async def invite_user(
        self,
        db: AsyncSession,
        actor_id: int,
        email: str,
        name: str,
        target_entity_id: int,
        role: Role,
    ) -> User:
        """Invite a user onto an entity with a role.

        Finds or creates the user (new users start INVITED), grants the
        membership and issues an INVITE magic token. The invitation email is
        sent in the background after the commit.

        Raises:
            PermissionDeniedError: If the actor cannot invite onto the entity
            InvalidHierarchyError: If the role does not fit the entity type
            DuplicateError: If the role is exclusive and already held
        """
        from smilestars.services.auth_service import get_auth_service

        role = Role(role)
        await ensure_entity_scope(db, actor_id, Action.INVITE_USERS, target_entity_id)
        entity = await self._get_entity_for_role(db, target_entity_id, role)

        user, created = await self.get_or_create_user(db, email, name, UserStatus.INVITED)

        existing = await self._find_membership(db, user.id, entity.id, role)
        if existing is None:
            await self.create_membership(
                db, user.id, entity.id, role, actor_id=actor_id, commit=False
            )

        token = await get_auth_service().issue_magic_token(
            db,
            user.email,
            TokenPurpose.INVITE,
            metadata={"entity_id": entity.id, "role": role.value, "invited_by": actor_id},
        )

        await get_audit_service().record(
            db,
            AuditAction.INVITE_USER,
            actor_user_id=actor_id,
            entity_id=entity.id,
            target_id=user.id,
            target_type="USER",
            details={"role": role.value, "new_user": created},
        )
        await db.commit()
        await db.refresh(user)

        self._send_invitation(user, entity, role, token)

        logger.info(f"User {actor_id} invited {user.email} as {role.value} on entity {entity.id}")
        return user

    def _send_invitation(self, user: User, entity: Entity, role: Role, token: MagicToken) -> None:
        """Email an invitation link in the background."""
        from smilestars.services.email_service import get_email_service
        from smilestars.services.notification_service import fire_and_forget

        fire_and_forget(
            get_email_service().send_invitation(
                to=user.email,
                user_name=user.name,
                entity_name=entity.name,
                role=role.value,
                accept_url=f"{settings.app_base_url}/magic-link?token={token.token}",
                expires_in_hours=settings.invite_token_expire_hours,
            ),
            "invitation email",
        )

    async def update_user(
        self,
        db: AsyncSession,
        actor_id: int,
        user_id: int,
        name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
    ) -> User:
        """Edit a user's name, email or phone.

        Raises:
            DuplicateError: If another user already holds the email
        """
        user = await self.get_user(db, user_id)
        changes: dict[str, Any] = {}

        if email is not None:
            email = email.strip().lower()
            if email != user.email:
                holder = await self.get_user_by_email(db, email)
                if holder is not None and holder.id != user_id:
                    raise DuplicateError("A user with this email already exists")
                changes["email"] = email
        if name is not None and name != user.name:
            changes["name"] = name
        if phone is not None and phone != user.phone:
            changes["phone"] = phone
        if not changes:
            return user

        for field_name, value in changes.items():
            setattr(user, field_name, value)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise DuplicateError("A user with this email already exists")

        await get_audit_service().record(
            db,
            AuditAction.UPDATE_USER,
            actor_user_id=actor_id,
            target_id=user_id,
            target_type="USER",
            details={"fields": sorted(changes)},
        )
        await db.commit()
        await db.refresh(user)

        logger.info(f"User {actor_id} updated {sorted(changes)} of user {user_id}")
        return user

    async def update_user_status(
        self,
        db: AsyncSession,
        actor_id: int,
        user_id: int,
        status: UserStatus,
    ) -> User:
        """Change a user's account status.

        Raises:
            PermissionDeniedError: If the actor tries to suspend or archive themself
        """
        status = UserStatus(status)
        if actor_id == user_id and status in (UserStatus.SUSPENDED, UserStatus.ARCHIVED):
            raise PermissionDeniedError("You cannot suspend or archive your own account")

        user = await self.get_user(db, user_id)
        previous = user.status
        user.status = status.value

        await get_audit_service().record(
            db,
            AuditAction.UPDATE_USER_STATUS,
            actor_user_id=actor_id,
            target_id=user_id,
            target_type="USER",
            details={"from": previous, "to": status.value},
        )
        await db.commit()
        await db.refresh(user)

        logger.info(f"User {actor_id} changed status of user {user_id}: {previous} -> {status.value}")
        return user

    async def delete_user(self, db: AsyncSession, actor_id: int, user_id: int) -> None:
        """Delete a user with their memberships, links and acceptances.

        Raises:
            PermissionDeniedError: If the actor tries to delete themself
            DependencyError: If the user created camps
        """
        if actor_id == user_id:
            raise PermissionDeniedError("You cannot delete your own account")

        user = await self.get_user(db, user_id)

        camps_created = (
            await db.execute(select(func.count(Camp.id)).where(Camp.created_by == user_id))
        ).scalar() or 0
        if camps_created:
            raise DependencyError(f"Cannot delete a user who created {camps_created} camps")

        await db.execute(delete(Membership).where(Membership.user_id == user_id))
        await db.execute(delete(ParentStudentLink).where(ParentStudentLink.parent_user_id == user_id))
        await db.execute(delete(AgreementAcceptance).where(AgreementAcceptance.user_id == user_id))
        await db.execute(delete(AgreementSession).where(AgreementSession.user_id == user_id))
        await db.execute(
            update(Camp).where(Camp.assigned_dentist_id == user_id).values(assigned_dentist_id=None)
        )
        await db.execute(update(Consent).where(Consent.decided_by == user_id).values(decided_by=None))
        await db.execute(
            update(CampEnrollment)
            .where(CampEnrollment.enrolled_by == user_id)
            .values(enrolled_by=None)
        )
        await db.delete(user)

        await get_audit_service().record(
            db,
            AuditAction.DELETE_USER,
            actor_user_id=actor_id,
            target_id=user_id,
            target_type="USER",
            details={"email": user.email},
        )
        await db.commit()

        logger.info(f"User {actor_id} deleted user {user_id}")

    # === Memberships ===

    async def _get_entity_for_role(self, db: AsyncSession, entity_id: int, role: Role) -> Entity:
        entity = await db.get(Entity, entity_id)
        if not entity:
            raise NotFoundError("Entity")
        if EntityType(entity.type) not in ROLE_ENTITY_TYPES[role]:
            raise InvalidHierarchyError(f"Role {role.value} cannot be granted on a {entity.type}")
        return entity

    async def _find_membership(
        self,
        db: AsyncSession,
        user_id: int,
        entity_id: int,
        role: Role,
    ) -> Membership | None:
        result = await db.execute(
            select(Membership).where(
                Membership.user_id == user_id,
                Membership.entity_id == entity_id,
                Membership.role == role.value,
            )
        )
        return result.scalar_one_or_none()

    async def create_membership(
        self,
        db: AsyncSession,
        user_id: int,
        entity_id: int,
        role: Role,
        is_primary: bool = False,
        valid_from: datetime | None = None,
        valid_to: datetime | None = None,
        actor_id: int | None = None,
        commit: bool = True,
    ) -> Membership:
        """Grant a role on an entity.

        PRINCIPAL and SCHOOL_ADMIN are held by at most one user per school;
        the storage constraint decides races, the pre-check only gives a
        friendlier message.

        Raises:
            DuplicateError: If the membership or the exclusive role already exists
        """
        role = Role(role)
        await self.get_user(db, user_id)
        entity = await self._get_entity_for_role(db, entity_id, role)

        if role in EXCLUSIVE_ROLES:
            holder = await db.execute(
                select(Membership.user_id).where(
                    Membership.entity_id == entity_id,
                    Membership.role == role.value,
                )
            )
            if holder.first() is not None:
                raise DuplicateError(f"{entity.name} already has a {role.value}")

        membership = Membership(
            user_id=user_id,
            entity_id=entity_id,
            role=role.value,
            is_primary=is_primary,
            valid_from=valid_from,
            valid_to=valid_to,
        )
        db.add(membership)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            if role in EXCLUSIVE_ROLES:
                raise DuplicateError(f"This entity already has a {role.value}")
            raise DuplicateError("User already holds this role on this entity")

        await get_audit_service().record(
            db,
            AuditAction.CREATE_MEMBERSHIP,
            actor_user_id=actor_id,
            entity_id=entity_id,
            target_id=user_id,
            target_type="USER",
            details={"role": role.value, "is_primary": is_primary},
        )
        if commit:
            await db.commit()
            await db.refresh(membership)

        logger.info(f"Granted {role.value} on entity {entity_id} to user {user_id}")
        return membership

    async def remove_membership(self, db: AsyncSession, membership_id: int) -> None:
        """Remove a membership."""
        membership = await db.get(Membership, membership_id)
        if not membership:
            raise NotFoundError("Membership")

        await db.delete(membership)
        await db.commit()
        logger.info(
            f"Removed {membership.role} on entity {membership.entity_id} from user {membership.user_id}"
        )

    async def get_membership(self, db: AsyncSession, membership_id: int) -> Membership:
        """Get a membership by ID."""
        membership = await db.get(Membership, membership_id)
        if not membership:
            raise NotFoundError("Membership")
        return membership

    async def get_user_memberships(
        self,
        db: AsyncSession,
        user_id: int,
        current_only: bool = True,
    ) -> list[Membership]:
        """Get a user's memberships."""
        result = await db.execute(
            select(Membership).where(Membership.user_id == user_id).order_by(Membership.id)
        )
        memberships = list(result.scalars().all())
        if current_only:
            memberships = [m for m in memberships if m.is_current()]
        return memberships

    async def get_user_roles(self, db: AsyncSession, user_id: int) -> set[str]:
        """Union of roles over the user's current memberships."""
        return {m.role for m in await self.get_user_memberships(db, user_id)}

    # === Parent links ===

    async def link_parent(
        self,
        db: AsyncSession,
        parent_user_id: int,
        student_id: int,
        relationship: Relationship = Relationship.GUARDIAN,
        custody_flags: dict[str, Any] | None = None,
        actor_id: int | None = None,
        commit: bool = True,
    ) -> ParentStudentLink:
        """Link a parent to a student.

        The parent is also given a PARENT membership on the student's school
        if they do not hold one yet.

        Raises:
            DuplicateError: If the pair is already linked
        """
        await self.get_user(db, parent_user_id)
        student = await db.get(Entity, student_id)
        if not student or student.type != EntityType.STUDENT.value:
            raise NotFoundError("Student")

        link = ParentStudentLink(
            parent_user_id=parent_user_id,
            student_entity_id=student_id,
            relationship_type=Relationship(relationship).value,
            custody_flags=custody_flags or {},
        )
        db.add(link)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise DuplicateError("Parent is already linked to this student")

        if student.parent_id is not None:
            existing = await self._find_membership(db, parent_user_id, student.parent_id, Role.PARENT)
            if existing is None:
                await self.create_membership(
                    db,
                    parent_user_id,
                    student.parent_id,
                    Role.PARENT,
                    actor_id=actor_id,
                    commit=False,
                )

        if commit:
            await db.commit()
            await db.refresh(link)

        logger.info(f"Linked parent {parent_user_id} to student {student_id}")
        return link

    async def register_student(
        self,
        db: AsyncSession,
        actor_id: int,
        school_id: int,
        name: str,
        parents: list[dict[str, Any]],
        roll_number: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> tuple[Entity, list[User]]:
        """Register a student at a school together with its parents.

        Each parent is found by email or created INVITED, linked to the
        student and given a PARENT membership on the school. Nothing is
        written unless every step succeeds. New parents are emailed an
        invitation after the commit.

        Args:
            parents: Dicts with ``name``, ``email`` and optionally ``phone``,
                ``relationship`` and ``custody_flags``

        Raises:
            ValidationError: If no parent is given
            InvalidHierarchyError: If ``school_id`` is not a school
            DuplicateError: If the school already has a student with the same
                name or roll number
        """
        from smilestars.services.auth_service import get_auth_service
        from smilestars.services.entity_service import get_entity_service

        if not parents:
            raise ValidationError([{"field": "parents", "message": "At least one parent is required"}])

        school = await db.get(Entity, school_id)
        if not school:
            raise NotFoundError("School")
        if school.type != EntityType.SCHOOL.value:
            raise InvalidHierarchyError("Students can only be registered at a school")

        name = name.strip()
        siblings = await db.execute(
            select(Entity).where(
                Entity.parent_id == school_id,
                Entity.type == EntityType.STUDENT.value,
            )
        )
        for existing in siblings.scalars():
            if existing.name.lower() == name.lower():
                raise DuplicateError(f"{school.name} already has a student named {existing.name}")
            if roll_number and existing.get_metadata("roll_number") == roll_number:
                raise DuplicateError(f"Roll number {roll_number} is already used at {school.name}")

        student_metadata = dict(metadata or {})
        if roll_number:
            student_metadata["roll_number"] = roll_number
        student = await get_entity_service().create_entity(
            db,
            EntityType.STUDENT,
            name,
            parent_id=school_id,
            metadata=student_metadata,
            actor_id=actor_id,
            commit=False,
        )

        parent_users: list[User] = []
        invitations: list[tuple[User, MagicToken]] = []
        for parent in {p["email"].strip().lower(): p for p in parents}.values():
            user, created = await self.get_or_create_user(
                db, parent["email"], parent["name"], UserStatus.INVITED, phone=parent.get("phone")
            )
            await self.link_parent(
                db,
                user.id,
                student.id,
                relationship=parent.get("relationship") or Relationship.GUARDIAN,
                custody_flags=parent.get("custody_flags"),
                actor_id=actor_id,
                commit=False,
            )
            if created:
                token = await get_auth_service().issue_magic_token(
                    db,
                    user.email,
                    TokenPurpose.INVITE,
                    metadata={"entity_id": school_id, "role": Role.PARENT.value, "invited_by": actor_id},
                )
                invitations.append((user, token))
            parent_users.append(user)

        await get_audit_service().record(
            db,
            AuditAction.REGISTER_STUDENT,
            actor_user_id=actor_id,
            entity_id=school_id,
            target_id=student.id,
            target_type=EntityType.STUDENT.value,
            details={"parent_ids": [u.id for u in parent_users]},
        )
        await db.commit()
        await db.refresh(student)

        for user, token in invitations:
            self._send_invitation(user, school, Role.PARENT, token)

        logger.info(
            f"User {actor_id} registered student {student.id} at school {school_id} "
            f"with {len(parent_users)} parent(s)"
        )
        return student, parent_users

    async def unlink_parent(self, db: AsyncSession, parent_user_id: int, student_id: int) -> None:
        """Remove a parent-student link."""
        result = await db.execute(
            delete(ParentStudentLink).where(
                ParentStudentLink.parent_user_id == parent_user_id,
                ParentStudentLink.student_entity_id == student_id,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Parent link")
        await db.commit()

    async def is_parent_of(self, db: AsyncSession, user_id: int, student_id: int) -> bool:
        """Check if the user is linked to the student as a parent."""
        result = await db.execute(
            select(ParentStudentLink.id).where(
                ParentStudentLink.parent_user_id == user_id,
                ParentStudentLink.student_entity_id == student_id,
            )
        )
        return result.first() is not None


# Singleton instance
_identity_service: IdentityService | None = None


def get_identity_service() -> IdentityService:
    """Get the identity service singleton."""
    global _identity_service
    if _identity_service is None:
        _identity_service = IdentityService()
    return _identity_service
