"""Entity registry: the organization/franchisee/school/student tree."""

import logging
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.exceptions import DependencyError, InvalidHierarchyError, NotFoundError
from smilestars.models import (
    AuditAction,
    Camp,
    CampEnrollment,
    Consent,
    Entity,
    EntityStatus,
    EntityType,
    INITIAL_STATUS,
    Membership,
    ParentStudentLink,
    Report,
    Screening,
    is_valid_parent,
)
from smilestars.services.audit_service import get_audit_service

logger = logging.getLogger(__name__)


class EntityService:
    """Service for managing the entity hierarchy.

    Entities form a flat arena keyed by integer id; navigation is always by
    ``parent_id`` lookup.
    """

    async def create_entity(
        self,
        db: AsyncSession,
        entity_type: EntityType,
        name: str,
        parent_id: int | None = None,
        metadata: dict[str, Any] | None = None,
        actor_id: int | None = None,
        commit: bool = True,
    ) -> Entity:
        """Create an entity under a parent of the allowed type.

        Raises:
            InvalidHierarchyError: If the parent is missing, archived or of the
                wrong type for ``entity_type``
        """
        entity_type = EntityType(entity_type)
        parent_type = None

        if parent_id is not None:
            parent = await db.get(Entity, parent_id)
            if not parent:
                raise InvalidHierarchyError(f"Parent entity {parent_id} does not exist")
            if parent.is_archived:
                raise InvalidHierarchyError("Cannot add children to an archived entity")
            parent_type = parent.type

        if not is_valid_parent(entity_type, parent_type):
            expected = "no parent" if parent_type is None else f"a {parent_type} parent"
            raise InvalidHierarchyError(f"A {entity_type.value} cannot have {expected}")

        entity = Entity(
            type=entity_type.value,
            name=name,
            parent_id=parent_id,
            status=INITIAL_STATUS[entity_type].value,
            entity_metadata=metadata or {},
        )
        db.add(entity)
        await db.flush()

        await get_audit_service().record(
            db,
            AuditAction.CREATE_ENTITY,
            actor_user_id=actor_id,
            entity_id=parent_id,
            target_id=entity.id,
            target_type=entity_type.value,
        )

        if commit:
            await db.commit()
            await db.refresh(entity)

        logger.info(f"Created {entity_type.value} {entity.id} ({name}) under {parent_id}")
        return entity

    async def get_entity(self, db: AsyncSession, entity_id: int) -> Entity:
        """Get a single entity by ID."""
        entity = await db.get(Entity, entity_id)
        if not entity:
            raise NotFoundError("Entity")
        return entity

    async def get_entity_of_type(
        self,
        db: AsyncSession,
        entity_id: int,
        entity_type: EntityType,
    ) -> Entity:
        """Get an entity and check its type."""
        entity = await db.get(Entity, entity_id)
        if not entity or entity.type != entity_type.value:
            raise NotFoundError(entity_type.value.capitalize())
        return entity

    async def get_entities_by_parent(
        self,
        db: AsyncSession,
        parent_id: int,
        entity_type: EntityType | None = None,
        include_archived: bool = False,
    ) -> list[Entity]:
        """Get the direct children of an entity."""
        query = select(Entity).where(Entity.parent_id == parent_id)
        if entity_type is not None:
            query = query.where(Entity.type == entity_type.value)
        if not include_archived:
            query = query.where(Entity.status != EntityStatus.ARCHIVED.value)

        result = await db.execute(query.order_by(Entity.name, Entity.id))
        return list(result.scalars().all())

    async def get_entities_by_type(
        self,
        db: AsyncSession,
        entity_type: EntityType,
        status: EntityStatus | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[Entity], int]:
        """Get entities of one type with optional status filter."""
        query = select(Entity).where(Entity.type == entity_type.value)
        if status is not None:
            query = query.where(Entity.status == status.value)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await db.execute(count_query)).scalar() or 0

        query = query.order_by(Entity.name, Entity.id)
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await db.execute(query)
        return list(result.scalars().all()), total

    async def get_ancestors(self, db: AsyncSession, entity_id: int) -> list[Entity]:
        """Get the ancestors of an entity, nearest first."""
        entity = await self.get_entity(db, entity_id)
        ancestors: list[Entity] = []
        seen = {entity.id}
        parent_id = entity.parent_id
        while parent_id is not None and parent_id not in seen:
            parent = await db.get(Entity, parent_id)
            if not parent:
                break
            ancestors.append(parent)
            seen.add(parent.id)
            parent_id = parent.parent_id
        return ancestors

    async def update_entity(
        self,
        db: AsyncSession,
        entity_id: int,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Entity:
        """Update an entity's name or metadata."""
        entity = await self.get_entity(db, entity_id)

        if name is not None:
            entity.name = name
        if metadata is not None:
            entity.entity_metadata = {**(entity.entity_metadata or {}), **metadata}

        await db.commit()
        await db.refresh(entity)
        return entity

    async def delete_entity(
        self,
        db: AsyncSession,
        entity_id: int,
        actor_id: int | None = None,
    ) -> None:
        """Hard-delete an entity.

        Organizations, franchisees and schools must have no children, and a
        school must have no camps. Students are deleted together with their
        parent links, consents, enrollments, reports and screenings in one
        transaction.

        Raises:
            DependencyError: If children or dependent records exist
        """
        entity = await self.get_entity(db, entity_id)

        if entity.type == EntityType.STUDENT.value:
            await self._delete_student_dependents(db, entity_id)
        else:
            children = (
                await db.execute(
                    select(func.count(Entity.id)).where(Entity.parent_id == entity_id)
                )
            ).scalar() or 0
            if children:
                raise DependencyError(
                    f"Cannot delete {entity.type.lower()} with {children} child entities"
                )
            if entity.type == EntityType.SCHOOL.value:
                camps = (
                    await db.execute(
                        select(func.count(Camp.id)).where(Camp.school_entity_id == entity_id)
                    )
                ).scalar() or 0
                if camps:
                    raise DependencyError(f"Cannot delete school with {camps} camps")

        await db.execute(delete(Membership).where(Membership.entity_id == entity_id))
        await db.delete(entity)

        await get_audit_service().record(
            db,
            AuditAction.DELETE_ENTITY,
            actor_user_id=actor_id,
            entity_id=entity.parent_id,
            target_id=entity_id,
            target_type=entity.type,
        )
        await db.commit()

        logger.info(f"Deleted {entity.type} {entity_id}")

    async def _delete_student_dependents(self, db: AsyncSession, student_id: int) -> None:
        """Remove every record that references a student."""
        await db.execute(
            delete(ParentStudentLink).where(ParentStudentLink.student_entity_id == student_id)
        )
        await db.execute(delete(Consent).where(Consent.student_entity_id == student_id))
        await db.execute(
            delete(CampEnrollment).where(CampEnrollment.student_entity_id == student_id)
        )
        await db.execute(delete(Report).where(Report.student_entity_id == student_id))
        await db.execute(delete(Screening).where(Screening.student_entity_id == student_id))

    async def archive_student(
        self,
        db: AsyncSession,
        student_id: int,
        actor_id: int | None = None,
    ) -> Entity:
        """Detach a student from its school and mark it ARCHIVED.

        Consents, enrollments and screenings are kept.
        """
        student = await self.get_entity_of_type(db, student_id, EntityType.STUDENT)
        former_school_id = student.parent_id

        student.parent_id = None
        student.status = EntityStatus.ARCHIVED.value

        await get_audit_service().record(
            db,
            AuditAction.ARCHIVE_STUDENT,
            actor_user_id=actor_id,
            entity_id=former_school_id,
            target_id=student_id,
            target_type=EntityType.STUDENT.value,
        )
        await db.commit()
        await db.refresh(student)

        logger.info(f"Archived student {student_id} (was in school {former_school_id})")
        return student

    async def move_student(
        self,
        db: AsyncSession,
        student_id: int,
        new_school_id: int,
        actor_id: int | None = None,
    ) -> Entity:
        """Reparent a student to another school.

        Existing camp enrollments are left untouched; callers reconcile them.
        """
        student = await self.get_entity_of_type(db, student_id, EntityType.STUDENT)
        if student.is_archived:
            raise InvalidHierarchyError("Cannot move an archived student")

        school = await db.get(Entity, new_school_id)
        if not school or not is_valid_parent(EntityType.STUDENT, school.type):
            raise InvalidHierarchyError("Students can only be moved to a school")
        if school.is_archived:
            raise InvalidHierarchyError("Cannot move a student to an archived school")

        previous_school_id = student.parent_id
        student.parent_id = new_school_id

        await get_audit_service().record(
            db,
            AuditAction.MOVE_STUDENT,
            actor_user_id=actor_id,
            entity_id=new_school_id,
            target_id=student_id,
            target_type=EntityType.STUDENT.value,
            details={"from_school_id": previous_school_id},
        )
        await db.commit()
        await db.refresh(student)

        enrollments = (
            await db.execute(
                select(func.count(CampEnrollment.id)).where(
                    CampEnrollment.student_entity_id == student_id
                )
            )
        ).scalar() or 0
        if enrollments:
            logger.warning(
                f"Moved student {student_id} from school {previous_school_id} to "
                f"{new_school_id}; {enrollments} existing camp enrollments left unchanged"
            )
        else:
            logger.info(f"Moved student {student_id} to school {new_school_id}")
        return student


# Singleton instance
_entity_service: EntityService | None = None


def get_entity_service() -> EntityService:
    """Get the entity service singleton."""
    global _entity_service
    if _entity_service is None:
        _entity_service = EntityService()
    return _entity_service
