"""Camp enrollment management."""

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.exceptions import (
    DuplicateError,
    InvalidHierarchyError,
    InvalidStateError,
    NotFoundError,
)
from smilestars.models import (
    AuditAction,
    Camp,
    CampEnrollment,
    Entity,
    EntityStatus,
    EntityType,
    EnrollmentStatus,
)
from smilestars.services.audit_service import get_audit_service

logger = logging.getLogger(__name__)


class EnrollmentService:
    """Service for assigning students to camps."""

    async def _get_open_camp(self, db: AsyncSession, camp_id: int) -> Camp:
        camp = await db.get(Camp, camp_id)
        if not camp:
            raise NotFoundError("Camp")
        if camp.is_terminal:
            raise InvalidStateError(f"Cannot enroll students in a {camp.status} camp")
        return camp

    async def _get_school_student(self, db: AsyncSession, camp: Camp, student_id: int) -> Entity:
        student = await db.get(Entity, student_id)
        if not student or student.type != EntityType.STUDENT.value:
            raise NotFoundError("Student")
        if student.parent_id != camp.school_entity_id:
            raise InvalidHierarchyError("Student does not belong to the camp's school")
        return student

    async def _enrolled_ids(self, db: AsyncSession, camp_id: int) -> set[int]:
        result = await db.execute(
            select(CampEnrollment.student_entity_id).where(CampEnrollment.camp_id == camp_id)
        )
        return set(result.scalars().all())

    async def get_available_students_for_camp(self, db: AsyncSession, camp_id: int) -> list[Entity]:
        """Students of the camp's school who are not archived and not yet enrolled."""
        camp = await db.get(Camp, camp_id)
        if not camp:
            raise NotFoundError("Camp")

        result = await db.execute(
            select(Entity).where(
                Entity.parent_id == camp.school_entity_id,
                Entity.type == EntityType.STUDENT.value,
                Entity.status != EntityStatus.ARCHIVED.value,
            )
        )
        students = {s.id: s for s in result.scalars().all()}
        available = set(students) - await self._enrolled_ids(db, camp_id)

        return sorted((students[i] for i in available), key=lambda s: (s.name, s.id))

    async def create_camp_enrollment(
        self,
        db: AsyncSession,
        camp_id: int,
        student_id: int,
        enrolled_by: int | None = None,
    ) -> CampEnrollment:
        """Enroll one student.

        Raises:
            DuplicateError: If the student is already enrolled
            InvalidStateError: If the camp is COMPLETED or CANCELLED
            InvalidHierarchyError: If the student is not at the camp's school
        """
        camp = await self._get_open_camp(db, camp_id)
        await self._get_school_student(db, camp, student_id)

        enrollment = CampEnrollment(
            camp_id=camp_id,
            student_entity_id=student_id,
            enrolled_by=enrolled_by,
            status=EnrollmentStatus.ENROLLED.value,
        )
        db.add(enrollment)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise DuplicateError("Student is already enrolled in this camp")

        await get_audit_service().record(
            db,
            AuditAction.ENROLL_STUDENTS,
            actor_user_id=enrolled_by,
            entity_id=camp.school_entity_id,
            target_id=camp_id,
            target_type="CAMP",
            details={"student_ids": [student_id]},
        )
        await db.commit()
        await db.refresh(enrollment)
        return enrollment

    async def enroll_students(
        self,
        db: AsyncSession,
        camp_id: int,
        student_ids: list[int],
        enrolled_by: int | None = None,
    ) -> tuple[list[CampEnrollment], list[int]]:
        """Enroll several students, skipping those already enrolled.

        Returns:
            Tuple of (new enrollments, ids that were already enrolled)
        """
        camp = await self._get_open_camp(db, camp_id)
        for student_id in student_ids:
            await self._get_school_student(db, camp, student_id)

        existing = await self._enrolled_ids(db, camp_id)
        already_enrolled = [s for s in dict.fromkeys(student_ids) if s in existing]
        to_enroll = [s for s in dict.fromkeys(student_ids) if s not in existing]

        enrollments = [
            CampEnrollment(
                camp_id=camp_id,
                student_entity_id=student_id,
                enrolled_by=enrolled_by,
                status=EnrollmentStatus.ENROLLED.value,
            )
            for student_id in to_enroll
        ]
        if not enrollments:
            return [], already_enrolled

        db.add_all(enrollments)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise DuplicateError("One or more students were enrolled concurrently")

        await get_audit_service().record(
            db,
            AuditAction.ENROLL_STUDENTS,
            actor_user_id=enrolled_by,
            entity_id=camp.school_entity_id,
            target_id=camp_id,
            target_type="CAMP",
            details={"student_ids": to_enroll},
        )
        await db.commit()
        for enrollment in enrollments:
            await db.refresh(enrollment)

        logger.info(
            f"Enrolled {len(enrollments)} students in camp {camp_id} "
            f"({len(already_enrolled)} already enrolled)"
        )
        return enrollments, already_enrolled

    async def delete_camp_enrollment(
        self,
        db: AsyncSession,
        camp_id: int,
        student_id: int,
        actor_id: int | None = None,
    ) -> None:
        """Remove one enrollment. Screenings and reports are kept."""
        result = await db.execute(
            delete(CampEnrollment).where(
                CampEnrollment.camp_id == camp_id,
                CampEnrollment.student_entity_id == student_id,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Enrollment")

        camp = await db.get(Camp, camp_id)
        await get_audit_service().record(
            db,
            AuditAction.UNENROLL_STUDENT,
            actor_user_id=actor_id,
            entity_id=camp.school_entity_id if camp else None,
            target_id=camp_id,
            target_type="CAMP",
            details={"student_id": student_id},
        )
        await db.commit()

    async def list_enrolled_students(self, db: AsyncSession, camp_id: int) -> list[Entity]:
        """Get the students enrolled in a camp."""
        result = await db.execute(
            select(Entity)
            .join(CampEnrollment, CampEnrollment.student_entity_id == Entity.id)
            .where(CampEnrollment.camp_id == camp_id)
            .order_by(Entity.name, Entity.id)
        )
        return list(result.scalars().all())

    async def list_enrollments(self, db: AsyncSession, camp_id: int) -> list[CampEnrollment]:
        """Get the enrollment records of a camp."""
        result = await db.execute(
            select(CampEnrollment)
            .where(CampEnrollment.camp_id == camp_id)
            .order_by(CampEnrollment.enrolled_at, CampEnrollment.id)
        )
        return list(result.scalars().all())

    async def get_enrollment_count(self, db: AsyncSession, camp_id: int) -> int:
        """Count the students enrolled in a camp."""
        result = await db.execute(
            select(func.count(CampEnrollment.id)).where(CampEnrollment.camp_id == camp_id)
        )
        return result.scalar() or 0


# Singleton instance
_enrollment_service: EnrollmentService | None = None


def get_enrollment_service() -> EnrollmentService:
    """Get the enrollment service singleton."""
    global _enrollment_service
    if _enrollment_service is None:
        _enrollment_service = EnrollmentService()
    return _enrollment_service
