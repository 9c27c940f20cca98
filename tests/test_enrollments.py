"""Tests for camp enrollments."""
import pytest

from smilestars.exceptions import (
    DuplicateError,
    InvalidHierarchyError,
    InvalidStateError,
    NotFoundError,
)
from smilestars.models import EntityStatus, EntityType
from smilestars.services.camp_service import CampService
from smilestars.services.enrollment_service import get_enrollment_service
from smilestars.services.entity_service import get_entity_service
from tests.conftest import future, make_entity


async def draft_camp(db, tree):
    return await CampService().create_camp(
        db,
        actor_id=tree.principal.id,
        school_entity_id=tree.school.id,
        name="Spring dental camp",
        start_date=future(10),
        end_date=future(11),
    )


@pytest.mark.asyncio
async def test_available_students_exclude_enrolled_and_archived(db, tree):
    service = get_enrollment_service()
    camp = await draft_camp(db, tree)
    aarav, diya, kabir = tree.students

    await service.create_camp_enrollment(db, camp.id, aarav.id, enrolled_by=tree.principal.id)
    kabir.status = EntityStatus.ARCHIVED.value
    await db.commit()

    available = await service.get_available_students_for_camp(db, camp.id)
    assert [s.id for s in available] == [diya.id]


@pytest.mark.asyncio
async def test_archived_student_leaves_available_list(db, tree):
    service = get_enrollment_service()
    camp = await draft_camp(db, tree)

    await get_entity_service().archive_student(db, tree.students[1].id)

    available = await service.get_available_students_for_camp(db, camp.id)
    assert [s.name for s in available] == ["Aarav", "Kabir"]


@pytest.mark.asyncio
async def test_duplicate_enrollment(db, tree):
    service = get_enrollment_service()
    camp_id = (await draft_camp(db, tree)).id
    student_id = tree.students[0].id

    await service.create_camp_enrollment(db, camp_id, student_id)
    with pytest.raises(DuplicateError):
        await service.create_camp_enrollment(db, camp_id, student_id)

    assert await service.get_enrollment_count(db, camp_id) == 1


@pytest.mark.asyncio
async def test_bulk_enroll_reports_already_enrolled(db, tree):
    service = get_enrollment_service()
    camp = await draft_camp(db, tree)
    aarav, diya, kabir = tree.students
    await service.create_camp_enrollment(db, camp.id, aarav.id)

    enrolled, already = await service.enroll_students(
        db, camp.id, [aarav.id, diya.id, kabir.id, diya.id], enrolled_by=tree.principal.id
    )

    assert sorted(e.student_entity_id for e in enrolled) == sorted([diya.id, kabir.id])
    assert already == [aarav.id]
    assert [s.name for s in await service.list_enrolled_students(db, camp.id)] == [
        "Aarav",
        "Diya",
        "Kabir",
    ]
    assert await service.get_available_students_for_camp(db, camp.id) == []


@pytest.mark.asyncio
async def test_enroll_student_from_other_school(db, tree):
    camp = await draft_camp(db, tree)
    other_school = await make_entity(db, EntityType.SCHOOL, "Hill View", tree.franchisee)
    outsider = await make_entity(db, EntityType.STUDENT, "Zara", other_school)
    await db.commit()

    with pytest.raises(InvalidHierarchyError):
        await get_enrollment_service().enroll_students(db, camp.id, [tree.students[0].id, outsider.id])
    assert await get_enrollment_service().get_enrollment_count(db, camp.id) == 0


@pytest.mark.asyncio
async def test_no_enrollment_in_cancelled_camp(db, tree):
    camp = await draft_camp(db, tree)
    await CampService().cancel_camp(db, camp.id)

    with pytest.raises(InvalidStateError):
        await get_enrollment_service().create_camp_enrollment(db, camp.id, tree.students[0].id)


@pytest.mark.asyncio
async def test_unenroll(db, tree):
    service = get_enrollment_service()
    camp = await draft_camp(db, tree)
    await service.enroll_students(db, camp.id, [s.id for s in tree.students])

    await service.delete_camp_enrollment(db, camp.id, tree.students[0].id, actor_id=tree.admin.id)

    assert await service.get_enrollment_count(db, camp.id) == 2
    with pytest.raises(NotFoundError):
        await service.delete_camp_enrollment(db, camp.id, tree.students[0].id)
