"""Tests for the entity hierarchy."""
import pytest
from sqlalchemy import select

from smilestars.exceptions import DependencyError, InvalidHierarchyError, NotFoundError
from smilestars.models import (
    Camp,
    CampEnrollment,
    Consent,
    Entity,
    EntityStatus,
    EntityType,
    Membership,
    ParentStudentLink,
    Role,
    is_valid_parent,
)
from smilestars.services.entity_service import get_entity_service
from smilestars.services.identity_service import get_identity_service
from tests.conftest import future, make_entity


def test_parent_types():
    assert is_valid_parent(EntityType.ORGANIZATION, None)
    assert is_valid_parent(EntityType.FRANCHISEE, EntityType.ORGANIZATION)
    assert is_valid_parent(EntityType.SCHOOL, EntityType.FRANCHISEE)
    assert is_valid_parent(EntityType.STUDENT, EntityType.SCHOOL)
    assert not is_valid_parent(EntityType.SCHOOL, EntityType.ORGANIZATION)
    assert not is_valid_parent(EntityType.STUDENT, EntityType.FRANCHISEE)
    assert not is_valid_parent(EntityType.FRANCHISEE, None)


@pytest.mark.asyncio
async def test_create_entity_initial_status(db, tree):
    service = get_entity_service()

    school = await service.create_entity(
        db, EntityType.SCHOOL, "Hill View", parent_id=tree.franchisee.id
    )
    student = await service.create_entity(
        db, EntityType.STUDENT, "Ishaan", parent_id=school.id, metadata={"grade": "3"}
    )

    assert school.status == EntityStatus.DRAFT.value
    assert student.status == EntityStatus.ACTIVE.value
    assert student.get_metadata("grade") == "3"


@pytest.mark.asyncio
async def test_create_entity_rejects_wrong_parent(db, tree):
    service = get_entity_service()

    with pytest.raises(InvalidHierarchyError):
        await service.create_entity(
            db, EntityType.SCHOOL, "Orphan", parent_id=tree.organization.id
        )
    with pytest.raises(InvalidHierarchyError):
        await service.create_entity(db, EntityType.STUDENT, "Nobody", parent_id=999_999)
    with pytest.raises(InvalidHierarchyError):
        await service.create_entity(db, EntityType.FRANCHISEE, "Rootless")


@pytest.mark.asyncio
async def test_ancestors_nearest_first(db, tree):
    ancestors = await get_entity_service().get_ancestors(db, tree.students[0].id)

    assert [a.id for a in ancestors] == [
        tree.school.id,
        tree.franchisee.id,
        tree.organization.id,
    ]


@pytest.mark.asyncio
async def test_children_exclude_archived_by_default(db, tree):
    service = get_entity_service()
    await service.archive_student(db, tree.students[0].id)

    children = await service.get_entities_by_parent(db, tree.school.id)
    assert {c.id for c in children} == {tree.students[1].id, tree.students[2].id}


@pytest.mark.asyncio
async def test_delete_school_with_children_fails(db, tree):
    with pytest.raises(DependencyError):
        await get_entity_service().delete_entity(db, tree.school.id)


@pytest.mark.asyncio
async def test_delete_school_with_camps_fails(db, tree):
    empty = await make_entity(db, EntityType.SCHOOL, "Empty", tree.franchisee)
    db.add(
        Camp(
            school_entity_id=empty.id,
            name="Spring camp",
            start_date=future(10),
            end_date=future(11),
            created_by=tree.admin.id,
        )
    )
    await db.commit()

    with pytest.raises(DependencyError):
        await get_entity_service().delete_entity(db, empty.id)


@pytest.mark.asyncio
async def test_delete_student_removes_dependents(db, tree):
    student = tree.students[0]
    camp = Camp(
        school_entity_id=tree.school.id,
        name="Spring camp",
        start_date=future(10),
        end_date=future(11),
        created_by=tree.admin.id,
    )
    db.add(camp)
    await db.flush()
    db.add(CampEnrollment(camp_id=camp.id, student_entity_id=student.id))
    db.add(Consent(camp_id=camp.id, student_entity_id=student.id))
    await db.commit()
    await get_identity_service().link_parent(db, tree.parent.id, student.id)

    await get_entity_service().delete_entity(db, student.id, actor_id=tree.admin.id)

    assert await db.get(Entity, student.id) is None
    for model, column in (
        (ParentStudentLink, ParentStudentLink.student_entity_id),
        (Consent, Consent.student_entity_id),
        (CampEnrollment, CampEnrollment.student_entity_id),
    ):
        rows = (await db.execute(select(model).where(column == student.id))).scalars().all()
        assert rows == []

    # The parent keeps their school membership
    result = await db.execute(
        select(Membership).where(
            Membership.user_id == tree.parent.id, Membership.role == Role.PARENT.value
        )
    )
    assert result.scalar_one().entity_id == tree.school.id


@pytest.mark.asyncio
async def test_archive_student_detaches_from_school(db, tree):
    student = await get_entity_service().archive_student(db, tree.students[1].id)

    assert student.parent_id is None
    assert student.status == EntityStatus.ARCHIVED.value


@pytest.mark.asyncio
async def test_move_student(db, tree):
    service = get_entity_service()
    other = await make_entity(db, EntityType.SCHOOL, "Hill View", tree.franchisee)
    await db.commit()

    moved = await service.move_student(db, tree.students[0].id, other.id)
    assert moved.parent_id == other.id

    with pytest.raises(InvalidHierarchyError):
        await service.move_student(db, tree.students[0].id, tree.franchisee.id)


@pytest.mark.asyncio
async def test_move_archived_student_fails(db, tree):
    service = get_entity_service()
    await service.archive_student(db, tree.students[2].id)

    with pytest.raises(InvalidHierarchyError):
        await service.move_student(db, tree.students[2].id, tree.school.id)


@pytest.mark.asyncio
async def test_get_missing_entity(db):
    with pytest.raises(NotFoundError):
        await get_entity_service().get_entity(db, 404)
