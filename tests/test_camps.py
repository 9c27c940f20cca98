"""Tests for the camp lifecycle."""
import pytest
from sqlalchemy import select

from smilestars.exceptions import (
    InvalidHierarchyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from smilestars.models import (
    AuditAction,
    AuditLog,
    CampStatus,
    Entity,
    EntityStatus,
    can_transition,
)
from smilestars.services.camp_service import CampService
from smilestars.services.notification_service import CampEventType, wait_for_background_tasks
from tests.conftest import FailingNotifier, future


async def new_camp(db, tree, service=None, **overrides):
    service = service or CampService()
    values = {
        "actor_id": tree.principal.id,
        "school_entity_id": tree.school.id,
        "name": "Spring dental camp",
        "start_date": future(10),
        "end_date": future(12),
        "expected_students": 120,
    }
    values.update(overrides)
    return await service.create_camp(db, **values)


def test_transition_table():
    assert can_transition(CampStatus.DRAFT, CampStatus.SCHEDULED)
    assert can_transition(CampStatus.SCHEDULED, CampStatus.ACTIVE)
    assert can_transition(CampStatus.CONSENT_COLLECTION, CampStatus.ACTIVE)
    assert can_transition(CampStatus.ACTIVE, CampStatus.CANCELLED)
    assert not can_transition(CampStatus.DRAFT, CampStatus.ACTIVE)
    assert not can_transition(CampStatus.COMPLETED, CampStatus.CANCELLED)
    assert not can_transition(CampStatus.CANCELLED, CampStatus.DRAFT)


@pytest.mark.asyncio
async def test_create_camp_starts_in_draft(db, tree):
    camp = await new_camp(db, tree)

    assert camp.status == CampStatus.DRAFT.value
    assert camp.created_by == tree.principal.id

    audit = (
        await db.execute(select(AuditLog).where(AuditLog.action == AuditAction.CREATE_CAMP.value))
    ).scalar_one()
    assert audit.target_id == camp.id


@pytest.mark.asyncio
async def test_create_camp_requires_active_school(db, tree):
    tree.school.status = EntityStatus.DRAFT.value
    await db.commit()

    with pytest.raises(InvalidStateError) as exc_info:
        await new_camp(db, tree)
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_create_camp_at_non_school(db, tree):
    with pytest.raises(InvalidHierarchyError):
        await new_camp(db, tree, school_entity_id=tree.franchisee.id)


@pytest.mark.asyncio
async def test_create_camp_validates_dates(db, tree):
    with pytest.raises(ValidationError):
        await new_camp(db, tree, start_date=future(-1))
    with pytest.raises(ValidationError):
        await new_camp(db, tree, start_date=future(10), end_date=future(5))


@pytest.mark.asyncio
async def test_assigned_dentist_must_be_dentist(db, tree):
    with pytest.raises(ValidationError):
        await new_camp(db, tree, assigned_dentist_id=tree.teacher.id)

    camp = await new_camp(db, tree, assigned_dentist_id=tree.dentist.id)
    assert camp.assigned_dentist_id == tree.dentist.id


@pytest.mark.asyncio
async def test_full_lifecycle(db, tree, recorder):
    service = CampService(notifier=recorder)
    camp = await new_camp(db, tree, service)

    camp = await service.schedule_camp(db, camp.id, actor_id=tree.admin.id)
    assert camp.status == CampStatus.SCHEDULED.value
    camp = await service.start_consent_collection(db, camp.id)
    assert camp.status == CampStatus.CONSENT_COLLECTION.value
    camp = await service.start_camp(db, camp.id)
    assert camp.status == CampStatus.ACTIVE.value
    camp = await service.complete_camp(db, camp.id)
    assert camp.status == CampStatus.COMPLETED.value

    with pytest.raises(InvalidStateError):
        await service.cancel_camp(db, camp.id)

    await wait_for_background_tasks()
    assert [e.type for e in recorder.events] == [CampEventType.CAMP_SCHEDULED]
    assert recorder.events[0].camp["id"] == camp.id
    assert recorder.events[0].camp["status"] == CampStatus.SCHEDULED.value


@pytest.mark.asyncio
async def test_start_camp_directly_from_scheduled(db, tree):
    service = CampService()
    camp = await new_camp(db, tree, service)
    await service.schedule_camp(db, camp.id)

    camp = await service.start_camp(db, camp.id)
    assert camp.status == CampStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_invalid_transitions(db, tree):
    service = CampService()
    camp = await new_camp(db, tree, service)

    with pytest.raises(InvalidStateError):
        await service.start_camp(db, camp.id)
    with pytest.raises(InvalidStateError):
        await service.complete_camp(db, camp.id)
    with pytest.raises(InvalidStateError):
        await service.start_consent_collection(db, camp.id)

    await service.cancel_camp(db, camp.id)
    with pytest.raises(InvalidStateError):
        await service.schedule_camp(db, camp.id)


@pytest.mark.asyncio
async def test_transition_unknown_camp(db, tree):
    with pytest.raises(NotFoundError):
        await CampService().start_camp(db, 12345)


@pytest.mark.asyncio
async def test_schedule_with_new_dates(db, tree):
    service = CampService()
    camp = await new_camp(db, tree, service)

    camp = await service.schedule_camp(db, camp.id, start_date=future(20), end_date=future(21))
    assert camp.status == CampStatus.SCHEDULED.value
    assert camp.start_date.date() == future(20).date()

    camp = await new_camp(db, tree, service)
    with pytest.raises(InvalidStateError):
        await service.schedule_camp(db, camp.id, start_date=future(20), end_date=future(19))


@pytest.mark.asyncio
async def test_schedule_rechecks_school_status(db, other_db, tree):
    service = CampService()
    camp = await new_camp(db, tree, service)

    # The school is suspended by another request after the camp was created
    school = await other_db.get(Entity, tree.school.id)
    school.status = EntityStatus.SUSPENDED.value
    await other_db.commit()

    with pytest.raises(InvalidStateError):
        await service.schedule_camp(db, camp.id)
    assert (await service.get_camp(other_db, camp.id)).status == CampStatus.DRAFT.value


@pytest.mark.asyncio
async def test_stale_session_loses_race(db, other_db, tree):
    """Two requests scheduling the same camp: exactly one succeeds."""
    service = CampService()
    camp = await new_camp(db, tree, service)

    # Both sessions have seen the camp in DRAFT
    await service.get_camp(other_db, camp.id)

    winner = await service.schedule_camp(other_db, camp.id)
    assert winner.status == CampStatus.SCHEDULED.value

    with pytest.raises(InvalidStateError):
        await service.schedule_camp(db, camp.id)

    transitions = (
        await other_db.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.CAMP_TRANSITION.value)
        )
    ).scalars().all()
    assert len(transitions) == 1


@pytest.mark.asyncio
async def test_failing_notifier_does_not_undo_transition(db, tree):
    notifier = FailingNotifier()
    service = CampService(notifier=notifier)
    camp = await new_camp(db, tree, service)

    camp = await service.schedule_camp(db, camp.id)
    await wait_for_background_tasks()

    assert notifier.calls == 1
    assert (await service.get_camp(db, camp.id)).status == CampStatus.SCHEDULED.value


@pytest.mark.asyncio
async def test_structural_fields_lock_after_scheduling(db, tree):
    service = CampService()
    camp = await new_camp(db, tree, service)

    camp = await service.update_camp(db, camp.id, {"name": "Renamed camp"})
    assert camp.name == "Renamed camp"

    await service.schedule_camp(db, camp.id)
    camp = await service.update_camp(db, camp.id, {"expected_students": 80})
    assert camp.expected_students == 80

    await service.start_consent_collection(db, camp.id)
    with pytest.raises(InvalidStateError):
        await service.update_camp(db, camp.id, {"expected_students": 90})

    camp = await service.update_camp(db, camp.id, {"description": "Bring toothbrushes"})
    assert camp.description == "Bring toothbrushes"
    assert camp.expected_students == 80


@pytest.mark.asyncio
async def test_list_camps_by_school(db, tree):
    service = CampService()
    first = await new_camp(db, tree, service)
    await new_camp(db, tree, service, name="Autumn camp", start_date=future(40), end_date=future(41))
    await service.cancel_camp(db, first.id)

    camps, total = await service.list_camps(db, school_ids=[tree.school.id])
    assert total == 2
    assert [c.name for c in camps] == ["Autumn camp", "Spring dental camp"]

    cancelled, total = await service.list_camps(db, status=CampStatus.CANCELLED)
    assert total == 1
    assert cancelled[0].id == first.id
