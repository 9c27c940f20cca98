"""Tests for parental consent."""
import pytest
from sqlalchemy import func, select

from smilestars.exceptions import (
    InvalidHierarchyError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from smilestars.models import Consent, ConsentStatus, EntityType
from smilestars.services.camp_service import CampService
from smilestars.services.consent_service import ConsentService
from smilestars.services.identity_service import get_identity_service
from smilestars.services.notification_service import CampEventType, wait_for_background_tasks
from tests.conftest import future, make_entity


async def open_camp(db, tree, collect=True):
    """A camp at the tree's school that is accepting consents."""
    service = CampService()
    camp = await service.create_camp(
        db,
        actor_id=tree.principal.id,
        school_entity_id=tree.school.id,
        name="Spring dental camp",
        start_date=future(10),
        end_date=future(11),
    )
    await service.schedule_camp(db, camp.id)
    if collect:
        await service.start_consent_collection(db, camp.id)
    return camp


@pytest.mark.asyncio
async def test_request_is_idempotent(db, tree, recorder):
    service = ConsentService(notifier=recorder)
    camp = await open_camp(db, tree)
    student = tree.students[0]

    first = await service.request_consent(db, camp.id, student.id, ip_address="10.0.0.1")
    second = await service.request_consent(db, camp.id, student.id)

    assert first.id == second.id
    assert second.status == ConsentStatus.REQUESTED.value
    count = (
        await db.execute(select(func.count(Consent.id)).where(Consent.camp_id == camp.id))
    ).scalar()
    assert count == 1

    await wait_for_background_tasks()
    assert [e.type for e in recorder.events] == [CampEventType.CONSENT_REQUESTED]
    assert recorder.events[0].payload["student_entity_id"] == student.id


@pytest.mark.asyncio
async def test_request_while_scheduled(db, tree):
    camp = await open_camp(db, tree, collect=False)

    consent = await ConsentService().request_consent(db, camp.id, tree.students[1].id)
    assert consent.status == ConsentStatus.REQUESTED.value


@pytest.mark.asyncio
async def test_request_requires_open_camp(db, tree):
    service = CampService()
    camp = await service.create_camp(
        db,
        actor_id=tree.principal.id,
        school_entity_id=tree.school.id,
        name="Draft camp",
        start_date=future(10),
        end_date=future(11),
    )

    with pytest.raises(InvalidStateError):
        await ConsentService().request_consent(db, camp.id, tree.students[0].id)


@pytest.mark.asyncio
async def test_request_for_student_of_other_school(db, tree):
    camp = await open_camp(db, tree)
    other_school = await make_entity(db, EntityType.SCHOOL, "Hill View", tree.franchisee)
    outsider = await make_entity(db, EntityType.STUDENT, "Zara", other_school)
    await db.commit()

    with pytest.raises(InvalidHierarchyError):
        await ConsentService().request_consent(db, camp.id, outsider.id)
    with pytest.raises(NotFoundError):
        await ConsentService().request_consent(db, camp.id, tree.school.id)


@pytest.mark.asyncio
async def test_linked_parent_grants(db, tree):
    service = ConsentService()
    camp = await open_camp(db, tree)
    student = tree.students[0]
    await get_identity_service().link_parent(db, tree.parent.id, student.id)
    consent = await service.request_consent(db, camp.id, student.id)

    consent = await service.grant_consent(db, consent.id, actor_id=tree.parent.id)

    assert consent.status == ConsentStatus.GRANTED.value
    assert consent.granted_at is not None
    assert consent.decided_by == tree.parent.id

    # Granting twice returns the same record
    again = await service.grant_consent(db, consent.id, actor_id=tree.parent.id)
    assert again.status == ConsentStatus.GRANTED.value


@pytest.mark.asyncio
async def test_parent_cannot_decide_for_other_children(db, tree):
    service = ConsentService()
    camp = await open_camp(db, tree)
    await get_identity_service().link_parent(db, tree.parent.id, tree.students[0].id)
    consent = await service.request_consent(db, camp.id, tree.students[1].id)

    with pytest.raises(PermissionDeniedError):
        await service.grant_consent(db, consent.id, actor_id=tree.parent.id)


@pytest.mark.asyncio
async def test_staff_decisions_follow_permissions(db, tree):
    service = ConsentService()
    camp = await open_camp(db, tree)
    consent = await service.request_consent(db, camp.id, tree.students[2].id)

    with pytest.raises(PermissionDeniedError):
        await service.deny_consent(db, consent.id, reason="No", actor_id=tree.teacher.id)

    consent = await service.deny_consent(
        db, consent.id, reason="Parent called the office", actor_id=tree.principal.id
    )
    assert consent.status == ConsentStatus.DENIED.value
    assert consent.denial_reason == "Parent called the office"


@pytest.mark.asyncio
async def test_grant_after_deny_clears_denial(db, tree):
    service = ConsentService()
    camp = await open_camp(db, tree)
    consent = await service.request_consent(db, camp.id, tree.students[0].id)

    await service.deny_consent(db, consent.id, reason="Travelling")
    consent = await service.grant_consent(db, consent.id)

    assert consent.status == ConsentStatus.GRANTED.value
    assert consent.denied_at is None
    assert consent.denial_reason is None


@pytest.mark.asyncio
async def test_revoke_only_granted(db, tree):
    service = ConsentService()
    camp = await open_camp(db, tree)
    consent = await service.request_consent(db, camp.id, tree.students[0].id)

    with pytest.raises(InvalidStateError):
        await service.revoke_consent(db, consent.id)

    await service.grant_consent(db, consent.id)
    consent = await service.revoke_consent(db, consent.id)
    assert consent.status == ConsentStatus.REVOKED.value
    assert consent.revoked_at is not None


@pytest.mark.asyncio
async def test_no_decisions_after_camp_ends(db, tree):
    service = ConsentService()
    camp = await open_camp(db, tree)
    consent = await service.request_consent(db, camp.id, tree.students[0].id)
    await CampService().cancel_camp(db, camp.id)

    with pytest.raises(InvalidStateError):
        await service.grant_consent(db, consent.id)
    with pytest.raises(InvalidStateError):
        await service.request_consent(db, camp.id, tree.students[1].id)


@pytest.mark.asyncio
async def test_list_consents_by_status(db, tree):
    service = ConsentService()
    camp = await open_camp(db, tree)
    granted = await service.request_consent(db, camp.id, tree.students[0].id)
    await service.request_consent(db, camp.id, tree.students[1].id)
    await service.grant_consent(db, granted.id)

    assert len(await service.list_consents(db, camp.id)) == 2
    only_granted = await service.list_consents(db, camp.id, ConsentStatus.GRANTED)
    assert [c.id for c in only_granted] == [granted.id]
    assert await service.get_consent_status(db, camp.id, tree.students[2].id) is None


@pytest.mark.asyncio
async def test_deny_after_revoke_clears_revocation(db, tree):
    service = ConsentService()
    camp = await open_camp(db, tree)
    consent = await service.request_consent(db, camp.id, tree.students[0].id)
    await service.grant_consent(db, consent.id)
    await service.revoke_consent(db, consent.id)

    consent = await service.deny_consent(db, consent.id, reason="Changed our minds")

    assert consent.status == ConsentStatus.DENIED.value
    assert consent.revoked_at is None
    assert consent.granted_at is None
    assert consent.denied_at is not None
