"""Tests for agreement gating of users and entities."""
from datetime import timedelta

import pytest
from sqlalchemy import select

from smilestars.config import settings
from smilestars.exceptions import (
    DuplicateError,
    InvalidStateError,
    PermissionDeniedError,
)
from smilestars.models import (
    Agreement,
    Entity,
    EntityStatus,
    EntityType,
    MagicToken,
    Role,
    TokenPurpose,
    User,
    UserStatus,
    utcnow,
)
from smilestars.services.agreement_service import get_agreement_service, latest_effective
from smilestars.services.auth_service import get_auth_service
from smilestars.services.identity_service import get_identity_service
from smilestars.services.provisioning_service import get_provisioning_service
from tests.conftest import make_user


async def publish_agreements(db):
    """Terms of service for everyone plus the school agreement."""
    service = get_agreement_service()
    effective_at = utcnow() - timedelta(minutes=1)
    terms = await service.create_agreement(
        db,
        code="TERMS_OF_SERVICE",
        version="1.0",
        title="Terms of Service",
        body_md="# Terms",
        effective_at=effective_at,
        required_roles=list(Role),
    )
    school = await service.create_agreement(
        db,
        code=settings.school_agreement_code,
        version="1.0",
        title="School Partnership Agreement",
        body_md="# School agreement",
        effective_at=effective_at,
        required_roles=[Role.PRINCIPAL, Role.SCHOOL_ADMIN],
    )
    return terms, school


def test_latest_effective_ignores_future_versions():
    now = utcnow()
    old = Agreement(id=1, code="TOS", version="1", effective_at=now - timedelta(days=10))
    current = Agreement(id=2, code="TOS", version="2", effective_at=now - timedelta(days=1))
    upcoming = Agreement(id=3, code="TOS", version="3", effective_at=now + timedelta(days=5))

    assert latest_effective([upcoming, old, current], now) == {"TOS": current}
    assert latest_effective([upcoming], now) == {}


@pytest.mark.asyncio
async def test_duplicate_version_rejected(db):
    await publish_agreements(db)

    with pytest.raises(DuplicateError):
        await get_agreement_service().create_agreement(
            db,
            code="TERMS_OF_SERVICE",
            version="1.0",
            title="Again",
            body_md="# Again",
            effective_at=utcnow(),
        )


@pytest.mark.asyncio
async def test_pending_follows_roles(db, tree):
    terms, school_agreement = await publish_agreements(db)
    service = get_agreement_service()

    teacher_pending = await service.get_pending_agreements(db, tree.teacher.id)
    principal_pending = await service.get_pending_agreements(db, tree.principal.id)

    assert [a.id for a in teacher_pending] == [terms.id]
    assert {a.id for a in principal_pending} == {terms.id, school_agreement.id}
    assert await service.get_pending_agreements(db, tree.parent.id) == []


@pytest.mark.asyncio
async def test_accepting_everything_activates_pending_user(db, tree):
    terms, school_agreement = await publish_agreements(db)
    service = get_agreement_service()
    user = await make_user(db, "pending@example.com", status=UserStatus.PENDING)
    await get_identity_service().create_membership(db, user.id, tree.school.id, Role.SCHOOL_ADMIN)

    assert not await service.accept_agreements(db, user.id, [terms.id])
    assert user.status == UserStatus.PENDING.value

    assert await service.accept_agreements(db, user.id, [school_agreement.id])
    assert user.status == UserStatus.ACTIVE.value

    # Accepting again is a no-op
    assert not await service.accept_agreements(db, user.id, [terms.id, terms.id])


@pytest.mark.asyncio
async def test_new_version_reopens_obligation(db, tree):
    terms, _ = await publish_agreements(db)
    service = get_agreement_service()
    await service.accept_agreements(db, tree.teacher.id, [terms.id])
    assert await service.get_pending_agreements(db, tree.teacher.id) == []

    revised = await service.create_agreement(
        db,
        code="TERMS_OF_SERVICE",
        version="2.0",
        title="Terms of Service",
        body_md="# Revised terms",
        effective_at=utcnow(),
        required_roles=list(Role),
    )

    pending = await service.get_pending_agreements(db, tree.teacher.id)
    assert [a.id for a in pending] == [revised.id]


@pytest.mark.asyncio
async def test_future_agreement_cannot_be_accepted(db, tree):
    upcoming = await get_agreement_service().create_agreement(
        db,
        code="PRIVACY_POLICY",
        version="2.0",
        title="Privacy Policy",
        body_md="# Privacy",
        effective_at=utcnow() + timedelta(days=7),
        required_roles=list(Role),
    )

    with pytest.raises(InvalidStateError):
        await get_agreement_service().accept_agreements(db, tree.teacher.id, [upcoming.id])


@pytest.mark.asyncio
async def test_school_onboarding_round_trip(db, tree):
    """Provision a school, consume its link and accept everything pending."""
    await publish_agreements(db)
    auth = get_auth_service()

    provisioned = await get_provisioning_service().provision_school(
        db,
        actor_id=tree.franchise_admin.id,
        franchisee_id=tree.franchisee.id,
        name="Hill View School",
        contact_name="Neha Joshi",
        contact_email="Neha@HillView.edu",
    )
    school_id = provisioned.entity.id
    assert provisioned.entity.status == EntityStatus.DRAFT.value
    assert provisioned.contact.status == UserStatus.PENDING.value
    assert provisioned.contact.email == "neha@hillview.edu"

    consumed = await auth.consume_magic_token(db, provisioned.token.token)
    assert consumed.access_token is None
    assert consumed.session is not None
    assert consumed.entity_id == school_id
    codes = {a.code for a in consumed.pending_agreements}
    assert codes == {"TERMS_OF_SERVICE", settings.school_agreement_code}

    accepted = await auth.accept_agreements(
        db,
        agreement_ids=[a.id for a in consumed.pending_agreements],
        session_id=consumed.session.id,
        password="correct-horse",
    )

    assert accepted.user_activated
    assert accepted.entity_activated
    assert accepted.pending_agreements == []
    assert accepted.access_token
    assert consumed.session.consumed_at is not None

    school = await db.get(Entity, school_id, populate_existing=True)
    assert school.status == EntityStatus.ACTIVE.value

    token, user = await auth.login(db, "neha@hillview.edu", "correct-horse")
    assert token
    assert user.id == provisioned.contact.id


@pytest.mark.asyncio
async def test_partial_acceptance_keeps_entity_draft(db, tree):
    terms, _ = await publish_agreements(db)
    auth = get_auth_service()
    provisioned = await get_provisioning_service().provision_school(
        db,
        actor_id=tree.admin.id,
        franchisee_id=tree.franchisee.id,
        name="Lake Side School",
        contact_name="Arjun Das",
        contact_email="arjun@lakeside.edu",
    )
    consumed = await auth.consume_magic_token(db, provisioned.token.token)

    accepted = await auth.accept_agreements(
        db, agreement_ids=[terms.id], session_id=consumed.session.id
    )

    assert not accepted.user_activated
    assert not accepted.entity_activated
    assert [a.code for a in accepted.pending_agreements] == [settings.school_agreement_code]
    assert consumed.session.consumed_at is None


@pytest.mark.asyncio
async def test_only_primary_contact_activates_entity(db, tree):
    terms, school_agreement = await publish_agreements(db)
    provisioned = await get_provisioning_service().provision_school(
        db,
        actor_id=tree.admin.id,
        franchisee_id=tree.franchisee.id,
        name="River School",
        contact_name="Kiran Rao",
        contact_email="kiran@river.edu",
    )
    school_admin = await make_user(db, "office@river.edu")
    await get_identity_service().create_membership(
        db, school_admin.id, provisioned.entity.id, Role.SCHOOL_ADMIN
    )
    agreement_service = get_agreement_service()
    await agreement_service.accept_agreements(
        db, school_admin.id, [terms.id, school_agreement.id]
    )

    with pytest.raises(PermissionDeniedError):
        await agreement_service.activate_entity(db, school_admin.id, provisioned.entity.id)


@pytest.mark.asyncio
async def test_entity_agreement_required_before_activation(db, tree):
    await publish_agreements(db)
    provisioned = await get_provisioning_service().provision_school(
        db,
        actor_id=tree.admin.id,
        franchisee_id=tree.franchisee.id,
        name="Meadow School",
        contact_name="Sara Khan",
        contact_email="sara@meadow.edu",
    )

    with pytest.raises(InvalidStateError):
        await get_agreement_service().activate_entity(
            db, provisioned.contact.id, provisioned.entity.id
        )


@pytest.mark.asyncio
async def test_organization_is_not_agreement_gated(db, tree):
    with pytest.raises(InvalidStateError):
        await get_agreement_service().activate_entity(db, tree.admin.id, tree.organization.id)


@pytest.mark.asyncio
async def test_provisioning_requires_scope(db, tree):
    with pytest.raises(PermissionDeniedError):
        await get_provisioning_service().provision_franchisee(
            db,
            actor_id=tree.franchise_admin.id,
            organization_id=tree.organization.id,
            name="Mysuru",
            contact_name="Someone",
            contact_email="someone@mysuru.in",
        )


@pytest.mark.asyncio
async def test_resend_agreement_link(db, tree):
    provisioned = await get_provisioning_service().provision_franchisee(
        db,
        actor_id=tree.admin.id,
        organization_id=tree.organization.id,
        name="Mysuru",
        contact_name="Lakshmi",
        contact_email="lakshmi@mysuru.in",
    )
    assert provisioned.entity.type == EntityType.FRANCHISEE.value

    token = await get_provisioning_service().resend_agreement_link(
        db, tree.admin.id, provisioned.entity.id
    )
    assert token.token != provisioned.token.token
    assert token.email == "lakshmi@mysuru.in"

    with pytest.raises(InvalidStateError):
        await get_provisioning_service().resend_agreement_link(
            db, tree.admin.id, tree.school.id
        )


@pytest.mark.asyncio
async def test_non_primary_member_is_activated_while_entity_stays_draft(db, other_db, tree):
    """The user gate holds even when the entity gate refuses the caller."""
    terms, school_agreement = await publish_agreements(db)
    auth = get_auth_service()
    provisioned = await get_provisioning_service().provision_school(
        db,
        actor_id=tree.admin.id,
        franchisee_id=tree.franchisee.id,
        name="Cedar School",
        contact_name="Ravi Menon",
        contact_email="ravi@cedar.edu",
    )
    school_id = provisioned.entity.id
    invited = await get_identity_service().invite_user(
        db,
        actor_id=tree.franchise_admin.id,
        email="office@cedar.edu",
        name="Cedar Office",
        target_entity_id=school_id,
        role=Role.SCHOOL_ADMIN,
    )
    invited_id = invited.id
    invite = (
        await db.execute(
            select(MagicToken).where(
                MagicToken.email == "office@cedar.edu",
                MagicToken.purpose == TokenPurpose.INVITE.value,
            )
        )
    ).scalar_one()
    consumed = await auth.consume_magic_token(db, invite.token)

    accepted = await auth.accept_agreements(
        db,
        agreement_ids=[terms.id, school_agreement.id],
        entity_id=school_id,
        session_id=consumed.session.id,
    )

    assert accepted.user_activated
    assert not accepted.entity_activated
    assert "primary contact" in accepted.entity_note
    assert accepted.access_token

    user = await other_db.get(User, invited_id)
    assert user.status == UserStatus.ACTIVE.value
    school = await other_db.get(Entity, school_id)
    assert school.status == EntityStatus.DRAFT.value


@pytest.mark.asyncio
async def test_superseded_version_cannot_be_accepted(db, tree):
    service = get_agreement_service()
    original = await service.create_agreement(
        db,
        code="PRIVACY_POLICY",
        version="1.0",
        title="Privacy Policy",
        body_md="# Privacy",
        effective_at=utcnow() - timedelta(days=30),
        required_roles=list(Role),
    )
    revised = await service.create_agreement(
        db,
        code="PRIVACY_POLICY",
        version="2.0",
        title="Privacy Policy",
        body_md="# Privacy, revised",
        effective_at=utcnow() - timedelta(days=1),
        required_roles=list(Role),
    )
    original_id, revised_id = original.id, revised.id

    with pytest.raises(InvalidStateError):
        await service.accept_agreements(db, tree.teacher.id, [original_id])
    assert [a.id for a in await service.get_pending_agreements(db, tree.teacher.id)] == [revised_id]

    await service.accept_agreements(db, tree.teacher.id, [revised_id])
    assert await service.get_pending_agreements(db, tree.teacher.id) == []
