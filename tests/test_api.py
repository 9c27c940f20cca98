"""End-to-end tests through the HTTP API."""
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from smilestars.config import settings
from smilestars.models import CampStatus, EntityStatus, MagicToken, Role, utcnow
from smilestars.services.camp_service import CampService
from smilestars.services.consent_service import ConsentService
from smilestars.services.identity_service import get_identity_service
from tests.conftest import bearer, future


def camp_body(school_id, **overrides):
    body = {
        "school_entity_id": school_id,
        "name": "Spring dental camp",
        "start_date": future(10).isoformat(),
        "end_date": future(11).isoformat(),
        "expected_students": 60,
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_school_onboarding_to_first_camp(client: AsyncClient, db, tree):
    admin = bearer(tree.admin, (Role.SYSTEM_ADMIN, tree.organization))
    effective_at = (utcnow() - timedelta(minutes=1)).isoformat()
    for code, title, roles in (
        ("TERMS_OF_SERVICE", "Terms of Service", [r.value for r in Role]),
        (settings.school_agreement_code, "School Agreement", [Role.PRINCIPAL.value]),
    ):
        response = await client.post(
            "/api/v1/agreements",
            json={
                "code": code,
                "version": "1.0",
                "title": title,
                "body_md": f"# {title}",
                "effective_at": effective_at,
                "required_roles": roles,
            },
            headers=admin,
        )
        assert response.status_code == 201

    response = await client.post(
        "/api/v1/entities/schools",
        json={
            "franchisee_id": tree.franchisee.id,
            "name": "Lakeside Primary",
            "contact": {"name": "Meera Iyer", "email": "Meera@Example.com"},
        },
        headers=bearer(tree.franchise_admin, (Role.FRANCHISE_ADMIN, tree.franchisee)),
    )
    assert response.status_code == 201
    provisioned = response.json()["data"]
    school_id = provisioned["entity"]["id"]
    assert provisioned["entity"]["status"] == EntityStatus.DRAFT.value

    # The new principal cannot run camps before the school is active
    principal = await get_identity_service().get_user(db, provisioned["contact_user_id"])
    response = await client.post(
        "/api/v1/camps",
        json=camp_body(school_id),
        headers=bearer(principal, (Role.PRINCIPAL, school_id)),
    )
    assert response.status_code == 400
    assert response.json()["status"] == "error"

    token = (
        await db.execute(select(MagicToken).where(MagicToken.email == "meera@example.com"))
    ).scalar_one()
    response = await client.post("/api/v1/auth/magic-link/consume", json={"token": token.token})
    assert response.status_code == 200
    consumed = response.json()["data"]
    assert consumed["session_id"]
    assert consumed.get("access_token") is None
    assert sorted(a["code"] for a in consumed["pending_agreements"]) == sorted(
        ["TERMS_OF_SERVICE", settings.school_agreement_code]
    )

    response = await client.post(
        "/api/v1/auth/accept-agreements",
        json={
            "agreement_ids": [a["id"] for a in consumed["pending_agreements"]],
            "session_id": consumed["session_id"],
        },
    )
    assert response.status_code == 200
    accepted = response.json()["data"]
    assert accepted["entity_activated"] is True
    assert accepted["pending_agreements"] == []

    response = await client.post(
        "/api/v1/camps",
        json=camp_body(school_id),
        headers={"Authorization": f"Bearer {accepted['access_token']}"},
    )
    assert response.status_code == 201
    assert response.json()["data"]["status"] == CampStatus.DRAFT.value


@pytest.mark.asyncio
async def test_teacher_cannot_create_camp(client: AsyncClient, tree):
    response = await client.post(
        "/api/v1/camps",
        json=camp_body(tree.school.id),
        headers=bearer(tree.teacher, (Role.TEACHER, tree.school)),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_principal_outside_scope(client: AsyncClient, db, tree):
    response = await client.get(
        "/api/v1/camps", headers=bearer(tree.principal, (Role.PRINCIPAL, tree.school))
    )
    assert response.status_code == 422

    response = await client.get(
        f"/api/v1/entities/{tree.franchisee.id}",
        headers=bearer(tree.principal, (Role.PRINCIPAL, tree.school)),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_principal_creates_student(client: AsyncClient, tree):
    response = await client.post(
        "/api/v1/entities",
        json={"type": "STUDENT", "name": "Ishaan", "parent_id": tree.school.id},
        headers=bearer(tree.principal, (Role.PRINCIPAL, tree.school)),
    )
    assert response.status_code == 201
    assert response.json()["data"]["status"] == EntityStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_second_principal_conflicts(client: AsyncClient, tree):
    response = await client.put(
        "/api/v1/memberships",
        json={
            "user_id": tree.teacher.id,
            "entity_id": tree.school.id,
            "role": Role.PRINCIPAL.value,
        },
        headers=bearer(tree.admin, (Role.SYSTEM_ADMIN, tree.organization)),
    )
    assert response.status_code == 409
    assert response.json()["status"] == "error"


@pytest.mark.asyncio
async def test_parent_grants_consent_over_api(client: AsyncClient, db, tree):
    camps = CampService()
    camp = await camps.create_camp(
        db,
        actor_id=tree.principal.id,
        school_entity_id=tree.school.id,
        name="Spring dental camp",
        start_date=future(10),
        end_date=future(11),
    )
    await camps.schedule_camp(db, camp.id)
    await camps.start_consent_collection(db, camp.id)
    child, other_child = tree.students[0], tree.students[1]
    await get_identity_service().link_parent(db, tree.parent.id, child.id)
    consent = await ConsentService().request_consent(db, camp.id, child.id)
    other = await ConsentService().request_consent(db, camp.id, other_child.id)
    consent_id, other_id = consent.id, other.id

    headers = bearer(tree.parent, (Role.PARENT, tree.school))
    response = await client.post(f"/api/v1/consents/{consent_id}/grant", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "GRANTED"

    response = await client.post(f"/api/v1/consents/{other_id}/grant", headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_schedule_with_past_dates_conflicts(client: AsyncClient, db, tree):
    camp = await CampService().create_camp(
        db,
        actor_id=tree.principal.id,
        school_entity_id=tree.school.id,
        name="Spring dental camp",
        start_date=future(10),
        end_date=future(11),
    )

    response = await client.post(
        f"/api/v1/camps/{camp.id}/schedule",
        json={"start_date": future(-2).isoformat(), "end_date": future(-1).isoformat()},
        headers=bearer(tree.admin, (Role.SYSTEM_ADMIN, tree.organization)),
    )

    assert response.status_code == 409
    assert response.json()["status"] == "error"


@pytest.mark.asyncio
async def test_edit_user_email_conflicts(client: AsyncClient, tree):
    admin = bearer(tree.admin, (Role.SYSTEM_ADMIN, tree.organization))

    response = await client.patch(
        f"/api/v1/users/{tree.teacher.id}", json={"phone": "+91 98450 00000"}, headers=admin
    )
    assert response.status_code == 200
    assert response.json()["data"]["phone"] == "+91 98450 00000"

    response = await client.patch(
        f"/api/v1/users/{tree.teacher.id}", json={"email": tree.principal.email}, headers=admin
    )
    assert response.status_code == 409
    assert response.json()["status"] == "error"


@pytest.mark.asyncio
async def test_principal_registers_student_with_parents(client: AsyncClient, tree):
    response = await client.post(
        "/api/v1/entities/students",
        json={
            "school_id": tree.school.id,
            "name": "Riya",
            "roll_number": "4B-17",
            "parents": [{"name": "Anil Menon", "email": "anil@example.com", "relationship": "FATHER"}],
        },
        headers=bearer(tree.principal, (Role.PRINCIPAL, tree.school)),
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["student"]["parent_id"] == tree.school.id
    assert data["student"]["metadata"]["roll_number"] == "4B-17"
    assert [p["email"] for p in data["parents"]] == ["anil@example.com"]
