"""Tests for magic tokens, password login and access tokens."""
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from smilestars.exceptions import ExpiredTokenError, InvalidTokenError, UnauthorizedError
from smilestars.models import MagicToken, Role, TokenPurpose, UserStatus, utcnow
from smilestars.services.auth_service import get_auth_service
from smilestars.utils.security import create_access_token, decode_access_token, hash_password
from tests.conftest import bearer, make_user


@pytest.mark.asyncio
async def test_login_token_is_single_use(db, tree):
    auth = get_auth_service()
    token = await auth.request_login_link(db, "TEACHER@example.com")
    assert token.purpose == TokenPurpose.LOGIN.value

    result = await auth.consume_magic_token(db, token.token)
    assert result.access_token
    assert result.session is None
    assert result.user.last_login_at is not None

    payload = decode_access_token(result.access_token)
    assert payload["sub"] == str(tree.teacher.id)
    assert payload["roles"] == [Role.TEACHER.value]
    assert payload["entity_ids"] == [tree.school.id]

    with pytest.raises(InvalidTokenError):
        await auth.consume_magic_token(db, token.token)


@pytest.mark.asyncio
async def test_expired_token(db, tree):
    auth = get_auth_service()
    token = await auth.request_login_link(db, tree.teacher.email)
    await db.execute(
        update(MagicToken)
        .where(MagicToken.id == token.id)
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )
    await db.commit()
    await db.refresh(token)

    with pytest.raises(ExpiredTokenError):
        await auth.consume_magic_token(db, token.token)


@pytest.mark.asyncio
async def test_unknown_token(db):
    with pytest.raises(InvalidTokenError):
        await get_auth_service().consume_magic_token(db, "not-a-token")


@pytest.mark.asyncio
async def test_no_login_link_for_unknown_or_suspended(db, tree):
    auth = get_auth_service()
    suspended = await make_user(db, "gone@example.com", status=UserStatus.SUSPENDED)
    await db.commit()

    assert await auth.request_login_link(db, "nobody@example.com") is None
    assert await auth.request_login_link(db, suspended.email) is None


@pytest.mark.asyncio
async def test_invite_token_moves_user_to_pending(db, tree):
    auth = get_auth_service()
    invited = await make_user(db, "invitee@example.com", status=UserStatus.INVITED)
    token = await auth.issue_magic_token(
        db, invited.email, TokenPurpose.INVITE, metadata={"entity_id": tree.school.id}
    )
    await db.commit()

    result = await auth.consume_magic_token(db, token.token)

    assert result.user.status == UserStatus.PENDING.value
    assert result.session is not None
    assert result.session.entity_id == tree.school.id
    assert result.access_token is None


@pytest.mark.asyncio
async def test_password_login(db, tree):
    auth = get_auth_service()
    tree.teacher.password_hash = hash_password("secret-password")
    await db.commit()

    token, user = await auth.login(db, tree.teacher.email, "secret-password")
    assert decode_access_token(token)["sub"] == str(user.id)

    with pytest.raises(UnauthorizedError):
        await auth.login(db, tree.teacher.email, "wrong-password")


@pytest.mark.asyncio
async def test_suspended_user_cannot_login(db, tree):
    auth = get_auth_service()
    tree.teacher.password_hash = hash_password("secret-password")
    tree.teacher.status = UserStatus.SUSPENDED.value
    await db.commit()

    with pytest.raises(UnauthorizedError):
        await auth.login(db, tree.teacher.email, "secret-password")


def test_tampered_access_token_is_rejected():
    token = create_access_token(user_id=1, roles=["TEACHER"])
    assert decode_access_token(token)["roles"] == ["TEACHER"]
    assert decode_access_token(token + "tampered") is None


@pytest.mark.asyncio
async def test_me_requires_token(client: AsyncClient):
    response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401
    assert response.json()["status"] == "error"


@pytest.mark.asyncio
async def test_me_returns_memberships(client: AsyncClient, tree):
    response = await client.get(
        "/api/v1/auth/me", headers=bearer(tree.principal, (Role.PRINCIPAL, tree.school))
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["email"] == tree.principal.email
    assert data["roles"] == [Role.PRINCIPAL.value]


@pytest.mark.asyncio
async def test_magic_link_response_does_not_leak_accounts(client: AsyncClient, tree):
    known = await client.post("/api/v1/auth/magic-link", json={"email": tree.teacher.email})
    unknown = await client.post("/api/v1/auth/magic-link", json={"email": "who@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
