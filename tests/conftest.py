"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database per test (tables created from the models)
- Factories for the organization -> franchisee -> school -> student tree
- JWT token minting for authenticated API tests
- HTTPX AsyncClient bound to the application
"""
import os
import tempfile
from dataclasses import dataclass, field
from datetime import timedelta
from typing import AsyncGenerator

# Configure the application before it is imported
_DB_PATH = os.path.join(tempfile.gettempdir(), f"smilestars-test-{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["APP_ENV"] = "test"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["APP_SECRET_KEY"] = "test-secret-key"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.database import async_session_factory, engine, get_db
from smilestars.main import app
from smilestars.models import (
    Base,
    Entity,
    EntityStatus,
    EntityType,
    Membership,
    Role,
    User,
    UserStatus,
    utcnow,
)
from smilestars.services.notification_service import CampEvent, wait_for_background_tasks
from smilestars.utils.security import create_access_token


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Session on a freshly created schema.

    Services commit on their own, so isolation comes from rebuilding the
    tables for every test rather than from a rolled-back transaction.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as session:
        yield session

    await wait_for_background_tasks()


@pytest.fixture(scope="function")
async def other_db(db: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """A second, independent session on the same database."""
    async with async_session_factory() as session:
        yield session


# =============================================================================
# Hierarchy Fixtures
# =============================================================================

async def make_user(
    db: AsyncSession,
    email: str,
    name: str = "Test User",
    status: UserStatus = UserStatus.ACTIVE,
) -> User:
    user = User(email=email, name=name, status=status.value)
    db.add(user)
    await db.flush()
    return user


async def grant(
    db: AsyncSession,
    user: User,
    entity: Entity,
    role: Role,
    is_primary: bool = False,
) -> Membership:
    membership = Membership(
        user_id=user.id,
        entity_id=entity.id,
        role=role.value,
        is_primary=is_primary,
    )
    db.add(membership)
    await db.flush()
    return membership


async def make_entity(
    db: AsyncSession,
    entity_type: EntityType,
    name: str,
    parent: Entity | None = None,
    status: EntityStatus = EntityStatus.ACTIVE,
) -> Entity:
    entity = Entity(
        type=entity_type.value,
        name=name,
        parent_id=parent.id if parent else None,
        status=status.value,
        entity_metadata={},
    )
    db.add(entity)
    await db.flush()
    return entity


@dataclass
class Tree:
    """A small, fully active hierarchy with one user per key role."""

    organization: Entity
    franchisee: Entity
    school: Entity
    students: list[Entity]
    admin: User
    franchise_admin: User
    principal: User
    teacher: User
    dentist: User
    parent: User
    extra: dict = field(default_factory=dict)


@pytest.fixture(scope="function")
async def tree(db: AsyncSession) -> Tree:
    """Organization, franchisee and school (all ACTIVE) with three students."""
    organization = await make_entity(db, EntityType.ORGANIZATION, "Smile Stars India")
    franchisee = await make_entity(db, EntityType.FRANCHISEE, "Bengaluru", organization)
    school = await make_entity(db, EntityType.SCHOOL, "Green Valley", franchisee)
    students = [
        await make_entity(db, EntityType.STUDENT, name, school)
        for name in ("Aarav", "Diya", "Kabir")
    ]

    admin = await make_user(db, "admin@example.com", "Asha Rao")
    await grant(db, admin, organization, Role.SYSTEM_ADMIN, is_primary=True)

    franchise_admin = await make_user(db, "franchise@example.com", "Vikram Shah")
    await grant(db, franchise_admin, franchisee, Role.FRANCHISE_ADMIN, is_primary=True)

    principal = await make_user(db, "principal@example.com", "Meera Iyer")
    await grant(db, principal, school, Role.PRINCIPAL, is_primary=True)

    teacher = await make_user(db, "teacher@example.com", "Ravi Kumar")
    await grant(db, teacher, school, Role.TEACHER)

    dentist = await make_user(db, "dentist@example.com", "Dr. Nair")
    await grant(db, dentist, franchisee, Role.DENTIST)

    parent = await make_user(db, "parent@example.com", "Priya Menon")

    await db.commit()
    return Tree(
        organization=organization,
        franchisee=franchisee,
        school=school,
        students=students,
        admin=admin,
        franchise_admin=franchise_admin,
        principal=principal,
        teacher=teacher,
        dentist=dentist,
        parent=parent,
    )


def future(days: int):
    """An aware UTC datetime ``days`` from now."""
    return utcnow() + timedelta(days=days)


# =============================================================================
# Notifier Fixtures
# =============================================================================

class RecordingNotifier:
    """Notifier that keeps every event it receives."""

    def __init__(self):
        self.events: list[CampEvent] = []

    async def notify(self, event: CampEvent) -> None:
        self.events.append(event)


class FailingNotifier:
    """Notifier whose delivery always fails."""

    def __init__(self):
        self.calls = 0

    async def notify(self, event: CampEvent) -> None:
        self.calls += 1
        raise RuntimeError("SMTP relay unavailable")


@pytest.fixture
def recorder() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# Auth Fixtures
# =============================================================================

def bearer(user: User, *memberships: tuple[Role, Entity | int]) -> dict[str, str]:
    """Authorization header for a user holding the given memberships."""
    token = create_access_token(
        user_id=user.id,
        roles=sorted({role.value for role, _ in memberships}),
        entity_ids=sorted({getattr(entity, "id", entity) for _, entity in memberships}),
        name=user.name,
    )
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient on the app with one database session per request."""

    async def override_get_db():
        async with async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
