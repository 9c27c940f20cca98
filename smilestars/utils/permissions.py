"""Role-based permission table, decorators and entity-scope checks.

Every authorization decision goes through ``ROLE_PERMISSIONS``: a role is
allowed an action if and only if the action is listed for it. Entity-scoped
checks additionally require the role to be held on the target entity or one
of its ancestors.
"""

from enum import Enum
from functools import wraps
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.exceptions import PermissionDeniedError, UnauthorizedError
from smilestars.models import Entity, Membership, Role
from smilestars.utils.request_context import (
    get_current_user_id_or_none,
    get_current_user_roles,
)


class Action(str, Enum):
    """Operations subject to authorization."""

    MANAGE_ORGANIZATIONS = "MANAGE_ORGANIZATIONS"
    MANAGE_FRANCHISEES = "MANAGE_FRANCHISEES"
    MANAGE_SCHOOLS = "MANAGE_SCHOOLS"
    MANAGE_STUDENTS = "MANAGE_STUDENTS"
    VIEW_ENTITIES = "VIEW_ENTITIES"
    INVITE_USERS = "INVITE_USERS"
    MANAGE_USERS = "MANAGE_USERS"
    MANAGE_MEMBERSHIPS = "MANAGE_MEMBERSHIPS"
    LINK_PARENTS = "LINK_PARENTS"
    MANAGE_AGREEMENTS = "MANAGE_AGREEMENTS"
    CREATE_CAMP = "CREATE_CAMP"
    EDIT_CAMP = "EDIT_CAMP"
    SCHEDULE_CAMP = "SCHEDULE_CAMP"
    START_CONSENT_COLLECTION = "START_CONSENT_COLLECTION"
    START_CAMP = "START_CAMP"
    COMPLETE_CAMP = "COMPLETE_CAMP"
    CANCEL_CAMP = "CANCEL_CAMP"
    VIEW_CAMPS = "VIEW_CAMPS"
    MANAGE_ENROLLMENTS = "MANAGE_ENROLLMENTS"
    REQUEST_CONSENT = "REQUEST_CONSENT"
    DECIDE_CONSENT = "DECIDE_CONSENT"


_ORG_LEVEL = {Role.SYSTEM_ADMIN, Role.ORG_ADMIN}
_CAMP_MANAGERS = _ORG_LEVEL | {Role.FRANCHISE_ADMIN, Role.SCHOOL_ADMIN}
_SCHOOL_LEADERS = {Role.PRINCIPAL, Role.SCHOOL_ADMIN}
_STAFF = _ORG_LEVEL | {Role.FRANCHISE_ADMIN, Role.FRANCHISE_STAFF} | _SCHOOL_LEADERS | {Role.TEACHER}
_CLINICAL = {Role.DENTIST, Role.TECHNICIAN}

# Action -> roles allowed to perform it
ACTION_ROLES: dict[Action, frozenset[Role]] = {
    Action.MANAGE_ORGANIZATIONS: frozenset({Role.SYSTEM_ADMIN}),
    Action.MANAGE_FRANCHISEES: frozenset(_ORG_LEVEL),
    Action.MANAGE_SCHOOLS: frozenset(_ORG_LEVEL | {Role.FRANCHISE_ADMIN}),
    Action.MANAGE_STUDENTS: frozenset(_STAFF),
    Action.VIEW_ENTITIES: frozenset(_STAFF | _CLINICAL),
    Action.INVITE_USERS: frozenset(_ORG_LEVEL | {Role.FRANCHISE_ADMIN} | _SCHOOL_LEADERS),
    Action.MANAGE_USERS: frozenset(_ORG_LEVEL),
    Action.MANAGE_MEMBERSHIPS: frozenset(_ORG_LEVEL | {Role.FRANCHISE_ADMIN}),
    Action.LINK_PARENTS: frozenset(_STAFF - {Role.FRANCHISE_STAFF}),
    Action.MANAGE_AGREEMENTS: frozenset({Role.SYSTEM_ADMIN}),
    Action.CREATE_CAMP: frozenset(_CAMP_MANAGERS | {Role.PRINCIPAL}),
    Action.EDIT_CAMP: frozenset(_CAMP_MANAGERS),
    Action.SCHEDULE_CAMP: frozenset(_CAMP_MANAGERS),
    Action.START_CONSENT_COLLECTION: frozenset(_CAMP_MANAGERS),
    Action.START_CAMP: frozenset(_CAMP_MANAGERS | {Role.PRINCIPAL}),
    Action.COMPLETE_CAMP: frozenset(_ORG_LEVEL | {Role.FRANCHISE_ADMIN}),
    Action.CANCEL_CAMP: frozenset(_ORG_LEVEL),
    Action.VIEW_CAMPS: frozenset(_STAFF | _CLINICAL),
    Action.MANAGE_ENROLLMENTS: frozenset(_CAMP_MANAGERS),
    Action.REQUEST_CONSENT: frozenset(_CAMP_MANAGERS | {Role.PRINCIPAL, Role.TEACHER}),
    Action.DECIDE_CONSENT: frozenset(_CAMP_MANAGERS | {Role.PRINCIPAL, Role.PARENT}),
}

# Role -> actions, derived from the table above
ROLE_PERMISSIONS: dict[Role, frozenset[Action]] = {
    role: frozenset(action for action, roles in ACTION_ROLES.items() if role in roles)
    for role in Role
}


def _role_values(roles: Iterable[Role | str]) -> set[str]:
    return {r.value if isinstance(r, Role) else r for r in roles}


def is_allowed(role: Role | str, action: Action) -> bool:
    """Check a single (role, action) cell of the permission table."""
    try:
        role = Role(role)
    except ValueError:
        return False
    return action in ROLE_PERMISSIONS[role]


def any_role_allows(roles: Iterable[Role | str], action: Action) -> bool:
    """Check if any of the roles permits the action."""
    return any(is_allowed(role, action) for role in _role_values(roles))


def require_action(action: Action) -> Callable:
    """Decorator that enforces the permission table on an endpoint.

    Usage:
        @router.post("/camps")
        @require_action(Action.CREATE_CAMP)
        async def create_camp(...):
            ...

    Args:
        action: Action the current user must be allowed to perform

    Returns:
        Decorator function
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            if get_current_user_id_or_none() is None:
                raise UnauthorizedError()
            if not any_role_allows(get_current_user_roles(), action):
                raise PermissionDeniedError()
            return await func(*args, **kwargs)

        return wrapper

    return decorator


class PermissionChecker:
    """Utility class for checking permissions programmatically."""

    def __init__(self, roles: Iterable[Role | str]):
        self.roles = _role_values(roles)

    @property
    def is_system_admin(self) -> bool:
        """Check if user is a system admin."""
        return Role.SYSTEM_ADMIN.value in self.roles

    @property
    def is_parent_only(self) -> bool:
        """Check if the only role held is PARENT."""
        return self.roles == {Role.PARENT.value}

    def can(self, action: Action) -> bool:
        """Check if any held role allows the action."""
        return any_role_allows(self.roles, action)


def get_permission_checker() -> PermissionChecker:
    """Get a PermissionChecker for the current user."""
    return PermissionChecker(get_current_user_roles())


async def get_entity_lineage(db: AsyncSession, entity_id: int) -> list[int]:
    """Return ``entity_id`` followed by its ancestors' ids, root last."""
    lineage: list[int] = []
    current_id: int | None = entity_id
    while current_id is not None and current_id not in lineage:
        lineage.append(current_id)
        result = await db.execute(select(Entity.parent_id).where(Entity.id == current_id))
        current_id = result.scalar_one_or_none()
    return lineage


async def get_scoped_roles(db: AsyncSession, user_id: int, entity_id: int) -> set[str]:
    """Roles the user currently holds on the entity or any of its ancestors.

    SYSTEM_ADMIN memberships apply everywhere.
    """
    lineage = await get_entity_lineage(db, entity_id)
    result = await db.execute(select(Membership).where(Membership.user_id == user_id))
    roles: set[str] = set()
    for membership in result.scalars():
        if not membership.is_current():
            continue
        if membership.role == Role.SYSTEM_ADMIN.value or membership.entity_id in lineage:
            roles.add(membership.role)
    return roles


async def has_entity_scope(
    db: AsyncSession,
    user_id: int,
    action: Action,
    entity_id: int,
) -> bool:
    """Check if the user may perform ``action`` on ``entity_id``."""
    roles = await get_scoped_roles(db, user_id, entity_id)
    return any_role_allows(roles, action)


async def ensure_entity_scope(
    db: AsyncSession,
    user_id: int,
    action: Action,
    entity_id: int,
) -> None:
    """Raise PermissionDeniedError unless the user may act on the entity."""
    if not await has_entity_scope(db, user_id, action, entity_id):
        raise PermissionDeniedError(
            "You don't have permission to perform this action on this entity"
        )
