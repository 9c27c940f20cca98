"""Request context management using contextvars.

This module provides context variables for tracking the current user and the
roles they hold throughout a request lifecycle.
"""

import contextvars

from smilestars.exceptions import RequestContextError

# Context variables for request-scoped data
_current_user_id: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "current_user_id", default=None
)
_current_user_roles: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "current_user_roles", default=()
)
_current_entity_ids: contextvars.ContextVar[tuple[int, ...]] = contextvars.ContextVar(
    "current_entity_ids", default=()
)


# === User Context ===

def get_current_user_id() -> int:
    """Get the current user ID.

    Returns:
        The current user's id

    Raises:
        RequestContextError: If user context is not set
    """
    uid = _current_user_id.get()
    if uid is None:
        raise RequestContextError("User context is not set")
    return uid


def get_current_user_id_or_none() -> int | None:
    """Get the current user ID or None if not set.

    Returns:
        The current user's id or None
    """
    return _current_user_id.get()


def set_current_user_id(uid: int | None) -> None:
    """Set the current user ID.

    Args:
        uid: User id to set (or None to clear)
    """
    _current_user_id.set(uid)


# === Role Context ===

def get_current_user_roles() -> tuple[str, ...]:
    """Get the roles held by the current user across all memberships.

    Returns:
        Tuple of role strings (empty when anonymous)
    """
    return _current_user_roles.get()


def set_current_user_roles(roles: list[str] | tuple[str, ...]) -> None:
    """Set the current user's roles.

    Args:
        roles: Role strings to set
    """
    _current_user_roles.set(tuple(roles))


def get_current_entity_ids() -> tuple[int, ...]:
    """Get the entity ids the current user holds memberships on."""
    return _current_entity_ids.get()


def set_current_entity_ids(entity_ids: list[int] | tuple[int, ...]) -> None:
    """Set the entity ids the current user holds memberships on."""
    _current_entity_ids.set(tuple(entity_ids))


# === Utility Functions ===

def clear_all_context() -> None:
    """Clear all context variables.

    Call this at the end of each request to prevent context leakage.
    """
    _current_user_id.set(None)
    _current_user_roles.set(())
    _current_entity_ids.set(())


def is_system_admin() -> bool:
    """Check if the current user is a system admin."""
    return "SYSTEM_ADMIN" in get_current_user_roles()
