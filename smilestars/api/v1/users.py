"""User management API endpoints."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.database import get_db
from smilestars.schemas.common import APIResponse
from smilestars.schemas.user import (
    InviteUserRequest,
    UpdateUserRequest,
    UpdateUserStatusRequest,
    UserResponse,
)
from smilestars.services.identity_service import get_identity_service
from smilestars.utils.permissions import Action, require_action
from smilestars.utils.request_context import get_current_user_id

router = APIRouter()


@router.post("/invite", response_model=APIResponse[UserResponse], status_code=status.HTTP_201_CREATED)
@require_action(Action.INVITE_USERS)
async def invite_user(
    data: InviteUserRequest,
    db: AsyncSession = Depends(get_db),
):
    """Invite a user onto an entity with a role.

    Existing users keep their account and gain the membership; new users are
    created INVITED. Either way an invitation link is emailed.
    """
    user = await get_identity_service().invite_user(
        db,
        actor_id=get_current_user_id(),
        email=data.email,
        name=data.name,
        target_entity_id=data.entity_id,
        role=data.role,
    )
    return APIResponse(
        data=UserResponse.model_validate(user),
        message=f"Invitation sent to {user.email}",
    )


@router.get("/{user_id}", response_model=APIResponse[UserResponse])
@require_action(Action.MANAGE_USERS)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a user."""
    user = await get_identity_service().get_user(db, user_id)
    return APIResponse(data=UserResponse.model_validate(user))


@router.patch("/{user_id}", response_model=APIResponse[UserResponse])
@require_action(Action.MANAGE_USERS)
async def update_user(
    user_id: int,
    data: UpdateUserRequest,
    db: AsyncSession = Depends(get_db),
):
    """Edit a user's name, email or phone."""
    user = await get_identity_service().update_user(
        db,
        actor_id=get_current_user_id(),
        user_id=user_id,
        name=data.name,
        email=data.email,
        phone=data.phone,
    )
    return APIResponse(data=UserResponse.model_validate(user), message="User updated")


@router.patch("/{user_id}/status", response_model=APIResponse[UserResponse])
@require_action(Action.MANAGE_USERS)
async def update_user_status(
    user_id: int,
    data: UpdateUserStatusRequest,
    db: AsyncSession = Depends(get_db),
):
    """Change a user's account status. Admins cannot suspend or archive themselves."""
    user = await get_identity_service().update_user_status(
        db, actor_id=get_current_user_id(), user_id=user_id, status=data.status
    )
    return APIResponse(data=UserResponse.model_validate(user), message="User status updated")


@router.delete("/{user_id}", response_model=APIResponse[None])
@require_action(Action.MANAGE_USERS)
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Delete a user together with their memberships and links."""
    await get_identity_service().delete_user(db, actor_id=get_current_user_id(), user_id=user_id)
    return APIResponse(message="User deleted successfully")
