"""Membership and parent-link API endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.database import get_db
from smilestars.schemas.common import APIResponse
from smilestars.schemas.user import (
    MembershipCreate,
    MembershipResponse,
    ParentLinkCreate,
    ParentLinkResponse,
)
from smilestars.services.identity_service import get_identity_service
from smilestars.utils.permissions import Action, ensure_entity_scope, require_action
from smilestars.utils.request_context import get_current_user_id

router = APIRouter()
parent_links_router = APIRouter()


@router.put("", response_model=APIResponse[MembershipResponse])
@require_action(Action.MANAGE_MEMBERSHIPS)
async def create_membership(
    data: MembershipCreate,
    db: AsyncSession = Depends(get_db),
):
    """Grant a role on an entity.

    A school holds at most one PRINCIPAL and one SCHOOL_ADMIN; a second one
    is rejected with 409.
    """
    user_id = get_current_user_id()
    await ensure_entity_scope(db, user_id, Action.MANAGE_MEMBERSHIPS, data.entity_id)

    membership = await get_identity_service().create_membership(
        db,
        data.user_id,
        data.entity_id,
        data.role,
        is_primary=data.is_primary,
        valid_from=data.valid_from,
        valid_to=data.valid_to,
        actor_id=user_id,
    )
    return APIResponse(
        data=MembershipResponse.model_validate(membership),
        message="Membership created",
    )


@router.delete("/{membership_id}", response_model=APIResponse[None])
@require_action(Action.MANAGE_MEMBERSHIPS)
async def delete_membership(
    membership_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Remove a membership."""
    service = get_identity_service()
    membership = await service.get_membership(db, membership_id)
    await ensure_entity_scope(
        db, get_current_user_id(), Action.MANAGE_MEMBERSHIPS, membership.entity_id
    )

    await service.remove_membership(db, membership_id)
    return APIResponse(message="Membership removed")


@parent_links_router.post("", response_model=APIResponse[ParentLinkResponse], status_code=201)
@require_action(Action.LINK_PARENTS)
async def link_parent(
    data: ParentLinkCreate,
    db: AsyncSession = Depends(get_db),
):
    """Link a parent to a student."""
    user_id = get_current_user_id()
    await ensure_entity_scope(db, user_id, Action.LINK_PARENTS, data.student_entity_id)

    link = await get_identity_service().link_parent(
        db,
        data.parent_user_id,
        data.student_entity_id,
        relationship=data.relationship,
        custody_flags=data.custody_flags,
        actor_id=user_id,
    )
    return APIResponse(data=ParentLinkResponse.model_validate(link), message="Parent linked")


@parent_links_router.delete("", response_model=APIResponse[None])
@require_action(Action.LINK_PARENTS)
async def unlink_parent(
    parent_user_id: int = Query(..., description="Parent user ID"),
    student_entity_id: int = Query(..., description="Student entity ID"),
    db: AsyncSession = Depends(get_db),
):
    """Remove a parent-student link."""
    await ensure_entity_scope(db, get_current_user_id(), Action.LINK_PARENTS, student_entity_id)
    await get_identity_service().unlink_parent(db, parent_user_id, student_entity_id)
    return APIResponse(message="Parent unlinked")
