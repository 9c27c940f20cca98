"""Entity hierarchy API endpoints."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.database import get_db
from smilestars.exceptions import InvalidHierarchyError, PermissionDeniedError, ValidationError
from smilestars.models import Entity, EntityStatus, EntityType
from smilestars.schemas.common import APIResponse, build_pagination
from smilestars.schemas.entity import (
    EntityCreate,
    EntityResponse,
    EntityUpdate,
    FranchiseeProvisionRequest,
    MoveStudentRequest,
    ProvisionResponse,
    SchoolProvisionRequest,
    StudentRegistrationRequest,
    StudentRegistrationResponse,
)
from smilestars.schemas.user import UserResponse
from smilestars.services.entity_service import get_entity_service
from smilestars.services.identity_service import get_identity_service
from smilestars.services.provisioning_service import ProvisionResult, get_provisioning_service
from smilestars.utils.permissions import (
    Action,
    ensure_entity_scope,
    get_permission_checker,
    require_action,
)
from smilestars.utils.request_context import get_current_user_id

router = APIRouter()

# Action that governs writes to each entity type
MANAGE_ACTIONS = {
    EntityType.ORGANIZATION: Action.MANAGE_ORGANIZATIONS,
    EntityType.FRANCHISEE: Action.MANAGE_FRANCHISEES,
    EntityType.SCHOOL: Action.MANAGE_SCHOOLS,
    EntityType.STUDENT: Action.MANAGE_STUDENTS,
}


def _entity_response(entity: Entity) -> EntityResponse:
    return EntityResponse(
        id=entity.id,
        type=entity.type,
        name=entity.name,
        parent_id=entity.parent_id,
        status=entity.status,
        metadata=entity.entity_metadata or {},
        created_at=entity.created_at,
        updated_at=entity.updated_at,
    )


def _provision_response(result: ProvisionResult) -> ProvisionResponse:
    return ProvisionResponse(
        entity=_entity_response(result.entity),
        contact_user_id=result.contact.id,
        membership_id=result.membership.id,
        agreement_token_expires_at=result.token.expires_at,
    )


@router.get("", response_model=APIResponse[list[EntityResponse]])
@require_action(Action.VIEW_ENTITIES)
async def list_entities(
    parent_id: int | None = Query(None, description="List the children of this entity"),
    type: EntityType | None = Query(None, description="Filter by entity type"),
    entity_status: EntityStatus | None = Query(None, alias="status", description="Filter by status"),
    include_archived: bool = Query(False, description="Include archived children"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=200, description="Items per page"),
    db: AsyncSession = Depends(get_db),
):
    """List entities.

    System admins may list all entities of a type; everyone else lists the
    children of an entity within their scope.
    """
    service = get_entity_service()

    if parent_id is not None:
        await ensure_entity_scope(db, get_current_user_id(), Action.VIEW_ENTITIES, parent_id)
        children = await service.get_entities_by_parent(
            db, parent_id, entity_type=type, include_archived=include_archived
        )
        return APIResponse(data=[_entity_response(e) for e in children])

    if not get_permission_checker().is_system_admin:
        raise ValidationError([{"field": "parent_id", "message": "parent_id is required"}])
    if type is None:
        raise ValidationError([{"field": "type", "message": "type or parent_id is required"}])

    entities, total = await service.get_entities_by_type(
        db, type, status=entity_status, page=page, page_size=page_size
    )
    return APIResponse(
        data=[_entity_response(e) for e in entities],
        pagination=build_pagination(page, page_size, total),
    )


@router.post("", response_model=APIResponse[EntityResponse], status_code=status.HTTP_201_CREATED)
@require_action(Action.VIEW_ENTITIES)
async def create_entity(
    data: EntityCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create an entity under a parent of the allowed type.

    Franchisees and schools created here start DRAFT without a primary
    contact; use the provisioning endpoints to onboard them.
    """
    user_id = get_current_user_id()
    action = MANAGE_ACTIONS[data.type]

    if data.type == EntityType.ORGANIZATION:
        if not get_permission_checker().can(action):
            raise PermissionDeniedError()
    elif data.parent_id is None:
        raise InvalidHierarchyError(f"A {data.type.value} requires a parent")
    else:
        await ensure_entity_scope(db, user_id, action, data.parent_id)

    entity = await get_entity_service().create_entity(
        db,
        data.type,
        data.name,
        parent_id=data.parent_id,
        metadata=data.metadata,
        actor_id=user_id,
    )
    return APIResponse(data=_entity_response(entity), message="Entity created successfully")


@router.post(
    "/franchisees",
    response_model=APIResponse[ProvisionResponse],
    status_code=status.HTTP_201_CREATED,
)
@require_action(Action.MANAGE_FRANCHISEES)
async def provision_franchisee(
    data: FranchiseeProvisionRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create a DRAFT franchisee and send its admin the agreement link."""
    result = await get_provisioning_service().provision_franchisee(
        db,
        actor_id=get_current_user_id(),
        organization_id=data.organization_id,
        name=data.name,
        contact_name=data.contact.name,
        contact_email=data.contact.email,
        contact_phone=data.contact.phone,
        metadata=data.metadata,
    )
    return APIResponse(
        data=_provision_response(result),
        message="Franchisee created; agreement link sent to the primary contact",
    )


@router.post(
    "/schools",
    response_model=APIResponse[ProvisionResponse],
    status_code=status.HTTP_201_CREATED,
)
@require_action(Action.MANAGE_SCHOOLS)
async def provision_school(
    data: SchoolProvisionRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create a DRAFT school and send its principal the agreement link."""
    result = await get_provisioning_service().provision_school(
        db,
        actor_id=get_current_user_id(),
        franchisee_id=data.franchisee_id,
        name=data.name,
        contact_name=data.contact.name,
        contact_email=data.contact.email,
        contact_phone=data.contact.phone,
        metadata=data.metadata,
    )
    return APIResponse(
        data=_provision_response(result),
        message="School created; agreement link sent to the principal",
    )


@router.post(
    "/students",
    response_model=APIResponse[StudentRegistrationResponse],
    status_code=status.HTTP_201_CREATED,
)
@require_action(Action.MANAGE_STUDENTS)
async def register_student(
    data: StudentRegistrationRequest,
    db: AsyncSession = Depends(get_db),
):
    """Register a student at a school and link its parents.

    Parents are matched by email; new ones are created INVITED and emailed
    an invitation.
    """
    user_id = get_current_user_id()
    await ensure_entity_scope(db, user_id, Action.MANAGE_STUDENTS, data.school_id)

    student, parents = await get_identity_service().register_student(
        db,
        actor_id=user_id,
        school_id=data.school_id,
        name=data.name,
        parents=[p.model_dump() for p in data.parents],
        roll_number=data.roll_number,
        metadata=data.metadata,
    )
    return APIResponse(
        data=StudentRegistrationResponse(
            student=_entity_response(student),
            parents=[UserResponse.model_validate(p) for p in parents],
        ),
        message="Student registered successfully",
    )


@router.get("/{entity_id}", response_model=APIResponse[EntityResponse])
@require_action(Action.VIEW_ENTITIES)
async def get_entity(
    entity_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get an entity."""
    await ensure_entity_scope(db, get_current_user_id(), Action.VIEW_ENTITIES, entity_id)
    entity = await get_entity_service().get_entity(db, entity_id)
    return APIResponse(data=_entity_response(entity))


@router.get("/{entity_id}/ancestors", response_model=APIResponse[list[EntityResponse]])
@require_action(Action.VIEW_ENTITIES)
async def get_entity_ancestors(
    entity_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get an entity's ancestors, nearest first."""
    await ensure_entity_scope(db, get_current_user_id(), Action.VIEW_ENTITIES, entity_id)
    ancestors = await get_entity_service().get_ancestors(db, entity_id)
    return APIResponse(data=[_entity_response(e) for e in ancestors])


@router.patch("/{entity_id}", response_model=APIResponse[EntityResponse])
@require_action(Action.VIEW_ENTITIES)
async def update_entity(
    entity_id: int,
    data: EntityUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update an entity's name or metadata."""
    service = get_entity_service()
    entity = await service.get_entity(db, entity_id)
    await ensure_entity_scope(
        db, get_current_user_id(), MANAGE_ACTIONS[EntityType(entity.type)], entity_id
    )

    entity = await service.update_entity(db, entity_id, name=data.name, metadata=data.metadata)
    return APIResponse(data=_entity_response(entity), message="Entity updated successfully")


@router.delete("/{entity_id}", response_model=APIResponse[None])
@require_action(Action.VIEW_ENTITIES)
async def delete_entity(
    entity_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Hard-delete an entity.

    Students are removed with all their dependent records.
    """
    service = get_entity_service()
    user_id = get_current_user_id()
    entity = await service.get_entity(db, entity_id)
    await ensure_entity_scope(db, user_id, MANAGE_ACTIONS[EntityType(entity.type)], entity_id)

    await service.delete_entity(db, entity_id, actor_id=user_id)
    return APIResponse(message="Entity deleted successfully")


@router.post("/{entity_id}/archive", response_model=APIResponse[EntityResponse])
@require_action(Action.MANAGE_STUDENTS)
async def archive_student(
    entity_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Detach a student from its school and archive it."""
    user_id = get_current_user_id()
    await ensure_entity_scope(db, user_id, Action.MANAGE_STUDENTS, entity_id)

    student = await get_entity_service().archive_student(db, entity_id, actor_id=user_id)
    return APIResponse(data=_entity_response(student), message="Student archived")


@router.post("/{entity_id}/move", response_model=APIResponse[EntityResponse])
@require_action(Action.MANAGE_STUDENTS)
async def move_student(
    entity_id: int,
    data: MoveStudentRequest,
    db: AsyncSession = Depends(get_db),
):
    """Move a student to another school.

    Existing camp enrollments are not changed.
    """
    user_id = get_current_user_id()
    await ensure_entity_scope(db, user_id, Action.MANAGE_STUDENTS, entity_id)
    await ensure_entity_scope(db, user_id, Action.MANAGE_STUDENTS, data.new_school_id)

    student = await get_entity_service().move_student(
        db, entity_id, data.new_school_id, actor_id=user_id
    )
    return APIResponse(data=_entity_response(student), message="Student moved")


@router.post("/{entity_id}/resend-agreement", response_model=APIResponse[None])
@require_action(Action.MANAGE_SCHOOLS)
async def resend_agreement_link(
    entity_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Send a fresh agreement link to a DRAFT entity's primary contact."""
    await get_provisioning_service().resend_agreement_link(db, get_current_user_id(), entity_id)
    return APIResponse(message="Agreement link sent")
