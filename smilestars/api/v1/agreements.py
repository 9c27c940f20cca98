"""Legal agreement API endpoints."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.database import get_db
from smilestars.schemas.agreement import AgreementCreate, AgreementResponse
from smilestars.schemas.common import APIResponse
from smilestars.services.agreement_service import get_agreement_service
from smilestars.services.auth_service import get_auth_service
from smilestars.utils.permissions import Action, require_action
from smilestars.utils.request_context import get_current_user_id

router = APIRouter()


@router.get("", response_model=APIResponse[list[AgreementResponse]])
async def list_agreements(
    code: str | None = Query(None, description="Filter by agreement code"),
    db: AsyncSession = Depends(get_db),
):
    """List published agreement versions. Agreement texts are public."""
    agreements = await get_agreement_service().list_agreements(db, code=code)
    return APIResponse(data=[AgreementResponse.model_validate(a) for a in agreements])


@router.post("", response_model=APIResponse[AgreementResponse], status_code=status.HTTP_201_CREATED)
@require_action(Action.MANAGE_AGREEMENTS)
async def create_agreement(
    data: AgreementCreate,
    db: AsyncSession = Depends(get_db),
):
    """Publish a new agreement version.

    A version with a later ``effective_at`` re-opens the obligation for every
    user who accepted an earlier one.
    """
    agreement = await get_agreement_service().create_agreement(
        db,
        code=data.code,
        version=data.version,
        title=data.title,
        body_md=data.body_md,
        effective_at=data.effective_at,
        required_roles=data.required_roles,
    )
    return APIResponse(
        data=AgreementResponse.model_validate(agreement),
        message="Agreement published",
    )


@router.get("/pending", response_model=APIResponse[list[AgreementResponse]])
async def get_pending_agreements(
    entity_id: int | None = Query(None, description="Include the entity agreement for this entity"),
    db: AsyncSession = Depends(get_db),
):
    """Agreements the current user still has to accept."""
    pending = await get_auth_service().get_pending_for(db, get_current_user_id(), entity_id)
    return APIResponse(data=[AgreementResponse.model_validate(a) for a in pending])
