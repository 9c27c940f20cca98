"""Consent decision API endpoints."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.api.v1.auth import client_ip
from smilestars.database import get_db
from smilestars.schemas.camp import ConsentResponse, DenyConsentRequest
from smilestars.schemas.common import APIResponse
from smilestars.services.consent_service import get_consent_service
from smilestars.utils.permissions import Action, require_action
from smilestars.utils.request_context import get_current_user_id

router = APIRouter()


@router.post("/{consent_id}/grant", response_model=APIResponse[ConsentResponse])
@require_action(Action.DECIDE_CONSENT)
async def grant_consent(
    consent_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Grant consent. Parents may only decide for their linked children."""
    consent = await get_consent_service().grant_consent(
        db,
        consent_id,
        actor_id=get_current_user_id(),
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return APIResponse(data=ConsentResponse.model_validate(consent), message="Consent granted")


@router.post("/{consent_id}/deny", response_model=APIResponse[ConsentResponse])
@require_action(Action.DECIDE_CONSENT)
async def deny_consent(
    consent_id: int,
    request: Request,
    data: DenyConsentRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Deny consent with an optional reason."""
    consent = await get_consent_service().deny_consent(
        db,
        consent_id,
        reason=data.reason if data else None,
        actor_id=get_current_user_id(),
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return APIResponse(data=ConsentResponse.model_validate(consent), message="Consent denied")


@router.post("/{consent_id}/revoke", response_model=APIResponse[ConsentResponse])
@require_action(Action.DECIDE_CONSENT)
async def revoke_consent(
    consent_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Withdraw a granted consent."""
    consent = await get_consent_service().revoke_consent(
        db,
        consent_id,
        actor_id=get_current_user_id(),
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return APIResponse(data=ConsentResponse.model_validate(consent), message="Consent revoked")
