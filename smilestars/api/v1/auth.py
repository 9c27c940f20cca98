"""Authentication API endpoints."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.config import settings
from smilestars.database import get_db
from smilestars.schemas.agreement import AgreementResponse
from smilestars.schemas.auth import (
    AcceptAgreementsRequest,
    AcceptAgreementsResponse,
    ConsumeTokenRequest,
    ConsumeTokenResponse,
    CurrentUserResponse,
    LoginRequest,
    LoginResponse,
    MagicLinkRequest,
    MagicLinkResponse,
)
from smilestars.schemas.common import APIResponse
from smilestars.schemas.user import MembershipResponse, UserResponse
from smilestars.services.auth_service import get_auth_service
from smilestars.services.identity_service import get_identity_service
from smilestars.utils.request_context import get_current_user_id, get_current_user_id_or_none

router = APIRouter()

TOKEN_EXPIRES_IN = settings.jwt_access_token_expire_minutes * 60


def client_ip(request: Request) -> str | None:
    """Best-effort client address for audit fields."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/magic-link", response_model=APIResponse[MagicLinkResponse])
async def request_magic_link(
    data: MagicLinkRequest,
    db: AsyncSession = Depends(get_db),
):
    """Email a sign-in link.

    The response is identical whether or not the address is registered.
    """
    await get_auth_service().request_login_link(db, data.email)
    return APIResponse(data=MagicLinkResponse())


@router.post("/magic-link/consume", response_model=APIResponse[ConsumeTokenResponse])
async def consume_magic_link(
    data: ConsumeTokenRequest,
    db: AsyncSession = Depends(get_db),
):
    """Exchange a magic token.

    Fully active users get an access token. Users with agreements to accept
    get an agreement session to pass to ``/auth/accept-agreements``.
    """
    result = await get_auth_service().consume_magic_token(db, data.token)

    response = ConsumeTokenResponse(
        user=UserResponse.model_validate(result.user),
        entity_id=result.entity_id,
        pending_agreements=[AgreementResponse.model_validate(a) for a in result.pending_agreements],
    )
    if result.access_token:
        response.access_token = result.access_token
        response.expires_in = TOKEN_EXPIRES_IN
    if result.session:
        response.session_id = result.session.id
        response.session_expires_at = result.session.expires_at

    return APIResponse(data=response)


@router.post("/login", response_model=APIResponse[LoginResponse])
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate with email and password."""
    access_token, user = await get_auth_service().login(db, data.email, data.password)

    return APIResponse(
        data=LoginResponse(access_token=access_token, expires_in=TOKEN_EXPIRES_IN),
        message=f"Welcome back, {user.name}!",
    )


@router.post("/accept-agreements", response_model=APIResponse[AcceptAgreementsResponse])
async def accept_agreements(
    data: AcceptAgreementsRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Accept agreements and, when an entity is given, activate it.

    Callers identify themselves with an agreement session or a bearer token.
    """
    result = await get_auth_service().accept_agreements(
        db,
        agreement_ids=data.agreement_ids,
        entity_id=data.entity_id,
        session_id=data.session_id,
        password=data.password,
        current_user_id=get_current_user_id_or_none(),
        ip=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )

    return APIResponse(
        data=AcceptAgreementsResponse(
            user=UserResponse.model_validate(result.user),
            user_activated=result.user_activated,
            entity_activated=result.entity_activated,
            entity_note=result.entity_note,
            pending_agreements=[AgreementResponse.model_validate(a) for a in result.pending_agreements],
            access_token=result.access_token,
            expires_in=TOKEN_EXPIRES_IN if result.access_token else None,
        ),
        message="Agreements accepted",
    )


@router.get("/me", response_model=APIResponse[CurrentUserResponse])
async def get_current_user(
    db: AsyncSession = Depends(get_db),
):
    """Get the current user's profile, memberships and pending agreements."""
    user_id = get_current_user_id()
    identity_service = get_identity_service()

    user = await identity_service.get_user(db, user_id)
    memberships = await identity_service.get_user_memberships(db, user_id)
    pending = await get_auth_service().get_pending_for(db, user_id)

    return APIResponse(
        data=CurrentUserResponse(
            user=UserResponse.model_validate(user),
            memberships=[MembershipResponse.model_validate(m) for m in memberships],
            roles=sorted({m.role for m in memberships}),
            pending_agreements=[AgreementResponse.model_validate(a) for a in pending],
        )
    )
