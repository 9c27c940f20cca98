"""Authentication-related Pydantic schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from smilestars.schemas.agreement import AgreementResponse
from smilestars.schemas.user import MembershipResponse, UserResponse


class LoginRequest(BaseModel):
    """Password login request schema."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    """Login response with access token."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int  # Seconds until token expires


class MagicLinkRequest(BaseModel):
    """Request a login magic link by email."""

    email: EmailStr


class MagicLinkResponse(BaseModel):
    """Magic link request response."""

    message: str = "If your email is registered, you will receive a sign-in link"


class ConsumeTokenRequest(BaseModel):
    """Exchange a magic token for a session or access token."""

    token: str = Field(..., min_length=1, max_length=128)


class ConsumeTokenResponse(BaseModel):
    """Result of consuming a magic token.

    Either ``access_token`` is set (the user is fully active) or
    ``session_id`` is set together with the agreements still to accept.
    """

    user: UserResponse
    access_token: str | None = None
    expires_in: int | None = None
    session_id: uuid.UUID | None = None
    session_expires_at: datetime | None = None
    entity_id: int | None = None
    pending_agreements: list[AgreementResponse] = Field(default_factory=list)


class AcceptAgreementsRequest(BaseModel):
    """Accept agreements, optionally completing entity activation.

    Unauthenticated callers identify themselves with ``session_id`` from a
    consumed magic token; authenticated callers may omit it.
    """

    agreement_ids: list[int] = Field(..., min_length=1)
    entity_id: int | None = None
    session_id: uuid.UUID | None = None
    password: str | None = Field(None, min_length=8)


class AcceptAgreementsResponse(BaseModel):
    """Outcome of accepting agreements."""

    user: UserResponse
    user_activated: bool
    entity_activated: bool
    entity_note: str | None = None
    pending_agreements: list[AgreementResponse] = Field(default_factory=list)
    access_token: str | None = None
    expires_in: int | None = None


class CurrentUserResponse(BaseModel):
    """Current user profile with memberships."""

    user: UserResponse
    memberships: list[MembershipResponse]
    roles: list[str]
    pending_agreements: list[AgreementResponse] = Field(default_factory=list)
