"""Pydantic schemas for legal agreements."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from smilestars.models.user import Role


class AgreementCreate(BaseModel):
    """Schema for publishing an agreement version."""

    code: str = Field(..., min_length=1, max_length=100)
    version: str = Field(..., min_length=1, max_length=30)
    title: str = Field(..., min_length=1, max_length=255)
    body_md: str = Field(..., min_length=1)
    effective_at: datetime
    required_roles: list[Role] = Field(default_factory=list)


class AgreementResponse(BaseModel):
    """Schema for agreement response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    version: str
    title: str
    body_md: str
    effective_at: datetime
    required_roles: list[str]


class AcceptanceResponse(BaseModel):
    """Schema for an agreement acceptance record."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    agreement_id: int
    version: str
    accepted_at: datetime
