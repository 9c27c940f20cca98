"""Pydantic schemas for users, memberships and parent links."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from smilestars.models.user import Relationship, Role, UserStatus


class UserResponse(BaseModel):
    """Schema for user response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    phone: str | None = None
    status: UserStatus
    last_login_at: datetime | None = None
    created_at: datetime


class InviteUserRequest(BaseModel):
    """Request to invite a user onto an entity with a role."""

    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    entity_id: int
    role: Role


class UpdateUserRequest(BaseModel):
    """Request to edit a user's profile. Omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)


class UpdateUserStatusRequest(BaseModel):
    """Request to change a user's account status."""

    status: UserStatus


class MembershipCreate(BaseModel):
    """Request to grant a role on an entity."""

    user_id: int
    entity_id: int
    role: Role
    is_primary: bool = False
    valid_from: datetime | None = None
    valid_to: datetime | None = None


class MembershipResponse(BaseModel):
    """Schema for membership response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    entity_id: int
    role: Role
    is_primary: bool
    valid_from: datetime | None = None
    valid_to: datetime | None = None


class ParentLinkCreate(BaseModel):
    """Request to link a parent to a student."""

    parent_user_id: int
    student_entity_id: int
    relationship: Relationship = Relationship.GUARDIAN
    custody_flags: dict[str, Any] = Field(default_factory=dict)


class ParentLinkResponse(BaseModel):
    """Schema for parent-student link response."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    parent_user_id: int
    student_entity_id: int
    relationship: Relationship = Field(validation_alias="relationship_type")
    custody_flags: dict[str, Any] = Field(default_factory=dict)
