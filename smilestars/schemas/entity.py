"""Pydantic schemas for the entity hierarchy."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from smilestars.models.entity import EntityStatus, EntityType
from smilestars.models.user import Relationship
from smilestars.schemas.user import UserResponse


class EntityCreate(BaseModel):
    """Schema for creating an entity."""

    type: EntityType
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class EntityUpdate(BaseModel):
    """Schema for updating an entity's descriptive fields."""

    name: str | None = Field(None, min_length=1, max_length=255)
    metadata: dict[str, Any] | None = None


class EntityResponse(BaseModel):
    """Schema for entity response."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    type: EntityType
    name: str
    parent_id: int | None
    status: EntityStatus
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="entity_metadata")
    created_at: datetime
    updated_at: datetime


class MoveStudentRequest(BaseModel):
    """Request to move a student to another school."""

    new_school_id: int


class PrimaryContact(BaseModel):
    """Primary contact of a newly provisioned franchise or school."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(None, max_length=50)


class FranchiseeProvisionRequest(BaseModel):
    """Request to provision a franchisee with its primary admin."""

    organization_id: int
    name: str = Field(..., min_length=1, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)
    contact: PrimaryContact


class SchoolProvisionRequest(BaseModel):
    """Request to provision a school with its principal."""

    franchisee_id: int
    name: str = Field(..., min_length=1, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)
    contact: PrimaryContact


class ProvisionResponse(BaseModel):
    """Result of provisioning a franchise or school."""

    entity: EntityResponse
    contact_user_id: int
    membership_id: int
    agreement_token_expires_at: datetime


class ParentContact(BaseModel):
    """A parent registered together with a student."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(None, max_length=50)
    relationship: Relationship = Relationship.GUARDIAN
    custody_flags: dict[str, Any] = Field(default_factory=dict)


class StudentRegistrationRequest(BaseModel):
    """Request to register a student at a school along with its parents."""

    school_id: int
    name: str = Field(..., min_length=1, max_length=255)
    roll_number: str | None = Field(None, max_length=50)
    metadata: dict[str, Any] = Field(default_factory=dict)
    parents: list[ParentContact] = Field(..., min_length=1)


class StudentRegistrationResponse(BaseModel):
    """A newly registered student and its linked parents."""

    student: EntityResponse
    parents: list[UserResponse]
