"""Pydantic schemas for camps, consents and enrollments."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from smilestars.models.camp import CampStatus, EnrollmentStatus
from smilestars.models.consent import ConsentStatus


class CampCreate(BaseModel):
    """Schema for creating a camp."""

    school_entity_id: int
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    start_date: datetime
    end_date: datetime
    expected_students: int = Field(0, ge=0)
    assigned_dentist_id: int | None = None

    @model_validator(mode="after")
    def end_not_before_start(self) -> "CampCreate":
        """Validate the date range."""
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class CampUpdate(BaseModel):
    """Schema for updating a camp.

    ``description`` may change in any state; the other fields only while the
    camp is DRAFT or SCHEDULED.
    """

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    expected_students: int | None = Field(None, ge=0)
    assigned_dentist_id: int | None = None


class CampResponse(BaseModel):
    """Schema for camp response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    school_entity_id: int
    name: str
    description: str | None = None
    start_date: datetime
    end_date: datetime
    expected_students: int
    status: CampStatus
    assigned_dentist_id: int | None = None
    created_by: int
    created_at: datetime
    updated_at: datetime


class ConsentRequest(BaseModel):
    """Request consent for a student in a camp."""

    student_entity_id: int


class DenyConsentRequest(BaseModel):
    """Deny consent with an optional reason."""

    reason: str | None = Field(None, max_length=2000)


class ConsentResponse(BaseModel):
    """Schema for consent response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    camp_id: int
    student_entity_id: int
    status: ConsentStatus
    granted_at: datetime | None = None
    denied_at: datetime | None = None
    denial_reason: str | None = None
    revoked_at: datetime | None = None
    decided_by: int | None = None


class EnrollStudentsRequest(BaseModel):
    """Enroll one or more students in a camp."""

    student_entity_ids: list[int] = Field(..., min_length=1)


class EnrollmentResponse(BaseModel):
    """Schema for camp enrollment response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    camp_id: int
    student_entity_id: int
    enrolled_at: datetime
    enrolled_by: int | None = None
    status: EnrollmentStatus


class EnrollStudentsResponse(BaseModel):
    """Outcome of a batch enrollment."""

    enrolled: list[EnrollmentResponse]
    already_enrolled: list[int]


class StudentSummary(BaseModel):
    """Minimal student view used in camp listings."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    status: str


class ScheduleCampRequest(BaseModel):
    """Schedule a camp, optionally confirming new dates."""

    start_date: datetime | None = None
    end_date: datetime | None = None
