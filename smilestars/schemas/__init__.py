"""Pydantic schemas for request/response validation."""

from smilestars.schemas.agreement import AcceptanceResponse, AgreementCreate, AgreementResponse
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
from smilestars.schemas.camp import (
    CampCreate,
    CampResponse,
    CampUpdate,
    ConsentRequest,
    ConsentResponse,
    DenyConsentRequest,
    EnrollmentResponse,
    EnrollStudentsRequest,
    EnrollStudentsResponse,
    ScheduleCampRequest,
    StudentSummary,
)
from smilestars.schemas.common import APIResponse, PaginationMeta, build_pagination
from smilestars.schemas.entity import (
    EntityCreate,
    EntityResponse,
    EntityUpdate,
    FranchiseeProvisionRequest,
    MoveStudentRequest,
    ParentContact,
    PrimaryContact,
    ProvisionResponse,
    SchoolProvisionRequest,
    StudentRegistrationRequest,
    StudentRegistrationResponse,
)
from smilestars.schemas.user import (
    InviteUserRequest,
    MembershipCreate,
    MembershipResponse,
    ParentLinkCreate,
    ParentLinkResponse,
    UpdateUserRequest,
    UpdateUserStatusRequest,
    UserResponse,
)

__all__ = [
    # Common
    "APIResponse",
    "PaginationMeta",
    "build_pagination",
    # Entity
    "EntityCreate",
    "EntityUpdate",
    "EntityResponse",
    "MoveStudentRequest",
    "PrimaryContact",
    "FranchiseeProvisionRequest",
    "SchoolProvisionRequest",
    "ProvisionResponse",
    "ParentContact",
    "StudentRegistrationRequest",
    "StudentRegistrationResponse",
    # User
    "UserResponse",
    "InviteUserRequest",
    "UpdateUserRequest",
    "UpdateUserStatusRequest",
    "MembershipCreate",
    "MembershipResponse",
    "ParentLinkCreate",
    "ParentLinkResponse",
    # Auth
    "LoginRequest",
    "LoginResponse",
    "MagicLinkRequest",
    "MagicLinkResponse",
    "ConsumeTokenRequest",
    "ConsumeTokenResponse",
    "AcceptAgreementsRequest",
    "AcceptAgreementsResponse",
    "CurrentUserResponse",
    # Agreement
    "AgreementCreate",
    "AgreementResponse",
    "AcceptanceResponse",
    # Camp
    "CampCreate",
    "CampUpdate",
    "CampResponse",
    "ConsentRequest",
    "DenyConsentRequest",
    "ConsentResponse",
    "EnrollStudentsRequest",
    "EnrollmentResponse",
    "EnrollStudentsResponse",
    "ScheduleCampRequest",
    "StudentSummary",
]
