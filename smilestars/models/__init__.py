"""SQLAlchemy models for Smile Stars."""

from smilestars.models.base import Base, BaseModel, TimestampMixin, JSONType, as_utc, utcnow
from smilestars.models.entity import (
    Entity,
    EntityStatus,
    EntityType,
    INITIAL_STATUS,
    PARENT_TYPES,
    is_valid_parent,
)
from smilestars.models.user import (
    EXCLUSIVE_ROLES,
    PRIMARY_CONTACT_ROLES,
    ROLE_ENTITY_TYPES,
    Membership,
    ParentStudentLink,
    Relationship,
    Role,
    User,
    UserStatus,
)
from smilestars.models.agreement import Agreement, AgreementAcceptance, AgreementSession
from smilestars.models.magic_token import MagicToken, TokenPurpose, generate_token
from smilestars.models.camp import (
    CAMP_TRANSITIONS,
    Camp,
    CampEnrollment,
    CampStatus,
    EnrollmentStatus,
    can_transition,
)
from smilestars.models.consent import Consent, ConsentStatus
from smilestars.models.screening import Report, Screening
from smilestars.models.audit import AuditAction, AuditLog

__all__ = [
    # Base
    "Base",
    "BaseModel",
    "TimestampMixin",
    "JSONType",
    "as_utc",
    "utcnow",
    # Entity
    "Entity",
    "EntityStatus",
    "EntityType",
    "INITIAL_STATUS",
    "PARENT_TYPES",
    "is_valid_parent",
    # User
    "User",
    "UserStatus",
    "Role",
    "Membership",
    "ParentStudentLink",
    "Relationship",
    "EXCLUSIVE_ROLES",
    "PRIMARY_CONTACT_ROLES",
    "ROLE_ENTITY_TYPES",
    # Agreement
    "Agreement",
    "AgreementAcceptance",
    "AgreementSession",
    # Magic token
    "MagicToken",
    "TokenPurpose",
    "generate_token",
    # Camp
    "Camp",
    "CampStatus",
    "CampEnrollment",
    "EnrollmentStatus",
    "CAMP_TRANSITIONS",
    "can_transition",
    # Consent
    "Consent",
    "ConsentStatus",
    # Screening
    "Screening",
    "Report",
    # Audit
    "AuditAction",
    "AuditLog",
]
