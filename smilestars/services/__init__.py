"""Service layer for business logic."""

from smilestars.services.audit_service import AuditService, get_audit_service
from smilestars.services.email_service import EmailService, get_email_service
from smilestars.services.notification_service import (
    CampEvent,
    CampEventType,
    EmailNotifier,
    Notifier,
    NullNotifier,
    get_notifier,
)
from smilestars.services.entity_service import EntityService, get_entity_service
from smilestars.services.identity_service import IdentityService, get_identity_service
from smilestars.services.agreement_service import AgreementService, get_agreement_service
from smilestars.services.auth_service import AuthService, get_auth_service
from smilestars.services.provisioning_service import ProvisioningService, get_provisioning_service
from smilestars.services.camp_service import CampService, get_camp_service
from smilestars.services.consent_service import ConsentService, get_consent_service
from smilestars.services.enrollment_service import EnrollmentService, get_enrollment_service

__all__ = [
    "AuditService",
    "get_audit_service",
    "EmailService",
    "get_email_service",
    "CampEvent",
    "CampEventType",
    "Notifier",
    "NullNotifier",
    "EmailNotifier",
    "get_notifier",
    "EntityService",
    "get_entity_service",
    "IdentityService",
    "get_identity_service",
    "AgreementService",
    "get_agreement_service",
    "AuthService",
    "get_auth_service",
    "ProvisioningService",
    "get_provisioning_service",
    "CampService",
    "get_camp_service",
    "ConsentService",
    "get_consent_service",
    "EnrollmentService",
    "get_enrollment_service",
]
