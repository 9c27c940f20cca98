#!/usr/bin/env python3
"""
Development seed data script.

Creates test data for development:
- 1 organization (Smile Stars India) with a system admin
- the platform, franchise and school agreements
- 1 franchisee (DRAFT, awaiting its admin's acceptance)
- 1 school (DRAFT, awaiting its principal's acceptance)

Usage:
    python scripts/seed.py

The system admin's password is "password123". Agreement links for the
franchise admin and principal are printed at the end.
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from smilestars.config import settings
from smilestars.database import async_session_factory, engine
from smilestars.models import Entity, EntityType, Role, User, UserStatus, utcnow
from smilestars.services.agreement_service import get_agreement_service
from smilestars.services.entity_service import get_entity_service
from smilestars.services.identity_service import get_identity_service
from smilestars.services.notification_service import wait_for_background_tasks
from smilestars.services.provisioning_service import get_provisioning_service
from smilestars.utils.security import hash_password

ALL_ROLES = list(Role)

AGREEMENTS = [
    {
        "code": "TERMS_OF_SERVICE",
        "version": "1.0",
        "title": "Smile Stars Terms of Service",
        "body_md": "# Terms of Service\n\nBy using Smile Stars you agree to these terms.",
        "required_roles": ALL_ROLES,
    },
    {
        "code": "PRIVACY_POLICY",
        "version": "1.0",
        "title": "Privacy Policy",
        "body_md": "# Privacy Policy\n\nHow we handle student and family data.",
        "required_roles": ALL_ROLES,
    },
    {
        "code": settings.franchise_agreement_code,
        "version": "1.0",
        "title": "Franchise Agreement",
        "body_md": "# Franchise Agreement\n\nTerms between Smile Stars and the franchisee.",
        "required_roles": [Role.FRANCHISE_ADMIN],
    },
    {
        "code": settings.school_agreement_code,
        "version": "1.0",
        "title": "School Partnership Agreement",
        "body_md": "# School Partnership Agreement\n\nTerms for hosting dental camps.",
        "required_roles": [Role.PRINCIPAL, Role.SCHOOL_ADMIN],
    },
]


async def seed_database():
    """Seed the database with development data."""
    print("\n" + "=" * 50)
    print("Smile Stars - Development Seed Data")
    print("=" * 50 + "\n")

    async with async_session_factory() as session:
        result = await session.execute(
            select(Entity).where(Entity.type == EntityType.ORGANIZATION.value)
        )
        if result.scalars().first():
            print("An organization already exists. Skipping seed.")
            return False

        entity_service = get_entity_service()
        identity_service = get_identity_service()

        organization = await entity_service.create_entity(
            session, EntityType.ORGANIZATION, "Smile Stars India", metadata={"country": "IN"}
        )
        print(f"Created organization: {organization.name}")

        admin = User(
            email="admin@smilestars.in",
            name="Asha Rao",
            password_hash=hash_password("password123"),
            status=UserStatus.ACTIVE.value,
        )
        session.add(admin)
        await session.flush()
        await identity_service.create_membership(
            session, admin.id, organization.id, Role.SYSTEM_ADMIN, is_primary=True
        )
        print(f"Created system admin: {admin.email}")

        agreement_service = get_agreement_service()
        for data in AGREEMENTS:
            agreement = await agreement_service.create_agreement(
                session, effective_at=utcnow(), **data
            )
            print(f"Published agreement: {agreement.code} v{agreement.version}")

        # The admin accepts the agreements that apply to SYSTEM_ADMIN
        pending = await agreement_service.get_pending_agreements(session, admin.id)
        await agreement_service.accept_agreements(session, admin.id, [a.id for a in pending])

        provisioning = get_provisioning_service()
        franchise = await provisioning.provision_franchisee(
            session,
            actor_id=admin.id,
            organization_id=organization.id,
            name="Smile Stars Bengaluru",
            contact_name="Vikram Shah",
            contact_email="franchise@smilestars.in",
            metadata={"region": "Karnataka"},
        )
        print(f"Provisioned franchisee: {franchise.entity.name} ({franchise.entity.status})")

        school = await provisioning.provision_school(
            session,
            actor_id=admin.id,
            franchisee_id=franchise.entity.id,
            name="Green Valley Public School",
            contact_name="Meera Iyer",
            contact_email="principal@greenvalley.edu.in",
            metadata={"city": "Bengaluru"},
        )
        print(f"Provisioned school: {school.entity.name} ({school.entity.status})")

        await wait_for_background_tasks()

        print("\n" + "=" * 50)
        print("Seed Data Created Successfully!")
        print("=" * 50)
        print("\nSystem admin:")
        print("  admin@smilestars.in / password123")
        print("\nAgreement links:")
        print(f"  {franchise.contact.email}: {settings.app_base_url}/agreement?token={franchise.token.token}")
        print(f"  {school.contact.email}: {settings.app_base_url}/agreement?token={school.token.token}")
        print("=" * 50 + "\n")

        return True


async def main():
    """Main entry point."""
    try:
        success = await seed_database()
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\n\nAborted by user.")
        sys.exit(1)
    except Exception as e:
        print(f"\nError: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
