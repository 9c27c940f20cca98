#!/usr/bin/env python3
"""
CLI script to create the root organization and its first system admin.

Usage (interactive):
    python scripts/create_system_admin.py

Usage (non-interactive):
    python scripts/create_system_admin.py --email admin@example.com --password yourpassword --name "Asha Rao"
"""

import argparse
import asyncio
import sys
from getpass import getpass
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from smilestars.database import async_session_factory, engine
from smilestars.models import (
    Entity,
    EntityStatus,
    EntityType,
    Membership,
    Role,
    User,
    UserStatus,
)
from smilestars.utils.security import hash_password


async def create_system_admin(
    email: str | None = None,
    password: str | None = None,
    name: str | None = None,
    organization_name: str = "Smile Stars India",
) -> bool:
    """Create the organization (if missing) and a SYSTEM_ADMIN on it."""
    print("\n" + "=" * 50)
    print("Smile Stars - System Admin Setup")
    print("=" * 50 + "\n")

    if not email:
        while True:
            email = input("Enter email address: ").strip().lower()
            if "@" in email and "." in email:
                break
            print("Please enter a valid email address.")
    else:
        email = email.strip().lower()
        if "@" not in email or "." not in email:
            print("Invalid email address.")
            return False

    if not password:
        while True:
            password = getpass("Enter password (min 8 characters): ")
            if len(password) >= 8:
                break
            print("Password must be at least 8 characters.")

        if password != getpass("Confirm password: "):
            print("\nPasswords do not match. Aborting.")
            return False
    elif len(password) < 8:
        print("Password must be at least 8 characters.")
        return False

    if not name:
        name = input("Enter full name: ").strip() or "System Admin"

    async with async_session_factory() as session:
        result = await session.execute(select(User).where(User.email == email))
        if result.scalar_one_or_none():
            print(f"\nUser with email {email} already exists.")
            return False

        result = await session.execute(
            select(Entity).where(
                Entity.type == EntityType.ORGANIZATION.value,
                Entity.name == organization_name,
            )
        )
        organization = result.scalar_one_or_none()
        if organization is None:
            organization = Entity(
                type=EntityType.ORGANIZATION.value,
                name=organization_name,
                status=EntityStatus.ACTIVE.value,
                entity_metadata={},
            )
            session.add(organization)
            await session.flush()
            print(f"Created organization {organization_name} (id {organization.id})")

        user = User(
            email=email,
            name=name,
            password_hash=hash_password(password),
            status=UserStatus.ACTIVE.value,
        )
        session.add(user)
        await session.flush()

        session.add(
            Membership(
                user_id=user.id,
                entity_id=organization.id,
                role=Role.SYSTEM_ADMIN.value,
                is_primary=True,
            )
        )
        await session.commit()

        print("\n" + "=" * 50)
        print("System Admin Created Successfully!")
        print("=" * 50)
        print(f"  Email: {user.email}")
        print(f"  Name: {user.name}")
        print(f"  ID: {user.id}")
        print(f"  Organization: {organization.name} (id {organization.id})")
        print("=" * 50 + "\n")

        return True


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Create a Smile Stars system admin")
    parser.add_argument("--email", "-e", help="Admin email address")
    parser.add_argument("--password", "-p", help="Admin password (min 8 chars)")
    parser.add_argument("--name", "-n", help="Full name", default=None)
    parser.add_argument("--organization", "-o", help="Organization name", default="Smile Stars India")

    args = parser.parse_args()

    try:
        success = await create_system_admin(
            email=args.email,
            password=args.password,
            name=args.name,
            organization_name=args.organization,
        )
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\n\nAborted by user.")
        sys.exit(1)
    except Exception as e:
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
