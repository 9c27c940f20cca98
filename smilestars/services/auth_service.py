"""Authentication service: magic tokens, password login and agreement sessions."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from smilestars.config import settings
from smilestars.exceptions import (
    ExpiredTokenError,
    InvalidTokenError,
    PermissionDeniedError,
    UnauthorizedError,
)
from smilestars.models import (
    Agreement,
    AgreementSession,
    Entity,
    EntityStatus,
    MagicToken,
    TokenPurpose,
    User,
    UserStatus,
    generate_token,
    utcnow,
)
from smilestars.services.agreement_service import entity_agreement_code, get_agreement_service
from smilestars.services.identity_service import get_identity_service
from smilestars.utils.security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

# Token purposes whose agreement session ends with an entity activation
ENTITY_PURPOSES = (TokenPurpose.FRANCHISE_AGREEMENT.value, TokenPurpose.SCHOOL_AGREEMENT.value)


def token_lifetime(purpose: TokenPurpose) -> timedelta:
    """How long a magic token of the given purpose stays valid."""
    if purpose == TokenPurpose.LOGIN:
        return timedelta(minutes=settings.login_token_expire_minutes)
    if purpose == TokenPurpose.INVITE:
        return timedelta(hours=settings.invite_token_expire_hours)
    return timedelta(days=settings.agreement_token_expire_days)


@dataclass
class ConsumeResult:
    """Outcome of consuming a magic token."""

    user: User
    access_token: str | None = None
    session: AgreementSession | None = None
    entity_id: int | None = None
    pending_agreements: list[Agreement] = field(default_factory=list)


@dataclass
class AcceptResult:
    """Outcome of the combined agreement acceptance flow."""

    user: User
    user_activated: bool
    entity_activated: bool
    pending_agreements: list[Agreement] = field(default_factory=list)
    access_token: str | None = None
    entity_note: str | None = None


class AuthService:
    """Service for handling authentication operations."""

    async def issue_magic_token(
        self,
        db: AsyncSession,
        email: str,
        purpose: TokenPurpose | str,
        metadata: dict[str, Any] | None = None,
    ) -> MagicToken:
        """Create a single-use magic token in the current transaction."""
        purpose = TokenPurpose(purpose)
        token = MagicToken(
            token=generate_token(),
            email=email.strip().lower(),
            purpose=purpose.value,
            expires_at=utcnow() + token_lifetime(purpose),
            token_metadata=metadata or {},
        )
        db.add(token)
        await db.flush()

        logger.info(f"Issued {purpose.value} token for {token.email}")
        return token

    async def request_login_link(self, db: AsyncSession, email: str) -> MagicToken | None:
        """Issue and email a LOGIN magic link.

        Unknown, suspended and archived accounts get nothing; callers respond
        identically either way.
        """
        from smilestars.services.email_service import get_email_service
        from smilestars.services.notification_service import fire_and_forget

        user = await get_identity_service().get_user_by_email(db, email)
        if not user or user.status in (UserStatus.SUSPENDED.value, UserStatus.ARCHIVED.value):
            logger.info(f"Login link requested for unknown or inactive account {email}")
            return None

        token = await self.issue_magic_token(db, user.email, TokenPurpose.LOGIN)
        await db.commit()

        fire_and_forget(
            get_email_service().send_magic_link(
                to=user.email,
                user_name=user.name,
                link_url=f"{settings.app_base_url}/magic-link?token={token.token}",
                expires_in_minutes=settings.login_token_expire_minutes,
            ),
            "magic link email",
        )
        return token

    async def consume_magic_token(self, db: AsyncSession, token_value: str) -> ConsumeResult:
        """Exchange a magic token.

        The token is marked used with a conditional update, so it works at
        most once. INVITED users become PENDING. Active users signing in with
        a LOGIN token get an access token; every other case opens a
        server-side agreement session.

        Raises:
            InvalidTokenError: If the token is unknown or already used
            ExpiredTokenError: If the token has expired
            UnauthorizedError: If the account is suspended or archived
        """
        result = await db.execute(select(MagicToken).where(MagicToken.token == token_value))
        token = result.scalar_one_or_none()
        if not token:
            raise InvalidTokenError()
        if token.is_used:
            raise InvalidTokenError("This link has already been used")
        if token.is_expired:
            raise ExpiredTokenError("This link has expired")

        claimed = await db.execute(
            update(MagicToken)
            .where(MagicToken.id == token.id, MagicToken.used_at.is_(None))
            .values(used_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            raise InvalidTokenError("This link has already been used")

        user = await get_identity_service().get_user_by_email(db, token.email)
        if not user:
            raise InvalidTokenError()
        if user.status in (UserStatus.SUSPENDED.value, UserStatus.ARCHIVED.value):
            raise UnauthorizedError("Your account is inactive")

        if user.status == UserStatus.INVITED.value:
            await db.execute(
                update(User)
                .where(User.id == user.id, User.status == UserStatus.INVITED.value)
                .values(status=UserStatus.PENDING.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await db.refresh(user)

        purpose = TokenPurpose(token.purpose)
        entity_id = (token.token_metadata or {}).get("entity_id")
        outcome = ConsumeResult(user=user, entity_id=entity_id)

        outcome.pending_agreements = await self.get_pending_for(db, user.id, entity_id)

        if purpose == TokenPurpose.LOGIN and user.is_active:
            user.last_login_at = utcnow()
            outcome.access_token = await self.issue_access_token(db, user)
        else:
            outcome.session = await self.open_agreement_session(db, user.id, entity_id, purpose)
            if user.is_active:
                outcome.access_token = await self.issue_access_token(db, user)

        await db.commit()

        logger.info(f"User {user.id} consumed {purpose.value} token")
        return outcome

    async def get_pending_for(
        self,
        db: AsyncSession,
        user_id: int,
        entity_id: int | None = None,
    ) -> list[Agreement]:
        """Pending user agreements plus the entity-class agreement, if due."""
        agreement_service = get_agreement_service()
        pending = await agreement_service.get_pending_agreements(db, user_id)

        if entity_id is not None:
            entity = await db.get(Entity, entity_id)
            if entity and entity.status == EntityStatus.DRAFT.value:
                entity_agreement = await agreement_service.latest_entity_agreement(db, entity.type)
                if (
                    entity_agreement
                    and entity_agreement.id not in {a.id for a in pending}
                    and not await agreement_service.entity_agreement_satisfied(db, user_id, entity)
                ):
                    pending.append(entity_agreement)
        return pending

    async def open_agreement_session(
        self,
        db: AsyncSession,
        user_id: int,
        entity_id: int | None,
        purpose: TokenPurpose,
    ) -> AgreementSession:
        """Create the short-lived server-side state for agreement acceptance."""
        session = AgreementSession(
            user_id=user_id,
            entity_id=entity_id,
            purpose=purpose.value,
            expires_at=utcnow() + timedelta(minutes=settings.agreement_session_expire_minutes),
        )
        db.add(session)
        await db.flush()
        return session

    async def resolve_agreement_session(
        self,
        db: AsyncSession,
        session_id: uuid.UUID,
    ) -> AgreementSession:
        """Load an open agreement session.

        Raises:
            InvalidTokenError: If the session is unknown or already consumed
            ExpiredTokenError: If the session has expired
        """
        session = await db.get(AgreementSession, session_id)
        if not session or session.consumed_at is not None:
            raise InvalidTokenError("Agreement session is invalid")
        if session.is_expired:
            raise ExpiredTokenError("Agreement session has expired")
        return session

    async def accept_agreements(
        self,
        db: AsyncSession,
        agreement_ids: list[int],
        entity_id: int | None = None,
        session_id: uuid.UUID | None = None,
        password: str | None = None,
        current_user_id: int | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AcceptResult:
        """Accept agreements and, when an entity is named, try to activate it.

        The user is taken from the agreement session when one is given,
        otherwise from the authenticated caller. The user gate and the entity
        gate are evaluated separately and committed together. A DRAFT entity
        is activated only for its primary contact once its agreement is
        accepted; otherwise ``entity_note`` says why it stayed DRAFT and the
        user gate still applies.

        Raises:
            UnauthorizedError: If neither a session nor a caller is present
            PermissionDeniedError: If the entity is not covered by the session
        """
        session = None
        if session_id is not None:
            session = await self.resolve_agreement_session(db, session_id)
            user_id = session.user_id
            if entity_id is None:
                entity_id = session.entity_id
            elif session.entity_id is not None and session.entity_id != entity_id:
                raise PermissionDeniedError("This session does not cover that entity")
        elif current_user_id is not None:
            user_id = current_user_id
        else:
            raise UnauthorizedError()

        identity_service = get_identity_service()
        agreement_service = get_agreement_service()

        user = await identity_service.get_user(db, user_id)
        if user.status in (UserStatus.SUSPENDED.value, UserStatus.ARCHIVED.value):
            raise UnauthorizedError("Your account is inactive")

        if password:
            user.password_hash = hash_password(password)
            await db.flush()

        user_activated = await agreement_service.accept_agreements(
            db, user_id, agreement_ids, ip=ip, user_agent=user_agent, commit=False
        )

        entity_activated = False
        entity_note = None
        entity = await db.get(Entity, entity_id) if entity_id is not None else None
        if entity is not None and entity.status == EntityStatus.DRAFT.value:
            if not await agreement_service.is_primary_contact(db, user_id, entity):
                entity_note = f"Only the primary contact can activate this {entity.type.lower()}"
            elif not await agreement_service.entity_agreement_satisfied(db, user_id, entity):
                entity_note = (
                    f"The {entity_agreement_code(entity.type)} agreement has not been accepted"
                )
            else:
                entity_activated = await agreement_service.activate_entity(
                    db, user_id, entity_id, commit=False
                )

        pending = await self.get_pending_for(db, user_id, entity_id)

        entity_done = True
        if session is not None and session.purpose in ENTITY_PURPOSES:
            entity_done = entity is not None and entity.is_active
        if session is not None and user.is_active and entity_done:
            session.consumed_at = utcnow()

        outcome = AcceptResult(
            user=user,
            user_activated=user_activated,
            entity_activated=entity_activated,
            pending_agreements=pending,
            entity_note=entity_note,
        )
        if user.is_active:
            outcome.access_token = await self.issue_access_token(db, user)

        await db.commit()
        return outcome

    async def login(self, db: AsyncSession, email: str, password: str) -> tuple[str, User]:
        """Authenticate with email and password.

        Returns:
            Tuple of (access token, user)

        Raises:
            UnauthorizedError: If credentials are invalid or the account is not active
        """
        user = await get_identity_service().get_user_by_email(db, email)

        if not user or not user.password_hash:
            raise UnauthorizedError("Invalid email or password")

        if not verify_password(password, user.password_hash):
            raise UnauthorizedError("Invalid email or password")

        if not user.is_active:
            raise UnauthorizedError("Your account is inactive")

        user.last_login_at = utcnow()
        access_token = await self.issue_access_token(db, user)
        await db.commit()

        return access_token, user

    async def issue_access_token(self, db: AsyncSession, user: User) -> str:
        """Create an access token carrying the user's current roles."""
        memberships = await get_identity_service().get_user_memberships(db, user.id)
        return create_access_token(
            user_id=user.id,
            roles=sorted({m.role for m in memberships}),
            entity_ids=sorted({m.entity_id for m in memberships}),
            name=user.name,
        )


# Singleton instance
_auth_service: AuthService | None = None


def get_auth_service() -> AuthService:
    """Get the auth service singleton."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service
