"""Password hashing and access tokens."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from passlib.context import CryptContext

from smilestars.config import settings

ACCESS_TOKEN_TYPE = "access"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    user_id: int,
    roles: list[str] | None = None,
    entity_ids: list[int] | None = None,
    name: str = "",
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token for a user.

    The token carries a snapshot of the roles and entities from the user's
    current memberships. Entity scope is still checked against the database
    on every request, so a revoked membership stops working immediately even
    while the token is valid.

    Args:
        user_id: User's id
        roles: Distinct roles across the user's current memberships
        entity_ids: Entities the user holds memberships on
        name: User's display name
        expires_delta: Lifetime override; defaults to the configured expiry

    Returns:
        Encoded JWT
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)

    claims = {
        "sub": str(user_id),
        "name": name,
        "roles": sorted(set(roles or [])),
        "entity_ids": sorted(set(entity_ids or [])),
        "type": ACCESS_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(claims, settings.effective_jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Return the claims of a valid access token, or None.

    Expired, tampered and non-access tokens all come back as None; the
    caller treats the request as anonymous.
    """
    try:
        claims = jwt.decode(
            token,
            settings.effective_jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.InvalidTokenError:
        return None
    if claims.get("type") != ACCESS_TOKEN_TYPE:
        return None
    return claims
