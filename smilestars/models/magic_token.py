"""Single-use, time-boxed magic tokens for passwordless flows."""

import secrets
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from smilestars.models.base import BaseModel, JSONType, as_utc, utcnow


class TokenPurpose(str, Enum):
    """What a magic token may be exchanged for."""

    LOGIN = "LOGIN"
    INVITE = "INVITE"
    FRANCHISE_AGREEMENT = "FRANCHISE_AGREEMENT"
    SCHOOL_AGREEMENT = "SCHOOL_AGREEMENT"


def generate_token() -> str:
    """Generate an opaque 64-character token."""
    return secrets.token_hex(32)


class MagicToken(BaseModel):
    """Opaque token looked up by exact match and expiry check."""

    __tablename__ = "magic_tokens"
    __table_args__ = (
        Index("idx_magic_tokens_email", "email"),
        Index("idx_magic_tokens_expires", "expires_at"),
    )

    token: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        nullable=False,
        default=generate_token,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=TokenPurpose.LOGIN.value,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    token_metadata: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)

    @property
    def is_expired(self) -> bool:
        """Check if the token has expired."""
        return utcnow() > as_utc(self.expires_at)

    @property
    def is_used(self) -> bool:
        """Check if the token has been consumed."""
        return self.used_at is not None
