"""Legal agreements, acceptances and pending agreement sessions."""

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column
from uuid_extensions import uuid7

from smilestars.models.base import Base, BaseModel, JSONType, TimestampMixin, as_utc, utcnow


class Agreement(BaseModel):
    """A versioned legal document gating activation for a set of roles."""

    __tablename__ = "agreements"
    __table_args__ = (
        UniqueConstraint("code", "version", name="uq_agreements_code_version"),
        Index("idx_agreements_code", "code"),
    )

    code: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body_md: Mapped[str] = mapped_column(Text, nullable=False)
    effective_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    required_roles: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    def applies_to(self, roles) -> bool:
        """Check if any of the given roles is required to accept this agreement."""
        role_values = {r.value if hasattr(r, "value") else r for r in roles}
        return bool(role_values & set(self.required_roles or []))


class AgreementAcceptance(BaseModel):
    """Record of a user accepting one agreement version."""

    __tablename__ = "agreement_acceptances"
    __table_args__ = (
        UniqueConstraint("user_id", "agreement_id", name="uq_acceptances_user_agreement"),
        Index("idx_acceptances_user", "user_id"),
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    agreement_id: Mapped[int] = mapped_column(
        ForeignKey("agreements.id", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[str] = mapped_column(String(30), nullable=False)
    accepted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)


class AgreementSession(Base, TimestampMixin):
    """Server-side pending state between a consumed token and acceptance.

    The client only ever holds the opaque session id; the user and entity the
    acceptance applies to are read from here.
    """

    __tablename__ = "agreement_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid7)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entity_id: Mapped[int | None] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=True,
    )
    purpose: Mapped[str] = mapped_column(String(30), nullable=False)
    session_metadata: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_expired(self) -> bool:
        """Check if the session has expired."""
        return utcnow() > as_utc(self.expires_at)
