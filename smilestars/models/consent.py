"""Parental consent for a student's participation in a camp."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from smilestars.models.base import BaseModel


class ConsentStatus(str, Enum):
    """Consent decision states."""

    REQUESTED = "REQUESTED"
    GRANTED = "GRANTED"
    DENIED = "DENIED"
    REVOKED = "REVOKED"


class Consent(BaseModel):
    """One consent record per (camp, student)."""

    __tablename__ = "consents"
    __table_args__ = (
        UniqueConstraint("camp_id", "student_entity_id", name="uq_consents_camp_student"),
        Index("idx_consents_student", "student_entity_id"),
    )

    camp_id: Mapped[int] = mapped_column(
        ForeignKey("camps.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ConsentStatus.REQUESTED.value,
    )
    granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    denied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    @property
    def is_granted(self) -> bool:
        """Check if consent is currently granted."""
        return self.status == ConsentStatus.GRANTED.value
