"""Dental camp and camp enrollment models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from smilestars.models.base import BaseModel, utcnow


class CampStatus(str, Enum):
    """Camp lifecycle states."""

    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    CONSENT_COLLECTION = "CONSENT_COLLECTION"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({CampStatus.COMPLETED, CampStatus.CANCELLED})

# States in which name, dates, expected count and dentist may change
EDITABLE_STATUSES = frozenset({CampStatus.DRAFT, CampStatus.SCHEDULED})

# Target status -> statuses it may be reached from
CAMP_TRANSITIONS: dict[CampStatus, frozenset[CampStatus]] = {
    CampStatus.SCHEDULED: frozenset({CampStatus.DRAFT}),
    CampStatus.CONSENT_COLLECTION: frozenset({CampStatus.SCHEDULED}),
    CampStatus.ACTIVE: frozenset({CampStatus.SCHEDULED, CampStatus.CONSENT_COLLECTION}),
    CampStatus.COMPLETED: frozenset({CampStatus.ACTIVE}),
    CampStatus.CANCELLED: frozenset(set(CampStatus) - TERMINAL_STATUSES),
}


def can_transition(current: CampStatus | str, target: CampStatus | str) -> bool:
    """Check if a camp may move from ``current`` to ``target``."""
    return CampStatus(current) in CAMP_TRANSITIONS.get(CampStatus(target), frozenset())


class Camp(BaseModel):
    """A dental camp held at one school."""

    __tablename__ = "camps"
    __table_args__ = (
        Index("idx_camps_school", "school_entity_id"),
        Index("idx_camps_status", "status"),
    )

    school_entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="RESTRICT"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expected_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=CampStatus.DRAFT.value,
    )
    assigned_dentist_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    @property
    def is_terminal(self) -> bool:
        """Check if the camp is completed or cancelled."""
        return CampStatus(self.status) in TERMINAL_STATUSES

    @property
    def is_editable(self) -> bool:
        """Check if structural fields may still change."""
        return CampStatus(self.status) in EDITABLE_STATUSES


class EnrollmentStatus(str, Enum):
    """Status of a student's enrollment in a camp."""

    ENROLLED = "ENROLLED"


class CampEnrollment(BaseModel):
    """Operational assignment of a student to a camp."""

    __tablename__ = "camp_enrollments"
    __table_args__ = (
        UniqueConstraint("camp_id", "student_entity_id", name="uq_camp_enrollments_camp_student"),
        Index("idx_camp_enrollments_student", "student_entity_id"),
    )

    camp_id: Mapped[int] = mapped_column(
        ForeignKey("camps.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    enrolled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    enrolled_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EnrollmentStatus.ENROLLED.value,
    )
