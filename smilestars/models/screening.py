"""Screening and report records that hang off students and camps.

Only the columns the registry needs for dependency checks and cascades are
modelled here; the clinical findings live in ``findings``.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from smilestars.models.base import BaseModel, JSONType


class Screening(BaseModel):
    """A dental screening of one student during one camp."""

    __tablename__ = "screenings"
    __table_args__ = (
        Index("idx_screenings_student", "student_entity_id"),
        Index("idx_screenings_camp", "camp_id"),
    )

    student_entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    camp_id: Mapped[int] = mapped_column(
        ForeignKey("camps.id", ondelete="RESTRICT"),
        nullable=False,
    )
    dentist_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    findings: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Report(BaseModel):
    """A generated screening report for a student."""

    __tablename__ = "reports"
    __table_args__ = (
        Index("idx_reports_student", "student_entity_id"),
    )

    screening_id: Mapped[int] = mapped_column(
        ForeignKey("screenings.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    sent_to_parent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    generated_by: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
