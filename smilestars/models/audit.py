"""Audit log of administrative actions."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from smilestars.models.base import Base, JSONType, utcnow


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""

    CREATE_ENTITY = "CREATE_ENTITY"
    DELETE_ENTITY = "DELETE_ENTITY"
    ARCHIVE_STUDENT = "ARCHIVE_STUDENT"
    MOVE_STUDENT = "MOVE_STUDENT"
    INVITE_USER = "INVITE_USER"
    UPDATE_USER = "UPDATE_USER"
    REGISTER_STUDENT = "REGISTER_STUDENT"
    UPDATE_USER_STATUS = "UPDATE_USER_STATUS"
    DELETE_USER = "DELETE_USER"
    CREATE_MEMBERSHIP = "CREATE_MEMBERSHIP"
    ACCEPT_AGREEMENTS = "ACCEPT_AGREEMENTS"
    ACTIVATE_ENTITY = "ACTIVATE_ENTITY"
    CREATE_CAMP = "CREATE_CAMP"
    UPDATE_CAMP = "UPDATE_CAMP"
    CAMP_TRANSITION = "CAMP_TRANSITION"
    CONSENT_DECISION = "CONSENT_DECISION"
    ENROLL_STUDENTS = "ENROLL_STUDENTS"
    UNENROLL_STUDENT = "UNENROLL_STUDENT"


class AuditLog(Base):
    """Who did what to which record."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_actor", "actor_user_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    details: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
