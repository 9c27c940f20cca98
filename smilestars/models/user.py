"""User and membership models with role-scoped access."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from smilestars.models.base import BaseModel, JSONType, as_utc, utcnow
from smilestars.models.entity import EntityType


class Role(str, Enum):
    """Roles a membership can grant on an entity."""

    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    ORG_ADMIN = "ORG_ADMIN"
    FRANCHISE_ADMIN = "FRANCHISE_ADMIN"
    FRANCHISE_STAFF = "FRANCHISE_STAFF"
    PRINCIPAL = "PRINCIPAL"
    SCHOOL_ADMIN = "SCHOOL_ADMIN"
    TEACHER = "TEACHER"
    PARENT = "PARENT"
    DENTIST = "DENTIST"
    TECHNICIAN = "TECHNICIAN"


# Roles that may be held by at most one user per entity
EXCLUSIVE_ROLES = (Role.PRINCIPAL, Role.SCHOOL_ADMIN)

# Entity types a role may be granted on
ROLE_ENTITY_TYPES: dict[Role, tuple[EntityType, ...]] = {
    Role.SYSTEM_ADMIN: (EntityType.ORGANIZATION,),
    Role.ORG_ADMIN: (EntityType.ORGANIZATION,),
    Role.FRANCHISE_ADMIN: (EntityType.FRANCHISEE,),
    Role.FRANCHISE_STAFF: (EntityType.FRANCHISEE,),
    Role.PRINCIPAL: (EntityType.SCHOOL,),
    Role.SCHOOL_ADMIN: (EntityType.SCHOOL,),
    Role.TEACHER: (EntityType.SCHOOL,),
    Role.PARENT: (EntityType.SCHOOL,),
    Role.DENTIST: (EntityType.ORGANIZATION, EntityType.FRANCHISEE),
    Role.TECHNICIAN: (EntityType.ORGANIZATION, EntityType.FRANCHISEE),
}

# Role that designates the primary contact of an entity awaiting activation
PRIMARY_CONTACT_ROLES: dict[EntityType, tuple[Role, ...]] = {
    EntityType.FRANCHISEE: (Role.FRANCHISE_ADMIN,),
    EntityType.SCHOOL: (Role.PRINCIPAL, Role.SCHOOL_ADMIN),
}


class UserStatus(str, Enum):
    """Account lifecycle status."""

    INVITED = "INVITED"
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    ARCHIVED = "ARCHIVED"


class Relationship(str, Enum):
    """Relationship of a parent to a student."""

    MOTHER = "MOTHER"
    FATHER = "FATHER"
    GUARDIAN = "GUARDIAN"
    OTHER = "OTHER"


class User(BaseModel):
    """A person with a single login identity and any number of memberships."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UserStatus.INVITED.value,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def is_active(self) -> bool:
        """Check if the account is active."""
        return self.status == UserStatus.ACTIVE.value

    @property
    def is_suspended(self) -> bool:
        """Check if the account is suspended."""
        return self.status == UserStatus.SUSPENDED.value


class Membership(BaseModel):
    """Binding of a user to an entity with a role."""

    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "entity_id", "role", name="uq_memberships_user_entity_role"),
        # One PRINCIPAL and one SCHOOL_ADMIN per entity
        Index(
            "uq_memberships_exclusive_role",
            "entity_id",
            "role",
            unique=True,
            postgresql_where=text("role IN ('PRINCIPAL', 'SCHOOL_ADMIN')"),
            sqlite_where=text("role IN ('PRINCIPAL', 'SCHOOL_ADMIN')"),
        ),
        Index("idx_memberships_user", "user_id"),
        Index("idx_memberships_entity", "entity_id"),
    )

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(30), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    valid_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    valid_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_current(self, at: datetime | None = None) -> bool:
        """Check if the membership is within its validity window."""
        at = at or utcnow()
        valid_from = as_utc(self.valid_from)
        valid_to = as_utc(self.valid_to)
        if valid_from and valid_from > at:
            return False
        if valid_to and valid_to <= at:
            return False
        return True


class ParentStudentLink(BaseModel):
    """Many-to-many link between a parent user and a student entity."""

    __tablename__ = "parent_student_links"
    __table_args__ = (
        UniqueConstraint("parent_user_id", "student_entity_id", name="uq_parent_student"),
        Index("idx_parent_student_parent", "parent_user_id"),
        Index("idx_parent_student_student", "student_entity_id"),
    )

    parent_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    student_entity_id: Mapped[int] = mapped_column(
        ForeignKey("entities.id", ondelete="CASCADE"),
        nullable=False,
    )
    relationship_type: Mapped[str] = mapped_column(
        "relationship",
        String(20),
        nullable=False,
        default=Relationship.GUARDIAN.value,
    )
    custody_flags: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
