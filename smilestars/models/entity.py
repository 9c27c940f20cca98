"""Entity hierarchy: organizations, franchisees, schools and students."""

from enum import Enum

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from smilestars.models.base import BaseModel, JSONType


class EntityType(str, Enum):
    """Kind of node in the entity tree."""

    ORGANIZATION = "ORGANIZATION"
    FRANCHISEE = "FRANCHISEE"
    SCHOOL = "SCHOOL"
    STUDENT = "STUDENT"


class EntityStatus(str, Enum):
    """Lifecycle status of an entity."""

    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    ARCHIVED = "ARCHIVED"


# Allowed parent type for each entity type (None = root)
PARENT_TYPES: dict[EntityType, EntityType | None] = {
    EntityType.ORGANIZATION: None,
    EntityType.FRANCHISEE: EntityType.ORGANIZATION,
    EntityType.SCHOOL: EntityType.FRANCHISEE,
    EntityType.STUDENT: EntityType.SCHOOL,
}

# Status an entity starts in when provisioned
INITIAL_STATUS: dict[EntityType, EntityStatus] = {
    EntityType.ORGANIZATION: EntityStatus.ACTIVE,
    EntityType.FRANCHISEE: EntityStatus.DRAFT,
    EntityType.SCHOOL: EntityStatus.DRAFT,
    EntityType.STUDENT: EntityStatus.ACTIVE,
}


def is_valid_parent(child_type: EntityType | str, parent_type: EntityType | str | None) -> bool:
    """Check whether a child of ``child_type`` may hang under ``parent_type``."""
    child = EntityType(child_type)
    parent = EntityType(parent_type) if parent_type is not None else None
    return PARENT_TYPES[child] == parent


class Entity(BaseModel):
    """A node in the organization/franchisee/school/student tree.

    Navigation is by ``parent_id`` lookup; there are no ORM relationships so
    the tree stays a flat arena keyed by integer id.
    """

    __tablename__ = "entities"
    __table_args__ = (
        Index("idx_entities_type", "type"),
        Index("idx_entities_parent", "parent_id"),
        Index("idx_entities_status", "status"),
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("entities.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EntityStatus.DRAFT.value,
    )
    # "metadata" is reserved on declarative classes
    entity_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )

    @property
    def is_active(self) -> bool:
        """Check if the entity is active."""
        return self.status == EntityStatus.ACTIVE.value

    @property
    def is_archived(self) -> bool:
        """Check if the entity is archived."""
        return self.status == EntityStatus.ARCHIVED.value

    def get_metadata(self, key: str, default=None):
        """Get a metadata value by key."""
        return (self.entity_metadata or {}).get(key, default)
