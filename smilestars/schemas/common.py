"""Common Pydantic schemas used across the application."""

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class PaginationMeta(BaseModel):
    """Pagination metadata for list responses."""

    page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_prev: bool


class APIResponse(BaseModel, Generic[T]):
    """Standard API response envelope.

    All JSON API responses use this consistent envelope structure.
    """

    status: str = "success"
    data: T | None = None
    message: str | None = None
    errors: list[dict[str, Any]] | None = None
    pagination: PaginationMeta | None = None


class ErrorDetail(BaseModel):
    """Field-level error detail."""

    field: str
    message: str


class ErrorResponse(BaseModel):
    """Standard error response."""

    status: str = "error"
    message: str
    errors: list[ErrorDetail] | None = None


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class TimestampMixin(BaseModel):
    """Mixin for records with timestamps."""

    created_at: datetime
    updated_at: datetime


def build_pagination(page: int, page_size: int, total: int) -> PaginationMeta:
    """Build pagination metadata for a page of ``total`` items."""
    total_pages = (total + page_size - 1) // page_size
    return PaginationMeta(
        page=page,
        page_size=page_size,
        total_items=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )
