"""Custom exception classes and global exception handlers."""

import logging
import traceback

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class SmileStarsError(Exception):
    """Base exception for all expected, user-facing failures."""

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(SmileStarsError):
    """Missing entity, camp, consent, user or token."""

    status_code = 404

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class InvalidHierarchyError(SmileStarsError):
    """Bad parent/child type pairing or role/entity-type pairing."""

    status_code = 400


class InvalidStateError(SmileStarsError):
    """Disallowed transition or edit after the record is locked."""

    status_code = 409


class DuplicateError(SmileStarsError):
    """Unique constraint violation."""

    status_code = 409


class DependencyError(SmileStarsError):
    """Delete blocked by children or dependent records."""

    status_code = 409


class PermissionDeniedError(SmileStarsError):
    """Role or ownership check failed."""

    status_code = 403

    def __init__(self, message: str = "You don't have permission to perform this action"):
        super().__init__(message)


class UnauthorizedError(SmileStarsError):
    """Authentication required exception."""

    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class InvalidTokenError(SmileStarsError):
    """Magic token unknown or already used."""

    status_code = 401

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class ExpiredTokenError(SmileStarsError):
    """Magic token or agreement session past its expiry."""

    status_code = 401

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class ValidationError(SmileStarsError):
    """Validation error exception with field-level errors."""

    status_code = 422

    def __init__(self, errors: list[dict] | str):
        if isinstance(errors, str):
            errors = [{"field": "general", "message": errors}]
        super().__init__("Validation failed")
        self.errors = errors


class RequestContextError(UnauthorizedError):
    """User context not set error."""

    def __init__(self, message: str = "User context is required"):
        super().__init__(message)


async def smilestars_exception_handler(request: Request, exc: SmileStarsError):
    """Render expected failures as the standard JSON error envelope."""
    logger.warning(
        f"{type(exc).__name__} on {request.method} {request.url.path}: "
        f"{exc.message} (status={exc.status_code})"
    )

    content = {
        "status": "error",
        "message": exc.message,
    }
    if hasattr(exc, "errors"):
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions without leaking internals."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}")
    logger.error(f"Exception: {type(exc).__name__}: {exc}")
    tb_lines = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("".join(tb_lines))

    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "message": "An unexpected error occurred",
        },
    )


def create_exception_handlers() -> dict:
    """Map exception classes to their handlers."""
    return {
        SmileStarsError: smilestars_exception_handler,
        Exception: generic_exception_handler,
    }
