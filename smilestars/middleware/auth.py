"""Authentication middleware for JWT token validation."""

from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from smilestars.utils.request_context import (
    clear_all_context,
    set_current_entity_ids,
    set_current_user_id,
    set_current_user_roles,
)
from smilestars.utils.security import decode_access_token


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that extracts and validates bearer tokens from requests.

    A valid token populates the request context; endpoints decide whether
    an anonymous caller is acceptable.
    """

    # Paths that never carry user context
    EXEMPT_PATHS = {
        "/health",
        "/api/docs",
        "/api/redoc",
        "/api/openapi.json",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and extract authentication context."""
        # Clear context from previous request
        clear_all_context()

        if request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        token = self._extract_token(request)
        if token:
            payload = decode_access_token(token)
            if payload:
                try:
                    set_current_user_id(int(payload["sub"]))
                    set_current_user_roles(payload.get("roles") or [])
                    set_current_entity_ids([int(e) for e in payload.get("entity_ids") or []])
                except (KeyError, ValueError, TypeError):
                    # Malformed claims - context will remain unset
                    clear_all_context()

        response = await call_next(request)

        # Clear context after request
        clear_all_context()

        return response

    def _extract_token(self, request: Request) -> str | None:
        """Extract the bearer token from the Authorization header."""
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            return auth_header.removeprefix("Bearer ").strip()
        return None
