"""Middleware exports."""

from smilestars.middleware.auth import AuthMiddleware

__all__ = ["AuthMiddleware"]
