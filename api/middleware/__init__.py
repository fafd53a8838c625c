"""API middleware modules."""

from .roles import (
    AuthorizationMiddleware,
    RequestContext,
    get_current_context,
    get_current_actor,
)

__all__ = [
    "AuthorizationMiddleware",
    "RequestContext",
    "get_current_context",
    "get_current_actor",
]
