"""
FastAPI middleware for actor resolution and request authorization context.

Looks up the actor for the request's API key through an ActorStore and
attaches a RequestContext to ``request.state.ctx``. The Ability is
resolved lazily on first use and memoized for the rest of the request.
"""

import logging
from typing import Any, Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from adapters.actors import ActorStore
from core.rbac import Ability, Actor, AuthorizationGate, ResolutionContext, get_gate

logger = logging.getLogger(__name__)

GUEST_ACTOR = Actor(id=None, roles=())


# ============================================================================
# Request State Extensions
# ============================================================================

class RequestContext:
    """
    Per-request authorization context.

    Attached to request.state by the AuthorizationMiddleware.
    """

    def __init__(
        self,
        actor: Actor,
        gate: AuthorizationGate,
        resolution_context: Optional[ResolutionContext] = None,
    ):
        self.actor = actor
        self.gate = gate
        self.resolution_context = resolution_context or ResolutionContext()
        self._ability: Optional[Ability] = None

    @property
    def actor_id(self) -> Optional[str]:
        return self.actor.id

    @property
    def roles(self) -> list[str]:
        return list(self.actor.roles)

    @property
    def is_authenticated(self) -> bool:
        return not self.actor.is_guest

    @property
    def ability(self) -> Ability:
        """Ability for this request's actor, resolved once per request."""
        if self._ability is None:
            self._ability = self.gate.ability_for(self.actor, self.resolution_context)
        return self._ability

    def can(self, action: str, subject: Any) -> bool:
        return self.ability.can(action, subject)

    def __repr__(self) -> str:
        return f"RequestContext(actor_id={self.actor_id}, roles={self.roles})"


# ============================================================================
# Middleware
# ============================================================================

class AuthorizationMiddleware(BaseHTTPMiddleware):
    """
    Middleware to resolve the request actor.

    Extracts:
    1. X-API-KEY header -> actor from the ActorStore
    2. X-Order-Token header -> guest order access token
    3. Falls back to a guest actor with the configured guest roles

    Attaches ``request.state.ctx`` (RequestContext).
    """

    def __init__(
        self,
        app: ASGIApp,
        actor_store: ActorStore,
        gate: Optional[AuthorizationGate] = None,
        guest_roles: tuple = (),
    ):
        super().__init__(app)
        self.actor_store = actor_store
        self.gate = gate
        self.guest_actor = Actor(id=None, roles=guest_roles) if guest_roles else GUEST_ACTOR

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        api_key = request.headers.get("X-API-KEY") or request.headers.get("X-Api-Key")
        order_token = request.headers.get("X-Order-Token")

        actor = self.actor_store.find_by_api_key(api_key) if api_key else None
        if actor is None:
            actor = self.guest_actor

        gate = self.gate if self.gate is not None else get_gate()
        request.state.ctx = RequestContext(
            actor,
            gate,
            ResolutionContext(order_token=order_token),
        )

        logger.debug(
            f"Resolved actor for {request.method} {request.url.path}: "
            f"actor_id={actor.id}, roles={list(actor.roles)}"
        )

        return await call_next(request)


# ============================================================================
# Helper Functions
# ============================================================================

def get_current_context(request: Request) -> RequestContext:
    """
    Get the authorization context from a request.

    Raises:
        AttributeError: If middleware has not been applied
    """
    if not hasattr(request.state, "ctx"):
        raise AttributeError(
            "Request state does not have 'ctx' attribute. "
            "Ensure AuthorizationMiddleware is configured."
        )
    return request.state.ctx


def get_current_actor(request: Request) -> Actor:
    return get_current_context(request).actor
