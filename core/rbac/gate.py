"""
Authorization gate: the query surface request code calls.

    gate.can_perform(actor, "view", catalog_item)

Resolves (or reuses a cached) Ability for the actor and evaluates it.
A denial is a plain ``False``.
"""

import logging
from typing import Any, Dict, Optional

from core.cache import AbilityCache
from core.metrics import record_authorization_check

from .ability import Ability
from .actor import EMPTY_CONTEXT, Actor, ResolutionContext, normalize_role
from .resolve import AbilityResolver
from .subjects import subject_tag

logger = logging.getLogger(__name__)


class AuthorizationGate:
    """
    Public authorization interface.

    Cached Abilities are keyed by (actor, context, registry generation),
    so an Ability computed under an old configuration is never served
    after the registry changes.
    """

    def __init__(self, resolver: AbilityResolver, cache: Optional[AbilityCache] = None):
        """
        Initialize the gate.

        Args:
            resolver: Resolver used to build Abilities
            cache: Ability cache; None disables caching
        """
        self.resolver = resolver
        self.cache = cache

    @property
    def registry(self):
        return self.resolver.registry

    def ability_for(self, actor: Actor, context: Optional[ResolutionContext] = None) -> Ability:
        """
        Get the Ability for an actor, from cache when possible.

        Raises:
            ConfigurationError: If one of the actor's roles was never declared
        """
        context = context if context is not None else EMPTY_CONTEXT
        snapshot = self.registry.snapshot()

        key = None
        if self.cache is not None:
            key = AbilityCache.make_key(actor, context, snapshot.generation)
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        ability = self.resolver.resolve(actor, context, snapshot=snapshot)

        if key is not None:
            self.cache.set(key, ability)
        return ability

    def can_perform(
        self,
        actor: Actor,
        action: str,
        subject: Any,
        context: Optional[ResolutionContext] = None,
    ) -> bool:
        """
        Check if an actor may perform an action on a subject.

        Args:
            actor: Authenticated (or guest) actor
            action: Action name
            subject: Subject tag, class, or concrete instance
            context: Request data for scope predicates

        Returns:
            True if permitted, False otherwise

        Raises:
            ConfigurationError: If one of the actor's roles was never
                declared in the registry
        """
        ability = self.ability_for(actor, context)
        allowed = ability.can(action, subject)

        tag = subject_tag(subject)
        record_authorization_check(allowed, action, tag)
        logger.debug(
            f"can_perform actor={actor.id or 'guest'} roles={list(actor.roles)} "
            f"action={action} subject={tag} -> {allowed}"
        )
        return allowed

    def cannot_perform(
        self,
        actor: Actor,
        action: str,
        subject: Any,
        context: Optional[ResolutionContext] = None,
    ) -> bool:
        return not self.can_perform(actor, action, subject, context)

    def report_for_role(self, role: str) -> Dict[str, Any]:
        """
        Describe what a role can do, for administrative reports.

        Resolves a synthetic guest actor holding only ``role`` (implicit
        roles are not added) and returns a read-only projection.

        Raises:
            ConfigurationError: If the role was never declared
        """
        snapshot = self.registry.snapshot()
        name = normalize_role(role)
        permission_sets = list(snapshot.require(name))

        ability = AbilityResolver(self.registry).resolve(
            Actor(id=None, roles=(name,)), snapshot=snapshot
        )
        return {
            "role": name,
            "generation": snapshot.generation,
            "permission_sets": permission_sets,
            "rules": ability.to_report(),
        }

    def invalidate(self) -> None:
        """Drop every cached Ability."""
        if self.cache is not None:
            self.cache.clear()
