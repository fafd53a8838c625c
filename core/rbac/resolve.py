"""
Ability resolution.

Turns an actor's role names into one consolidated Ability by activating
every permission set bound to each role in a single registry snapshot.
Pure computation: no I/O, no locks, safe to run concurrently for any
number of actors.
"""

import logging
import time
from typing import Iterable, List, Optional, Tuple

from core.metrics import record_ability_resolution

from .ability import Ability
from .actor import EMPTY_CONTEXT, Actor, ResolutionContext, normalize_role
from .errors import ConfigurationError
from .registry import RegistrySnapshot, RoleRegistry
from .rules import CapabilityRule

logger = logging.getLogger(__name__)


class AbilityResolver:
    """
    Resolves Abilities from a RoleRegistry.

    Rules from every role are collected into one multiset before merging,
    so the outcome never depends on role order or permission-set order.
    """

    def __init__(self, registry: RoleRegistry, implicit_roles: Iterable[str] = ()):
        """
        Initialize the resolver.

        Args:
            registry: Role registry to read snapshots from
            implicit_roles: Roles applied to every actor on top of its own
                (e.g. ``["default"]`` to give every signed-in user the
                storefront baseline). Empty by default.
        """
        self.registry = registry
        self.implicit_roles: Tuple[str, ...] = tuple(
            normalize_role(role) for role in implicit_roles if normalize_role(role)
        )

    def effective_roles(self, actor: Actor) -> Tuple[str, ...]:
        """Actor roles followed by implicit roles, without duplicates."""
        roles = list(actor.roles)
        for role in self.implicit_roles:
            if role not in roles:
                roles.append(role)
        return tuple(roles)

    def resolve(
        self,
        actor: Actor,
        context: Optional[ResolutionContext] = None,
        snapshot: Optional[RegistrySnapshot] = None,
    ) -> Ability:
        """
        Resolve the Ability for an actor.

        Args:
            actor: Actor whose roles are resolved
            context: Request data handed to permission sets
            snapshot: Registry snapshot to resolve against; taken from the
                registry when omitted. Callers that cache the result pass
                the snapshot whose generation they key the cache with.

        Returns:
            Ability for the actor. An actor with no roles gets an empty
            Ability that denies everything.

        Raises:
            ConfigurationError: If one of the actor's roles was never
                declared in the registry
        """
        started = time.perf_counter()
        snapshot = snapshot if snapshot is not None else self.registry.snapshot()
        context = context if context is not None else EMPTY_CONTEXT
        roles = self.effective_roles(actor)

        collected: List[CapabilityRule] = []
        for role in roles:
            try:
                permission_set_ids = snapshot.require(role)
            except ConfigurationError:
                logger.error(
                    f"Actor {actor.id or 'guest'} holds undeclared role {role!r} "
                    f"(generation={snapshot.generation})"
                )
                raise
            for permission_set_id in permission_set_ids:
                collected.extend(
                    self._activate(permission_set_id, actor, context)
                )

        ability = Ability(
            rules=collected,
            roles=roles,
            generation=snapshot.generation,
            actor_id=actor.id,
        )

        elapsed_ms = (time.perf_counter() - started) * 1000
        record_ability_resolution(elapsed_ms, rule_count=len(collected))
        logger.debug(
            f"Resolved ability for actor={actor.id or 'guest'} roles={list(roles)}: "
            f"{len(collected)} rules, {len(ability.decisions())} keys, "
            f"generation={snapshot.generation}"
        )
        return ability

    def _activate(
        self,
        permission_set_id: str,
        actor: Actor,
        context: ResolutionContext,
    ) -> Tuple[CapabilityRule, ...]:
        permission_set = self.registry.catalog.get(permission_set_id)
        return tuple(
            rule.with_source(permission_set_id)
            for rule in permission_set.activate(actor, context)
        )
