"""
Ability: the consolidated, immutable decision surface for one actor.

Built by AbilityResolver from every rule the actor's permission sets
produced. Explicit Deny wins over Allow regardless of how many Allow rules
match or in which order they were collected.
"""

from collections import defaultdict
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .rules import CapabilityRule, Effect
from .subjects import WILDCARD, split_subject

Key = Tuple[str, str]


def _candidate_keys(action: str, tag: str) -> Tuple[Key, ...]:
    keys = []
    for key in ((action, tag), (WILDCARD, tag), (action, WILDCARD), (WILDCARD, WILDCARD)):
        if key not in keys:
            keys.append(key)
    return tuple(keys)


def _merge(rules: Iterable[CapabilityRule]) -> Effect:
    """Merged effect for rules recorded under one key."""
    rules = tuple(rules)
    if any(rule.is_deny and not rule.is_scoped for rule in rules):
        return Effect.DENY
    if any(not rule.is_deny for rule in rules):
        return Effect.ALLOW
    return Effect.DENY


class Ability:
    """
    Resolved rule table for one actor at one registry generation.

    Holds no reference to the registry snapshot it was built from, so it
    is safe to cache and to outlive later reconfigurations (the cache key
    carries the generation).

    Evaluation:
    - Without a concrete instance (a tag string or class), an unscoped
      Deny denies, and any Allow, scoped or not, allows.
    - With an instance, only rules whose scope holds for that instance
      are consulted; among them Deny still wins.
    - Anything not covered by a rule is denied.
    """

    __slots__ = ("_rules", "_index", "_decisions", "roles", "generation", "actor_id")

    def __init__(
        self,
        rules: Iterable[CapabilityRule] = (),
        roles: Iterable[str] = (),
        generation: int = 0,
        actor_id: Optional[str] = None,
    ):
        self._rules: Tuple[CapabilityRule, ...] = tuple(rules)

        index: Dict[Key, List[CapabilityRule]] = defaultdict(list)
        for rule in self._rules:
            index[rule.key].append(rule)

        self._index: Mapping[Key, Tuple[CapabilityRule, ...]] = MappingProxyType(
            {key: tuple(bucket) for key, bucket in index.items()}
        )
        self._decisions: Mapping[Key, Effect] = MappingProxyType(
            {key: _merge(bucket) for key, bucket in self._index.items()}
        )
        self.roles: Tuple[str, ...] = tuple(roles)
        self.generation = generation
        self.actor_id = actor_id

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def can(self, action: str, subject: Any) -> bool:
        """
        Check if the action is permitted on the subject.

        Args:
            action: Action name (e.g. "view", "update")
            subject: Subject tag, class, or concrete instance

        Returns:
            True if permitted, False otherwise (deny-by-default)
        """
        tag, instance = split_subject(subject)
        candidates = self.rules_for(action, tag) + self._wildcard_denials(action, tag)
        if not candidates:
            return False

        if instance is None:
            denied = any(rule.is_deny and not rule.is_scoped for rule in candidates)
            allowed = any(not rule.is_deny for rule in candidates)
        else:
            actionable = [rule for rule in candidates if rule.applies_to(instance)]
            denied = any(rule.is_deny for rule in actionable)
            allowed = any(not rule.is_deny for rule in actionable)

        return allowed and not denied

    def cannot(self, action: str, subject: Any) -> bool:
        return not self.can(action, subject)

    def _wildcard_denials(self, action: str, tag: str) -> Tuple[CapabilityRule, ...]:
        """
        Deny rules under keys a wildcard query spans.

        Asking for "*" means every action (or every subject), so a Deny on
        any single action or subject it covers counts against the query.
        """
        if action != WILDCARD and tag != WILDCARD:
            return ()
        direct = set(_candidate_keys(action, tag))
        return tuple(
            rule
            for key, bucket in self._index.items()
            if key not in direct
            and (action == WILDCARD or key[0] in (action, WILDCARD))
            and (tag == WILDCARD or key[1] in (tag, WILDCARD))
            for rule in bucket
            if rule.is_deny
        )

    def rules_for(self, action: str, tag: str) -> Tuple[CapabilityRule, ...]:
        """Rules matching (action, tag), including wildcard rules."""
        matched: List[CapabilityRule] = []
        for key in _candidate_keys(action, tag):
            matched.extend(self._index.get(key, ()))
        return tuple(matched)

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    def decisions(self) -> Mapping[Key, Effect]:
        """Merged decision per (action, subject tag). Read-only."""
        return self._decisions

    def rules(self) -> Tuple[CapabilityRule, ...]:
        return self._rules

    @property
    def is_empty(self) -> bool:
        return not self._rules

    def to_report(self) -> List[Dict[str, Any]]:
        """
        Plain-data listing of the resolved rules.

        Identical statements contributed by several permission sets are
        listed once with every source.
        """
        grouped: Dict[CapabilityRule, List[str]] = {}
        for rule in self._rules:
            sources = grouped.setdefault(rule, [])
            if rule.source and rule.source not in sources:
                sources.append(rule.source)

        report = [
            {
                "action": rule.action,
                "subject": rule.subject,
                "effect": rule.effect.value,
                "scoped": rule.is_scoped,
                "scope": rule.scope_label,
                "sources": sources,
            }
            for rule, sources in grouped.items()
        ]
        report.sort(key=lambda r: (r["subject"], r["action"], r["effect"], r["scope"] or ""))
        return report

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return (
            f"Ability(actor_id={self.actor_id}, roles={list(self.roles)}, "
            f"rules={len(self._rules)}, generation={self.generation})"
        )
