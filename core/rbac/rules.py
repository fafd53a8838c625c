"""
Capability rules.

A rule is one authorization statement: an action on a subject tag, an
optional scope predicate over a concrete subject instance, and an effect.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from .subjects import WILDCARD

logger = logging.getLogger(__name__)

ScopePredicate = Callable[[Any], bool]


class Effect(str, Enum):
    """Rule effect"""
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class CapabilityRule:
    """
    One (action, subject, scope, effect) statement.

    The scope callable is excluded from equality and hashing; two rules
    with the same scope_label are treated as the same statement.
    """
    action: str
    subject: str
    effect: Effect = Effect.ALLOW
    scope: Optional[ScopePredicate] = field(default=None, compare=False, repr=False)
    scope_label: Optional[str] = None
    source: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.action:
            raise ValueError("action cannot be empty")
        if not self.subject:
            raise ValueError("subject cannot be empty")
        if self.scope is not None and self.scope_label is None:
            label = getattr(self.scope, "__name__", "scope")
            object.__setattr__(self, "scope_label", label)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.action, self.subject)

    @property
    def is_scoped(self) -> bool:
        return self.scope is not None

    @property
    def is_wildcard(self) -> bool:
        return self.action == WILDCARD and self.subject == WILDCARD

    @property
    def is_deny(self) -> bool:
        return self.effect is Effect.DENY

    def matches(self, action: str, subject: str) -> bool:
        """Check if this rule covers (action, subject tag)."""
        return (
            self.action in (action, WILDCARD)
            and self.subject in (subject, WILDCARD)
        )

    def applies_to(self, instance: Any) -> bool:
        """
        Check if this rule is actionable for a concrete subject instance.

        Unscoped rules always apply. A scope predicate that fails on the
        instance fails closed: a Deny applies, an Allow does not.
        """
        if self.scope is None:
            return True
        try:
            return bool(self.scope(instance))
        except Exception as e:
            logger.warning(
                f"Scope {self.scope_label} on ({self.action}, {self.subject}) "
                f"failed for {type(instance).__name__}: {e}",
                exc_info=True,
            )
            return self.is_deny

    def with_source(self, source: str) -> "CapabilityRule":
        """Copy of this rule tagged with the permission set that produced it."""
        return CapabilityRule(
            action=self.action,
            subject=self.subject,
            effect=self.effect,
            scope=self.scope,
            scope_label=self.scope_label,
            source=source,
        )


def allow(action: str, subject: str, scope: Optional[ScopePredicate] = None,
          scope_label: Optional[str] = None) -> CapabilityRule:
    """Build an Allow rule."""
    return CapabilityRule(action, subject, Effect.ALLOW, scope, scope_label)


def deny(action: str, subject: str, scope: Optional[ScopePredicate] = None,
         scope_label: Optional[str] = None) -> CapabilityRule:
    """Build a Deny rule."""
    return CapabilityRule(action, subject, Effect.DENY, scope, scope_label)
