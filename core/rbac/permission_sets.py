"""
Permission sets and the catalog they are registered in.

A permission set is a stateless provider of capability rules. Given an
actor and a resolution context it returns the same rules every time, so
the resulting Ability can be cached.

The variants below are the full set shipped with the engine. New business
permission sets are added as new variants and registered under a new
identifier at startup; the catalog is frozen once configuration is done.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .actor import Actor, ResolutionContext
from .errors import ConfigurationError
from .rules import CapabilityRule, allow, deny
from .subjects import WILDCARD

logger = logging.getLogger(__name__)

Rules = Tuple[CapabilityRule, ...]


# ============================================================================
# Base Class
# ============================================================================

class PermissionSet(ABC):
    """
    Base class for permission set variants.

    Subclasses implement ``activate`` and must not mutate the actor or
    the context.
    """

    description: str = ""

    @abstractmethod
    def activate(self, actor: Actor, context: ResolutionContext) -> Rules:
        """
        Produce the capability rules this set grants or denies.

        Args:
            actor: Actor being resolved
            context: Request data available to scope predicates

        Returns:
            Tuple of CapabilityRule
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# ============================================================================
# Variants
# ============================================================================

class SuperUser(PermissionSet):
    """Grants every action on every subject."""

    description = "Full access to everything"

    def activate(self, actor, context):
        return (allow(WILDCARD, WILDCARD),)


class DefaultCustomer(PermissionSet):
    """Storefront shopper: browse the catalog, manage own orders and account."""

    description = "Storefront browsing, own orders and own account"

    CATALOG_SUBJECTS = (
        "catalog_item",
        "product",
        "variant",
        "taxon",
        "taxonomy",
        "country",
        "state",
        "store",
    )

    def activate(self, actor, context):
        actor_id = actor.id
        order_token = context.order_token

        def own_order(order) -> bool:
            if actor_id is not None and getattr(order, "user_id", None) == actor_id:
                return True
            guest_token = getattr(order, "guest_token", None)
            return bool(order_token) and guest_token == order_token

        def own_account(user) -> bool:
            return actor_id is not None and getattr(user, "id", None) == actor_id

        rules = [allow("view", subject) for subject in self.CATALOG_SUBJECTS]
        rules += [
            allow("create", "order"),
            allow("view", "order", own_order, "own_order"),
            allow("update", "order", own_order, "own_order"),
            allow("create", "user"),
            allow("view", "user", own_account, "own_account"),
            allow("update", "user", own_account, "own_account"),
            allow("create", "rating"),
        ]
        return tuple(rules)


class _SubjectGrant(PermissionSet):
    """Grants a fixed action on a fixed list of subjects."""

    action: str = "view"
    subjects: Tuple[str, ...] = ()

    def activate(self, actor, context):
        return tuple(allow(self.action, subject) for subject in self.subjects)


class OrderDisplay(_SubjectGrant):
    description = "View orders, payments and shipments"
    subjects = ("order", "payment", "shipment", "line_item")


class OrderManagement(_SubjectGrant):
    description = "Manage orders, payments, shipments and refunds"
    action = WILDCARD
    subjects = (
        "order",
        "payment",
        "shipment",
        "line_item",
        "return_authorization",
        "refund",
    )


class ProductDisplay(_SubjectGrant):
    description = "View products and the catalog taxonomy"
    subjects = ("product", "variant", "catalog_item", "taxon", "taxonomy", "option_type")


class ProductManagement(_SubjectGrant):
    description = "Manage products, variants and the catalog taxonomy"
    action = WILDCARD
    subjects = (
        "product",
        "variant",
        "catalog_item",
        "taxon",
        "taxonomy",
        "option_type",
        "image",
    )


class StockDisplay(_SubjectGrant):
    description = "View stock levels and locations"
    subjects = ("stock_item", "stock_location")


class StockManagement(_SubjectGrant):
    description = "Manage stock levels and locations"
    action = WILDCARD
    subjects = ("stock_item", "stock_location")


class UserDisplay(_SubjectGrant):
    description = "View user accounts"
    subjects = ("user",)


class UserManagement(PermissionSet):
    """Manage user accounts, except deleting your own."""

    description = "Manage user accounts"

    def activate(self, actor, context):
        actor_id = actor.id

        def is_self(user) -> bool:
            return actor_id is not None and getattr(user, "id", None) == actor_id

        return (
            allow(WILDCARD, "user"),
            deny("destroy", "user", is_self, "self"),
        )


class Restriction(PermissionSet):
    """
    Parameterized set of explicit denials.

    Each (action, subject) pair becomes an unscoped Deny, which overrides
    any Allow another role grants for the same key.

    Examples:
        >>> no_refunds = Restriction([("create", "refund")])
        >>> [r.effect.value for r in no_refunds.activate(Actor("u1"), ResolutionContext())]
        ['deny']
    """

    def __init__(self, pairs: Iterable[Tuple[str, str]], description: str = ""):
        self.pairs: Tuple[Tuple[str, str], ...] = tuple(
            (action, subject) for action, subject in pairs
        )
        if not self.pairs:
            raise ConfigurationError("Restriction requires at least one (action, subject) pair")
        self.description = description or "Denies " + ", ".join(
            f"{action} {subject}" for action, subject in self.pairs
        )

    def activate(self, actor, context):
        return tuple(deny(action, subject) for action, subject in self.pairs)

    def __repr__(self) -> str:
        return f"Restriction({list(self.pairs)!r})"


BUILTIN_PERMISSION_SETS: Tuple[type, ...] = (
    SuperUser,
    DefaultCustomer,
    OrderDisplay,
    OrderManagement,
    ProductDisplay,
    ProductManagement,
    StockDisplay,
    StockManagement,
    UserDisplay,
    UserManagement,
)


# ============================================================================
# Catalog
# ============================================================================

class PermissionSetCatalog:
    """
    Identifier -> PermissionSet instance mapping.

    Populated once at startup, then frozen. The registry validates role
    assignments against it so an unknown identifier fails at assignment
    time instead of during a request.
    """

    def __init__(self, permission_sets: Optional[Mapping[str, PermissionSet]] = None):
        self._sets: Dict[str, PermissionSet] = {}
        self._frozen = False
        self._lock = threading.Lock()
        for identifier, permission_set in (permission_sets or {}).items():
            self.register(identifier, permission_set)

    def register(self, identifier: str, permission_set: PermissionSet) -> None:
        """
        Register a permission set under a stable identifier.

        Raises:
            ConfigurationError: If the identifier is empty or taken, the
                object is not a PermissionSet, or the catalog is frozen
        """
        if not identifier or not isinstance(identifier, str):
            raise ConfigurationError("Permission set identifier must be a non-empty string")
        if not isinstance(permission_set, PermissionSet):
            raise ConfigurationError(
                f"{identifier!r} is not a PermissionSet: {type(permission_set).__name__}",
                permission_set=identifier,
            )
        with self._lock:
            if self._frozen:
                raise ConfigurationError(
                    f"Cannot register {identifier!r}: permission set catalog is frozen",
                    permission_set=identifier,
                )
            if identifier in self._sets:
                raise ConfigurationError(
                    f"Permission set {identifier!r} is already registered",
                    permission_set=identifier,
                )
            self._sets[identifier] = permission_set
        logger.debug(f"Registered permission set {identifier} -> {permission_set!r}")

    def get(self, identifier: str) -> PermissionSet:
        """
        Get a registered permission set.

        Raises:
            ConfigurationError: If the identifier is not registered
        """
        try:
            return self._sets[identifier]
        except KeyError:
            raise ConfigurationError(
                f"Unknown permission set: {identifier!r}. "
                f"Registered: {', '.join(self.identifiers())}",
                permission_set=identifier,
            ) from None

    def validate(self, identifiers: Iterable[str]) -> Tuple[str, ...]:
        """
        Check every identifier is registered.

        Returns:
            The identifiers as a tuple, order preserved

        Raises:
            ConfigurationError: On the first unknown identifier
        """
        checked = tuple(identifiers)
        for identifier in checked:
            if identifier not in self._sets:
                self.get(identifier)
        return checked

    def freeze(self) -> None:
        """Reject any further registration."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def identifiers(self) -> Tuple[str, ...]:
        return tuple(sorted(self._sets))

    def describe(self) -> Dict[str, str]:
        """Identifier -> description for every registered set."""
        return {
            identifier: self._sets[identifier].description
            for identifier in self.identifiers()
        }

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._sets

    def __len__(self) -> int:
        return len(self._sets)


def default_catalog(
    extra: Optional[Mapping[str, PermissionSet]] = None,
    freeze: bool = False,
) -> PermissionSetCatalog:
    """
    Build a catalog holding every built-in variant under its class name.

    Args:
        extra: Additional identifier -> PermissionSet registrations
        freeze: Freeze the catalog after registration

    Returns:
        Populated PermissionSetCatalog
    """
    catalog = PermissionSetCatalog()
    for variant in BUILTIN_PERMISSION_SETS:
        catalog.register(variant.__name__, variant())
    for identifier, permission_set in (extra or {}).items():
        catalog.register(identifier, permission_set)
    if freeze:
        catalog.freeze()
    return catalog
