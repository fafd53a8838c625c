"""
Tests for the AuthorizationGate.

End-to-end checks through registry, resolver, cache and gate, including
reconfiguration while checks are running.
"""

import threading
from dataclasses import dataclass
from typing import Optional

import pytest

from core.cache import AbilityCache
from core.metrics import get_counter, reset_rbac_metrics
from core.rbac import (
    AbilityResolver,
    Actor,
    AuthorizationGate,
    ConfigurationError,
    DefaultCustomer,
    OrderManagement,
    PermissionSet,
    ProductManagement,
    ResolutionContext,
    Restriction,
    RoleRegistry,
    allow,
    default_catalog,
)


@dataclass
class CatalogItem:
    id: str


@dataclass
class Order:
    number: str
    user_id: Optional[str] = None


ACTIONS = ["view", "create", "update", "destroy", "delete", "refund", "*"]
SUBJECTS = [
    "catalog_item", "product", "variant", "order", "payment", "refund", "user",
    "role", "stock_item", "store", "metrics", "rating", "*",
]


def _allowed_pairs(permission_set, actor):
    return {
        rule.key
        for rule in permission_set.activate(actor, ResolutionContext())
        if not rule.is_deny
    }


def _pair_covered(pairs, action, subject):
    return any(
        a in (action, "*") and s in (subject, "*")
        for a, s in pairs
    )


class FlakyOrderLookup(PermissionSet):
    """Allows viewing orders through a lookup that raises."""

    def activate(self, actor, context):
        def lookup(order):
            raise RuntimeError("lookup failed")

        return (allow("view", "order", lookup, "lookup"),)


@pytest.fixture(autouse=True)
def reset_metrics():
    reset_rbac_metrics()
    yield
    reset_rbac_metrics()


@pytest.fixture
def registry():
    catalog = default_catalog(
        extra={
            "NoCatalogDeletes": Restriction([("delete", "catalog_item")]),
            "NoOrderDestroy": Restriction([("destroy", "order")]),
            "FlakyOrderLookup": FlakyOrderLookup(),
        },
        freeze=True,
    )
    return RoleRegistry(catalog, declared_roles=["customer"])


@pytest.fixture
def gate(registry):
    return AuthorizationGate(AbilityResolver(registry), cache=AbilityCache(ttl_seconds=300))


@pytest.fixture
def uncached_gate(registry):
    return AuthorizationGate(AbilityResolver(registry))


# ============================================================================
# Bootstrap Configuration
# ============================================================================

class TestBootstrapDecisions:

    @pytest.mark.parametrize("action", ACTIONS)
    @pytest.mark.parametrize("subject", SUBJECTS)
    def test_admin_can_do_anything(self, gate, action, subject):
        admin = Actor(id="admin-1", roles=["admin"])

        assert gate.can_perform(admin, action, subject) is True

    @pytest.mark.parametrize("action", ACTIONS)
    @pytest.mark.parametrize("subject", SUBJECTS)
    def test_default_allows_exactly_default_customer_pairs(self, gate, action, subject):
        customer = Actor(id="user-1", roles=["default"])
        declared = _allowed_pairs(DefaultCustomer(), customer)

        assert gate.can_perform(customer, action, subject) is ((action, subject) in declared)

    def test_default_views_but_cannot_delete_catalog_item(self, gate):
        customer = Actor(id="user-1", roles=["default"])
        item = CatalogItem("c1")

        assert gate.can_perform(customer, "view", item) is True
        assert gate.can_perform(customer, "delete", item) is False
        assert gate.cannot_perform(customer, "delete", item) is True

    def test_class_subject(self, gate):
        customer = Actor(id="user-1", roles=["default"])

        assert gate.can_perform(customer, "view", CatalogItem)

    def test_default_customer_instance_scope(self, gate):
        customer = Actor(id="user-1", roles=["default"])

        assert gate.can_perform(customer, "view", Order("R1", user_id="user-1"))
        assert not gate.can_perform(customer, "view", Order("R2", user_id="user-2"))

    def test_guest_order_token(self, gate):
        guest = Actor(id=None, roles=["default"])

        @dataclass
        class GuestOrder:
            number: str
            guest_token: str

            __subject_tag__ = "order"

        order = GuestOrder("R1", "tok-1")
        assert gate.can_perform(guest, "view", order, ResolutionContext(order_token="tok-1"))
        assert not gate.can_perform(guest, "view", order, ResolutionContext(order_token="nope"))
        assert not gate.can_perform(guest, "view", order)


# ============================================================================
# Assigned Roles
# ============================================================================

class TestAssignedRoles:

    @pytest.mark.parametrize("action", ACTIONS)
    @pytest.mark.parametrize("subject", SUBJECTS)
    def test_manager_gets_exact_union(self, registry, gate, action, subject):
        registry.assign_permissions("manager", ["OrderManagement", "ProductManagement"])
        manager = Actor(id="m1", roles=["manager"])
        union = (
            _allowed_pairs(OrderManagement(), manager)
            | _allowed_pairs(ProductManagement(), manager)
        )

        expected = _pair_covered(union, action, subject)
        assert gate.can_perform(manager, action, subject) is expected

    def test_deny_from_second_role_wins(self, registry, gate):
        registry.assign_permissions("manager", ["ProductManagement"])
        registry.assign_permissions("restricted", ["NoCatalogDeletes"])
        actor = Actor(id="u1", roles=["manager", "restricted"])

        assert gate.can_perform(actor, "view", "catalog_item")
        assert not gate.can_perform(actor, "delete", "catalog_item")

    def test_deny_from_second_role_beats_super_user(self, registry, gate):
        registry.assign_permissions("restricted", ["NoCatalogDeletes"])
        actor = Actor(id="u1", roles=["admin", "restricted"])

        assert not gate.can_perform(actor, "delete", CatalogItem("c1"))
        assert gate.can_perform(actor, "update", CatalogItem("c1"))

    def test_specific_deny_wins_over_wildcard_action(self, registry, gate):
        registry.assign_permissions("clerk", ["OrderManagement", "NoOrderDestroy"])
        clerk = Actor(id="c1", roles=["clerk"])

        assert gate.can_perform(clerk, "update", "order")
        assert not gate.can_perform(clerk, "destroy", "order")
        assert not gate.can_perform(clerk, "*", "order")
        assert gate.can_perform(clerk, "*", "payment")

    def test_raising_scope_is_a_denial(self, registry, gate):
        registry.assign_permissions("viewer", ["FlakyOrderLookup"])
        viewer = Actor(id="v1", roles=["viewer"])

        assert gate.can_perform(viewer, "view", Order("R1")) is False
        assert gate.can_perform(viewer, "view", "order") is True

    @pytest.mark.parametrize("action", ACTIONS)
    @pytest.mark.parametrize("subject", SUBJECTS)
    def test_unassigned_role_denies_everything(self, gate, action, subject):
        actor = Actor(id="u1", roles=["customer"])

        assert gate.can_perform(actor, action, subject) is False

    def test_undeclared_role_raises(self, gate):
        with pytest.raises(ConfigurationError):
            gate.can_perform(Actor(id="u1", roles=["ghost"]), "view", "order")

    def test_idempotent_assignment_keeps_ability(self, registry, gate):
        manager = Actor(id="m1", roles=["manager"])
        registry.assign_permissions("manager", ["OrderManagement", "ProductManagement"])
        before = gate.ability_for(manager)

        registry.assign_permissions("manager", ["OrderManagement", "ProductManagement"])
        after = gate.ability_for(manager)

        assert after.decisions() == before.decisions()
        assert after.generation == before.generation

    def test_checks_are_counted(self, gate):
        customer = Actor(id="user-1", roles=["default"])

        gate.can_perform(customer, "view", "catalog_item")
        gate.can_perform(customer, "destroy", "catalog_item")

        assert get_counter("rbac.checks.allowed") == 1
        assert get_counter("rbac.checks.denied") == 1


# ============================================================================
# Caching
# ============================================================================

class TestAbilityCaching:

    def test_ability_reused_within_generation(self, gate):
        customer = Actor(id="user-1", roles=["default"])

        assert gate.ability_for(customer) is gate.ability_for(customer)
        assert get_counter("rbac.resolutions") == 1

    def test_different_context_resolved_separately(self, gate):
        guest = Actor(id=None, roles=["default"])

        first = gate.ability_for(guest, ResolutionContext(order_token="a"))
        second = gate.ability_for(guest, ResolutionContext(order_token="b"))

        assert first is not second

    def test_reconfiguration_invalidates_cached_ability(self, registry, gate):
        manager = Actor(id="m1", roles=["manager"])
        registry.assign_permissions("manager", ["OrderManagement"])
        assert gate.can_perform(manager, "update", "order")

        registry.assign_permissions("manager", ["ProductManagement"])

        assert not gate.can_perform(manager, "update", "order")
        assert gate.can_perform(manager, "update", "product")

    def test_invalidate_drops_cache(self, gate):
        customer = Actor(id="user-1", roles=["default"])
        first = gate.ability_for(customer)

        gate.invalidate()

        assert gate.ability_for(customer) is not first

    def test_uncached_gate_resolves_every_time(self, uncached_gate):
        customer = Actor(id="user-1", roles=["default"])

        uncached_gate.ability_for(customer)
        uncached_gate.ability_for(customer)

        assert get_counter("rbac.resolutions") == 2
        uncached_gate.invalidate()


# ============================================================================
# Reports
# ============================================================================

class TestReportForRole:

    def test_report_for_bootstrap_role(self, gate):
        report = gate.report_for_role("Admin")

        assert report["role"] == "admin"
        assert report["permission_sets"] == ["SuperUser"]
        assert report["rules"] == [{
            "action": "*",
            "subject": "*",
            "effect": "allow",
            "scoped": False,
            "scope": None,
            "sources": ["SuperUser"],
        }]

    def test_report_shows_scopes(self, gate):
        rules = gate.report_for_role("default")["rules"]

        scoped = {(r["action"], r["subject"]): r["scope"] for r in rules if r["scoped"]}
        assert scoped[("view", "order")] == "own_order"
        assert scoped[("update", "user")] == "own_account"

    def test_report_for_declared_empty_role(self, gate):
        report = gate.report_for_role("customer")

        assert report["permission_sets"] == []
        assert report["rules"] == []

    def test_report_for_unknown_role(self, gate):
        with pytest.raises(ConfigurationError):
            gate.report_for_role("ghost")

    def test_report_is_a_copy(self, gate):
        report = gate.report_for_role("admin")
        report["rules"].clear()

        assert gate.report_for_role("admin")["rules"]


# ============================================================================
# Concurrency
# ============================================================================

class TestConcurrentReconfiguration:

    @pytest.mark.parametrize("use_cache", [True, False])
    def test_checks_never_see_mixed_configuration(self, registry, use_cache):
        cache = AbilityCache(ttl_seconds=300) if use_cache else None
        gate = AuthorizationGate(AbilityResolver(registry), cache=cache)
        orders_only = ["OrderManagement", "OrderDisplay"]
        products_only = ["ProductManagement", "ProductDisplay"]
        registry.assign_permissions("manager", orders_only)

        manager = Actor(id="m1", roles=["manager"])
        stop = threading.Event()
        mixed = []
        checks = []

        def write():
            for i in range(300):
                registry.assign_permissions("manager", products_only if i % 2 == 0 else orders_only)
            stop.set()

        def read():
            while not stop.is_set():
                ability = gate.ability_for(manager)
                orders = ability.can("update", "order")
                products = ability.can("update", "product")
                checks.append(ability.generation)
                if orders == products:
                    mixed.append(ability.generation)

        readers = [threading.Thread(target=read) for _ in range(4)]
        writer = threading.Thread(target=write)
        for thread in readers:
            thread.start()
        writer.start()
        writer.join()
        for thread in readers:
            thread.join()

        assert checks
        assert mixed == []
