"""
Tests for ability resolution and Ability evaluation.
"""

from dataclasses import dataclass
from typing import Optional

import pytest

from core.rbac import (
    Ability,
    AbilityResolver,
    Actor,
    ConfigurationError,
    Effect,
    PermissionSet,
    ResolutionContext,
    Restriction,
    RoleRegistry,
    allow,
    default_catalog,
    deny,
)
from core.metrics import get_counter, reset_rbac_metrics


@dataclass
class CatalogItem:
    id: str


@dataclass
class Order:
    number: str
    user_id: Optional[str] = None
    guest_token: Optional[str] = None


class ExplodingScope(PermissionSet):
    """Allows viewing orders through a scope that always raises."""

    def activate(self, actor, context):
        def broken(order):
            raise KeyError("boom")

        return (allow("view", "order", broken, "broken"),)


@pytest.fixture(autouse=True)
def reset_metrics():
    reset_rbac_metrics()
    yield
    reset_rbac_metrics()


@pytest.fixture
def registry():
    catalog = default_catalog(
        extra={
            "NoCatalogDeletes": Restriction([("destroy", "catalog_item")]),
            "NoRefunds": Restriction([("create", "refund")]),
            "NoOrderDestroy": Restriction([("destroy", "order")]),
            "ExplodingScope": ExplodingScope(),
        },
        freeze=True,
    )
    registry = RoleRegistry(catalog, declared_roles=["customer"])
    registry.assign_permissions("manager", ["OrderManagement", "ProductManagement"])
    registry.assign_permissions("catalog_viewer", ["ProductDisplay", "NoCatalogDeletes"])
    registry.assign_permissions("refund_blocked", ["NoRefunds"])
    registry.assign_permissions("clerk", ["OrderManagement", "NoOrderDestroy"])
    return registry


@pytest.fixture
def resolver(registry):
    return AbilityResolver(registry)


# ============================================================================
# Ability Evaluation
# ============================================================================

class TestAbility:
    """Test Ability directly, without a registry."""

    def test_empty_ability_denies_everything(self):
        ability = Ability()

        assert ability.is_empty
        assert ability.cannot("view", "catalog_item")
        assert ability.cannot("*", "*")

    def test_deny_wins_regardless_of_order(self):
        rules = [allow("view", "order"), deny("view", "order"), allow("view", "order")]

        assert Ability(rules).cannot("view", "order")
        assert Ability(reversed(rules)).cannot("view", "order")

    def test_wildcard_allow(self):
        ability = Ability([allow("*", "*")])

        assert ability.can("destroy", "anything")
        assert ability.can("view", CatalogItem("c1"))

    def test_deny_overrides_wildcard_allow(self):
        ability = Ability([allow("*", "*"), deny("destroy", "order")])

        assert ability.can("view", "order")
        assert ability.cannot("destroy", "order")
        assert ability.can("destroy", "product")

    def test_wildcard_deny_overrides_specific_allow(self):
        ability = Ability([allow("view", "order"), deny("*", "order")])

        assert ability.cannot("view", "order")

    def test_specific_deny_blocks_wildcard_action_query(self):
        ability = Ability([allow("*", "order"), deny("destroy", "order")])

        assert ability.cannot("*", "order")
        assert ability.can("view", "order")
        assert ability.cannot("destroy", "order")

    def test_specific_deny_blocks_wildcard_subject_query(self):
        ability = Ability([allow("view", "*"), deny("view", "payment")])

        assert ability.cannot("view", "*")
        assert ability.cannot("*", "*")
        assert ability.can("view", "order")

    def test_scoped_deny_ignored_by_wildcard_query_at_tag_level(self):
        ability = Ability([allow("*", "order"), deny("destroy", "order", lambda o: True, "always")])

        assert ability.can("*", "order")
        assert ability.cannot("*", Order("R1"))

    def test_uncovered_key_denied(self):
        ability = Ability([allow("view", "order")])

        assert ability.cannot("update", "order")
        assert ability.cannot("view", "product")

    def test_decisions_table(self):
        ability = Ability([allow("view", "order"), deny("view", "order"), allow("view", "product")])

        assert ability.decisions()[("view", "order")] is Effect.DENY
        assert ability.decisions()[("view", "product")] is Effect.ALLOW

    def test_decisions_are_read_only(self):
        ability = Ability([allow("view", "order")])

        with pytest.raises(TypeError):
            ability.decisions()[("view", "order")] = Effect.DENY

    def test_scoped_deny_ignored_at_tag_level(self):
        ability = Ability([
            allow("*", "user"),
            deny("destroy", "user", lambda u: u == "self", "self"),
        ])

        assert ability.can("destroy", "user")

    def test_scoped_allow_grants_at_tag_level(self):
        ability = Ability([allow("view", "order", lambda o: False, "never")])

        assert ability.can("view", "order")
        assert ability.cannot("view", Order("R1"))

    def test_scoped_deny_applies_to_matching_instance(self):
        ability = Ability([
            allow("*", "order"),
            deny("destroy", "order", lambda o: o.number == "R1", "r1"),
        ])

        assert ability.cannot("destroy", Order("R1"))
        assert ability.can("destroy", Order("R2"))

    def test_report_groups_sources(self):
        ability = Ability([
            allow("view", "order").with_source("OrderDisplay"),
            allow("view", "order").with_source("Storefront"),
            deny("destroy", "order").with_source("NoDeletes"),
        ])

        report = ability.to_report()

        assert report == [
            {"action": "destroy", "subject": "order", "effect": "deny",
             "scoped": False, "scope": None, "sources": ["NoDeletes"]},
            {"action": "view", "subject": "order", "effect": "allow",
             "scoped": False, "scope": None, "sources": ["OrderDisplay", "Storefront"]},
        ]


# ============================================================================
# Resolution
# ============================================================================

class TestResolve:

    def test_admin_resolves_to_super_user(self, resolver):
        ability = resolver.resolve(Actor(id="a1", roles=["admin"]))

        assert ability.can("destroy", "order")
        assert ability.can("anything", "anything")

    def test_no_roles_denies_everything(self, resolver):
        ability = resolver.resolve(Actor(id="u1"))

        assert ability.is_empty
        assert ability.cannot("view", "catalog_item")
        assert get_counter("rbac.resolutions.empty") == 1

    def test_declared_unassigned_role_denies_silently(self, resolver):
        ability = resolver.resolve(Actor(id="u1", roles=["customer"]))

        assert ability.is_empty

    def test_undeclared_role_raises(self, resolver):
        with pytest.raises(ConfigurationError) as exc_info:
            resolver.resolve(Actor(id="u1", roles=["default", "ghost"]))

        assert exc_info.value.role == "ghost"

    def test_manager_gets_union_of_sets(self, resolver):
        ability = resolver.resolve(Actor(id="m1", roles=["manager"]))

        assert ability.can("update", "order")
        assert ability.can("create", "product")
        assert ability.can("destroy", "catalog_item")
        assert ability.cannot("view", "stock_item")

    def test_deny_wins_across_roles(self, resolver):
        ability = resolver.resolve(Actor(id="u1", roles=["manager", "catalog_viewer"]))

        assert ability.can("view", "catalog_item")
        assert ability.cannot("destroy", "catalog_item")
        assert ability.can("destroy", "product")

    def test_specific_deny_wins_over_wildcard_action_query(self, resolver):
        ability = resolver.resolve(Actor(id="c1", roles=["clerk"]))

        assert ability.can("view", "order")
        assert ability.cannot("destroy", "order")
        assert ability.cannot("*", "order")

    def test_role_order_does_not_matter(self, resolver):
        first = resolver.resolve(Actor(id="u1", roles=["manager", "refund_blocked"]))
        second = resolver.resolve(Actor(id="u1", roles=["refund_blocked", "manager"]))

        assert first.decisions() == second.decisions()
        assert first.cannot("create", "refund")
        assert first.can("view", "refund")

    def test_deny_beats_super_user(self, resolver):
        ability = resolver.resolve(Actor(id="a1", roles=["admin", "refund_blocked"]))

        assert ability.cannot("create", "refund")
        assert ability.can("update", "refund")

    def test_rules_carry_their_permission_set(self, resolver):
        ability = resolver.resolve(Actor(id="m1", roles=["manager"]))

        sources = {rule.source for rule in ability.rules_for("view", "order")}
        assert sources == {"OrderManagement"}

    def test_ability_records_generation_and_roles(self, registry, resolver):
        ability = resolver.resolve(Actor(id="m1", roles=["Manager"]))

        assert ability.generation == registry.generation
        assert ability.roles == ("manager",)
        assert ability.actor_id == "m1"

    def test_explicit_snapshot_is_used(self, registry, resolver):
        snapshot = registry.snapshot()
        registry.assign_permissions("manager", [])

        ability = resolver.resolve(Actor(id="m1", roles=["manager"]), snapshot=snapshot)

        assert ability.can("update", "order")
        assert ability.generation == snapshot.generation

    def test_resolution_is_counted(self, resolver):
        resolver.resolve(Actor(id="m1", roles=["manager"]))

        assert get_counter("rbac.resolutions") == 1


class TestScopedResolution:

    def test_customer_sees_own_order_only(self, resolver):
        ability = resolver.resolve(Actor(id="u1", roles=["default"]))

        assert ability.can("view", Order("R1", user_id="u1"))
        assert ability.cannot("view", Order("R2", user_id="u2"))
        assert ability.cannot("destroy", Order("R1", user_id="u1"))

    def test_guest_with_order_token(self, resolver):
        guest = Actor(id=None, roles=["default"])
        context = ResolutionContext(order_token="tok-1")
        ability = resolver.resolve(guest, context)

        assert ability.can("update", Order("R1", guest_token="tok-1"))
        assert ability.cannot("update", Order("R2", guest_token="tok-2"))

    def test_user_management_cannot_destroy_self(self, registry, resolver):
        registry.assign_permissions("support", ["UserManagement"])

        @dataclass
        class User:
            id: str

        ability = resolver.resolve(Actor(id="s1", roles=["support"]))

        assert ability.can("destroy", User("u9"))
        assert ability.cannot("destroy", User("s1"))

    def test_failing_scope_fails_closed(self, registry, resolver):
        registry.assign_permissions("fragile", ["ExplodingScope"])

        ability = resolver.resolve(Actor(id="u1", roles=["fragile"]))

        assert ability.cannot("view", Order("R1"))


class TestImplicitRoles:

    def test_implicit_roles_added(self, registry):
        resolver = AbilityResolver(registry, implicit_roles=["Default"])
        ability = resolver.resolve(Actor(id="m1", roles=["manager"]))

        assert ability.roles == ("manager", "default")
        assert ability.can("create", "rating")

    def test_implicit_roles_not_duplicated(self, registry):
        resolver = AbilityResolver(registry, implicit_roles=["default"])

        assert resolver.effective_roles(Actor(id="u1", roles=["default"])) == ("default",)

    def test_no_implicit_roles_by_default(self, resolver):
        assert resolver.effective_roles(Actor(id="u1")) == ()
