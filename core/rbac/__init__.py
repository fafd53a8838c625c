"""
Role-Based Access Control (RBAC) module.

Resolves an actor's roles into permission sets, merges the capability
rules they produce into one Ability (explicit deny wins), and answers
"may this actor do X to Y" through the AuthorizationGate.
"""

from .errors import ConfigurationError

from .subjects import WILDCARD, subject_tag, tag_for_class

from .actor import Actor, ResolutionContext, EMPTY_CONTEXT

from .rules import (
    Effect,
    CapabilityRule,
    allow,
    deny,
)

from .roles import (
    ROLE_DEFAULT,
    ROLE_ADMIN,
    BOOTSTRAP_ROLES,
    get_role_description,
)

from .permission_sets import (
    PermissionSet,
    PermissionSetCatalog,
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
    Restriction,
    BUILTIN_PERMISSION_SETS,
    default_catalog,
)

from .registry import RoleRegistry, RegistrySnapshot

from .ability import Ability

from .resolve import AbilityResolver

from .gate import AuthorizationGate

from .bootstrap import (
    build_gate,
    configure_authorization,
    get_gate,
    get_registry,
    reload_roles,
    reset_authorization,
)

__all__ = [
    # Errors
    "ConfigurationError",
    # Subjects
    "WILDCARD",
    "subject_tag",
    "tag_for_class",
    # Actors
    "Actor",
    "ResolutionContext",
    "EMPTY_CONTEXT",
    # Rules
    "Effect",
    "CapabilityRule",
    "allow",
    "deny",
    # Roles
    "ROLE_DEFAULT",
    "ROLE_ADMIN",
    "BOOTSTRAP_ROLES",
    "get_role_description",
    # Permission sets
    "PermissionSet",
    "PermissionSetCatalog",
    "SuperUser",
    "DefaultCustomer",
    "OrderDisplay",
    "OrderManagement",
    "ProductDisplay",
    "ProductManagement",
    "StockDisplay",
    "StockManagement",
    "UserDisplay",
    "UserManagement",
    "Restriction",
    "BUILTIN_PERMISSION_SETS",
    "default_catalog",
    # Registry
    "RoleRegistry",
    "RegistrySnapshot",
    # Resolution
    "Ability",
    "AbilityResolver",
    "AuthorizationGate",
    # Global setup
    "build_gate",
    "configure_authorization",
    "get_gate",
    "get_registry",
    "reload_roles",
    "reset_authorization",
]
