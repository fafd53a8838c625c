"""
Process-wide authorization setup.

Builds the catalog, registry, resolver, cache and gate from settings once
at startup, and exposes them to request code through ``get_gate()``.
"""

import logging
import threading
from typing import Mapping, Optional

from app.settings import Settings, get_settings
from core.cache import AbilityCache
from core import config_loader

from .errors import ConfigurationError
from .gate import AuthorizationGate
from .permission_sets import PermissionSetCatalog, default_catalog
from .registry import PermissionSetIds, RegistrySnapshot, RoleRegistry
from .resolve import AbilityResolver

logger = logging.getLogger(__name__)


# ============================================================================
# Builder
# ============================================================================

def build_gate(
    settings: Optional[Settings] = None,
    catalog: Optional[PermissionSetCatalog] = None,
    assignments: Optional[Mapping[str, PermissionSetIds]] = None,
) -> "tuple[AuthorizationGate, config_loader.RoleConfigLoader]":
    """
    Build a gate and the loader that feeds its registry.

    Order: register permission sets and freeze the catalog, bootstrap the
    registry, apply the role map file, then apply ``assignments``.

    Args:
        settings: Settings to use (defaults to environment settings)
        catalog: Permission set catalog (defaults to the built-in variants)
        assignments: Role -> permission-set ids applied after the file

    Returns:
        (gate, loader)

    Raises:
        ConfigurationError: On any misconfiguration
    """
    settings = settings or get_settings()
    catalog = catalog if catalog is not None else default_catalog()
    catalog.freeze()

    registry = RoleRegistry(catalog, declared_roles=settings.RBAC_DECLARED_ROLES)
    loader = config_loader.RoleConfigLoader(
        registry,
        path=settings.RBAC_ROLES_FILE,
        extra_declared_roles=settings.RBAC_DECLARED_ROLES,
    )
    if settings.RBAC_ROLES_FILE:
        loader.load()

    for role, ids in (assignments or {}).items():
        registry.assign_permissions(role, ids)

    for role in settings.RBAC_IMPLICIT_ROLES:
        if not registry.is_declared(role):
            raise ConfigurationError(
                f"Implicit role {role!r} is not declared in the role registry", role=role
            )

    resolver = AbilityResolver(registry, implicit_roles=settings.RBAC_IMPLICIT_ROLES)
    cache = None
    if settings.RBAC_ABILITY_CACHE_ENABLED:
        cache = AbilityCache(
            ttl_seconds=settings.RBAC_ABILITY_CACHE_TTL_SECONDS,
            max_entries=settings.RBAC_ABILITY_CACHE_MAX_ENTRIES,
        )

    gate = AuthorizationGate(resolver, cache=cache)
    logger.info(
        f"Authorization configured: roles={list(registry.known_roles())}, "
        f"permission_sets={len(catalog)}, cache={'on' if cache else 'off'}, "
        f"generation={registry.generation}"
    )
    return gate, loader


# ============================================================================
# Global Instance
# ============================================================================

_global_gate: Optional[AuthorizationGate] = None
_global_loader: Optional["config_loader.RoleConfigLoader"] = None
_configure_lock = threading.Lock()


def configure_authorization(
    settings: Optional[Settings] = None,
    catalog: Optional[PermissionSetCatalog] = None,
    assignments: Optional[Mapping[str, PermissionSetIds]] = None,
) -> AuthorizationGate:
    """
    Configure the global authorization gate.

    Returns:
        Configured AuthorizationGate
    """
    global _global_gate, _global_loader

    gate, loader = build_gate(settings, catalog, assignments)
    with _configure_lock:
        _global_gate = gate
        _global_loader = loader
    logger.info("Configured global authorization gate")
    return gate


def get_gate() -> AuthorizationGate:
    """
    Get the global authorization gate.

    Builds one from environment settings on first use if
    ``configure_authorization`` was never called.
    """
    global _global_gate, _global_loader

    if _global_gate is None:
        with _configure_lock:
            if _global_gate is None:
                logger.warning("Using default authorization gate (not configured)")
                _global_gate, _global_loader = build_gate()
    return _global_gate


def get_registry() -> RoleRegistry:
    return get_gate().registry


def reload_roles() -> RegistrySnapshot:
    """
    Re-read the role map file into the global registry.

    Cached Abilities from the previous generation stop being served as
    soon as the swap happens.
    """
    get_gate()
    return _global_loader.reload()


def reset_authorization():
    """Reset the global gate (useful for testing)."""
    global _global_gate, _global_loader
    with _configure_lock:
        _global_gate = None
        _global_loader = None
