"""
Role registry: role name -> ordered permission-set identifiers.

Registry state lives in an immutable RegistrySnapshot. Writers build a new
snapshot under a single-writer lock and swap the reference; readers take
the current reference without locking, so a resolution in flight always
sees one complete configuration, old or new, never a mix.
"""

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from core.metrics import record_registry_swap

from .actor import normalize_role
from .errors import ConfigurationError
from .permission_sets import PermissionSetCatalog, default_catalog
from .roles import BOOTSTRAP_ROLES

logger = logging.getLogger(__name__)

PermissionSetIds = Union[str, Iterable[str]]


# ============================================================================
# Snapshot
# ============================================================================

@dataclass(frozen=True)
class RegistrySnapshot:
    """
    Immutable view of the registry at one generation.

    ``declared`` holds every role name the registry knows about, including
    roles that were declared without any permission set.
    """
    generation: int
    roles: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    declared: FrozenSet[str] = frozenset()

    def lookup(self, role: str) -> Tuple[str, ...]:
        """Permission-set ids for a role; empty for a role with no assignment."""
        return self.roles.get(normalize_role(role), ())

    def is_declared(self, role: str) -> bool:
        return normalize_role(role) in self.declared

    def require(self, role: str) -> Tuple[str, ...]:
        """
        Permission-set ids for a declared role.

        Raises:
            ConfigurationError: If the role was never declared
        """
        name = normalize_role(role)
        if name not in self.declared:
            raise ConfigurationError(f"Unknown role: {role!r}", role=role)
        return self.roles.get(name, ())

    def to_dict(self) -> Dict[str, List[str]]:
        """Role -> list of ids for every declared role, sorted by role name."""
        return {role: list(self.roles.get(role, ())) for role in sorted(self.declared)}


def _build_snapshot(
    generation: int,
    roles: Mapping[str, Tuple[str, ...]],
    declared: Iterable[str],
) -> RegistrySnapshot:
    return RegistrySnapshot(
        generation=generation,
        roles=MappingProxyType(dict(roles)),
        declared=frozenset(declared) | frozenset(roles),
    )


# ============================================================================
# Registry
# ============================================================================

class RoleRegistry:
    """
    Process-wide role configuration.

    Populated at startup (bootstrap roles first, then configured
    assignments), optionally replaced wholesale on reload, read-only
    otherwise.
    """

    def __init__(
        self,
        catalog: Optional[PermissionSetCatalog] = None,
        declared_roles: Iterable[str] = (),
        bootstrap: bool = True,
    ):
        """
        Initialize the registry.

        Args:
            catalog: Permission sets role assignments are validated against
            declared_roles: Roles known to exist but granted nothing yet
            bootstrap: Pre-populate the ``default`` and ``admin`` roles
        """
        self.catalog = catalog if catalog is not None else default_catalog()
        self._write_lock = threading.Lock()

        roles = self._bootstrap_roles() if bootstrap else {}
        declared = self._normalize_roles(declared_roles)
        self._snapshot = _build_snapshot(1, roles, declared)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> RegistrySnapshot:
        """Current immutable registry view. Never blocks."""
        return self._snapshot

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    def lookup(self, role: str) -> List[str]:
        """
        Ordered permission-set ids bound to a role.

        Returns an empty list for a role with no explicit assignment; an
        unassigned role grants nothing.
        """
        return list(self._snapshot.lookup(role))

    def permission_sets_for(self, role: str) -> List[str]:
        """
        Strict lookup for a role queried by name.

        Raises:
            ConfigurationError: If the role was never declared
        """
        return list(self._snapshot.require(role))

    def is_declared(self, role: str) -> bool:
        return self._snapshot.is_declared(role)

    def known_roles(self) -> Tuple[str, ...]:
        return tuple(sorted(self._snapshot.declared))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def assign_permissions(self, role: str, permission_set_ids: PermissionSetIds) -> RegistrySnapshot:
        """
        Replace the whole list of permission sets bound to a role.

        Not additive: the call declares the full policy for the role.
        Assigning the list a role already has leaves the registry (and its
        generation) untouched.

        Args:
            role: Role name
            permission_set_ids: Ordered permission-set identifiers

        Returns:
            The snapshot in effect after the call

        Raises:
            ConfigurationError: If the role name is empty or any identifier
                is not registered in the catalog
        """
        name = self._require_name(role)
        ids = self._validate_ids(name, permission_set_ids)

        with self._write_lock:
            current = self._snapshot
            if name in current.declared and current.roles.get(name) == ids:
                logger.debug(f"Role {name} already bound to {list(ids)}; nothing to do")
                return current

            roles = dict(current.roles)
            roles[name] = ids
            snapshot = _build_snapshot(current.generation + 1, roles, current.declared)
            self._swap(snapshot)

        logger.info(f"Assigned permission sets to role {name}: {list(ids)}")
        return snapshot

    def declare_role(self, role: str) -> RegistrySnapshot:
        """
        Make a role known without granting it anything.

        An actor holding a declared but unassigned role is denied silently
        rather than treated as a configuration error.
        """
        name = self._require_name(role)
        with self._write_lock:
            current = self._snapshot
            if name in current.declared:
                return current
            snapshot = _build_snapshot(
                current.generation + 1, current.roles, current.declared | {name}
            )
            self._swap(snapshot)
        logger.info(f"Declared role {name}")
        return snapshot

    def reload(
        self,
        assignments: Mapping[str, PermissionSetIds],
        declared_roles: Iterable[str] = (),
    ) -> RegistrySnapshot:
        """
        Replace the entire configuration in one swap.

        Bootstrap roles are applied first and may be overridden by
        ``assignments``. Every identifier is validated before anything is
        swapped, so a bad reload leaves the previous configuration in place.

        Raises:
            ConfigurationError: On any empty role name or unknown identifier
        """
        roles = self._bootstrap_roles()
        for role, ids in assignments.items():
            name = self._require_name(role)
            roles[name] = self._validate_ids(name, ids)
        declared = self._normalize_roles(declared_roles)

        with self._write_lock:
            current = self._snapshot
            snapshot = _build_snapshot(current.generation + 1, roles, declared)
            self._swap(snapshot)

        logger.info(
            f"Reloaded role registry: {len(roles)} assigned roles, "
            f"generation={snapshot.generation}"
        )
        return snapshot

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _swap(self, snapshot: RegistrySnapshot) -> None:
        # Caller holds the write lock.
        self._snapshot = snapshot
        record_registry_swap(snapshot.generation)

    def _bootstrap_roles(self) -> Dict[str, Tuple[str, ...]]:
        return {
            role: self._validate_ids(role, ids)
            for role, ids in BOOTSTRAP_ROLES.items()
        }

    def _validate_ids(self, role: str, permission_set_ids: PermissionSetIds) -> Tuple[str, ...]:
        if isinstance(permission_set_ids, str):
            permission_set_ids = [permission_set_ids]
        try:
            return self.catalog.validate(permission_set_ids)
        except ConfigurationError as e:
            raise ConfigurationError(
                f"Cannot assign permissions to role {role!r}: {e}",
                role=role,
                permission_set=e.permission_set,
            ) from e

    @staticmethod
    def _require_name(role: str) -> str:
        name = normalize_role(role) if isinstance(role, str) else ""
        if not name:
            raise ConfigurationError(f"Role name must be a non-empty string, got {role!r}")
        return name

    @classmethod
    def _normalize_roles(cls, roles: Iterable[str]) -> FrozenSet[str]:
        if isinstance(roles, str):
            roles = [roles]
        return frozenset(cls._require_name(role) for role in roles)
