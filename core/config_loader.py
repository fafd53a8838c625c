"""
Configuration loader for the role -> permission-set map.

Reads a YAML file of the form::

    declared_roles: [customer]
    roles:
      manager: [OrderManagement, ProductManagement]
      support: [OrderDisplay, UserDisplay]

and applies it to a RoleRegistry in one atomic swap. The file only maps
role names to registered permission-set identifiers; rules themselves are
always code.

A missing file keeps the bootstrap roles. A malformed file or an unknown
identifier raises ConfigurationError: authorization config never silently
falls back to defaults.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.rbac.errors import ConfigurationError
from core.rbac.registry import RegistrySnapshot, RoleRegistry

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class RoleMap:
    """Parsed role map file."""
    roles: Dict[str, List[str]] = field(default_factory=dict)
    declared_roles: List[str] = field(default_factory=list)
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, source: Optional[str] = None) -> "RoleMap":
        """
        Validate and build a RoleMap from parsed YAML.

        Raises:
            ConfigurationError: If the structure is not as documented
        """
        if data is None:
            return cls(source=source)
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Role map must be a YAML mapping, got {type(data).__name__} ({source})"
            )

        unknown_keys = set(data) - {"roles", "declared_roles"}
        if unknown_keys:
            raise ConfigurationError(
                f"Unknown keys in role map {source}: {', '.join(sorted(unknown_keys))}"
            )

        raw_roles = data.get("roles") or {}
        if not isinstance(raw_roles, dict):
            raise ConfigurationError(f"'roles' must be a mapping ({source})")

        roles: Dict[str, List[str]] = {}
        for role, ids in raw_roles.items():
            if ids is None:
                ids = []
            elif isinstance(ids, str):
                ids = [ids]
            if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
                raise ConfigurationError(
                    f"Permission sets for role {role!r} must be a list of identifiers ({source})",
                    role=str(role),
                )
            roles[str(role)] = ids

        declared = data.get("declared_roles") or []
        if isinstance(declared, str):
            declared = [declared]
        if not isinstance(declared, list):
            raise ConfigurationError(f"'declared_roles' must be a list ({source})")

        return cls(roles=roles, declared_roles=[str(r) for r in declared], source=source)


# ============================================================================
# Configuration Loader
# ============================================================================

class RoleConfigLoader:
    """
    Loads a role map file and applies it to a registry.

    ``extra_declared_roles`` (e.g. from settings) are merged with the
    file's ``declared_roles`` on every load.
    """

    def __init__(
        self,
        registry: RoleRegistry,
        path: Optional[str] = None,
        extra_declared_roles: Optional[List[str]] = None,
    ):
        self.registry = registry
        self.path = Path(path) if path else None
        self.extra_declared_roles = list(extra_declared_roles or [])
        self._role_map: Optional[RoleMap] = None

    def read(self) -> RoleMap:
        """
        Read and validate the role map without applying it.

        Raises:
            ConfigurationError: If the file cannot be parsed or is malformed
        """
        if self.path is None or not self.path.exists():
            if self.path is not None:
                logger.warning(
                    f"Role map not found at {self.path}. Keeping bootstrap roles only."
                )
            return RoleMap(source=str(self.path) if self.path else None)

        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse role map YAML at {self.path}: {e}") from e

        return RoleMap.from_dict(data, source=str(self.path))

    def load(self) -> RegistrySnapshot:
        """
        Read the role map and swap it into the registry.

        Returns:
            Registry snapshot in effect after the load

        Raises:
            ConfigurationError: On a malformed file or unknown identifier;
                the registry keeps its previous configuration
        """
        role_map = self.read()
        snapshot = self.registry.reload(
            role_map.roles,
            declared_roles=[*role_map.declared_roles, *self.extra_declared_roles],
        )
        self._role_map = role_map
        logger.info(
            f"Loaded {len(role_map.roles)} role assignments from "
            f"{role_map.source or 'defaults'} (generation={snapshot.generation})"
        )
        return snapshot

    def reload(self) -> RegistrySnapshot:
        """Re-read the file and swap the registry (e.g. on SIGHUP)."""
        logger.info("Reloading role map")
        return self.load()

    @property
    def role_map(self) -> Optional[RoleMap]:
        return self._role_map
