"""
Bootstrap role definitions.

Every registry starts with these two roles; callers may override either
with ``RoleRegistry.assign_permissions``.
"""

from typing import Dict, Tuple


# ============================================================================
# Role Constants
# ============================================================================

ROLE_DEFAULT = "default"
"""Deny-by-default baseline: storefront customer permissions only."""

ROLE_ADMIN = "admin"
"""Universal-grant baseline: every action on every subject."""


# ============================================================================
# Bootstrap Mapping
# ============================================================================

BOOTSTRAP_ROLES: Dict[str, Tuple[str, ...]] = {
    ROLE_DEFAULT: ("DefaultCustomer",),
    ROLE_ADMIN: ("SuperUser",),
}


ROLE_DESCRIPTIONS: Dict[str, str] = {
    ROLE_DEFAULT: "Storefront customer with catalog browsing and own-order access",
    ROLE_ADMIN: "Administrator with unrestricted access",
}


def get_role_description(role: str) -> str:
    """
    Get human-readable description of a bootstrap role.

    Args:
        role: Role name

    Returns:
        Role description or empty string for any other role
    """
    return ROLE_DESCRIPTIONS.get((role or "").lower(), "")
