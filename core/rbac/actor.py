"""
Actor and resolution context value types.

Actors are supplied by the authentication layer; the engine only reads
their identifier and role names.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Iterable, Union


def normalize_role(role: str) -> str:
    """Normalize a role name (strip and lowercase)."""
    return (role or "").strip().lower()


def _normalize_roles(roles: Union[str, Iterable[str], None]) -> Tuple[str, ...]:
    if roles is None:
        return ()
    if isinstance(roles, str):
        roles = [roles]
    seen = []
    for role in roles:
        name = normalize_role(role)
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


@dataclass(frozen=True)
class Actor:
    """An authenticated (or guest) user or service and its role names."""
    id: Optional[str]
    roles: Tuple[str, ...] = ()
    email: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "roles", _normalize_roles(self.roles))

    @property
    def is_guest(self) -> bool:
        """Check if this actor has no identifier."""
        return self.id is None

    def has_role(self, role: str) -> bool:
        return normalize_role(role) in self.roles


@dataclass(frozen=True)
class ResolutionContext:
    """
    Request data that permission sets may consult.

    order_token lets a guest reach an order by presenting the token the
    storefront handed out at checkout.
    """
    order_token: Optional[str] = None
    store_id: Optional[str] = None


EMPTY_CONTEXT = ResolutionContext()
