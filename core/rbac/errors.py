"""
Errors raised by the authorization engine.

Only configuration mistakes are errors. A denied check is a normal
``False`` and never raised from here.
"""

from typing import Optional


class ConfigurationError(ValueError):
    """
    Raised when roles or permission sets are misconfigured.

    Covers unknown permission-set identifiers referenced by a role
    assignment and role names that were never declared in the registry.
    Surfaced at the point of misconfiguration and never retried.
    """

    def __init__(
        self,
        message: str,
        role: Optional[str] = None,
        permission_set: Optional[str] = None,
    ):
        super().__init__(message)
        self.role = role
        self.permission_set = permission_set
