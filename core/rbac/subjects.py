"""
Subject tag derivation.

A subject handed to the gate can be a tag string, a class, or a concrete
instance. Only instances take part in scope evaluation.
"""

import re
from typing import Any, Tuple, Optional

WILDCARD = "*"
"""Matches any action or any subject tag."""

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def tag_for_class(cls: type) -> str:
    """
    Get the subject tag for a class.

    Uses ``__subject_tag__`` when the class defines one, otherwise the
    class name in snake_case.

    Examples:
        >>> class CatalogItem: pass
        >>> tag_for_class(CatalogItem)
        'catalog_item'
        >>> class HTTPRoute: pass
        >>> tag_for_class(HTTPRoute)
        'http_route'
    """
    explicit = getattr(cls, "__subject_tag__", None)
    if isinstance(explicit, str) and explicit:
        return explicit
    return _CAMEL_BOUNDARY.sub("_", cls.__name__).lower()


def split_subject(subject: Any) -> Tuple[str, Optional[Any]]:
    """
    Split a subject into its tag and its concrete instance (if any).

    Args:
        subject: Tag string, class, or instance

    Returns:
        (tag, instance) where instance is None for tags and classes
    """
    if isinstance(subject, str):
        return subject, None
    if isinstance(subject, type):
        return tag_for_class(subject), None
    return tag_for_class(type(subject)), subject


def subject_tag(subject: Any) -> str:
    """Get the subject tag for a tag string, class, or instance."""
    return split_subject(subject)[0]
