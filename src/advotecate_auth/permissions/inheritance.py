"""Role inheritance expansion.

Provides ``expand_role()`` — resolve a role's effective permission list by
merging the roles it inherits from, recursively.
"""

from __future__ import annotations

import logging

from .models import Permission, Role
from .registry import RoleRegistry

logger = logging.getLogger(__name__)


def expand_role(role: Role, registry: RoleRegistry) -> list[Permission]:
    """Expand a role into its own plus all inherited permissions.

    Order: the role's own permissions, then each inherited role's
    expansion in ``inherits`` order. Inherited names missing from the
    registry are skipped. A role already visited during this expansion is
    skipped too, so inheritance cycles terminate.

    Args:
        role: Role to expand.
        registry: Catalog used to resolve inherited role names.

    Returns:
        Permission list (not deduplicated).

    Example::

        >>> registry.add_role(Role(name="a", description="", inherits=("b",)))
        >>> registry.add_role(Role(name="b", description="", inherits=("a",)))
        >>> expand_role(registry.get_role("a"), registry)  # terminates
    """
    return _expand(role, registry, {role.name})


def _expand(role: Role, registry: RoleRegistry, visited: set[str]) -> list[Permission]:
    permissions = list(role.permissions)

    for parent_name in role.inherits:
        if parent_name in visited:
            logger.debug("Inheritance cycle: %s -> %s skipped", role.name, parent_name)
            continue
        parent = registry.get_role(parent_name)
        if parent is None:
            continue
        visited.add(parent_name)
        permissions.extend(_expand(parent, registry, visited))

    return permissions


__all__ = ["expand_role"]
