"""Authorization facade.

``Authorizer`` is the public entry point route handlers call to decide
whether a user may perform an action. It combines per-user custom
permissions with role-derived permissions and never raises for a denial:
malformed input is logged and treated as denied.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from ..exceptions import MalformedInputError
from .constants import RoleName
from .inheritance import expand_role
from .matcher import matches_any
from .models import AuthzUser, Permission
from .registry import RoleRegistry

logger = logging.getLogger(__name__)

# Rank used for minimum-role checks and is_role_higher(); unknown roles rank 0.
ROLE_HIERARCHY: dict[str, int] = {
    RoleName.SUPER_ADMIN: 100,
    RoleName.COMPLIANCE_OFFICER: 80,
    RoleName.ORG_ADMIN: 60,
    RoleName.ORG_TREASURER: 50,
    RoleName.ORG_STAFF: 30,
    RoleName.ORG_VIEWER: 20,
    RoleName.DONOR: 10,
}

# Roles an org_admin may grant or revoke.
ORG_ADMIN_MANAGEABLE = frozenset({RoleName.ORG_STAFF, RoleName.ORG_VIEWER, RoleName.DONOR})


def _validate(user: Any, resource: Any, action: Any, context: Any) -> None:
    if not isinstance(user, AuthzUser):
        raise MalformedInputError("user must be an AuthzUser", got=type(user).__name__)
    if not isinstance(resource, str) or not resource:
        raise MalformedInputError("resource must be a non-empty string", got=repr(resource))
    if not isinstance(action, str) or not action:
        raise MalformedInputError("action must be a non-empty string", got=repr(action))
    if context is not None and not isinstance(context, Mapping):
        raise MalformedInputError("context must be a mapping", got=type(context).__name__)


class Authorizer:
    """Role-based authorization over a RoleRegistry.

    Construct once at start-up and pass it to whatever needs decisions::

        authorizer = Authorizer(RoleRegistry.with_defaults())
        if not authorizer.has_permission(user, "fundraiser", "update", {"organizationId": org_id}):
            ...  # respond 403

    Evaluation order for ``has_permission``:
    1. ``user.custom_permissions`` (short-circuits on match)
    2. each role in ``user.roles``, expanded with inheritance
    3. deny
    """

    def __init__(self, registry: RoleRegistry | None = None) -> None:
        self._registry = registry if registry is not None else RoleRegistry.with_defaults()

    @property
    def registry(self) -> RoleRegistry:
        return self._registry

    def has_permission(
        self,
        user: AuthzUser,
        resource: str,
        action: str,
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        """Decide whether ``user`` may perform ``action`` on ``resource``."""
        try:
            _validate(user, resource, action, context)

            if user.custom_permissions and matches_any(user.custom_permissions, resource, action, context, user):
                return True

            for role_name in user.roles:
                role = self._registry.get_role(role_name)
                if role is None:
                    continue
                if matches_any(expand_role(role, self._registry), resource, action, context, user):
                    return True

            return False
        except MalformedInputError as e:
            logger.warning("Authorization denied on malformed input: %s %s", e.message, e.details)
            return False
        except Exception:
            logger.exception("Authorization check failed for %s:%s; denying", resource, action)
            return False

    def has_any_permission(
        self,
        user: AuthzUser,
        required: Iterable[tuple[str, str]],
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        """True if at least one ``(resource, action)`` pair is allowed."""
        return any(self.has_permission(user, r, a, context) for r, a in required)

    def has_all_permissions(
        self,
        user: AuthzUser,
        required: Iterable[tuple[str, str]],
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        """True if every ``(resource, action)`` pair is allowed.

        An empty requirement list is denied.
        """
        pairs = list(required)
        return bool(pairs) and all(self.has_permission(user, r, a, context) for r, a in pairs)

    def get_user_permissions(
        self,
        user: AuthzUser,
        context: Mapping[str, Any] | None = None,
    ) -> list[Permission]:
        """All permissions that apply to ``user`` (custom first, then roles).

        Not deduplicated. ``context`` is accepted for API symmetry and does
        not filter the result.
        """
        _ = context
        if not isinstance(user, AuthzUser):
            logger.warning("get_user_permissions called with %s; returning none", type(user).__name__)
            return []

        permissions: list[Permission] = list(user.custom_permissions)
        for role_name in user.roles:
            role = self._registry.get_role(role_name)
            if role is not None:
                permissions.extend(expand_role(role, self._registry))
        return permissions

    # ── Role hierarchy ──────────────────────────────────

    @staticmethod
    def can_user_manage_role(manager_roles: Iterable[str], target_role: str) -> bool:
        """Whether a holder of ``manager_roles`` may assign ``target_role``.

        ``super_admin`` manages every role; ``org_admin`` manages
        org_staff, org_viewer and donor; nobody else manages roles.
        """
        roles = set(manager_roles or ())
        if RoleName.SUPER_ADMIN in roles:
            return True
        if RoleName.ORG_ADMIN in roles:
            return target_role in ORG_ADMIN_MANAGEABLE
        return False

    @staticmethod
    def get_role_hierarchy() -> dict[str, int]:
        return dict(ROLE_HIERARCHY)

    @staticmethod
    def role_rank(role: str) -> int:
        return ROLE_HIERARCHY.get(role, 0)

    @classmethod
    def is_role_higher(cls, role1: str, role2: str) -> bool:
        """Strictly-greater rank comparison. Unknown roles rank 0."""
        return cls.role_rank(role1) > cls.role_rank(role2)

    @classmethod
    def has_required_role(cls, user_role: str, required_role: str) -> bool:
        """Minimum-role check: ``user_role`` ranks at least ``required_role``."""
        return cls.role_rank(user_role) >= cls.role_rank(required_role)


__all__ = [
    "Authorizer",
    "ORG_ADMIN_MANAGEABLE",
    "ROLE_HIERARCHY",
]
