"""Role-based permission evaluation for the Advotecate platform.

Defines:
- Resources / Actions / RoleName / ContextKey: the permission vocabulary
- Permission / Role / AuthzUser: value objects
- DEFAULT_ROLES / RoleRegistry: the role catalog
- expand_role(): resolve inherited roles (cycle-safe)
- ConditionKind / matches() / matches_any(): rule evaluation
- Authorizer: the public decision API
"""

from .access import ORG_ADMIN_MANAGEABLE, ROLE_HIERARCHY, Authorizer
from .constants import WILDCARD, Actions, ContextKey, Resources, RoleName
from .inheritance import expand_role
from .matcher import ConditionKind, condition_holds, matches, matches_any
from .models import AuthzUser, Permission, Role
from .registry import DEFAULT_ROLES, RoleRegistry

__all__ = [
    "Actions",
    "Authorizer",
    "AuthzUser",
    "ConditionKind",
    "ContextKey",
    "DEFAULT_ROLES",
    "ORG_ADMIN_MANAGEABLE",
    "Permission",
    "ROLE_HIERARCHY",
    "Resources",
    "Role",
    "RoleName",
    "RoleRegistry",
    "WILDCARD",
    "condition_holds",
    "expand_role",
    "matches",
    "matches_any",
]
