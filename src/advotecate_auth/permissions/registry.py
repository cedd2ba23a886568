"""Role registry and the built-in role catalog.

Provides:
- ``DEFAULT_ROLES`` — the seven roles the platform ships with.
- ``RoleRegistry`` — name → Role catalog, copy-on-write for concurrent readers.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterable

from .constants import WILDCARD, Actions, Resources, RoleName
from .models import Permission, Role

logger = logging.getLogger(__name__)


def _p(resource: str, action: str, **conditions: Any) -> Permission:
    return Permission(resource=resource, action=action, conditions=conditions or None)


# ── Built-in Catalog ────────────────────────────────────
# Data, not logic: new roles or rules need no matcher changes.

DEFAULT_ROLES: tuple[Role, ...] = (
    Role(
        name=RoleName.SUPER_ADMIN,
        description="Full system administrator with unrestricted access",
        permissions=(_p(WILDCARD, WILDCARD),),
    ),
    Role(
        name=RoleName.ORG_ADMIN,
        description="Organization administrator with full control over their organization",
        permissions=(
            _p(Resources.ORGANIZATION, Actions.READ, own=True),
            _p(Resources.ORGANIZATION, Actions.UPDATE, own=True),
            _p(Resources.FUNDRAISER, WILDCARD, own_org=True),
            _p(Resources.DONATION, Actions.READ, own_org=True),
            _p(Resources.DONATION, Actions.EXPORT, own_org=True),
            _p(Resources.COMPLIANCE_REPORT, WILDCARD, own_org=True),
            _p(Resources.DISBURSEMENT, Actions.READ, own_org=True),
            _p(Resources.DISBURSEMENT, Actions.REQUEST, own_org=True),
            _p(Resources.ORGANIZATION_USER, WILDCARD, own_org=True),
            _p(Resources.ANALYTICS, Actions.READ, own_org=True),
        ),
    ),
    Role(
        name=RoleName.ORG_TREASURER,
        description="Organization treasurer with financial oversight responsibilities",
        permissions=(
            _p(Resources.ORGANIZATION, Actions.READ, own=True),
            _p(Resources.FUNDRAISER, Actions.READ, own_org=True),
            _p(Resources.FUNDRAISER, Actions.UPDATE, own_org=True),
            _p(Resources.DONATION, Actions.READ, own_org=True),
            _p(Resources.DONATION, Actions.EXPORT, own_org=True),
            _p(Resources.COMPLIANCE_REPORT, WILDCARD, own_org=True),
            _p(Resources.DISBURSEMENT, WILDCARD, own_org=True),
            _p(Resources.ANALYTICS, Actions.READ, own_org=True, type="financial"),
        ),
    ),
    Role(
        name=RoleName.ORG_STAFF,
        description="Organization staff with limited operational access",
        permissions=(
            _p(Resources.ORGANIZATION, Actions.READ, own=True),
            _p(Resources.FUNDRAISER, Actions.READ, own_org=True),
            _p(Resources.FUNDRAISER, Actions.CREATE, own_org=True),
            _p(Resources.FUNDRAISER, Actions.UPDATE, own_org=True),
            _p(Resources.DONATION, Actions.READ, own_org=True, summary_only=True),
            _p(Resources.ANALYTICS, Actions.READ, own_org=True, type="basic"),
        ),
    ),
    Role(
        name=RoleName.ORG_VIEWER,
        description="Read-only access to organization data",
        permissions=(
            _p(Resources.ORGANIZATION, Actions.READ, own=True),
            _p(Resources.FUNDRAISER, Actions.READ, own_org=True),
            _p(Resources.DONATION, Actions.READ, own_org=True, summary_only=True),
            _p(Resources.ANALYTICS, Actions.READ, own_org=True, type="basic"),
        ),
    ),
    Role(
        name=RoleName.DONOR,
        description="Individual donor with personal account management",
        permissions=(
            _p(Resources.USER, Actions.READ, own=True),
            _p(Resources.USER, Actions.UPDATE, own=True),
            _p(Resources.DONATION, Actions.CREATE),
            _p(Resources.DONATION, Actions.READ, own=True),
            _p(Resources.DONATION, Actions.CANCEL, own=True, status="pending"),
            _p(Resources.FUNDRAISER, Actions.READ, status="active"),
            _p(Resources.ORGANIZATION, Actions.READ, status="active", verified=True),
            _p(Resources.ANALYTICS, Actions.READ, own=True, type="personal"),
        ),
    ),
    Role(
        name=RoleName.COMPLIANCE_OFFICER,
        description="Compliance specialist with cross-organization audit access",
        permissions=(
            _p(Resources.COMPLIANCE_REPORT, Actions.READ),
            _p(Resources.COMPLIANCE_REPORT, Actions.AUDIT),
            _p(Resources.DONATION, Actions.READ, purpose="compliance"),
            _p(Resources.DONATION, Actions.FLAG, purpose="compliance"),
            _p(Resources.USER, Actions.READ, purpose="kyc"),
            _p(Resources.USER, Actions.VERIFY, purpose="kyc"),
            _p(Resources.ORGANIZATION, Actions.READ, purpose="verification"),
            _p(Resources.ORGANIZATION, Actions.VERIFY),
            _p(Resources.ANALYTICS, Actions.READ, type="compliance"),
        ),
    ),
)


class RoleRegistry:
    """Catalog of roles keyed by name.

    Reads are lock-free: writers build a new dict under a lock and swap
    the reference, so a reader always sees a complete catalog.

    Usage::

        registry = RoleRegistry.with_defaults()
        registry.add_role(Role(name="auditor", description="...", inherits=("org_viewer",)))
        registry.get_role("auditor")
    """

    def __init__(self, roles: Iterable[Role] = ()) -> None:
        self._lock = threading.Lock()
        self._roles: dict[str, Role] = {}
        for role in roles:
            self.add_role(role)

    @classmethod
    def with_defaults(cls) -> "RoleRegistry":
        registry = cls(DEFAULT_ROLES)
        logger.info("RoleRegistry initialized with %d built-in roles", len(registry))
        return registry

    def add_role(self, role: Role) -> None:
        """Insert or overwrite a role by name.

        ``inherits`` targets are not validated here; unknown names are
        skipped at expansion time.
        """
        with self._lock:
            roles = dict(self._roles)
            if role.name in roles:
                logger.info("Overwriting role definition: %s", role.name)
            roles[role.name] = role
            self._roles = roles

    def get_role(self, name: str) -> Role | None:
        return self._roles.get(name)

    def get_all_roles(self) -> list[Role]:
        return list(self._roles.values())

    def __contains__(self, name: object) -> bool:
        return name in self._roles

    def __len__(self) -> int:
        return len(self._roles)


__all__ = ["DEFAULT_ROLES", "RoleRegistry"]
