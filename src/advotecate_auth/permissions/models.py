"""Value objects for permission evaluation: Permission, Role, AuthzUser."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping


@dataclass(frozen=True)
class Permission:
    """A single ``(resource, action)`` rule with optional conditions.

    ``resource`` and ``action`` are exact names or ``"*"``. ``conditions``
    maps a condition key to the value it expects; all must hold. ``None``
    means the rule applies unconditionally once resource and action match.
    """

    resource: str
    action: str
    conditions: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.conditions is not None:
            object.__setattr__(self, "conditions", MappingProxyType(dict(self.conditions)))

    def __hash__(self) -> int:
        conds = tuple(sorted((k, repr(v)) for k, v in self.conditions.items())) if self.conditions else None
        return hash((self.resource, self.action, conds))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"resource": self.resource, "action": self.action}
        if self.conditions is not None:
            data["conditions"] = dict(self.conditions)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Permission":
        return cls(
            resource=data["resource"],
            action=data["action"],
            conditions=data.get("conditions"),
        )


@dataclass(frozen=True)
class Role:
    """A named set of permissions, optionally inheriting other roles by name."""

    name: str
    description: str
    permissions: tuple[Permission, ...] = ()
    inherits: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", tuple(self.permissions))
        object.__setattr__(self, "inherits", tuple(self.inherits))


@dataclass(frozen=True)
class AuthzUser:
    """Authorization view of the caller, supplied per request.

    Built by the authentication layer from a verified token; never
    persisted by the authorization core.
    """

    id: str
    roles: tuple[str, ...] = ()
    organizations: tuple[str, ...] = ()
    custom_permissions: tuple[Permission, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", tuple(self.roles))
        object.__setattr__(self, "organizations", tuple(self.organizations))
        object.__setattr__(self, "custom_permissions", tuple(self.custom_permissions or ()))

    def belongs_to(self, organization_id: Any) -> bool:
        return bool(organization_id) and organization_id in self.organizations

    @classmethod
    def build(
        cls,
        user_id: str,
        roles: Iterable[str] = (),
        organizations: Iterable[str] = (),
        custom_permissions: Iterable[Permission] = (),
    ) -> "AuthzUser":
        return cls(
            id=user_id,
            roles=tuple(roles),
            organizations=tuple(organizations),
            custom_permissions=tuple(custom_permissions),
        )


__all__ = ["AuthzUser", "Permission", "Role"]
