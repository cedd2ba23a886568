"""Permission matching with wildcard resources/actions and contextual conditions.

Provides:
- ``ConditionKind`` — the fixed condition vocabulary plus ``GENERIC``.
- ``condition_holds()`` — evaluate one condition against context + user.
- ``matches()`` / ``matches_any()`` — evaluate one rule / a rule list.

Adding a condition means adding a ``ConditionKind`` member AND an entry in
``_EVALUATORS``; the module refuses to import if the two disagree.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from .constants import WILDCARD, ContextKey
from .models import AuthzUser, Permission

_MISSING = object()


class ConditionKind(str, Enum):
    """Condition keys understood by the evaluator.

    ``GENERIC`` covers any unrecognised key: it holds when
    ``context[key] == expected``. A missing key never holds, even for an
    expected ``None``.
    """

    OWN = "own"
    OWN_ORG = "own_org"
    TO_OWN_ORG = "to_own_org"
    STATUS = "status"
    VERIFIED = "verified"
    SUMMARY_ONLY = "summary_only"
    TYPE = "type"
    PURPOSE = "purpose"
    GENERIC = "*"

    @classmethod
    def of(cls, key: str) -> "ConditionKind":
        try:
            kind = cls(key)
        except ValueError:
            return cls.GENERIC
        return cls.GENERIC if kind is cls.GENERIC else kind


_Evaluator = Callable[[str, Any, Mapping[str, Any], AuthzUser], bool]


def _own(_key: str, expected: Any, context: Mapping[str, Any], user: AuthzUser) -> bool:
    if not expected:
        return True
    return context.get(ContextKey.USER_ID, _MISSING) == user.id


def _own_org(_key: str, expected: Any, context: Mapping[str, Any], user: AuthzUser) -> bool:
    if not expected:
        return True
    return user.belongs_to(context.get(ContextKey.ORGANIZATION_ID))


def _to_own_org(_key: str, expected: Any, context: Mapping[str, Any], user: AuthzUser) -> bool:
    if not expected:
        return True
    return user.belongs_to(context.get(ContextKey.TARGET_ORGANIZATION_ID))


def _summary_only(_key: str, expected: Any, context: Mapping[str, Any], _user: AuthzUser) -> bool:
    if not expected:
        return True
    return context.get(ContextKey.REQUEST_TYPE) != "detailed"


def _equals(context_key: str) -> _Evaluator:
    def evaluate(_key: str, expected: Any, context: Mapping[str, Any], _user: AuthzUser) -> bool:
        return _strict_eq(context.get(context_key, _MISSING), expected)

    return evaluate


def _generic(key: str, expected: Any, context: Mapping[str, Any], _user: AuthzUser) -> bool:
    return _strict_eq(context.get(key, _MISSING), expected)


def _strict_eq(actual: Any, expected: Any) -> bool:
    # bool is an int subclass; True must not equal 1 here
    if actual is _MISSING:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    return actual == expected


_EVALUATORS: dict[ConditionKind, _Evaluator] = {
    ConditionKind.OWN: _own,
    ConditionKind.OWN_ORG: _own_org,
    ConditionKind.TO_OWN_ORG: _to_own_org,
    ConditionKind.STATUS: _equals(ContextKey.STATUS),
    ConditionKind.VERIFIED: _equals(ContextKey.VERIFIED),
    ConditionKind.SUMMARY_ONLY: _summary_only,
    ConditionKind.TYPE: _equals(ContextKey.TYPE),
    ConditionKind.PURPOSE: _equals(ContextKey.PURPOSE),
    ConditionKind.GENERIC: _generic,
}

_unhandled = set(ConditionKind) - set(_EVALUATORS)
if _unhandled:
    raise RuntimeError(f"ConditionKind members without evaluator: {sorted(k.value for k in _unhandled)}")


def condition_holds(key: str, expected: Any, context: Mapping[str, Any], user: AuthzUser) -> bool:
    """Evaluate a single condition."""
    return _EVALUATORS[ConditionKind.of(key)](key, expected, context, user)


def matches(
    permission: Permission,
    resource: str,
    action: str,
    context: Mapping[str, Any] | None,
    user: AuthzUser,
) -> bool:
    """Check whether one permission grants ``action`` on ``resource``.

    Resource and action each match on ``"*"`` or exact equality. If the
    permission declares conditions, every one must hold (AND). A
    conditional permission checked without context is evaluated against an
    empty context and therefore fails for any condition that needs data.

    Example::

        perm = Permission("fundraiser", "*", {"own_org": True})
        user = AuthzUser(id="u1", organizations=("org-1",))
        matches(perm, "fundraiser", "update", {"organizationId": "org-1"}, user)  # True
        matches(perm, "fundraiser", "update", {"organizationId": "org-2"}, user)  # False
    """
    if permission.resource != WILDCARD and permission.resource != resource:
        return False
    if permission.action != WILDCARD and permission.action != action:
        return False
    if not permission.conditions:
        return True

    ctx = context or {}
    return all(condition_holds(key, expected, ctx, user) for key, expected in permission.conditions.items())


def matches_any(
    permissions: Iterable[Permission],
    resource: str,
    action: str,
    context: Mapping[str, Any] | None,
    user: AuthzUser,
) -> bool:
    """True if any permission in the list matches (OR)."""
    return any(matches(p, resource, action, context, user) for p in permissions)


__all__ = [
    "ConditionKind",
    "condition_holds",
    "matches",
    "matches_any",
]
