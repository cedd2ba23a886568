"""Permission vocabulary for the Advotecate platform.

Provides:
- ``Resources`` — resource names used in permission rules.
- ``Actions`` — action names used in permission rules.
- ``RoleName`` — built-in role names.
- ``ContextKey`` — well-known keys of the per-call context mapping.
- ``WILDCARD`` — matches any resource or action.
"""

from __future__ import annotations

WILDCARD = "*"


class Resources:
    """Resource names.

    Permissions are ``(resource, action)`` pairs; ``"*"`` matches any name.
    """

    ORGANIZATION = "organization"
    ORGANIZATION_USER = "organization_user"
    FUNDRAISER = "fundraiser"
    DONATION = "donation"
    DISBURSEMENT = "disbursement"
    COMPLIANCE_REPORT = "compliance_report"
    ANALYTICS = "analytics"
    USER = "user"


class Actions:
    """Action names."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
    REQUEST = "request"
    CANCEL = "cancel"
    FLAG = "flag"
    AUDIT = "audit"
    VERIFY = "verify"


class RoleName:
    """Built-in role names, highest rank first."""

    SUPER_ADMIN = "super_admin"
    COMPLIANCE_OFFICER = "compliance_officer"
    ORG_ADMIN = "org_admin"
    ORG_TREASURER = "org_treasurer"
    ORG_STAFF = "org_staff"
    ORG_VIEWER = "org_viewer"
    DONOR = "donor"

    ALL = frozenset(
        {
            "super_admin",
            "compliance_officer",
            "org_admin",
            "org_treasurer",
            "org_staff",
            "org_viewer",
            "donor",
        }
    )


class ContextKey:
    """Keys the condition evaluator reads from the per-call context.

    Keys keep the platform's camelCase wire names so that a context built
    from request params can be passed through unchanged.
    """

    USER_ID = "userId"
    ORGANIZATION_ID = "organizationId"
    TARGET_ORGANIZATION_ID = "targetOrganizationId"
    STATUS = "status"
    VERIFIED = "verified"
    REQUEST_TYPE = "requestType"
    TYPE = "type"
    PURPOSE = "purpose"


__all__ = [
    "Actions",
    "ContextKey",
    "Resources",
    "RoleName",
    "WILDCARD",
]
