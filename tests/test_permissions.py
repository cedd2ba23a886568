"""Tests for advotecate_auth.permissions: registry, inheritance and Authorizer."""

from __future__ import annotations

import logging

import pytest
from advotecate_auth.permissions import (
    DEFAULT_ROLES,
    ROLE_HIERARCHY,
    Actions,
    Authorizer,
    AuthzUser,
    Permission,
    Resources,
    Role,
    RoleName,
    RoleRegistry,
    expand_role,
)


@pytest.fixture
def authorizer() -> Authorizer:
    return Authorizer(RoleRegistry.with_defaults())


def _user(*roles: str, orgs: tuple[str, ...] = ("org-1",), user_id: str = "u1", custom=()) -> AuthzUser:
    return AuthzUser.build(user_id, roles=roles, organizations=orgs, custom_permissions=custom)


# ── Registry ─────────────────────────────────────────────────────


class TestRoleRegistry:
    """RoleRegistry tests."""

    def test_defaults_contain_seven_roles(self):
        registry = RoleRegistry.with_defaults()
        assert len(registry) == 7
        assert {r.name for r in registry.get_all_roles()} == RoleName.ALL

    def test_get_unknown_role(self):
        assert RoleRegistry().get_role("nope") is None

    def test_contains(self):
        registry = RoleRegistry.with_defaults()
        assert RoleName.DONOR in registry
        assert "ghost" not in registry

    def test_add_role_overwrites_and_logs(self, caplog):
        registry = RoleRegistry.with_defaults()
        replacement = Role(name=RoleName.DONOR, description="restricted donor")

        with caplog.at_level(logging.INFO, logger="advotecate_auth.permissions.registry"):
            registry.add_role(replacement)

        assert registry.get_role(RoleName.DONOR) is replacement
        assert len(registry) == 7
        assert any("Overwriting role definition: donor" in r.message for r in caplog.records)

    def test_add_role_does_not_validate_inherits(self):
        registry = RoleRegistry()
        registry.add_role(Role(name="orphan", description="", inherits=("missing",)))
        assert "orphan" in registry

    def test_snapshot_unaffected_by_later_writes(self):
        registry = RoleRegistry.with_defaults()
        snapshot = registry.get_all_roles()
        registry.add_role(Role(name="auditor", description=""))
        assert len(snapshot) == 7
        assert len(registry.get_all_roles()) == 8

    def test_catalog_is_plain_data(self):
        super_admin = next(r for r in DEFAULT_ROLES if r.name == RoleName.SUPER_ADMIN)
        assert super_admin.permissions == (Permission("*", "*"),)


# ── Inheritance ──────────────────────────────────────────────────


class TestExpandRole:
    """expand_role tests."""

    def test_own_permissions_first_then_inherited(self):
        registry = RoleRegistry(
            [
                Role(name="base", description="", permissions=(Permission("a", "read"),)),
                Role(name="child", description="", permissions=(Permission("b", "read"),), inherits=("base",)),
            ]
        )
        perms = expand_role(registry.get_role("child"), registry)
        assert perms == [Permission("b", "read"), Permission("a", "read")]

    def test_cycle_terminates(self):
        registry = RoleRegistry(
            [
                Role(name="a", description="", permissions=(Permission("x", "read"),), inherits=("b",)),
                Role(name="b", description="", permissions=(Permission("y", "read"),), inherits=("a",)),
            ]
        )
        perms = expand_role(registry.get_role("a"), registry)
        assert perms == [Permission("x", "read"), Permission("y", "read")]

    def test_self_inheritance_terminates(self):
        registry = RoleRegistry([Role(name="loop", description="", permissions=(Permission("x", "read"),), inherits=("loop",))])
        assert expand_role(registry.get_role("loop"), registry) == [Permission("x", "read")]

    def test_dangling_inherit_skipped(self):
        registry = RoleRegistry([Role(name="a", description="", permissions=(Permission("x", "read"),), inherits=("ghost",))])
        assert expand_role(registry.get_role("a"), registry) == [Permission("x", "read")]

    def test_diamond_includes_shared_ancestor_once(self):
        registry = RoleRegistry(
            [
                Role(name="root", description="", permissions=(Permission("r", "read"),)),
                Role(name="left", description="", inherits=("root",)),
                Role(name="right", description="", inherits=("root",)),
                Role(name="top", description="", inherits=("left", "right")),
            ]
        )
        assert expand_role(registry.get_role("top"), registry) == [Permission("r", "read")]

    def test_inherited_rule_grants_access(self):
        registry = RoleRegistry.with_defaults()
        registry.add_role(Role(name="auditor", description="", inherits=(RoleName.COMPLIANCE_OFFICER,)))
        authorizer = Authorizer(registry)
        assert authorizer.has_permission(_user("auditor"), Resources.COMPLIANCE_REPORT, Actions.AUDIT)


# ── Authorizer ───────────────────────────────────────────────────


class TestAuthorizer:
    """Authorizer.has_permission tests."""

    def test_super_admin_wildcard(self, authorizer):
        admin = _user(RoleName.SUPER_ADMIN, orgs=())
        assert authorizer.has_permission(admin, "anything", "whatever")
        assert authorizer.has_permission(admin, Resources.DONATION, Actions.DELETE, {"organizationId": "x"})

    def test_org_admin_own_org_only(self, authorizer):
        admin = _user(RoleName.ORG_ADMIN, orgs=("org-1",))
        assert authorizer.has_permission(admin, Resources.FUNDRAISER, Actions.UPDATE, {"organizationId": "org-1"})
        assert not authorizer.has_permission(admin, Resources.FUNDRAISER, Actions.UPDATE, {"organizationId": "org-2"})

    def test_conditional_rule_without_context_denied(self, authorizer):
        admin = _user(RoleName.ORG_ADMIN)
        assert not authorizer.has_permission(admin, Resources.FUNDRAISER, Actions.UPDATE)

    def test_unconditional_rule_without_context(self, authorizer):
        donor = _user(RoleName.DONOR, orgs=())
        assert authorizer.has_permission(donor, Resources.DONATION, Actions.CREATE)

    def test_donor_cancel_only_pending_own(self, authorizer):
        donor = _user(RoleName.DONOR, orgs=(), user_id="d1")
        assert authorizer.has_permission(donor, Resources.DONATION, Actions.CANCEL, {"userId": "d1", "status": "pending"})
        assert not authorizer.has_permission(donor, Resources.DONATION, Actions.CANCEL, {"userId": "d1", "status": "completed"})
        assert not authorizer.has_permission(donor, Resources.DONATION, Actions.CANCEL, {"userId": "d2", "status": "pending"})

    def test_donor_reads_verified_active_organizations(self, authorizer):
        donor = _user(RoleName.DONOR, orgs=())
        assert authorizer.has_permission(donor, Resources.ORGANIZATION, Actions.READ, {"status": "active", "verified": True})
        assert not authorizer.has_permission(donor, Resources.ORGANIZATION, Actions.READ, {"status": "active", "verified": False})

    def test_staff_donations_summary_only(self, authorizer):
        staff = _user(RoleName.ORG_STAFF)
        ctx = {"organizationId": "org-1"}
        assert authorizer.has_permission(staff, Resources.DONATION, Actions.READ, ctx)
        assert not authorizer.has_permission(staff, Resources.DONATION, Actions.READ, {**ctx, "requestType": "detailed"})

    def test_treasurer_financial_analytics(self, authorizer):
        treasurer = _user(RoleName.ORG_TREASURER)
        ctx = {"organizationId": "org-1", "type": "financial"}
        assert authorizer.has_permission(treasurer, Resources.ANALYTICS, Actions.READ, ctx)
        assert not authorizer.has_permission(treasurer, Resources.ANALYTICS, Actions.READ, {**ctx, "type": "basic"})

    def test_compliance_purpose(self, authorizer):
        officer = _user(RoleName.COMPLIANCE_OFFICER, orgs=())
        assert authorizer.has_permission(officer, Resources.DONATION, Actions.FLAG, {"purpose": "compliance"})
        assert not authorizer.has_permission(officer, Resources.DONATION, Actions.FLAG, {"purpose": "marketing"})
        assert authorizer.has_permission(officer, Resources.ORGANIZATION, Actions.VERIFY)

    def test_unknown_role_ignored(self, authorizer):
        assert not authorizer.has_permission(_user("ghost"), Resources.DONATION, Actions.CREATE)

    def test_custom_permission_short_circuits(self, authorizer):
        user = _user(custom=(Permission(Resources.DISBURSEMENT, Actions.CANCEL),))
        assert authorizer.has_permission(user, Resources.DISBURSEMENT, Actions.CANCEL)

    def test_custom_permission_conditions_apply(self, authorizer):
        user = _user(custom=(Permission(Resources.FUNDRAISER, Actions.DELETE, {"own_org": True}),))
        assert authorizer.has_permission(user, Resources.FUNDRAISER, Actions.DELETE, {"organizationId": "org-1"})
        assert not authorizer.has_permission(user, Resources.FUNDRAISER, Actions.DELETE, {"organizationId": "org-9"})

    def test_multiple_roles_or(self, authorizer):
        user = _user(RoleName.ORG_VIEWER, RoleName.DONOR, orgs=("org-1",))
        assert authorizer.has_permission(user, Resources.DONATION, Actions.CREATE)
        assert authorizer.has_permission(user, Resources.FUNDRAISER, Actions.READ, {"organizationId": "org-1"})

    def test_decision_is_deterministic(self, authorizer):
        user = _user(RoleName.ORG_STAFF)
        ctx = {"organizationId": "org-1"}
        results = {authorizer.has_permission(user, Resources.FUNDRAISER, Actions.CREATE, ctx) for _ in range(20)}
        assert results == {True}


class TestFailClosed:
    """Malformed input never raises and never grants."""

    @pytest.mark.parametrize(
        "user, resource, action, context",
        [
            (None, "donation", "read", None),
            ({"id": "u1", "roles": ["super_admin"]}, "donation", "read", None),
            (AuthzUser("u1", roles=("super_admin",)), "", "read", None),
            (AuthzUser("u1", roles=("super_admin",)), "donation", None, None),
            (AuthzUser("u1", roles=("super_admin",)), 42, "read", None),
            (AuthzUser("u1", roles=("super_admin",)), "donation", "read", ["organizationId"]),
        ],
    )
    def test_malformed_input_denied(self, authorizer, user, resource, action, context):
        assert authorizer.has_permission(user, resource, action, context) is False

    def test_malformed_input_logged(self, authorizer, caplog):
        with caplog.at_level(logging.WARNING, logger="advotecate_auth.permissions.access"):
            authorizer.has_permission(None, "donation", "read")
        assert any("malformed input" in r.message for r in caplog.records)

    def test_unexpected_error_denied(self, caplog):
        class ExplodingRegistry(RoleRegistry):
            def get_role(self, name):
                raise RuntimeError("boom")

        authorizer = Authorizer(ExplodingRegistry())
        with caplog.at_level(logging.ERROR, logger="advotecate_auth.permissions.access"):
            assert authorizer.has_permission(_user(RoleName.DONOR), Resources.DONATION, Actions.CREATE) is False
        assert any(r.levelno == logging.ERROR for r in caplog.records)


class TestAggregates:
    """has_any / has_all / get_user_permissions."""

    def test_has_any(self, authorizer):
        donor = _user(RoleName.DONOR, orgs=())
        assert authorizer.has_any_permission(donor, [(Resources.DISBURSEMENT, Actions.REQUEST), (Resources.DONATION, Actions.CREATE)])
        assert not authorizer.has_any_permission(donor, [(Resources.DISBURSEMENT, Actions.REQUEST)])

    def test_has_any_empty_is_false(self, authorizer):
        assert not authorizer.has_any_permission(_user(RoleName.SUPER_ADMIN), [])

    def test_has_all(self, authorizer):
        staff = _user(RoleName.ORG_STAFF)
        ctx = {"organizationId": "org-1"}
        assert authorizer.has_all_permissions(staff, [(Resources.FUNDRAISER, Actions.READ), (Resources.FUNDRAISER, Actions.CREATE)], ctx)
        assert not authorizer.has_all_permissions(staff, [(Resources.FUNDRAISER, Actions.READ), (Resources.FUNDRAISER, Actions.DELETE)], ctx)

    def test_has_all_empty_is_false(self, authorizer):
        assert not authorizer.has_all_permissions(_user(RoleName.SUPER_ADMIN), [])

    def test_get_user_permissions_custom_first(self, authorizer):
        custom = Permission("report", "export")
        perms = authorizer.get_user_permissions(_user(RoleName.ORG_VIEWER, custom=(custom,)))
        assert perms[0] == custom
        assert len(perms) == 1 + len(authorizer.registry.get_role(RoleName.ORG_VIEWER).permissions)

    def test_get_user_permissions_malformed(self, authorizer):
        assert authorizer.get_user_permissions("not-a-user") == []


class TestRoleHierarchy:
    """Rank helpers and role management."""

    def test_hierarchy_values(self):
        assert Authorizer.get_role_hierarchy() == ROLE_HIERARCHY
        assert ROLE_HIERARCHY[RoleName.SUPER_ADMIN] == 100
        assert ROLE_HIERARCHY[RoleName.DONOR] == 10

    def test_hierarchy_copy_is_isolated(self):
        copy = Authorizer.get_role_hierarchy()
        copy[RoleName.DONOR] = 1000
        assert ROLE_HIERARCHY[RoleName.DONOR] == 10

    def test_is_role_higher(self):
        assert Authorizer.is_role_higher(RoleName.ORG_ADMIN, RoleName.ORG_STAFF)
        assert not Authorizer.is_role_higher(RoleName.ORG_STAFF, RoleName.ORG_STAFF)
        assert not Authorizer.is_role_higher("ghost", RoleName.DONOR)

    def test_has_required_role(self):
        assert Authorizer.has_required_role(RoleName.ORG_ADMIN, RoleName.ORG_ADMIN)
        assert Authorizer.has_required_role(RoleName.SUPER_ADMIN, RoleName.ORG_ADMIN)
        assert not Authorizer.has_required_role(RoleName.ORG_STAFF, RoleName.ORG_ADMIN)

    def test_super_admin_manages_everything(self):
        for role in RoleName.ALL:
            assert Authorizer.can_user_manage_role([RoleName.SUPER_ADMIN], role)

    def test_org_admin_manages_lower_roles(self):
        assert Authorizer.can_user_manage_role([RoleName.ORG_ADMIN], RoleName.ORG_STAFF)
        assert Authorizer.can_user_manage_role([RoleName.ORG_ADMIN], RoleName.DONOR)
        assert not Authorizer.can_user_manage_role([RoleName.ORG_ADMIN], RoleName.ORG_TREASURER)
        assert not Authorizer.can_user_manage_role([RoleName.ORG_ADMIN], RoleName.ORG_ADMIN)

    def test_others_manage_nothing(self):
        assert not Authorizer.can_user_manage_role([RoleName.ORG_TREASURER], RoleName.DONOR)
        assert not Authorizer.can_user_manage_role([], RoleName.DONOR)
