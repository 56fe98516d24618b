"""
Tests for principals, role hierarchy and role changes.
"""

import pytest

from household.errors import Forbidden, InvalidInput, NotFound
from household.security.roles import (
    PrincipalStatus,
    Role,
    ensure_can_assign,
    is_admin,
    role_at_least,
    role_level,
)


class TestRoleHierarchy:
    def test_levels_are_ordered(self):
        assert role_level(Role.USER) < role_level(Role.ADMIN) < role_level(Role.SUPER_ADMIN)

    def test_legacy_spelling_parses(self):
        assert Role.parse("superadmin") == Role.SUPER_ADMIN
        assert Role.parse(" Admin ") == Role.ADMIN

    def test_unknown_role_rejected(self):
        with pytest.raises(InvalidInput):
            Role.parse("owner")

    def test_admin_checks(self):
        assert is_admin("admin")
        assert is_admin(Role.SUPER_ADMIN)
        assert not is_admin(Role.USER)
        assert role_at_least(Role.SUPER_ADMIN, Role.ADMIN)


class TestEnsureCanAssign:
    """Actor must outrank the target and may not grant above itself."""

    def test_admin_promotes_user_to_admin(self):
        ensure_can_assign(Role.ADMIN, Role.USER, Role.ADMIN)

    def test_user_cannot_promote_user(self):
        with pytest.raises(Forbidden):
            ensure_can_assign(Role.USER, Role.USER, Role.ADMIN)

    def test_admin_cannot_touch_admin(self):
        with pytest.raises(Forbidden):
            ensure_can_assign(Role.ADMIN, Role.ADMIN, Role.USER)

    def test_admin_cannot_grant_super_admin(self):
        with pytest.raises(Forbidden):
            ensure_can_assign(Role.ADMIN, Role.USER, Role.SUPER_ADMIN)

    def test_super_admin_demotes_admin(self):
        ensure_can_assign(Role.SUPER_ADMIN, Role.ADMIN, Role.USER)


class TestPrincipalDirectory:
    def test_first_sight_creates_pending_user(self, directory):
        principal = directory.ensure_principal("p-new", "New Person", "new@example.com")
        assert principal.role == Role.USER
        assert principal.status == PrincipalStatus.PENDING

    def test_ensure_is_idempotent(self, directory):
        directory.ensure_principal("p1", "First")
        again = directory.ensure_principal("p1", "Second")
        assert again.display_name == "First"
        assert len(directory.list_all()) == 1

    def test_require_missing(self, directory):
        with pytest.raises(NotFound):
            directory.require("ghost")

    def test_sync_profile_updates_caller(self, directory, make_principal):
        ctx = make_principal("p1")
        updated = directory.sync_profile(ctx, "Pat", "pat@example.com")
        assert updated.display_name == "Pat"
        assert updated.email == "pat@example.com"

    def test_admin_sets_role(self, directory, make_principal):
        admin = make_principal("a", role="admin")
        make_principal("u")
        assert directory.set_role(admin, "u", "admin").role == Role.ADMIN

    def test_user_cannot_set_role(self, directory, make_principal):
        make_principal("u")
        other = make_principal("u2")
        with pytest.raises(Forbidden):
            directory.set_role(other, "u", "admin")
        assert directory.require("u").role == Role.USER

    def test_status_change_requires_admin(self, directory, make_principal):
        admin = make_principal("a", role="admin")
        user = make_principal("u")
        directory.ensure_principal("pending-one")
        with pytest.raises(Forbidden):
            directory.set_status(user, "pending-one", "approved")
        assert directory.set_status(admin, "pending-one", "approved").status == PrincipalStatus.APPROVED
