"""
Tests for grants and the access planner.
"""

from datetime import timedelta

import pytest

from household.errors import Forbidden, InvalidInput, NotFound
from household.observability.metrics import legacy_null_owner_rows
from household.security.grants import Action, GrantDirection, PermissionStore, ResourceKind
from household.security.planner import TRUE_PREDICATE, AccessPlanner, OwnerSet, note_legacy_row
from household.timeutil import to_iso, utcnow


@pytest.fixture
def permissions(directory):
    return PermissionStore(directory)


@pytest.fixture
def planner(permissions):
    return AccessPlanner(permissions)


class TestPermissionStore:
    def test_grant_and_check(self, permissions, make_principal):
        p1 = make_principal("p1")
        make_principal("p2")
        permissions.grant(p1, "p1", "p2", "transactions", "read")
        assert permissions.check("p2", "p1", ResourceKind.TRANSACTIONS, Action.READ)
        assert not permissions.check("p2", "p1", ResourceKind.TRANSACTIONS, Action.WRITE)
        assert not permissions.check("p2", "p1", ResourceKind.REPORTS, Action.READ)

    def test_write_implies_read(self, permissions, make_principal):
        p1 = make_principal("p1")
        make_principal("p2")
        permissions.grant(p1, "p1", "p2", "categories", "write")
        assert permissions.check("p2", "p1", "categories", "read")

    def test_all_kind_covers_everything(self, permissions, make_principal):
        p1 = make_principal("p1")
        make_principal("p2")
        permissions.grant(p1, "p1", "p2", "all", "read")
        for kind in ("transactions", "categories", "reports"):
            assert permissions.check("p2", "p1", kind, "read")

    def test_grant_is_idempotent(self, permissions, make_principal):
        p1 = make_principal("p1")
        make_principal("p2")
        first = permissions.grant(p1, "p1", "p2", "transactions", "read")
        expires = to_iso(utcnow() + timedelta(days=7))
        second = permissions.grant(p1, "p1", "p2", "transactions", "read", expires_at=expires)
        assert first.id == second.id
        assert second.expires_at == expires
        assert len(permissions.grants_held("p2")) == 1

    def test_expired_grant_does_not_count(self, permissions, make_principal):
        p1 = make_principal("p1")
        make_principal("p2")
        permissions.grant(p1, "p1", "p2", "transactions", "read", expires_at=utcnow() - timedelta(minutes=1))
        assert not permissions.check("p2", "p1", "transactions", "read")

    def test_self_grant_rejected(self, permissions, make_principal):
        p1 = make_principal("p1")
        with pytest.raises(InvalidInput):
            permissions.grant(p1, "p1", "p1", "transactions", "read")

    def test_only_owner_or_admin_grants(self, permissions, make_principal):
        make_principal("p1")
        p2 = make_principal("p2")
        admin = make_principal("a", role="admin")
        with pytest.raises(Forbidden):
            permissions.grant(p2, "p1", "p2", "transactions", "read")
        permissions.grant(admin, "p1", "p2", "transactions", "read")
        assert permissions.check("p2", "p1", "transactions", "read")

    def test_grantee_must_exist(self, permissions, make_principal):
        p1 = make_principal("p1")
        with pytest.raises(NotFound):
            permissions.grant(p1, "p1", "ghost", "transactions", "read")

    def test_unknown_kind_rejected(self, permissions, make_principal):
        p1 = make_principal("p1")
        make_principal("p2")
        with pytest.raises(InvalidInput):
            permissions.grant(p1, "p1", "p2", "budgets", "read")

    def test_revoke(self, permissions, make_principal):
        p1 = make_principal("p1")
        make_principal("p2")
        permissions.grant(p1, "p1", "p2", "transactions", "read")
        permissions.revoke(p1, "p1", "p2", "transactions", "read")
        assert not permissions.check("p2", "p1", "transactions", "read")
        with pytest.raises(NotFound):
            permissions.revoke(p1, "p1", "p2", "transactions", "read")

    def test_list_tags_direction(self, permissions, make_principal):
        p1 = make_principal("p1")
        p2 = make_principal("p2")
        permissions.grant(p1, "p1", "p2", "transactions", "read")
        permissions.grant(p2, "p2", "p1", "reports", "read")
        listed = {(g.owner_id, d) for g, d in permissions.list_for_principal("p1")}
        assert listed == {("p1", GrantDirection.ISSUED), ("p2", GrantDirection.HELD)}

    def test_admin_always_passes(self, permissions, make_principal):
        make_principal("p1")
        make_principal("a", role="super_admin")
        assert permissions.check("a", "p1", "transactions", "write")


class TestAccessPlanner:
    def test_user_sees_self_plus_grantors(self, planner, permissions, make_principal):
        p1 = make_principal("p1")
        p2 = make_principal("p2")
        make_principal("p3")
        permissions.grant(p1, "p1", "p2", "transactions", "read")
        owners = planner.plan(p2, ResourceKind.TRANSACTIONS, Action.READ)
        assert owners.owners == frozenset({"p1", "p2"})
        assert planner.plan(p2, ResourceKind.TRANSACTIONS, Action.WRITE).owners == frozenset({"p2"})

    def test_admin_is_unrestricted(self, planner, make_principal):
        admin = make_principal("a", role="admin")
        owners = planner.plan(admin, ResourceKind.REPORTS, Action.WRITE)
        assert owners.unrestricted
        assert owners.predicate() == (TRUE_PREDICATE, [])

    def test_expired_grant_excluded_at_plan_time(self, planner, permissions, make_principal):
        p1 = make_principal("p1")
        p2 = make_principal("p2")
        expires = utcnow() + timedelta(hours=1)
        permissions.grant(p1, "p1", "p2", "transactions", "read", expires_at=expires)
        assert "p1" in planner.plan(p2, ResourceKind.TRANSACTIONS, Action.READ).owners
        later = expires + timedelta(seconds=1)
        assert "p1" not in planner.plan(p2, ResourceKind.TRANSACTIONS, Action.READ, now=later).owners

    def test_predicate_binds_sorted_owners(self):
        owners = OwnerSet("p2", ResourceKind.TRANSACTIONS, Action.READ, frozenset({"p2", "p1"}))
        clause, params = owners.predicate("e.owner_id")
        assert clause == "(e.owner_id IN (?, ?) OR e.owner_id IS NULL)"
        assert params == ["p1", "p2"]

    def test_predicate_without_legacy_rows(self):
        owners = OwnerSet("p1", ResourceKind.TRANSACTIONS, Action.READ, frozenset({"p1"}))
        assert owners.predicate(include_legacy=False) == ("owner_id IN (?)", ["p1"])

    def test_predicate_rejects_bad_column(self):
        owners = OwnerSet("p1", ResourceKind.TRANSACTIONS, Action.READ, frozenset({"p1"}))
        with pytest.raises(ValueError):
            owners.predicate("owner_id; DROP TABLE grants")

    def test_admits_null_owner(self):
        owners = OwnerSet("p1", ResourceKind.TRANSACTIONS, Action.READ, frozenset({"p1"}))
        assert owners.admits(None)
        assert owners.admits("p1")
        assert not owners.admits("p9")

    def test_write_on_behalf_needs_grant(self, planner, permissions, make_principal):
        p1 = make_principal("p1")
        p2 = make_principal("p2")
        with pytest.raises(Forbidden):
            planner.effective_owner_on_write(p2, ResourceKind.TRANSACTIONS, "p1")
        permissions.grant(p1, "p1", "p2", "transactions", "write")
        assert planner.effective_owner_on_write(p2, ResourceKind.TRANSACTIONS, "p1") == "p1"
        assert planner.effective_owner_on_write(p2, ResourceKind.TRANSACTIONS, None) == "p2"

    def test_legacy_row_metric(self):
        before = legacy_null_owner_rows.value
        note_legacy_row("ledger_entries", "row-1")
        assert legacy_null_owner_rows.value == before + 1
