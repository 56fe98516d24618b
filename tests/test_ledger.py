"""
Tests for ledger entries: visibility through grants, legacy rows and
category splits.
"""

from decimal import Decimal

import pytest

from household import db
from household.categories import CategoryRepository
from household.errors import Conflict, Forbidden, InvalidInput, NotFound
from household.ledger import CategorySplit, EntryFilter, EntryInput, LedgerRepository
from household.observability.metrics import legacy_null_owner_rows
from household.security.grants import PermissionStore
from household.security.planner import AccessPlanner
from household.timeutil import now_iso


@pytest.fixture
def permissions(directory):
    return PermissionStore(directory)


@pytest.fixture
def ledger(permissions):
    return LedgerRepository(AccessPlanner(permissions))


@pytest.fixture
def category_repo(permissions):
    return CategoryRepository(AccessPlanner(permissions))


def insert_legacy_entry(entry_id: str = "legacy-1", amount: str = "9.99") -> None:
    now = now_iso()
    with db.get_connection() as conn:
        conn.execute(
            """
            INSERT INTO ledger_entries (id, owner_id, amount, ledger_date, kind, paid, optional, created_at, updated_at)
            VALUES (?, NULL, ?, ?, 'Food', ?, ?, ?, ?)
            """,
            (entry_id, Decimal(amount), now, True, False, now, now),
        )


class TestGrantVisibility:
    """A read grant makes one principal's entries visible to another."""

    def test_shared_entry_visible_only_to_grantee(self, ledger, permissions, make_principal):
        p1 = make_principal("P1")
        p2 = make_principal("P2")
        p3 = make_principal("P3")

        created = ledger.create_entry(p1, EntryInput(amount="12.50", kind="Food", paid=True))
        permissions.grant(p1, "P1", "P2", "transactions", "read")

        seen_by_p2 = ledger.list_entries(p2)
        assert len(seen_by_p2) == 1
        assert seen_by_p2[0].id == created.id
        assert seen_by_p2[0].amount == Decimal("12.50")
        assert ledger.list_entries(p3) == []

    def test_invisible_entry_is_not_found(self, ledger, make_principal):
        p1 = make_principal("P1")
        p3 = make_principal("P3")
        entry = ledger.create_entry(p1, EntryInput(amount="5.00"))
        with pytest.raises(NotFound):
            ledger.get_entry(p3, entry.id)
        with pytest.raises(NotFound):
            ledger.delete_entry(p3, entry.id)

    def test_read_grant_does_not_allow_write(self, ledger, permissions, make_principal):
        p1 = make_principal("P1")
        p2 = make_principal("P2")
        entry = ledger.create_entry(p1, EntryInput(amount="5.00"))
        permissions.grant(p1, "P1", "P2", "transactions", "read")
        with pytest.raises(NotFound):
            ledger.update_entry(p2, entry.id, EntryInput(amount="6.00"))

    def test_admin_sees_everything(self, ledger, make_principal):
        p1 = make_principal("P1")
        admin = make_principal("A", role="admin")
        ledger.create_entry(p1, EntryInput(amount="1.00"))
        assert len(ledger.list_entries(admin)) == 1

    def test_write_on_behalf_requires_write_grant(self, ledger, permissions, make_principal):
        p1 = make_principal("P1")
        p2 = make_principal("P2")
        with pytest.raises(Forbidden):
            ledger.create_entry(p2, EntryInput(amount="3.00", owner_id="P1"))
        permissions.grant(p1, "P1", "P2", "transactions", "write")
        entry = ledger.create_entry(p2, EntryInput(amount="3.00", owner_id="P1"))
        assert entry.owner_id == "P1"
        assert entry.entered_by == "P2"

    def test_write_grantee_updates_entry_keeping_owner(self, ledger, permissions, make_principal):
        p1 = make_principal("P1")
        p2 = make_principal("P2")
        entry = ledger.create_entry(p1, EntryInput(amount="5.00", kind="Food"))
        permissions.grant(p1, "P1", "P2", "transactions", "write")

        updated = ledger.update_entry(p2, entry.id, EntryInput(amount="7.25", kind="Fun"))
        assert updated.owner_id == "P1"
        assert updated.amount == Decimal("7.25")

        seen_by_owner = ledger.get_entry(p1, entry.id)
        assert seen_by_owner.owner_id == "P1"
        assert (seen_by_owner.amount, seen_by_owner.kind) == (Decimal("7.25"), "Fun")

    def test_write_grantee_deletes_entry(self, ledger, permissions, make_principal):
        p1 = make_principal("P1")
        p2 = make_principal("P2")
        entry = ledger.create_entry(p1, EntryInput(amount="5.00"))
        permissions.grant(p1, "P1", "P2", "transactions", "write")

        ledger.delete_entry(p2, entry.id)
        with pytest.raises(NotFound):
            ledger.get_entry(p1, entry.id)
        assert ledger.list_entries(p1) == []

    def test_admin_updates_any_entry_keeping_owner(self, ledger, make_principal):
        p1 = make_principal("P1")
        admin = make_principal("A", role="admin")
        entry = ledger.create_entry(p1, EntryInput(amount="5.00"))

        updated = ledger.update_entry(admin, entry.id, EntryInput(amount="9.00", description="corrected"))
        assert updated.owner_id == "P1"
        assert ledger.get_entry(p1, entry.id).description == "corrected"
        assert ledger.get_entry(p1, entry.id).amount == Decimal("9.00")


class TestLegacyRows:
    """Rows without an owner are readable by anyone and claimed on write."""

    def test_null_owner_row_readable_and_claimed(self, ledger, make_principal):
        insert_legacy_entry()
        q = make_principal("Q")
        other = make_principal("R")

        before = legacy_null_owner_rows.value
        assert [e.id for e in ledger.list_entries(other)] == ["legacy-1"]
        assert ledger.get_entry(q, "legacy-1").owner_id is None
        assert legacy_null_owner_rows.value > before

        updated = ledger.update_entry(q, "legacy-1", EntryInput(amount="10.00", kind="Food", paid=True))
        assert updated.owner_id == "Q"
        assert updated.amount == Decimal("10.00")
        assert ledger.list_entries(other) == []

    def test_effective_date_falls_back_to_ledger_date(self, ledger, make_principal):
        insert_legacy_entry()
        entry = ledger.get_entry(make_principal("Q"), "legacy-1")
        assert entry.effective_date == entry.ledger_date


class TestEntryFields:
    def test_defaults(self, ledger, make_principal):
        p1 = make_principal("P1")
        entry = ledger.create_entry(p1, EntryInput(amount="7.25", ledger_date="2024-03-05T10:00:00Z"))
        assert entry.ledger_date == "2024-03-05T10:00:00+00:00"
        assert entry.effective_date == entry.ledger_date
        assert entry.entered_by == "P1"
        assert not entry.paid
        assert not entry.optional

    def test_amount_precision_enforced(self, ledger, make_principal):
        with pytest.raises(InvalidInput):
            ledger.create_entry(make_principal("P1"), EntryInput(amount="1.005"))

    def test_bad_timestamp_rejected(self, ledger, make_principal):
        with pytest.raises(InvalidInput):
            ledger.create_entry(make_principal("P1"), EntryInput(amount="1.00", ledger_date="yesterday"))

    def test_owner_cannot_change(self, ledger, make_principal):
        p1 = make_principal("P1")
        make_principal("P2")
        entry = ledger.create_entry(p1, EntryInput(amount="1.00"))
        with pytest.raises(InvalidInput):
            ledger.update_entry(p1, entry.id, EntryInput(amount="1.00", owner_id="P2"))

    def test_filters(self, ledger, make_principal):
        p1 = make_principal("P1")
        ledger.create_entry(p1, EntryInput(amount="1.00", counterparty="Corner Grocer", kind="Food", paid=True))
        ledger.create_entry(p1, EntryInput(amount="2.00", counterparty="City Power", kind="Bills"))
        assert [e.counterparty for e in ledger.list_entries(p1, EntryFilter(counterparty="grocer"))] == [
            "Corner Grocer"
        ]
        assert [e.kind for e in ledger.list_entries(p1, EntryFilter(paid=False))] == ["Bills"]

    def test_unique_values(self, ledger, make_principal):
        p1 = make_principal("P1")
        ledger.create_entry(p1, EntryInput(amount="1.00", counterparty="Bakery", kind="Food"))
        ledger.create_entry(p1, EntryInput(amount="1.00", counterparty="Bakery", kind="Food"))
        values = ledger.unique_values(p1)
        assert values["counterparties"] == ["Bakery"]
        assert values["kinds"] == ["Food"]
        assert values["entered_by"] == ["P1"]

    def test_delete(self, ledger, make_principal):
        p1 = make_principal("P1")
        entry = ledger.create_entry(p1, EntryInput(amount="1.00", categories=[CategorySplit(name="Food")]))
        ledger.delete_entry(p1, entry.id)
        with pytest.raises(NotFound):
            ledger.get_entry(p1, entry.id)


class TestCategorySplits:
    def test_single_category_takes_whole_amount(self, ledger, make_principal):
        p1 = make_principal("P1")
        entry = ledger.create_entry(p1, EntryInput(amount="20.00", categories=[CategorySplit(name="Food")]))
        assert [(c.name, c.amount) for c in entry.categories] == [("Food", Decimal("20.00"))]

    def test_split_amounts_must_sum(self, ledger, make_principal):
        p1 = make_principal("P1")
        splits = [CategorySplit(name="Food", amount="10.00"), CategorySplit(name="Fun", amount="5.00")]
        with pytest.raises(InvalidInput):
            ledger.create_entry(p1, EntryInput(amount="20.00", categories=splits))

    def test_split_across_categories(self, ledger, make_principal):
        p1 = make_principal("P1")
        splits = [CategorySplit(name="Food", amount="15.00"), CategorySplit(name="Fun", amount="5.00")]
        entry = ledger.create_entry(p1, EntryInput(amount="20.00", categories=splits))
        assert sorted((c.name, c.amount) for c in entry.categories) == [
            ("Food", Decimal("15.00")),
            ("Fun", Decimal("5.00")),
        ]

    def test_duplicate_category_rejected(self, ledger, make_principal):
        p1 = make_principal("P1")
        splits = [CategorySplit(name="Food", amount="1.00"), CategorySplit(name="Food", amount="1.00")]
        with pytest.raises(InvalidInput):
            ledger.create_entry(p1, EntryInput(amount="2.00", categories=splits))

    def test_update_replaces_links(self, ledger, make_principal):
        p1 = make_principal("P1")
        entry = ledger.create_entry(p1, EntryInput(amount="4.00", categories=[CategorySplit(name="Food")]))
        updated = ledger.update_entry(p1, entry.id, EntryInput(amount="4.00", categories=[CategorySplit(name="Fun")]))
        assert [c.name for c in updated.categories] == ["Fun"]

    def test_unknown_category_id_rejected(self, ledger, make_principal):
        p1 = make_principal("P1")
        with pytest.raises(InvalidInput):
            ledger.create_entry(p1, EntryInput(amount="1.00", categories=[CategorySplit(category_id="nope")]))


class TestCategoryRepository:
    def test_create_list_and_conflict(self, category_repo, make_principal):
        p1 = make_principal("P1")
        created = category_repo.create(p1, "Groceries")
        assert created.color.startswith("#")
        assert [c.name for c in category_repo.list_categories(p1)] == ["Groceries"]
        with pytest.raises(Conflict):
            category_repo.create(p1, "Groceries")

    def test_same_name_for_different_owners(self, category_repo, make_principal):
        category_repo.create(make_principal("P1"), "Groceries")
        category_repo.create(make_principal("P2"), "Groceries")

    def test_update_and_delete(self, category_repo, make_principal):
        p1 = make_principal("P1")
        created = category_repo.create(p1, "Groceries")
        renamed = category_repo.update(p1, created.id, name="Food", color="#000000")
        assert (renamed.name, renamed.color) == ("Food", "#000000")
        category_repo.delete(p1, created.id)
        with pytest.raises(NotFound):
            category_repo.get(p1, created.id)

    def test_other_principal_cannot_update(self, category_repo, make_principal):
        created = category_repo.create(make_principal("P1"), "Groceries")
        with pytest.raises(NotFound):
            category_repo.update(make_principal("P2"), created.id, name="Mine")
