"""
Ledger entries: the governed resource.

Every read and write goes through the access planner. Entries outside the
caller's owner set behave exactly like missing entries (``NotFound``).
The owner is fixed at insertion; legacy rows without an owner are claimed by
the first principal that writes them.

Category splits: an entry may be linked to several categories, each with an
amount. On write the split amounts must sum to the entry amount. A single
category given without an amount takes the whole amount.
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from household import categories, db
from household.db import DatabaseAdapter, placeholders
from household.errors import InvalidInput, NotFound
from household.money import from_storage, to_money
from household.principals import AuthContext
from household.security.grants import Action, ResourceKind
from household.security.planner import AccessPlanner, note_legacy_row
from household.timeutil import now_iso, parse_timestamp, to_iso

log = logging.getLogger(__name__)


@dataclass
class EntryCategory:
    category_id: str
    name: str
    amount: Decimal

    def to_dict(self) -> dict:
        return {"category_id": self.category_id, "name": self.name, "amount": float(self.amount)}


@dataclass
class LedgerEntry:
    id: str
    owner_id: str | None
    amount: Decimal
    ledger_date: str
    effective_date: str
    kind: str
    counterparty: str
    description: str
    paid: bool
    paid_date: str | None
    entered_by: str
    optional: bool
    created_at: str
    updated_at: str
    categories: list[EntryCategory] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "amount": float(self.amount),
            "ledger_date": self.ledger_date,
            "effective_date": self.effective_date,
            "kind": self.kind,
            "counterparty": self.counterparty,
            "description": self.description,
            "paid": self.paid,
            "paid_date": self.paid_date,
            "entered_by": self.entered_by,
            "optional": self.optional,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "categories": [c.to_dict() for c in self.categories],
        }


@dataclass
class CategorySplit:
    """A requested link: by category id, or by name (created when missing)."""

    name: str | None = None
    category_id: str | None = None
    amount: Decimal | float | str | None = None


@dataclass
class EntryInput:
    amount: Decimal | float | str
    ledger_date: str | None = None
    effective_date: str | None = None
    kind: str = ""
    counterparty: str = ""
    description: str = ""
    paid: bool = False
    paid_date: str | None = None
    entered_by: str | None = None
    optional: bool = False
    owner_id: str | None = None
    categories: list[CategorySplit] | None = None


@dataclass
class EntryFilter:
    counterparty: str | None = None
    entered_by: str | None = None
    kind: str | None = None
    paid: bool | None = None
    start_date: str | None = None
    end_date: str | None = None


def _row_to_entry(row: dict) -> LedgerEntry:
    return LedgerEntry(
        id=row["id"],
        owner_id=row["owner_id"],
        amount=from_storage(row["amount"]),
        ledger_date=row["ledger_date"],
        effective_date=row["effective_date"] or row["ledger_date"],
        kind=row["kind"] or "",
        counterparty=row["counterparty"] or "",
        description=row["description"] or "",
        paid=bool(row["paid"]),
        paid_date=row["paid_date"],
        entered_by=row["entered_by"] or "",
        optional=bool(row["optional"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _timestamp(value: str | None) -> str | None:
    return to_iso(parse_timestamp(value))


def resolve_splits(
    conn: DatabaseAdapter, owner_id: str, splits: list[CategorySplit], total: Decimal
) -> list[tuple[str, Decimal]]:
    """Map requested splits to ``(category_id, amount)`` under *owner_id*'s categories."""
    if not splits:
        return []

    if len(splits) == 1 and splits[0].amount is None:
        amounts = [total]
    else:
        if any(s.amount is None for s in splits):
            raise InvalidInput("Every category split needs an amount when splitting across categories")
        amounts = [to_money(s.amount, "category amount") for s in splits]
        if sum(amounts, Decimal("0.00")) != total:
            raise InvalidInput(f"Category amounts sum to {sum(amounts)} but the entry amount is {total}")

    resolved: list[tuple[str, Decimal]] = []
    seen: set[str] = set()
    for split, amount in zip(splits, amounts, strict=True):
        if split.category_id:
            row = conn.fetchone(
                "SELECT id FROM categories WHERE id = ? AND (owner_id = ? OR owner_id IS NULL)",
                (split.category_id, owner_id),
            )
            if row is None:
                raise InvalidInput(f"Unknown category id {split.category_id}")
            category_id = row["id"]
        elif split.name and split.name.strip():
            category_id = categories.find_or_create(conn, owner_id, split.name)
        else:
            raise InvalidInput("A category split needs a name or a category_id")

        if category_id in seen:
            raise InvalidInput("A category may appear only once per entry")
        seen.add(category_id)
        resolved.append((category_id, amount))
    return resolved


class LedgerRepository:
    KIND = ResourceKind.TRANSACTIONS

    def __init__(self, planner: AccessPlanner):
        self.planner = planner

    def _attach_categories(self, conn: DatabaseAdapter, entries: list[LedgerEntry]) -> None:
        if not entries:
            return
        by_id = {e.id: e for e in entries}
        ids = list(by_id)
        rows = conn.fetchall(
            f"""
            SELECT ec.entry_id, ec.category_id, ec.amount, c.name
            FROM entry_categories ec
            JOIN categories c ON c.id = ec.category_id
            WHERE ec.entry_id IN ({placeholders(len(ids))})
            ORDER BY c.name
            """,
            ids,
        )
        for row in rows:
            by_id[row["entry_id"]].categories.append(
                EntryCategory(row["category_id"], row["name"], from_storage(row["amount"]))
            )

    def _observe(self, rows: list[dict]) -> None:
        for row in rows:
            if row["owner_id"] is None:
                note_legacy_row("ledger_entries", row["id"])

    def list_entries(self, ctx: AuthContext, filters: EntryFilter | None = None) -> list[LedgerEntry]:
        filters = filters or EntryFilter()
        clause, params = self.planner.plan(ctx, self.KIND, Action.READ).predicate("e.owner_id")
        where = [clause]

        if filters.counterparty:
            where.append("LOWER(e.counterparty) LIKE ?")
            params.append(f"%{filters.counterparty.lower()}%")
        if filters.entered_by:
            where.append("LOWER(e.entered_by) LIKE ?")
            params.append(f"%{filters.entered_by.lower()}%")
        if filters.kind:
            where.append("e.kind = ?")
            params.append(filters.kind)
        if filters.paid is not None:
            where.append("e.paid = ?")
            params.append(bool(filters.paid))
        if filters.start_date:
            where.append("e.ledger_date >= ?")
            params.append(_timestamp(filters.start_date))
        if filters.end_date:
            where.append("e.ledger_date <= ?")
            params.append(_timestamp(filters.end_date))

        with db.get_connection() as conn:
            rows = conn.fetchall(
                f"""
                SELECT e.* FROM ledger_entries e
                WHERE {" AND ".join(where)}
                ORDER BY e.ledger_date DESC, e.created_at DESC
                """,
                params,
            )
            self._observe(rows)
            entries = [_row_to_entry(r) for r in rows]
            self._attach_categories(conn, entries)
        return entries

    def get_entry(self, ctx: AuthContext, entry_id: str) -> LedgerEntry:
        clause, params = self.planner.plan(ctx, self.KIND, Action.READ).predicate("owner_id")
        with db.get_connection() as conn:
            row = conn.fetchone(f"SELECT * FROM ledger_entries WHERE id = ? AND {clause}", [entry_id, *params])
            if row is None:
                raise NotFound(f"Entry {entry_id} not found")
            self._observe([row])
            entry = _row_to_entry(row)
            self._attach_categories(conn, [entry])
        return entry

    def create_entry(self, ctx: AuthContext, data: EntryInput) -> LedgerEntry:
        amount = to_money(data.amount)
        owner = self.planner.effective_owner_on_write(ctx, self.KIND, data.owner_id)

        ledger_date = _timestamp(data.ledger_date) or now_iso()
        effective_date = _timestamp(data.effective_date) or ledger_date
        entry_id = uuid.uuid4().hex
        now = now_iso()

        with db.get_connection() as conn:
            links = resolve_splits(conn, owner, data.categories or [], amount)
            conn.execute(
                """
                INSERT INTO ledger_entries (
                    id, owner_id, amount, ledger_date, effective_date, kind, counterparty,
                    description, paid, paid_date, entered_by, optional, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    owner,
                    amount,
                    ledger_date,
                    effective_date,
                    data.kind or "",
                    data.counterparty or "",
                    data.description or "",
                    bool(data.paid),
                    _timestamp(data.paid_date),
                    data.entered_by or ctx.display_name or ctx.principal_id,
                    bool(data.optional),
                    now,
                    now,
                ),
            )
            self._write_links(conn, entry_id, links)

        log.info(f"Principal {ctx.principal_id} created entry {entry_id} for owner {owner}")
        return self.get_entry(ctx, entry_id)

    def update_entry(self, ctx: AuthContext, entry_id: str, data: EntryInput) -> LedgerEntry:
        amount = to_money(data.amount)
        clause, params = self.planner.plan(ctx, self.KIND, Action.WRITE).predicate("owner_id")

        with db.get_connection() as conn:
            row = conn.fetchone(f"SELECT * FROM ledger_entries WHERE id = ? AND {clause}", [entry_id, *params])
            if row is None:
                raise NotFound(f"Entry {entry_id} not found")

            owner = row["owner_id"]
            if owner is None:
                note_legacy_row("ledger_entries", entry_id)
                owner = ctx.principal_id
                log.info(f"Legacy entry {entry_id} claimed by {owner}")
            elif data.owner_id and data.owner_id != owner:
                raise InvalidInput("The owner of an entry cannot be changed")

            ledger_date = _timestamp(data.ledger_date) or row["ledger_date"]
            effective_date = _timestamp(data.effective_date) or ledger_date
            conn.execute(
                """
                UPDATE ledger_entries
                SET owner_id = ?, amount = ?, ledger_date = ?, effective_date = ?, kind = ?,
                    counterparty = ?, description = ?, paid = ?, paid_date = ?, entered_by = ?,
                    optional = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    owner,
                    amount,
                    ledger_date,
                    effective_date,
                    data.kind or "",
                    data.counterparty or "",
                    data.description or "",
                    bool(data.paid),
                    _timestamp(data.paid_date),
                    data.entered_by or row["entered_by"],
                    bool(data.optional),
                    now_iso(),
                    entry_id,
                ),
            )
            if data.categories is not None:
                links = resolve_splits(conn, owner, data.categories, amount)
                conn.execute("DELETE FROM entry_categories WHERE entry_id = ?", (entry_id,))
                self._write_links(conn, entry_id, links)

        return self.get_entry(ctx, entry_id)

    def delete_entry(self, ctx: AuthContext, entry_id: str) -> None:
        clause, params = self.planner.plan(ctx, self.KIND, Action.WRITE).predicate("owner_id")
        with db.get_connection() as conn:
            conn.execute(
                f"""
                DELETE FROM entry_categories WHERE entry_id IN (
                    SELECT id FROM ledger_entries WHERE id = ? AND {clause}
                )
                """,
                [entry_id, *params],
            )
            deleted = conn.execute(f"DELETE FROM ledger_entries WHERE id = ? AND {clause}", [entry_id, *params])
        if not deleted:
            raise NotFound(f"Entry {entry_id} not found")
        log.info(f"Principal {ctx.principal_id} deleted entry {entry_id}")

    def unique_values(self, ctx: AuthContext) -> dict[str, list[str]]:
        """Distinct counterparties, entered-by names and kinds visible to the caller."""
        clause, params = self.planner.plan(ctx, self.KIND, Action.READ).predicate("owner_id")
        result: dict[str, list[str]] = {}
        with db.get_connection() as conn:
            for key, column in (("counterparties", "counterparty"), ("entered_by", "entered_by"), ("kinds", "kind")):
                rows = conn.fetchall(
                    f"""
                    SELECT DISTINCT {column} AS value FROM ledger_entries
                    WHERE {clause} AND {column} <> ''
                    ORDER BY {column}
                    """,
                    params,
                )
                result[key] = [r["value"] for r in rows]
        return result

    @staticmethod
    def _write_links(conn: DatabaseAdapter, entry_id: str, links: list[tuple[str, Decimal]]) -> None:
        for category_id, amount in links:
            conn.execute(
                "INSERT INTO entry_categories (entry_id, category_id, amount) VALUES (?, ?, ?)",
                (entry_id, category_id, amount),
            )
