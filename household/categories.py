"""
Categories: owner-scoped labels attached to ledger entries.

Names are unique per owner. Entries link to categories with a per-category
amount through ``entry_categories``.
"""

import logging
import uuid
import zlib
from dataclasses import dataclass

from household import db
from household.db import DatabaseAdapter
from household.errors import Conflict, InvalidInput, NotFound
from household.principals import AuthContext
from household.security.grants import Action, ResourceKind
from household.security.planner import AccessPlanner, note_legacy_row
from household.timeutil import now_iso

log = logging.getLogger(__name__)

PALETTE = [
    "#4F46E5",
    "#059669",
    "#D97706",
    "#DC2626",
    "#7C3AED",
    "#0891B2",
    "#DB2777",
    "#65A30D",
]


def pick_color(name: str) -> str:
    return PALETTE[zlib.crc32(name.encode("utf-8")) % len(PALETTE)]


@dataclass
class Category:
    id: str
    owner_id: str | None
    name: str
    description: str
    color: str
    created_at: str
    updated_at: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _row_to_category(row: dict) -> Category:
    return Category(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        description=row["description"] or "",
        color=row["color"] or "",
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def find_or_create(conn: DatabaseAdapter, owner_id: str, name: str, description: str = "") -> str:
    """Id of the owner's category called *name*, creating it when missing."""
    name = name.strip()
    if not name:
        raise InvalidInput("Category name is required")
    row = conn.fetchone("SELECT id FROM categories WHERE owner_id = ? AND name = ?", (owner_id, name))
    if row:
        return row["id"]
    now = now_iso()
    conn.execute(
        """
        INSERT INTO categories (id, owner_id, name, description, color, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (owner_id, name) DO NOTHING
        """,
        (uuid.uuid4().hex, owner_id, name, description, pick_color(name), now, now),
    )
    log.info(f"Created category '{name}' for {owner_id}")
    return conn.fetchone("SELECT id FROM categories WHERE owner_id = ? AND name = ?", (owner_id, name))["id"]


class CategoryRepository:
    KIND = ResourceKind.CATEGORIES

    def __init__(self, planner: AccessPlanner):
        self.planner = planner

    def list_categories(self, ctx: AuthContext) -> list[Category]:
        clause, params = self.planner.plan(ctx, self.KIND, Action.READ).predicate("owner_id")
        with db.get_connection() as conn:
            rows = conn.fetchall(f"SELECT * FROM categories WHERE {clause} ORDER BY name, id", params)
        for row in rows:
            if row["owner_id"] is None:
                note_legacy_row("categories", row["id"])
        return [_row_to_category(r) for r in rows]

    def get(self, ctx: AuthContext, category_id: str) -> Category:
        clause, params = self.planner.plan(ctx, self.KIND, Action.READ).predicate("owner_id")
        with db.get_connection() as conn:
            row = conn.fetchone(f"SELECT * FROM categories WHERE id = ? AND {clause}", [category_id, *params])
        if row is None:
            raise NotFound(f"Category {category_id} not found")
        return _row_to_category(row)

    def create(
        self,
        ctx: AuthContext,
        name: str,
        description: str = "",
        color: str | None = None,
        owner_id: str | None = None,
    ) -> Category:
        name = (name or "").strip()
        if not name:
            raise InvalidInput("Category name is required")
        owner = self.planner.effective_owner_on_write(ctx, self.KIND, owner_id)

        category_id = uuid.uuid4().hex
        now = now_iso()
        with db.get_connection() as conn:
            if conn.fetchone("SELECT id FROM categories WHERE owner_id = ? AND name = ?", (owner, name)):
                raise Conflict(f"Category '{name}' already exists")
            conn.execute(
                """
                INSERT INTO categories (id, owner_id, name, description, color, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (category_id, owner, name, description or "", color or pick_color(name), now, now),
            )
            row = conn.fetchone("SELECT * FROM categories WHERE id = ?", (category_id,))
        return _row_to_category(row)

    def update(
        self,
        ctx: AuthContext,
        category_id: str,
        name: str | None = None,
        description: str | None = None,
        color: str | None = None,
    ) -> Category:
        clause, params = self.planner.plan(ctx, self.KIND, Action.WRITE).predicate("owner_id")
        with db.get_connection() as conn:
            row = conn.fetchone(f"SELECT * FROM categories WHERE id = ? AND {clause}", [category_id, *params])
            if row is None:
                raise NotFound(f"Category {category_id} not found")

            owner = row["owner_id"]
            if owner is None:
                note_legacy_row("categories", category_id)
                owner = ctx.principal_id

            new_name = name.strip() if name is not None else row["name"]
            if not new_name:
                raise InvalidInput("Category name is required")
            if new_name != row["name"] and conn.fetchone(
                "SELECT id FROM categories WHERE owner_id = ? AND name = ?", (owner, new_name)
            ):
                raise Conflict(f"Category '{new_name}' already exists")

            conn.execute(
                """
                UPDATE categories
                SET owner_id = ?, name = ?, description = ?, color = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    owner,
                    new_name,
                    description if description is not None else row["description"],
                    color if color is not None else row["color"],
                    now_iso(),
                    category_id,
                ),
            )
            row = conn.fetchone("SELECT * FROM categories WHERE id = ?", (category_id,))
        return _row_to_category(row)

    def delete(self, ctx: AuthContext, category_id: str) -> None:
        clause, params = self.planner.plan(ctx, self.KIND, Action.WRITE).predicate("owner_id")
        with db.get_connection() as conn:
            deleted = conn.execute(f"DELETE FROM categories WHERE id = ? AND {clause}", [category_id, *params])
        if not deleted:
            raise NotFound(f"Category {category_id} not found")
        log.info(f"Principal {ctx.principal_id} deleted category {category_id}")
