"""
Saved filters: owner-scoped JSON filter configurations.

Authorized like ledger entries. Public filters are readable by everyone;
at most one filter per (owner, resource type) is the default.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field

from household import db
from household.errors import InvalidInput, NotFound
from household.principals import AuthContext
from household.security.grants import Action, ResourceKind
from household.security.planner import AccessPlanner, note_legacy_row
from household.timeutil import now_iso

log = logging.getLogger(__name__)


def dump_config(config: dict | None) -> str:
    if config is None:
        return "{}"
    if not isinstance(config, dict):
        raise InvalidInput("Configuration must be a JSON object")
    return json.dumps(config, sort_keys=True)


def load_config(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        log.warning("Stored configuration is not valid JSON; treating as empty")
        return {}
    return value if isinstance(value, dict) else {}


@dataclass
class SavedFilter:
    id: str
    owner_id: str | None
    name: str
    resource_type: str
    is_default: bool
    is_public: bool
    created_at: str
    updated_at: str
    filter_config: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "resource_type": self.resource_type,
            "filter_config": self.filter_config,
            "is_default": self.is_default,
            "is_public": self.is_public,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _row_to_filter(row: dict) -> SavedFilter:
    return SavedFilter(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        resource_type=row["resource_type"],
        is_default=bool(row["is_default"]),
        is_public=bool(row["is_public"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        filter_config=load_config(row["filter_config"]),
    )


class FilterRepository:
    KIND = ResourceKind.TRANSACTIONS

    def __init__(self, planner: AccessPlanner):
        self.planner = planner

    def _read_clause(self, ctx: AuthContext) -> tuple[str, list]:
        clause, params = self.planner.plan(ctx, self.KIND, Action.READ).predicate("owner_id")
        return f"({clause} OR is_public = ?)", [*params, True]

    def list_filters(self, ctx: AuthContext, resource_type: str | None = None) -> list[SavedFilter]:
        clause, params = self._read_clause(ctx)
        sql = f"SELECT * FROM saved_filters WHERE {clause}"
        if resource_type:
            sql += " AND resource_type = ?"
            params.append(resource_type)
        with db.get_connection() as conn:
            rows = conn.fetchall(sql + " ORDER BY name, id", params)
        for row in rows:
            if row["owner_id"] is None:
                note_legacy_row("saved_filters", row["id"])
        return [_row_to_filter(r) for r in rows]

    def get(self, ctx: AuthContext, filter_id: str) -> SavedFilter:
        clause, params = self._read_clause(ctx)
        with db.get_connection() as conn:
            row = conn.fetchone(f"SELECT * FROM saved_filters WHERE id = ? AND {clause}", [filter_id, *params])
        if row is None:
            raise NotFound(f"Filter {filter_id} not found")
        return _row_to_filter(row)

    def create(
        self,
        ctx: AuthContext,
        name: str,
        resource_type: str = "transactions",
        filter_config: dict | None = None,
        is_default: bool = False,
        is_public: bool = False,
        owner_id: str | None = None,
    ) -> SavedFilter:
        if not (name or "").strip():
            raise InvalidInput("Filter name is required")
        owner = self.planner.effective_owner_on_write(ctx, self.KIND, owner_id)
        filter_id = uuid.uuid4().hex
        now = now_iso()
        with db.get_connection() as conn:
            if is_default:
                self._clear_default(conn, owner, resource_type)
            conn.execute(
                """
                INSERT INTO saved_filters (
                    id, owner_id, name, resource_type, filter_config, is_default, is_public, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    filter_id,
                    owner,
                    name.strip(),
                    resource_type,
                    dump_config(filter_config),
                    bool(is_default),
                    bool(is_public),
                    now,
                    now,
                ),
            )
            row = conn.fetchone("SELECT * FROM saved_filters WHERE id = ?", (filter_id,))
        return _row_to_filter(row)

    def update(
        self,
        ctx: AuthContext,
        filter_id: str,
        name: str | None = None,
        filter_config: dict | None = None,
        is_default: bool | None = None,
        is_public: bool | None = None,
    ) -> SavedFilter:
        clause, params = self.planner.plan(ctx, self.KIND, Action.WRITE).predicate("owner_id")
        with db.get_connection() as conn:
            row = conn.fetchone(f"SELECT * FROM saved_filters WHERE id = ? AND {clause}", [filter_id, *params])
            if row is None:
                raise NotFound(f"Filter {filter_id} not found")
            owner = row["owner_id"]
            if owner is None:
                note_legacy_row("saved_filters", filter_id)
                owner = ctx.principal_id
            if is_default:
                self._clear_default(conn, owner, row["resource_type"])
            conn.execute(
                """
                UPDATE saved_filters
                SET owner_id = ?, name = ?, filter_config = ?, is_default = ?, is_public = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    owner,
                    name.strip() if name else row["name"],
                    dump_config(filter_config) if filter_config is not None else row["filter_config"],
                    bool(is_default) if is_default is not None else bool(row["is_default"]),
                    bool(is_public) if is_public is not None else bool(row["is_public"]),
                    now_iso(),
                    filter_id,
                ),
            )
            row = conn.fetchone("SELECT * FROM saved_filters WHERE id = ?", (filter_id,))
        return _row_to_filter(row)

    def delete(self, ctx: AuthContext, filter_id: str) -> None:
        clause, params = self.planner.plan(ctx, self.KIND, Action.WRITE).predicate("owner_id")
        with db.get_connection() as conn:
            deleted = conn.execute(f"DELETE FROM saved_filters WHERE id = ? AND {clause}", [filter_id, *params])
        if not deleted:
            raise NotFound(f"Filter {filter_id} not found")

    @staticmethod
    def _clear_default(conn, owner_id: str, resource_type: str) -> None:
        conn.execute(
            "UPDATE saved_filters SET is_default = ? WHERE owner_id = ? AND resource_type = ?",
            (False, owner_id, resource_type),
        )
