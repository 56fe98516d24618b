"""
Reporting: spend aggregation and stored custom reports.

Aggregation sums ledger entry amounts over the caller's readable owner set,
grouped by kind (or another whitelisted dimension), highest total first.
By default only paid, non-optional entries are counted.
"""

import logging
import uuid
from dataclasses import dataclass, field, fields
from decimal import Decimal

from household import db
from household.errors import InvalidInput, NotFound
from household.filters import dump_config, load_config
from household.money import from_storage
from household.principals import AuthContext
from household.security.grants import Action, ResourceKind
from household.security.planner import AccessPlanner, note_legacy_row
from household.timeutil import now_iso, parse_timestamp, to_iso

log = logging.getLogger(__name__)

GROUP_COLUMNS = {
    "kind": "e.kind",
    "counterparty": "e.counterparty",
    "entered_by": "e.entered_by",
    "month": "SUBSTR(e.effective_date, 1, 7)",
    "category": "c.name",
}


@dataclass
class ReportFilter:
    start_date: str | None = None
    end_date: str | None = None
    counterparty: str | None = None
    entered_by: str | None = None
    kind: str | None = None
    paid: bool | None = True
    optional: bool | None = None
    """Optional entries are excluded unless this is True."""
    month: int | None = None
    year: int | None = None

    @classmethod
    def from_config(cls, config: dict) -> "ReportFilter":
        """Build filters from a stored report config, coercing each value to its field type."""
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise InvalidInput(f"Unknown report filters: {', '.join(sorted(unknown))}")

        values = dict(config)
        for name in ("start_date", "end_date", "counterparty", "entered_by", "kind"):
            value = values.get(name)
            if value is not None and not isinstance(value, str):
                raise InvalidInput(f"Report filter {name} must be a string")
        for name in ("start_date", "end_date"):
            if values.get(name):
                parse_timestamp(values[name])
        for name in ("paid", "optional"):
            if name in values:
                values[name] = _coerce_flag(name, values[name])
        for name in ("month", "year"):
            if name in values:
                values[name] = _coerce_int(name, values[name])
        if values.get("month") is not None and not 1 <= values["month"] <= 12:
            raise InvalidInput("month must be between 1 and 12")
        if values.get("year") is not None and not 1 <= values["year"] <= 9999:
            raise InvalidInput("year must be between 1 and 9999")
        return cls(**values)


def _coerce_flag(name: str, value) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise InvalidInput(f"Report filter {name} must be true or false")


def _coerce_int(name: str, value) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"Report filter {name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"Report filter {name} must be an integer, got {value!r}") from e


@dataclass
class AggregateRow:
    key: str
    total: Decimal
    count: int

    def to_dict(self) -> dict:
        return {"key": self.key, "total": float(self.total), "count": self.count}


@dataclass
class CustomReport:
    id: str
    owner_id: str | None
    name: str
    description: str
    is_public: bool
    created_at: str
    updated_at: str
    report_config: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "report_config": self.report_config,
            "is_public": self.is_public,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def _row_to_report(row: dict) -> CustomReport:
    return CustomReport(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        description=row["description"] or "",
        is_public=bool(row["is_public"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        report_config=load_config(row["report_config"]),
    )


class ReportService:
    """Aggregation over ledger entries plus custom report storage."""

    ENTRY_KIND = ResourceKind.TRANSACTIONS
    REPORT_KIND = ResourceKind.REPORTS

    def __init__(self, planner: AccessPlanner):
        self.planner = planner

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def aggregate(
        self, ctx: AuthContext, filters: ReportFilter | None = None, group_by: str = "kind"
    ) -> list[AggregateRow]:
        filters = filters or ReportFilter()
        if group_by not in GROUP_COLUMNS:
            raise InvalidInput(f"Cannot group by {group_by!r}")
        group_expr = GROUP_COLUMNS[group_by]

        clause, params = self.planner.plan(ctx, self.ENTRY_KIND, Action.READ).predicate("e.owner_id")
        where = [clause]

        if filters.start_date:
            where.append("e.ledger_date >= ?")
            params.append(to_iso(parse_timestamp(filters.start_date)))
        if filters.end_date:
            where.append("e.ledger_date <= ?")
            params.append(to_iso(parse_timestamp(filters.end_date)))
        if filters.year is not None and filters.month is not None:
            if not 1 <= int(filters.month) <= 12:
                raise InvalidInput("month must be between 1 and 12")
            where.append("SUBSTR(e.effective_date, 1, 7) = ?")
            params.append(f"{int(filters.year):04d}-{int(filters.month):02d}")
        elif filters.year is not None:
            where.append("SUBSTR(e.effective_date, 1, 4) = ?")
            params.append(f"{int(filters.year):04d}")
        if filters.kind:
            where.append("e.kind = ?")
            params.append(filters.kind)
        if filters.counterparty:
            where.append("LOWER(e.counterparty) LIKE ?")
            params.append(f"%{filters.counterparty.lower()}%")
        if filters.entered_by:
            where.append("LOWER(e.entered_by) LIKE ?")
            params.append(f"%{filters.entered_by.lower()}%")
        if filters.paid is not None:
            where.append("e.paid = ?")
            params.append(bool(filters.paid))
        if not filters.optional:
            where.append("e.optional = ?")
            params.append(False)

        if group_by == "category":
            source = """
                ledger_entries e
                JOIN entry_categories ec ON ec.entry_id = e.id
                JOIN categories c ON c.id = ec.category_id
            """
            amount_expr = "ec.amount"
        else:
            source = "ledger_entries e"
            amount_expr = "e.amount"

        with db.get_connection() as conn:
            rows = conn.fetchall(
                f"""
                SELECT {group_expr} AS group_key, SUM({amount_expr}) AS total, COUNT(*) AS entry_count,
                       SUM(CASE WHEN e.owner_id IS NULL THEN 1 ELSE 0 END) AS legacy_count
                FROM {source}
                WHERE {" AND ".join(where)}
                GROUP BY {group_expr}
                """,
                params,
            )

        legacy = sum(int(r["legacy_count"] or 0) for r in rows)
        if legacy:
            note_legacy_row("ledger_entries", f"aggregate ({legacy} rows)")

        result = [
            AggregateRow(key=r["group_key"] or "", total=from_storage(r["total"]), count=int(r["entry_count"]))
            for r in rows
        ]
        result.sort(key=lambda row: (-row.total, row.key))
        return result

    def aggregate_by_kind(self, ctx: AuthContext, filters: ReportFilter | None = None) -> list[AggregateRow]:
        return self.aggregate(ctx, filters, group_by="kind")

    # ------------------------------------------------------------------
    # Custom reports
    # ------------------------------------------------------------------

    def _read_clause(self, ctx: AuthContext) -> tuple[str, list]:
        clause, params = self.planner.plan(ctx, self.REPORT_KIND, Action.READ).predicate("owner_id")
        return f"({clause} OR is_public = ?)", [*params, True]

    def list_reports(self, ctx: AuthContext) -> list[CustomReport]:
        clause, params = self._read_clause(ctx)
        with db.get_connection() as conn:
            rows = conn.fetchall(f"SELECT * FROM custom_reports WHERE {clause} ORDER BY name, id", params)
        return [_row_to_report(r) for r in rows]

    def get_report(self, ctx: AuthContext, report_id: str) -> CustomReport:
        clause, params = self._read_clause(ctx)
        with db.get_connection() as conn:
            row = conn.fetchone(f"SELECT * FROM custom_reports WHERE id = ? AND {clause}", [report_id, *params])
        if row is None:
            raise NotFound(f"Report {report_id} not found")
        if row["owner_id"] is None:
            note_legacy_row("custom_reports", report_id)
        return _row_to_report(row)

    def create_report(
        self,
        ctx: AuthContext,
        name: str,
        description: str = "",
        report_config: dict | None = None,
        is_public: bool = False,
        owner_id: str | None = None,
    ) -> CustomReport:
        if not (name or "").strip():
            raise InvalidInput("Report name is required")
        self._validate_config(report_config or {})
        owner = self.planner.effective_owner_on_write(ctx, self.REPORT_KIND, owner_id)
        report_id = uuid.uuid4().hex
        now = now_iso()
        with db.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO custom_reports (
                    id, owner_id, name, description, report_config, is_public, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (report_id, owner, name.strip(), description or "", dump_config(report_config), bool(is_public), now, now),
            )
            row = conn.fetchone("SELECT * FROM custom_reports WHERE id = ?", (report_id,))
        log.info(f"Principal {ctx.principal_id} created report {report_id}")
        return _row_to_report(row)

    def update_report(
        self,
        ctx: AuthContext,
        report_id: str,
        name: str | None = None,
        description: str | None = None,
        report_config: dict | None = None,
        is_public: bool | None = None,
    ) -> CustomReport:
        if report_config is not None:
            self._validate_config(report_config)
        clause, params = self.planner.plan(ctx, self.REPORT_KIND, Action.WRITE).predicate("owner_id")
        with db.get_connection() as conn:
            row = conn.fetchone(f"SELECT * FROM custom_reports WHERE id = ? AND {clause}", [report_id, *params])
            if row is None:
                raise NotFound(f"Report {report_id} not found")
            owner = row["owner_id"]
            if owner is None:
                note_legacy_row("custom_reports", report_id)
                owner = ctx.principal_id
            conn.execute(
                """
                UPDATE custom_reports
                SET owner_id = ?, name = ?, description = ?, report_config = ?, is_public = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    owner,
                    name.strip() if name else row["name"],
                    description if description is not None else row["description"],
                    dump_config(report_config) if report_config is not None else row["report_config"],
                    bool(is_public) if is_public is not None else bool(row["is_public"]),
                    now_iso(),
                    report_id,
                ),
            )
            row = conn.fetchone("SELECT * FROM custom_reports WHERE id = ?", (report_id,))
        return _row_to_report(row)

    def delete_report(self, ctx: AuthContext, report_id: str) -> None:
        clause, params = self.planner.plan(ctx, self.REPORT_KIND, Action.WRITE).predicate("owner_id")
        with db.get_connection() as conn:
            deleted = conn.execute(f"DELETE FROM custom_reports WHERE id = ? AND {clause}", [report_id, *params])
        if not deleted:
            raise NotFound(f"Report {report_id} not found")

    def run_report(self, ctx: AuthContext, report_id: str) -> dict:
        """
        Execute a stored report.

        The config takes the form {"group_by": "kind", "filters": {...}};
        rows are computed over the entries the caller can read.
        """
        report = self.get_report(ctx, report_id)
        group_by, filters = self._validate_config(report.report_config)
        rows = self.aggregate(ctx, filters, group_by=group_by)
        return {
            "report": report.to_dict(),
            "group_by": group_by,
            "results": [r.to_dict() for r in rows],
            "total": float(sum((r.total for r in rows), Decimal("0.00"))),
        }

    @staticmethod
    def _validate_config(config: dict) -> tuple[str, ReportFilter]:
        if not isinstance(config, dict):
            raise InvalidInput("report_config must be a JSON object")
        group_by = config.get("group_by", "kind")
        if group_by not in GROUP_COLUMNS:
            raise InvalidInput(f"Cannot group by {group_by!r}")
        raw_filters = config.get("filters") or {}
        if not isinstance(raw_filters, dict):
            raise InvalidInput("report_config.filters must be a JSON object")
        try:
            filters = ReportFilter.from_config(raw_filters)
        except TypeError as e:
            raise InvalidInput(f"Invalid report filters: {e}") from e
        return group_by, filters
