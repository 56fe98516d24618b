"""
Permission store: grants of (owner, grantee, resource kind, action).

A grant lets the grantee act on resources owned by the owner. Coverage:
  - a grant on kind ALL covers every concrete kind
  - a WRITE grant covers READ
Admins and super admins pass every check without a grant.

Example:
    store = PermissionStore(directory)
    store.grant(ctx, owner_id="p1", grantee_id="p2", kind=ResourceKind.TRANSACTIONS, action=Action.READ)
    store.check("p2", "p1", ResourceKind.TRANSACTIONS, Action.READ)  # True
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from household import db
from household.db import DatabaseAdapter
from household.errors import Forbidden, InvalidInput, NotFound
from household.principals import AuthContext, PrincipalDirectory
from household.security.roles import is_admin
from household.timeutil import now_iso, parse_timestamp, to_iso, utcnow

log = logging.getLogger(__name__)


class ResourceKind(StrEnum):
    TRANSACTIONS = "transactions"
    CATEGORIES = "categories"
    REPORTS = "reports"
    ALL = "all"

    @classmethod
    def parse(cls, value: str) -> "ResourceKind":
        try:
            return cls((value or "").strip().lower())
        except ValueError as e:
            raise InvalidInput(f"Unknown resource kind: {value!r}") from e


class Action(StrEnum):
    READ = "read"
    WRITE = "write"

    @classmethod
    def parse(cls, value: str) -> "Action":
        try:
            return cls((value or "").strip().lower())
        except ValueError as e:
            raise InvalidInput(f"Unknown action: {value!r}") from e


_ACTION_RANK = {Action.READ: 1, Action.WRITE: 2}


class GrantDirection(StrEnum):
    HELD = "held"
    ISSUED = "issued"


@dataclass(frozen=True)
class Grant:
    id: str
    owner_id: str
    grantee_id: str
    resource_kind: ResourceKind
    action: Action
    created_at: str
    expires_at: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.expires_at:
            return False
        return (now or utcnow()) >= parse_timestamp(self.expires_at)

    def covers(self, kind: ResourceKind, action: Action) -> bool:
        kind_ok = self.resource_kind in (kind, ResourceKind.ALL)
        return kind_ok and _ACTION_RANK[self.action] >= _ACTION_RANK[action]

    def to_dict(self, direction: GrantDirection | None = None) -> dict:
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "grantee_id": self.grantee_id,
            "resource_kind": str(self.resource_kind),
            "action": str(self.action),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "expired": self.is_expired(),
        }
        if direction is not None:
            data["direction"] = str(direction)
        return data


def _row_to_grant(row: dict) -> Grant:
    return Grant(
        id=row["id"],
        owner_id=row["owner_id"],
        grantee_id=row["grantee_id"],
        resource_kind=ResourceKind(row["resource_kind"]),
        action=Action(row["action"]),
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


class PermissionStore:
    """Persists grants and answers reachability checks."""

    def __init__(self, directory: PrincipalDirectory):
        self.directory = directory

    @staticmethod
    def _ensure_may_manage(actor: AuthContext, owner_id: str) -> None:
        if actor.principal_id != owner_id and not actor.is_admin:
            log.warning(f"Principal {actor.principal_id} tried to manage grants of {owner_id}")
            raise Forbidden("Only the owner or an admin can manage these grants")

    def grant(
        self,
        actor: AuthContext,
        owner_id: str,
        grantee_id: str,
        kind: ResourceKind | str,
        action: Action | str,
        expires_at: str | datetime | None = None,
    ) -> Grant:
        """
        Create (or refresh) a grant. Idempotent on (owner, grantee, kind, action):
        a repeated grant keeps its id and takes the new expiry.
        """
        kind = ResourceKind.parse(kind)
        action = Action.parse(action)
        if not owner_id or not grantee_id:
            raise InvalidInput("owner_id and grantee_id are required")
        if owner_id == grantee_id:
            raise InvalidInput("A principal cannot grant access to itself")
        self._ensure_may_manage(actor, owner_id)
        for principal_id in (owner_id, grantee_id):
            self.directory.require(principal_id)

        expires = to_iso(parse_timestamp(expires_at))
        with db.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO grants (id, owner_id, grantee_id, resource_kind, action, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (owner_id, grantee_id, resource_kind, action)
                DO UPDATE SET expires_at = excluded.expires_at
                """,
                (uuid.uuid4().hex, owner_id, grantee_id, str(kind), str(action), now_iso(), expires),
            )
            row = conn.fetchone(
                """
                SELECT * FROM grants
                WHERE owner_id = ? AND grantee_id = ? AND resource_kind = ? AND action = ?
                """,
                (owner_id, grantee_id, str(kind), str(action)),
            )

        grant = _row_to_grant(row)
        log.info(f"Grant {grant.id}: {owner_id} -> {grantee_id} {kind}/{action} (expires {expires})")
        return grant

    def revoke(
        self,
        actor: AuthContext,
        owner_id: str,
        grantee_id: str,
        kind: ResourceKind | str,
        action: Action | str,
    ) -> None:
        kind = ResourceKind.parse(kind)
        action = Action.parse(action)
        self._ensure_may_manage(actor, owner_id)

        with db.get_connection() as conn:
            deleted = conn.execute(
                """
                DELETE FROM grants
                WHERE owner_id = ? AND grantee_id = ? AND resource_kind = ? AND action = ?
                """,
                (owner_id, grantee_id, str(kind), str(action)),
            )
        if not deleted:
            raise NotFound("No matching grant")
        log.info(f"Revoked grant {owner_id} -> {grantee_id} {kind}/{action}")

    def list_for_principal(self, principal_id: str) -> list[tuple[Grant, GrantDirection]]:
        """Grants the principal holds and grants it has issued, tagged by direction."""
        with db.get_connection() as conn:
            held = conn.fetchall(
                "SELECT * FROM grants WHERE grantee_id = ? ORDER BY created_at, id", (principal_id,)
            )
            issued = conn.fetchall(
                "SELECT * FROM grants WHERE owner_id = ? ORDER BY created_at, id", (principal_id,)
            )
        return [(_row_to_grant(r), GrantDirection.HELD) for r in held] + [
            (_row_to_grant(r), GrantDirection.ISSUED) for r in issued
        ]

    def grants_held(self, principal_id: str, conn: DatabaseAdapter | None = None) -> list[Grant]:
        """All grants naming *principal_id* as grantee, expired ones included."""
        sql = "SELECT * FROM grants WHERE grantee_id = ?"
        if conn is not None:
            rows = conn.fetchall(sql, (principal_id,))
        else:
            with db.get_connection() as own:
                rows = own.fetchall(sql, (principal_id,))
        return [_row_to_grant(r) for r in rows]

    def check(
        self,
        grantee_id: str,
        owner_id: str,
        kind: ResourceKind | str,
        action: Action | str,
        now: datetime | None = None,
    ) -> bool:
        kind = ResourceKind.parse(kind)
        action = Action.parse(action)

        principal = self.directory.get(grantee_id)
        if principal is not None and is_admin(principal.role):
            return True
        if grantee_id == owner_id:
            return True

        with db.get_connection() as conn:
            rows = conn.fetchall(
                "SELECT * FROM grants WHERE owner_id = ? AND grantee_id = ?", (owner_id, grantee_id)
            )
        now = now or utcnow()
        return any(g.covers(kind, action) and not g.is_expired(now) for g in map(_row_to_grant, rows))
