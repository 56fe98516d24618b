"""
Access planner: which owners' rows may a principal touch?

For (principal, kind, action) the planner computes an owner set:
  1. the principal itself
  2. every principal when the caller is admin or super admin
  3. otherwise each owner that issued a live grant covering (kind, action)

``OwnerSet.predicate(column)`` turns the set into a SQL fragment with bound
parameters. An unrestricted set yields a constant true predicate rather than
an enumerated list.

Rows with a null owner predate ownership tracking. They are readable by
everyone, and a write by a principal claims them. Each observation is
counted in ``legacy_null_owner_rows_total``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from household.db import DatabaseAdapter, placeholders, validate_identifier
from household.errors import Forbidden
from household.observability.metrics import legacy_null_owner_rows
from household.principals import AuthContext
from household.security.grants import Action, PermissionStore, ResourceKind
from household.timeutil import utcnow

logger = logging.getLogger(__name__)

TRUE_PREDICATE = "1 = 1"


@dataclass(frozen=True)
class OwnerSet:
    principal_id: str
    kind: ResourceKind
    action: Action
    owners: frozenset[str] | None = None
    """None means every principal."""

    @property
    def unrestricted(self) -> bool:
        return self.owners is None

    def admits(self, owner_id: str | None) -> bool:
        if owner_id is None:
            return True
        return self.unrestricted or owner_id in self.owners

    def predicate(self, column: str = "owner_id", include_legacy: bool = True) -> tuple[str, list[str]]:
        """SQL fragment and parameters restricting *column* to this owner set."""
        validate_identifier(column)
        if self.unrestricted:
            return TRUE_PREDICATE, []
        ordered = sorted(self.owners)
        clause = f"{column} IN ({placeholders(len(ordered))})"
        if include_legacy:
            clause = f"({clause} OR {column} IS NULL)"
        return clause, ordered


def note_legacy_row(table: str, row_id: str) -> None:
    legacy_null_owner_rows.inc()
    logger.info(f"Observed legacy row without owner: {table}/{row_id}")


class AccessPlanner:
    """Derives owner sets and write ownership from roles and grants."""

    def __init__(self, permissions: PermissionStore):
        self.permissions = permissions

    def plan(
        self,
        ctx: AuthContext,
        kind: ResourceKind,
        action: Action,
        now: datetime | None = None,
        conn: DatabaseAdapter | None = None,
    ) -> OwnerSet:
        if ctx.is_admin:
            return OwnerSet(ctx.principal_id, kind, action, None)

        now = now or utcnow()
        owners = {ctx.principal_id}
        for grant in self.permissions.grants_held(ctx.principal_id, conn=conn):
            if grant.covers(kind, action) and not grant.is_expired(now):
                owners.add(grant.owner_id)
        return OwnerSet(ctx.principal_id, kind, action, frozenset(owners))

    def effective_owner_on_write(
        self,
        ctx: AuthContext,
        kind: ResourceKind,
        supplied_owner: str | None = None,
    ) -> str:
        if not supplied_owner or supplied_owner == ctx.principal_id:
            return ctx.principal_id
        if self.permissions.check(ctx.principal_id, supplied_owner, kind, Action.WRITE):
            return supplied_owner
        logger.warning(f"Principal {ctx.principal_id} denied write on behalf of {supplied_owner} ({kind})")
        raise Forbidden(f"No write access to {kind} owned by {supplied_owner}")
