"""
Principals: authenticated identities and their role/status.

A principal row is created the first time an identity resolves. Its id is
the identity provider's stable subject and never changes afterwards.
"""

import logging
from dataclasses import dataclass

from household import db
from household.errors import Forbidden, InvalidInput, NotFound
from household.security.roles import PrincipalStatus, Role, ensure_can_assign, is_admin
from household.timeutil import now_iso

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """Per-request authorization context produced by the identity resolver."""

    principal_id: str
    role: Role = Role.USER
    display_name: str = ""
    email: str = ""

    @property
    def is_admin(self) -> bool:
        return is_admin(self.role)


@dataclass
class Principal:
    id: str
    display_name: str
    email: str
    role: Role
    status: PrincipalStatus
    created_at: str
    updated_at: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "email": self.email,
            "role": str(self.role),
            "status": str(self.status),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def context(self) -> AuthContext:
        return AuthContext(self.id, self.role, self.display_name, self.email)


def _row_to_principal(row: dict) -> Principal:
    return Principal(
        id=row["id"],
        display_name=row["display_name"] or "",
        email=row["email"] or "",
        role=Role.parse(row["role"]),
        status=PrincipalStatus.parse(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PrincipalDirectory:
    """Lookup and lifecycle of principals."""

    def get(self, principal_id: str) -> Principal | None:
        with db.get_connection() as conn:
            row = conn.fetchone("SELECT * FROM principals WHERE id = ?", (principal_id,))
        return _row_to_principal(row) if row else None

    def require(self, principal_id: str) -> Principal:
        principal = self.get(principal_id)
        if principal is None:
            raise NotFound(f"Principal {principal_id} not found")
        return principal

    def ensure_principal(
        self,
        principal_id: str,
        display_name: str = "",
        email: str = "",
        role: Role = Role.USER,
        status: PrincipalStatus = PrincipalStatus.PENDING,
    ) -> Principal:
        """Return the principal, creating it on first sight."""
        if not principal_id:
            raise InvalidInput("Principal id is required")
        now = now_iso()
        with db.get_connection() as conn:
            created = conn.execute(
                """
                INSERT INTO principals (id, display_name, email, role, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (id) DO NOTHING
                """,
                (principal_id, display_name, email, str(role), str(status), now, now),
            )
            row = conn.fetchone("SELECT * FROM principals WHERE id = ?", (principal_id,))
        if created:
            log.info(f"Created principal {principal_id} with role {role}")
        return _row_to_principal(row)

    def list_all(self) -> list[Principal]:
        with db.get_connection() as conn:
            rows = conn.fetchall("SELECT * FROM principals ORDER BY created_at, id")
        return [_row_to_principal(r) for r in rows]

    def sync_profile(self, ctx: AuthContext, display_name: str | None, email: str | None) -> Principal:
        """Refresh the caller's own display name and email."""
        principal = self.ensure_principal(ctx.principal_id, display_name or "", email or "")
        with db.get_connection() as conn:
            conn.execute(
                "UPDATE principals SET display_name = ?, email = ?, updated_at = ? WHERE id = ?",
                (
                    display_name if display_name is not None else principal.display_name,
                    email if email is not None else principal.email,
                    now_iso(),
                    ctx.principal_id,
                ),
            )
        return self.require(ctx.principal_id)

    def set_role(self, actor: AuthContext, target_id: str, new_role: Role | str) -> Principal:
        new_role = Role.parse(new_role)
        target = self.require(target_id)
        ensure_can_assign(actor.role, target.role, new_role)

        with db.get_connection() as conn:
            conn.execute(
                "UPDATE principals SET role = ?, updated_at = ? WHERE id = ?",
                (str(new_role), now_iso(), target_id),
            )
        log.info(f"Principal {actor.principal_id} changed role of {target_id}: {target.role} -> {new_role}")
        return self.require(target_id)

    def set_status(self, actor: AuthContext, target_id: str, status: PrincipalStatus | str) -> Principal:
        status = PrincipalStatus.parse(status)
        if not actor.is_admin:
            raise Forbidden("Only admins can change a principal's status")
        self.require(target_id)
        with db.get_connection() as conn:
            conn.execute(
                "UPDATE principals SET status = ?, updated_at = ? WHERE id = ?",
                (str(status), now_iso(), target_id),
            )
        log.info(f"Principal {actor.principal_id} set status of {target_id} to {status}")
        return self.require(target_id)
