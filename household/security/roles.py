"""
Principal roles and the rules for changing them.

Role Hierarchy:
  SUPER_ADMIN > ADMIN > USER

A role change is allowed only when the actor outranks the target's current
role, and the new role does not exceed the actor's own.
"""

import logging
from enum import StrEnum

from household.errors import Forbidden, InvalidInput

logger = logging.getLogger(__name__)


class Role(StrEnum):
    """Role enumeration. Inherits from str so rows compare against literals."""

    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, value: str) -> "Role":
        normalized = (value or "").strip().lower()
        if normalized == "superadmin":
            return cls.SUPER_ADMIN
        try:
            return cls(normalized)
        except ValueError as e:
            raise InvalidInput(f"Unknown role: {value!r}") from e


class PrincipalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def parse(cls, value: str) -> "PrincipalStatus":
        try:
            return cls((value or "").strip().lower())
        except ValueError as e:
            raise InvalidInput(f"Unknown status: {value!r}") from e


# Higher value = more authority
_ROLE_HIERARCHY = {
    Role.USER: 1,
    Role.ADMIN: 2,
    Role.SUPER_ADMIN: 3,
}


def role_level(role: Role | str) -> int:
    try:
        return _ROLE_HIERARCHY[Role.parse(role)]
    except InvalidInput:
        return 0


def role_at_least(role: Role | str, minimum: Role) -> bool:
    return role_level(role) >= _ROLE_HIERARCHY[minimum]


def is_admin(role: Role | str) -> bool:
    return role_at_least(role, Role.ADMIN)


def ensure_can_assign(actor_role: Role | str, target_current: Role | str, new_role: Role | str) -> None:
    """Raise ``Forbidden`` unless the actor may move the target to *new_role*."""
    actor_level = role_level(actor_role)
    if actor_level <= role_level(target_current):
        logger.warning(
            "Role change denied: actor role %s does not outrank target role %s", actor_role, target_current
        )
        raise Forbidden("Insufficient role to modify this principal")
    if role_level(new_role) > actor_level:
        logger.warning("Role change denied: %s cannot grant %s", actor_role, new_role)
        raise Forbidden(f"Cannot assign role {new_role} above your own")
