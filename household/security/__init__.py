"""
Security module: roles, credential vault, identity, grants and access planning.

Exports:
- Role, PrincipalStatus: principal role hierarchy and account status
- CredentialVault, init_vault, get_vault: encryption of stored credentials
- mask_secret, validate_secrets: secret handling helpers

The identity resolver, permission store and access planner live in
``household.security.identity``, ``.grants`` and ``.planner``.
"""

from .roles import PrincipalStatus, Role, ensure_can_assign, is_admin, role_at_least
from .secrets_config import SecretsAuditResult, mask_secret, validate_secrets
from .vault import CredentialVault, get_vault, init_vault

__all__ = [
    "Role",
    "PrincipalStatus",
    "ensure_can_assign",
    "is_admin",
    "role_at_least",
    "CredentialVault",
    "init_vault",
    "get_vault",
    "SecretsAuditResult",
    "mask_secret",
    "validate_secrets",
]
