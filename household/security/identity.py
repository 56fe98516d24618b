"""
Identity resolver: bearer token -> principal and role.

Production verifies Firebase ID tokens with google-auth. When no verifier is
configured and the development shortcut flag is on, every request resolves
to a fixed admin principal.

Token sources, in order:
1. Authorization: Bearer <token> header
2. ?auth=<token> query parameter (deprecated)
3. ?userId=<principal id> query parameter (deprecated, raw principal id)
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

import google.auth.exceptions
import google.auth.transport.requests
from google.oauth2 import id_token, service_account

from household.config import Settings
from household.errors import InvalidInput, Unauthenticated
from household.principals import AuthContext, PrincipalDirectory
from household.security.roles import PrincipalStatus, Role
from household.security.secrets_config import load_service_account_info

logger = logging.getLogger(__name__)

DEV_PRINCIPAL_ID = "dev-admin"
DEV_PRINCIPAL_NAME = "Development Admin"


@dataclass(frozen=True)
class VerifiedIdentity:
    subject: str
    email: str = ""
    name: str = ""


class TokenVerifier(Protocol):
    def verify(self, token: str) -> VerifiedIdentity: ...


class FirebaseTokenVerifier:
    """Verifies Firebase ID tokens against Google's published certificates."""

    def __init__(self, service_account_info: dict, project_id: str | None = None):
        self.credentials = service_account.Credentials.from_service_account_info(service_account_info)
        self.project_id = project_id or service_account_info.get("project_id")
        if not self.project_id:
            raise InvalidInput("Service account has no project_id; set FIREBASE_PROJECT_ID")
        self._request = google.auth.transport.requests.Request()

    def verify(self, token: str) -> VerifiedIdentity:
        try:
            claims = id_token.verify_firebase_token(token, self._request, audience=self.project_id)
        except (ValueError, google.auth.exceptions.GoogleAuthError) as e:
            logger.info(f"Identity token rejected: {e}")
            raise Unauthenticated("Invalid identity token") from e

        subject = (claims or {}).get("sub")
        if not subject:
            raise Unauthenticated("Identity token has no subject")
        return VerifiedIdentity(subject=subject, email=claims.get("email", ""), name=claims.get("name", ""))


def build_verifier(settings: Settings) -> TokenVerifier | None:
    """Construct the production verifier, or None when no credentials are supplied."""
    info = load_service_account_info(settings)
    if info is None:
        return None
    verifier = FirebaseTokenVerifier(info, settings.firebase_project_id)
    logger.info(f"Identity verification enabled for project {verifier.project_id}")
    return verifier


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, credential = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        return None
    return credential.strip()


class IdentityResolver:
    """Produces the per-request ``AuthContext``."""

    def __init__(
        self,
        directory: PrincipalDirectory,
        verifier: TokenVerifier | None,
        *,
        dev_shortcut: bool = False,
        allow_legacy_user_param: bool = True,
    ):
        self.directory = directory
        self.verifier = verifier
        self.dev_shortcut = dev_shortcut
        self.allow_legacy_user_param = allow_legacy_user_param
        if self.dev_mode:
            logger.warning(
                "No identity verifier configured: all requests resolve to the development admin principal"
            )

    @property
    def dev_mode(self) -> bool:
        return self.verifier is None and self.dev_shortcut

    def resolve(self, authorization: str | None, query: Mapping[str, str] | None = None) -> AuthContext:
        query = query or {}

        if self.dev_mode:
            return self._dev_context()

        if self.verifier is None:
            logger.error("Identity verification not configured and development shortcut disabled")
            raise Unauthenticated("Identity verification is not configured")

        token = bearer_token(authorization)
        if token is None and query.get("auth"):
            logger.warning("Deprecated: identity token passed in the 'auth' query parameter")
            token = query["auth"]

        if token:
            identity = self.verifier.verify(token)
            principal = self.directory.ensure_principal(identity.subject, identity.name, identity.email)
            return principal.context()

        legacy_id = query.get("userId")
        if legacy_id and self.allow_legacy_user_param:
            logger.warning(
                "Deprecated: principal identified by the 'userId' query parameter",
                extra={"legacy_principal": legacy_id},
            )
            principal = self.directory.get(legacy_id)
            if principal is None:
                raise Unauthenticated("Unknown principal")
            return principal.context()

        raise Unauthenticated("Missing bearer token")

    def _dev_context(self) -> AuthContext:
        principal = self.directory.ensure_principal(
            DEV_PRINCIPAL_ID,
            DEV_PRINCIPAL_NAME,
            role=Role.ADMIN,
            status=PrincipalStatus.APPROVED,
        )
        return principal.context()
