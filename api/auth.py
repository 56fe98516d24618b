"""
Request authentication for the household ledger API.

Every protected route depends on ``require_principal``, which hands the
request to the identity resolver and returns an ``AuthContext``.

Token extraction order:
1. Authorization: Bearer <token> header
2. auth query parameter (deprecated)
3. userId query parameter (deprecated, existing principals only)

Usage:
    from api.auth import require_principal

    @router.get("/protected")
    def protected_endpoint(ctx: AuthContext = Depends(require_principal)):
        ...
"""

import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from household.observability import bind_principal
from household.principals import AuthContext
from household.services import Services

logger = logging.getLogger(__name__)

# Security scheme for OpenAPI docs
security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    """Services built by the application factory."""
    return request.app.state.services


def require_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> AuthContext:
    """
    Dependency that requires a resolved principal.

    Raises Unauthenticated (401) when no identity can be established; the
    application's error handler renders it.
    """
    services = get_services(request)
    ctx = services.resolver.resolve(request.headers.get("Authorization"), request.query_params)
    bind_principal(ctx.principal_id)
    request.state.principal_id = ctx.principal_id
    logger.debug(f"Resolved principal {ctx.principal_id} for {request.url.path}")
    return ctx
