"""
Permissions and Role API Router.

Endpoints:
- GET /permissions — grants held and issued by the caller (admins may ask for anyone)
- POST /permissions — grant another principal access to an owner's resources
- DELETE /permissions — revoke a grant
- POST /roles — change a principal's role
- GET /roles/{principal_id} — a principal's role (self or admin)
"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.auth import get_services, require_principal
from household.errors import Forbidden
from household.principals import AuthContext
from household.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["permissions"])


class GrantRequest(BaseModel):
    """Grant *grantee_id* access to resources owned by *owner_id* (default: caller)."""

    grantee_id: str = Field(..., min_length=1)
    resource_kind: str = Field(..., description="transactions|categories|reports|all")
    action: str = Field(default="read", description="read|write")
    owner_id: str | None = None
    expires_at: str | None = Field(default=None, description="ISO timestamp; omit for no expiry")


class RoleChangeRequest(BaseModel):
    principal_id: str = Field(..., min_length=1)
    role: str = Field(..., description="user|admin|super_admin")


@router.get("/permissions")
def list_permissions(
    principal_id: str | None = None,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    target = principal_id or ctx.principal_id
    if target != ctx.principal_id and not ctx.is_admin:
        raise Forbidden("Only admins can inspect another principal's grants")
    grants = services.permissions.list_for_principal(target)
    return {"principal_id": target, "grants": [g.to_dict(direction) for g, direction in grants]}


@router.post("/permissions", status_code=201)
def create_grant(
    body: GrantRequest,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    grant = services.permissions.grant(
        ctx,
        body.owner_id or ctx.principal_id,
        body.grantee_id,
        body.resource_kind,
        body.action,
        expires_at=body.expires_at,
    )
    return grant.to_dict()


@router.delete("/permissions")
def revoke_grant(
    grantee_id: str,
    resource_kind: str,
    action: str = "read",
    owner_id: str | None = None,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    owner = owner_id or ctx.principal_id
    services.permissions.revoke(ctx, owner, grantee_id, resource_kind, action)
    return {"success": True}


@router.post("/roles")
def change_role(
    body: RoleChangeRequest,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    return services.directory.set_role(ctx, body.principal_id, body.role).to_dict()


@router.get("/roles/{principal_id}")
def get_role(principal_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    if principal_id != ctx.principal_id and not ctx.is_admin:
        raise Forbidden("Only admins can read another principal's role")
    principal = services.directory.require(principal_id)
    return {"principal_id": principal.id, "role": str(principal.role)}
