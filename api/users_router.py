"""
User API Router: profile sync and approval status.

Endpoints:
- POST /users/sync — refresh the caller's display name and email
- GET /users — list principals
- GET /users/me — the caller's own record
- PUT /users/{principal_id}/status — approve or reject (admins only)
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.auth import get_services, require_principal
from household.principals import AuthContext
from household.services import Services

router = APIRouter(prefix="/users", tags=["users"])


class ProfileSync(BaseModel):
    display_name: str | None = None
    email: str | None = None


class StatusChange(BaseModel):
    status: str = Field(..., description="pending|approved|rejected")


@router.post("/sync")
def sync_profile(
    body: ProfileSync,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    return services.directory.sync_profile(ctx, body.display_name, body.email).to_dict()


@router.get("")
def list_users(ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return [p.to_dict() for p in services.directory.list_all()]


@router.get("/me")
def current_user(ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return services.directory.require(ctx.principal_id).to_dict()


@router.put("/{principal_id}/status")
def set_status(
    principal_id: str,
    body: StatusChange,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    return services.directory.set_status(ctx, principal_id, body.status).to_dict()
