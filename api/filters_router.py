"""
Saved Filter API Router.

Endpoints:
- GET /filters — filters the caller can read, plus public ones
- POST /filters — save a filter
- GET /filters/{filter_id}
- PUT /filters/{filter_id}
- DELETE /filters/{filter_id}
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.auth import get_services, require_principal
from household.principals import AuthContext
from household.services import Services

router = APIRouter(prefix="/filters", tags=["filters"])


class FilterCreate(BaseModel):
    name: str = Field(..., min_length=1)
    resource_type: str = "transactions"
    filter_config: dict[str, Any] = Field(default_factory=dict)
    is_default: bool = False
    is_public: bool = False
    owner_id: str | None = None


class FilterUpdate(BaseModel):
    name: str | None = None
    filter_config: dict[str, Any] | None = None
    is_default: bool | None = None
    is_public: bool | None = None


@router.get("")
def list_filters(
    resource_type: str | None = None,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    return [f.to_dict() for f in services.filters.list_filters(ctx, resource_type)]


@router.post("", status_code=201)
def create_filter(
    body: FilterCreate,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    saved = services.filters.create(
        ctx,
        body.name,
        resource_type=body.resource_type,
        filter_config=body.filter_config,
        is_default=body.is_default,
        is_public=body.is_public,
        owner_id=body.owner_id,
    )
    return saved.to_dict()


@router.get("/{filter_id}")
def get_filter(filter_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return services.filters.get(ctx, filter_id).to_dict()


@router.put("/{filter_id}")
def update_filter(
    filter_id: str,
    body: FilterUpdate,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    saved = services.filters.update(
        ctx,
        filter_id,
        name=body.name,
        filter_config=body.filter_config,
        is_default=body.is_default,
        is_public=body.is_public,
    )
    return saved.to_dict()


@router.delete("/{filter_id}")
def delete_filter(
    filter_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)
):
    services.filters.delete(ctx, filter_id)
    return {"success": True, "id": filter_id}
