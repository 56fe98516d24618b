"""
Category API Router.

Endpoints:
- GET /categories — categories the caller can read
- POST /categories — create a category
- GET /categories/{category_id} — fetch one category
- PUT /categories/{category_id} — rename or recolor
- DELETE /categories/{category_id} — delete (entry links go with it)
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.auth import get_services, require_principal
from household.principals import AuthContext
from household.services import Services

router = APIRouter(prefix="/categories", tags=["categories"])


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    color: str | None = Field(default=None, description="Hex color; picked from the palette when omitted")
    owner_id: str | None = None


class CategoryUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    color: str | None = None


@router.get("")
def list_categories(ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return [c.to_dict() for c in services.categories.list_categories(ctx)]


@router.post("", status_code=201)
def create_category(
    body: CategoryCreate,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    category = services.categories.create(
        ctx, body.name, description=body.description, color=body.color, owner_id=body.owner_id
    )
    return category.to_dict()


@router.get("/{category_id}")
def get_category(
    category_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)
):
    return services.categories.get(ctx, category_id).to_dict()


@router.put("/{category_id}")
def update_category(
    category_id: str,
    body: CategoryUpdate,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    category = services.categories.update(
        ctx, category_id, name=body.name, description=body.description, color=body.color
    )
    return category.to_dict()


@router.delete("/{category_id}")
def delete_category(
    category_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)
):
    services.categories.delete(ctx, category_id)
    return {"success": True, "id": category_id}
