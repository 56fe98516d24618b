"""
Ledger API Router: household spend entries.

Endpoints:
- GET /transactions — list entries the caller can read
- POST /transactions — create an entry (optionally split across categories)
- GET /transactions/unique-fields — distinct counterparties, enterers and kinds
- GET /transactions/{entry_id} — fetch one entry
- PUT /transactions/{entry_id} — update an entry
- DELETE /transactions/{entry_id} — delete an entry
"""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.auth import get_services, require_principal
from household.ledger import CategorySplit, EntryFilter, EntryInput
from household.principals import AuthContext
from household.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


class CategorySplitRequest(BaseModel):
    """A category link; by id or by name (created when missing)."""

    name: str | None = None
    category_id: str | None = None
    amount: Decimal | None = None


class EntryRequest(BaseModel):
    """Create or replace a ledger entry."""

    amount: Decimal = Field(..., description="Amount with at most two fractional digits")
    ledger_date: str | None = Field(default=None, description="ISO timestamp; defaults to now")
    effective_date: str | None = Field(default=None, description="Defaults to ledger_date")
    kind: str = ""
    counterparty: str = ""
    description: str = ""
    paid: bool = False
    paid_date: str | None = None
    entered_by: str | None = None
    optional: bool = False
    owner_id: str | None = None
    categories: list[CategorySplitRequest] | None = None

    def to_input(self) -> EntryInput:
        splits = None
        if self.categories is not None:
            splits = [CategorySplit(name=c.name, category_id=c.category_id, amount=c.amount) for c in self.categories]
        return EntryInput(
            amount=self.amount,
            ledger_date=self.ledger_date,
            effective_date=self.effective_date,
            kind=self.kind,
            counterparty=self.counterparty,
            description=self.description,
            paid=self.paid,
            paid_date=self.paid_date,
            entered_by=self.entered_by,
            optional=self.optional,
            owner_id=self.owner_id,
            categories=splits,
        )


@router.get("")
def list_entries(
    counterparty: str | None = None,
    entered_by: str | None = None,
    kind: str | None = None,
    paid: bool | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    filters = EntryFilter(
        counterparty=counterparty,
        entered_by=entered_by,
        kind=kind,
        paid=paid,
        start_date=start_date,
        end_date=end_date,
    )
    entries = services.ledger.list_entries(ctx, filters)
    return {"items": [e.to_dict() for e in entries], "total": len(entries)}


@router.post("", status_code=201)
def create_entry(
    body: EntryRequest,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    return services.ledger.create_entry(ctx, body.to_input()).to_dict()


@router.get("/unique-fields")
def unique_fields(ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    """Distinct values for the entry form's autocompletion."""
    return services.ledger.unique_values(ctx)


@router.get("/{entry_id}")
def get_entry(entry_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return services.ledger.get_entry(ctx, entry_id).to_dict()


@router.put("/{entry_id}")
def update_entry(
    entry_id: str,
    body: EntryRequest,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    return services.ledger.update_entry(ctx, entry_id, body.to_input()).to_dict()


@router.delete("/{entry_id}")
def delete_entry(
    entry_id: str, ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)
):
    services.ledger.delete_entry(ctx, entry_id)
    return {"success": True, "id": entry_id}
