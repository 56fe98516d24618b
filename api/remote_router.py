"""
Budget Service API Router: credentials, mirroring and split dispatch.

Endpoints:
- GET /ynab/config — the caller's configuration (token masked)
- PUT /ynab/config — store credentials; starts the sync scheduler if idle
- GET /ynab/categories — the caller's mirrored category groups
- POST /ynab/sync/categories — mirror remote categories now
- GET /ynab/transactions — mirrored remote transactions
- POST /ynab/sync/transactions — mirror remote account transactions now
- POST /ynab/transactions — push a split transaction upstream
- GET /ynab/sync/status — scheduler state for the caller
"""

import asyncio
import logging
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.auth import get_services, require_principal
from household.principals import AuthContext
from household.remote.dispatcher import Split, SplitTransaction
from household.services import Services
from household.timeutil import parse_timestamp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ynab", tags=["ynab"])


class ConfigRequest(BaseModel):
    """Echo the masked token back to keep the stored one."""

    api_token: str | None = None
    budget_id: str = Field(..., min_length=1)
    account_id: str = Field(..., min_length=1)
    sync_frequency: int | None = Field(default=None, description="Minutes between scheduled syncs")


class SplitRequest(BaseModel):
    category_name: str = Field(..., min_length=1)
    amount: Decimal
    memo: str = ""


class SplitTransactionRequest(BaseModel):
    date: str | None = None
    payee_name: str = ""
    memo: str = ""
    splits: list[SplitRequest] = Field(..., min_length=1)


class TransactionSyncRequest(BaseModel):
    since: str | None = Field(default=None, description="ISO date; defaults to everything")


@router.get("/config")
def get_config(ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return services.credentials.get_config(ctx.principal_id)


@router.put("/config")
async def save_config(
    body: ConfigRequest,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    config = await asyncio.to_thread(
        services.credentials.save_config,
        ctx.principal_id,
        body.api_token,
        body.budget_id,
        body.account_id,
        body.sync_frequency,
    )
    await services.scheduler.ensure_started()
    return config


@router.get("/categories")
def list_categories(ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return {"groups": services.mirror.list_mirror(ctx)}


@router.post("/sync/categories")
async def sync_categories(ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    result = await services.mirror.sync_categories(ctx.principal_id)
    return result.to_dict()


@router.get("/transactions")
def list_transactions(
    limit: int = 100,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    return {"transactions": services.transactions.list_transactions(ctx.principal_id, limit=max(1, min(limit, 500)))}


@router.post("/sync/transactions")
async def sync_transactions(
    body: TransactionSyncRequest | None = None,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    since = parse_timestamp(body.since) if body and body.since else None
    result = await services.transactions.sync_transactions(ctx.principal_id, since=since)
    return result.to_dict()


@router.post("/transactions", status_code=201)
async def dispatch_transaction(
    body: SplitTransactionRequest,
    ctx: AuthContext = Depends(require_principal),
    services: Services = Depends(get_services),
):
    txn = SplitTransaction(
        splits=[Split(s.category_name, s.amount, s.memo) for s in body.splits],
        date=body.date,
        payee_name=body.payee_name,
        memo=body.memo,
    )
    result = await services.dispatcher.dispatch(ctx, txn)
    return result.to_dict()


@router.get("/sync/status")
def sync_status(ctx: AuthContext = Depends(require_principal), services: Services = Depends(get_services)):
    return {
        "scheduler_running": services.scheduler.running,
        "in_flight": services.scheduler.is_running_for(ctx.principal_id),
        "state": services.scheduler.status(ctx.principal_id),
    }
