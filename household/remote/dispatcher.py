"""
Remote dispatcher: push a locally authored split transaction upstream.

Each split names a local category; the name is resolved to the mirrored
external category id for the principal. Amounts go over the wire as integer
milliunits (amount x 1000) and the top-level amount is the sum of the splits.
A 200 or 201 response is success even when its body cannot be read; any
other status raises UpstreamError.
Nothing is retried or queued.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from household import db
from household.errors import InvalidInput, UnknownCategory
from household.money import to_milliunits, to_money
from household.observability.metrics import remote_dispatches
from household.principals import AuthContext
from household.remote.client import BudgetServiceClient
from household.remote.credentials import CredentialStore
from household.timeutil import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = (200, 201)


@dataclass
class Split:
    category_name: str
    amount: Decimal | float | str
    memo: str = ""


@dataclass
class SplitTransaction:
    splits: list[Split]
    date: str | datetime | None = None
    payee_name: str = ""
    memo: str = ""


@dataclass
class DispatchResult:
    success: bool
    status: int
    transaction_id: str | None = None
    amount: int = 0
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status": self.status,
            "transaction_id": self.transaction_id,
            "amount": self.amount,
            "data": self.data,
        }


def build_payload(account_id: str, txn: SplitTransaction, resolved: list[tuple[str, Decimal, str]]) -> dict:
    """Wire body for POST /budgets/{id}/transactions."""
    subtransactions = [
        {"amount": to_milliunits(amount), "category_id": category_id, "memo": memo}
        for category_id, amount, memo in resolved
    ]
    txn_date = parse_timestamp(txn.date) if txn.date else utcnow()
    return {
        "transaction": {
            "account_id": account_id,
            "date": txn_date.date().isoformat(),
            "amount": sum(s["amount"] for s in subtransactions),
            "payee_name": txn.payee_name or None,
            "memo": txn.memo or None,
            "approved": True,
            "subtransactions": subtransactions,
        }
    }


class RemoteDispatcher:
    def __init__(self, credentials: CredentialStore, client: BudgetServiceClient):
        self.credentials = credentials
        self.client = client

    def resolve_categories(self, owner_id: str, splits: list[Split]) -> list[tuple[str, Decimal, str]]:
        """Map each split to (external category id, amount, memo). Raises UnknownCategory."""
        resolved = []
        with db.get_connection() as conn:
            for split in splits:
                name = (split.category_name or "").strip()
                row = conn.fetchone(
                    """
                    SELECT external_id FROM mirror_categories
                    WHERE owner_id = ? AND LOWER(name) = LOWER(?)
                    ORDER BY last_updated DESC, external_id
                    """,
                    (owner_id, name),
                )
                if row is None:
                    raise UnknownCategory(name)
                resolved.append((row["external_id"], to_money(split.amount, "split amount"), split.memo or ""))
        return resolved

    async def dispatch(self, ctx: AuthContext, txn: SplitTransaction) -> DispatchResult:
        if not txn.splits:
            raise InvalidInput("At least one split is required")

        creds = await asyncio.to_thread(self.credentials.load_credentials, ctx.principal_id)
        resolved = await asyncio.to_thread(self.resolve_categories, ctx.principal_id, txn.splits)
        payload = build_payload(creds.account_id, txn, resolved)

        response = await self.client.create_transaction(creds.token, creds.budget_id, payload)
        if response.status_code not in SUCCESS_STATUSES:
            raise self.client.error_for(response)

        remote_dispatches.inc()
        try:
            body = response.json()
        except ValueError:
            body = None
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            logger.warning(
                f"Budget service accepted transaction for {ctx.principal_id} "
                f"with status {response.status_code} but returned an unreadable body"
            )
            data = {}
        transaction = data.get("transaction")
        transaction_id = transaction.get("id") if isinstance(transaction, dict) else None
        logger.info(
            f"Dispatched split transaction for {ctx.principal_id}: "
            f"{len(resolved)} splits, {payload['transaction']['amount']} milliunits"
        )
        return DispatchResult(
            success=True,
            status=response.status_code,
            transaction_id=transaction_id,
            amount=payload["transaction"]["amount"],
            data=data,
        )
