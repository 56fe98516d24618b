"""
Inbound transaction mirror: remote account transactions -> mirror_transactions.

Same shape as the category mirror: additive upserts keyed by
(external_id, owner). Deleted upstream transactions are kept with their
deleted flag set.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from household import db
from household.errors import UpstreamError
from household.remote.client import BudgetServiceClient
from household.remote.credentials import CredentialStore
from household.timeutil import to_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TransactionMirrorResult:
    owner_id: str
    transactions: int
    synced_at: str

    def to_dict(self) -> dict:
        return {"owner_id": self.owner_id, "transactions": self.transactions, "synced_at": self.synced_at}


class TransactionMirror:
    def __init__(
        self,
        credentials: CredentialStore,
        client: BudgetServiceClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.credentials = credentials
        self.client = client
        self.clock = clock

    async def sync_transactions(self, owner_id: str, since: datetime | None = None) -> TransactionMirrorResult:
        creds = await asyncio.to_thread(self.credentials.load_credentials, owner_id)
        payload = await self.client.get_account_transactions(
            creds.token, creds.budget_id, creds.account_id, since_date=since.date() if since else None
        )
        data = payload.get("data")
        transactions = data.get("transactions") if isinstance(data, dict) else None
        if not isinstance(transactions, list):
            raise UpstreamError(200, "Transaction response is missing data.transactions")

        stamp = to_iso(self.clock())
        count = await asyncio.to_thread(self._store, owner_id, creds.account_id, transactions, stamp)
        logger.info(f"Mirrored {count} remote transactions for {owner_id}")
        return TransactionMirrorResult(owner_id, count, stamp)

    def _store(self, owner_id: str, account_id: str, transactions: list, stamp: str) -> int:
        count = 0
        with db.get_connection() as conn:
            for txn in transactions:
                if not isinstance(txn, dict) or not txn.get("id"):
                    continue
                conn.execute(
                    """
                    INSERT INTO mirror_transactions (
                        external_id, owner_id, account_id, transaction_date, amount_milliunits,
                        payee_name, memo, category_id, category_name, cleared, deleted, last_updated
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT (external_id, owner_id) DO UPDATE SET
                        account_id = excluded.account_id,
                        transaction_date = excluded.transaction_date,
                        amount_milliunits = excluded.amount_milliunits,
                        payee_name = excluded.payee_name,
                        memo = excluded.memo,
                        category_id = excluded.category_id,
                        category_name = excluded.category_name,
                        cleared = excluded.cleared,
                        deleted = excluded.deleted,
                        last_updated = excluded.last_updated
                    """,
                    (
                        str(txn["id"]),
                        owner_id,
                        str(txn.get("account_id") or account_id),
                        txn.get("date"),
                        int(txn.get("amount") or 0),
                        txn.get("payee_name") or "",
                        txn.get("memo") or "",
                        txn.get("category_id"),
                        txn.get("category_name") or "",
                        txn.get("cleared") or "",
                        bool(txn.get("deleted")),
                        stamp,
                    ),
                )
                count += 1
        return count

    def list_transactions(self, owner_id: str, limit: int = 100) -> list[dict]:
        with db.get_connection() as conn:
            rows = conn.fetchall(
                """
                SELECT * FROM mirror_transactions
                WHERE owner_id = ? AND deleted = ?
                ORDER BY transaction_date DESC, external_id
                LIMIT ?
                """,
                (owner_id, False, limit),
            )
        return [
            {
                "id": r["external_id"],
                "account_id": r["account_id"],
                "date": r["transaction_date"],
                "amount": int(r["amount_milliunits"]),
                "payee_name": r["payee_name"],
                "memo": r["memo"],
                "category_id": r["category_id"],
                "category_name": r["category_name"],
                "cleared": r["cleared"],
                "last_updated": r["last_updated"],
            }
            for r in rows
        ]
