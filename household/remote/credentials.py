"""
Per-principal credentials for the remote budgeting service.

Token, budget id and account id are stored encrypted by the credential vault.
A record "has credentials" only when all three ciphertexts are non-empty.
The token is never returned to clients; it is shown as MASKED_TOKEN.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from household import db
from household.config import DEFAULT_SYNC_PERIOD_MINUTES
from household.errors import InvalidInput, NotConfigured
from household.security.vault import CredentialVault, get_vault
from household.timeutil import now_iso, parse_timestamp, to_iso

log = logging.getLogger(__name__)

MASKED_TOKEN = "********"


@dataclass
class CredentialRecord:
    owner_id: str
    token_ciphertext: str
    budget_ciphertext: str
    account_ciphertext: str
    last_synced: str | None
    sync_period_minutes: int
    created_at: str
    updated_at: str

    @property
    def has_credentials(self) -> bool:
        return bool(self.token_ciphertext and self.budget_ciphertext and self.account_ciphertext)

    @property
    def period(self) -> timedelta:
        minutes = self.sync_period_minutes if self.sync_period_minutes > 0 else DEFAULT_SYNC_PERIOD_MINUTES
        return timedelta(minutes=minutes)

    def is_due(self, now: datetime) -> bool:
        if not self.last_synced:
            return True
        return now >= parse_timestamp(self.last_synced) + self.period


@dataclass(frozen=True)
class RemoteCredentials:
    """Decrypted credentials; only ever held in memory for one operation."""

    owner_id: str
    token: str
    budget_id: str
    account_id: str

    def __repr__(self) -> str:
        return f"RemoteCredentials(owner_id={self.owner_id!r}, token={MASKED_TOKEN!r})"


def _row_to_record(row: dict) -> CredentialRecord:
    return CredentialRecord(
        owner_id=row["owner_id"],
        token_ciphertext=row["token_ciphertext"] or "",
        budget_ciphertext=row["budget_ciphertext"] or "",
        account_ciphertext=row["account_ciphertext"] or "",
        last_synced=row["last_synced"],
        sync_period_minutes=int(row["sync_period_minutes"] or DEFAULT_SYNC_PERIOD_MINUTES),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class CredentialStore:
    def __init__(self, vault: CredentialVault | None = None):
        self._vault = vault

    @property
    def vault(self) -> CredentialVault:
        """The injected vault, else the process-wide one (raises VaultNotInitialized)."""
        return self._vault or get_vault()

    def get_record(self, owner_id: str) -> CredentialRecord | None:
        with db.get_connection() as conn:
            row = conn.fetchone("SELECT * FROM credential_records WHERE owner_id = ?", (owner_id,))
        return _row_to_record(row) if row else None

    def get_config(self, owner_id: str) -> dict:
        """Client view of the configuration. The token is masked."""
        record = self.get_record(owner_id)
        if record is None:
            return {
                "configured": False,
                "api_token": "",
                "budget_id": "",
                "account_id": "",
                "sync_frequency": DEFAULT_SYNC_PERIOD_MINUTES,
                "last_synced": None,
            }
        return {
            "configured": record.has_credentials,
            "api_token": MASKED_TOKEN if record.token_ciphertext else "",
            "budget_id": self._decrypt_optional(record.budget_ciphertext),
            "account_id": self._decrypt_optional(record.account_ciphertext),
            "sync_frequency": record.sync_period_minutes,
            "last_synced": record.last_synced,
        }

    def save_config(
        self,
        owner_id: str,
        api_token: str | None,
        budget_id: str | None,
        account_id: str | None,
        sync_frequency: int | None = None,
    ) -> dict:
        """
        Store credentials for *owner_id*.

        Echoing MASKED_TOKEN back keeps the stored token. A non-positive
        sync frequency falls back to the default period.
        """
        existing = self.get_record(owner_id)

        if api_token == MASKED_TOKEN or (not api_token and existing and existing.token_ciphertext):
            if existing is None or not existing.token_ciphertext:
                raise InvalidInput("api_token is required")
            token_ciphertext = existing.token_ciphertext
        elif api_token:
            token_ciphertext = self.vault.encrypt_text(api_token.strip())
        else:
            raise InvalidInput("api_token is required")

        if not (budget_id or "").strip():
            raise InvalidInput("budget_id is required")
        if not (account_id or "").strip():
            raise InvalidInput("account_id is required")

        period = sync_frequency if sync_frequency and sync_frequency > 0 else DEFAULT_SYNC_PERIOD_MINUTES
        now = now_iso()
        with db.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO credential_records (
                    owner_id, token_ciphertext, budget_ciphertext, account_ciphertext,
                    sync_period_minutes, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (owner_id) DO UPDATE SET
                    token_ciphertext = excluded.token_ciphertext,
                    budget_ciphertext = excluded.budget_ciphertext,
                    account_ciphertext = excluded.account_ciphertext,
                    sync_period_minutes = excluded.sync_period_minutes,
                    updated_at = excluded.updated_at
                """,
                (
                    owner_id,
                    token_ciphertext,
                    self.vault.encrypt_text(budget_id.strip()),
                    self.vault.encrypt_text(account_id.strip()),
                    period,
                    now,
                    now,
                ),
            )
        log.info(f"Saved remote credentials for {owner_id} (sync every {period} min)")
        return self.get_config(owner_id)

    def load_credentials(self, owner_id: str) -> RemoteCredentials:
        record = self.get_record(owner_id)
        if record is None or not record.has_credentials:
            raise NotConfigured("Budget service credentials are not configured")
        return RemoteCredentials(
            owner_id=owner_id,
            token=self.vault.decrypt_text(record.token_ciphertext),
            budget_id=self.vault.decrypt_text(record.budget_ciphertext),
            account_id=self.vault.decrypt_text(record.account_ciphertext),
        )

    def complete_records(self) -> list[CredentialRecord]:
        with db.get_connection() as conn:
            rows = conn.fetchall(
                """
                SELECT * FROM credential_records
                WHERE token_ciphertext <> '' AND budget_ciphertext <> '' AND account_ciphertext <> ''
                ORDER BY owner_id
                """
            )
        return [_row_to_record(r) for r in rows]

    def any_configured(self) -> bool:
        return bool(self.complete_records())

    def mark_synced(self, owner_id: str, at: datetime) -> None:
        with db.get_connection() as conn:
            conn.execute(
                "UPDATE credential_records SET last_synced = ?, updated_at = ? WHERE owner_id = ?",
                (to_iso(at), now_iso(), owner_id),
            )

    def seed_from_environment(self, principal_ids: list[str], environ: Mapping[str, str]) -> list[str]:
        """
        Store credentials supplied as YNAB_TOKEN_<ID>, YNAB_BUDGET_ID_<ID> and
        YNAB_ACCOUNT_ID_<ID> for principals that have none yet.
        """
        seeded = []
        for principal_id in principal_ids:
            suffix = "".join(ch if ch.isalnum() else "_" for ch in principal_id).upper()
            token = environ.get(f"YNAB_TOKEN_{suffix}")
            budget = environ.get(f"YNAB_BUDGET_ID_{suffix}")
            account = environ.get(f"YNAB_ACCOUNT_ID_{suffix}")
            if not (token and budget and account):
                continue
            record = self.get_record(principal_id)
            if record is not None and record.has_credentials:
                continue
            self.save_config(principal_id, token, budget, account)
            seeded.append(principal_id)
        if seeded:
            log.info(f"Seeded remote credentials from environment for {len(seeded)} principal(s)")
        return seeded

    def _decrypt_optional(self, ciphertext: str) -> str:
        return self.vault.decrypt_text(ciphertext) if ciphertext else ""
