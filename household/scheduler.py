"""
Background sync scheduler.

One long-lived asyncio task owns a ticker. Each tick looks up every principal
with complete remote credentials and, for those whose sync period has
elapsed, spawns a bounded task that mirrors categories and then account
transactions. A principal never has two tasks in flight. A successful run
advances ``last_synced``; a failed or timed-out run leaves it alone, so the
principal is due again on the next tick.

Per-principal states:
  IDLE -> DUE -> RUNNING -> SUCCEEDED | FAILED -> (next tick) IDLE or DUE
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from household.config import DEFAULT_TASK_TIMEOUT_SECONDS, DEFAULT_TICK_SECONDS
from household.errors import LedgerError
from household.observability.metrics import sync_duration, sync_failures, sync_runs
from household.remote.credentials import CredentialRecord, CredentialStore
from household.remote.mirror import RemoteMirror
from household.remote.transactions import TransactionMirror
from household.timeutil import parse_timestamp, to_iso, utcnow

logger = logging.getLogger(__name__)


class PrincipalSyncState(StrEnum):
    IDLE = "idle"
    DUE = "due"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SyncJobState:
    """Runtime state for one principal's sync."""

    state: PrincipalSyncState = PrincipalSyncState.IDLE
    last_started: datetime | None = None
    last_success: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    total_runs: int = 0
    total_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "state": str(self.state),
            "last_started": to_iso(self.last_started),
            "last_success": to_iso(self.last_success),
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "total_runs": self.total_runs,
            "total_failures": self.total_failures,
        }


class SyncScheduler:
    def __init__(
        self,
        credentials: CredentialStore,
        mirror: RemoteMirror,
        transactions: TransactionMirror,
        *,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        task_timeout_seconds: float = DEFAULT_TASK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.credentials = credentials
        self.mirror = mirror
        self.transactions = transactions
        self.tick_seconds = tick_seconds
        self.task_timeout_seconds = task_timeout_seconds
        self.clock = clock

        self._states: dict[str, SyncJobState] = {}
        self._running: dict[str, asyncio.Task] = {}
        self._loop_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> bool:
        """Start the ticker. No-op (returns False) when nobody has credentials."""
        if self.running:
            return True
        if not await asyncio.to_thread(self.credentials.any_configured):
            logger.info("No principal has remote credentials; sync scheduler not started")
            return False
        # a concurrent caller may have started it during the check
        if self.running:
            return True
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run(), name="sync-scheduler")
        logger.info(f"Sync scheduler started (tick every {self.tick_seconds}s)")
        return True

    async def ensure_started(self) -> bool:
        return await self.start()

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        for task in list(self._running.values()):
            task.cancel()
        await self.drain()
        logger.info("Sync scheduler stopped")

    async def drain(self) -> None:
        """Wait for every in-flight principal task to finish."""
        if self._running:
            await asyncio.gather(*self._running.values(), return_exceptions=True)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except LedgerError as e:
                logger.error(f"Sync tick failed: {e}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.tick_seconds)
            except TimeoutError:
                pass

    def is_running_for(self, owner_id: str) -> bool:
        task = self._running.get(owner_id)
        return task is not None and not task.done()

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Spawn sync tasks for every due principal. Returns the principals dispatched."""
        now = now or self.clock()
        records = await asyncio.to_thread(self.credentials.complete_records)
        # no awaits past this point: the in-flight check and task registration stay atomic
        dispatched = []
        for record in records:
            owner = record.owner_id
            state = self._states.setdefault(owner, SyncJobState())

            if self.is_running_for(owner):
                logger.debug(f"Sync for {owner} still in flight; not spawning another")
                continue
            if not record.is_due(now):
                state.state = PrincipalSyncState.IDLE
                continue

            state.state = PrincipalSyncState.DUE
            self._running[owner] = asyncio.create_task(self._sync_principal(record, now), name=f"sync-{owner}")
            dispatched.append(owner)

        if dispatched:
            logger.info(f"Sync tick at {to_iso(now)} dispatched {len(dispatched)} principal(s)")
        return dispatched

    async def _sync_once(self, record: CredentialRecord) -> None:
        await self.mirror.sync_categories(record.owner_id, mark_synced=False)
        since = parse_timestamp(record.last_synced) if record.last_synced else None
        await self.transactions.sync_transactions(record.owner_id, since=since)

    async def _sync_principal(self, record: CredentialRecord, now: datetime) -> None:
        owner = record.owner_id
        state = self._states.setdefault(owner, SyncJobState())
        state.state = PrincipalSyncState.RUNNING
        state.last_started = now
        state.total_runs += 1
        sync_runs.inc()
        started = time.perf_counter()

        try:
            await asyncio.wait_for(self._sync_once(record), timeout=self.task_timeout_seconds)
            await asyncio.to_thread(self.credentials.mark_synced, owner, now)
        except TimeoutError:
            self._record_failure(state, owner, f"timed out after {self.task_timeout_seconds}s")
        except LedgerError as e:
            self._record_failure(state, owner, str(e))
        except Exception as e:  # noqa: BLE001
            logger.exception(f"Unexpected error syncing {owner}")
            self._record_failure(state, owner, f"{type(e).__name__}: {e}")
        else:
            state.state = PrincipalSyncState.SUCCEEDED
            state.last_success = now
            state.last_error = None
            state.consecutive_failures = 0
            logger.info(f"Sync succeeded for {owner}")
        finally:
            sync_duration.observe(time.perf_counter() - started)
            self._running.pop(owner, None)

    @staticmethod
    def _record_failure(state: SyncJobState, owner: str, error: str) -> None:
        state.state = PrincipalSyncState.FAILED
        state.last_error = error
        state.consecutive_failures += 1
        state.total_failures += 1
        sync_failures.inc()
        logger.warning(f"Sync failed for {owner} ({state.consecutive_failures} in a row): {error}")

    def status(self, owner_id: str | None = None) -> dict:
        if owner_id is not None:
            return self._states.get(owner_id, SyncJobState()).to_dict()
        return {owner: state.to_dict() for owner, state in sorted(self._states.items())}
