"""
Tests for the background sync scheduler.

Ticks are driven by hand with an explicit ``now`` so the due-time arithmetic
is deterministic; ``drain()`` waits for the spawned per-principal tasks.
"""

import asyncio
import threading
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from household import db
from household.config import get_settings
from household.scheduler import PrincipalSyncState, SyncScheduler
from household.services import build_services
from household.timeutil import to_iso

T = datetime(2024, 5, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def configured(make_principal, services):
    make_principal("P1")
    services.credentials.save_config("P1", "ynab-secret-token", "budget-1", "account-1", 60)
    services.credentials.mark_synced("P1", T - timedelta(minutes=59))
    return services


async def tick_and_drain(scheduler: SyncScheduler, now: datetime) -> list[str]:
    dispatched = await scheduler.tick(now)
    await scheduler.drain()
    return dispatched


class TestDueTimes:
    def test_not_due_before_period_elapses(self, configured, budget_service):
        dispatched = asyncio.run(tick_and_drain(configured.scheduler, T))
        assert dispatched == []
        assert budget_service.requests == []
        assert configured.scheduler.status("P1")["state"] == "idle"

    def test_due_after_period_and_advances_last_synced(self, configured, budget_service):
        later = T + timedelta(minutes=2)
        dispatched = asyncio.run(tick_and_drain(configured.scheduler, later))

        assert dispatched == ["P1"]
        assert configured.credentials.get_record("P1").last_synced == to_iso(later)
        paths = [r.url.path for r in budget_service.requests]
        assert paths[0].endswith("/budgets/budget-1/categories")
        assert paths[1].endswith("/accounts/account-1/transactions")

        status = configured.scheduler.status("P1")
        assert status["state"] == "succeeded"
        assert status["last_success"] == to_iso(later)
        assert status["total_runs"] == 1

    def test_transaction_fetch_uses_last_synced_date(self, configured, budget_service):
        asyncio.run(tick_and_drain(configured.scheduler, T + timedelta(minutes=2)))
        transaction_request = budget_service.requests[1]
        assert transaction_request.url.params.get("since_date") == "2024-05-10"

    def test_never_synced_principal_is_due(self, make_principal, services):
        make_principal("P2")
        services.credentials.save_config("P2", "tok", "budget-2", "account-2", 60)
        assert asyncio.run(tick_and_drain(services.scheduler, T)) == ["P2"]

    def test_incomplete_credentials_are_ignored(self, make_principal, services):
        make_principal("P2")
        services.credentials.save_config("P2", "tok", "budget-2", "account-2", 60)
        with db.get_connection() as conn:
            conn.execute("UPDATE credential_records SET account_ciphertext = '' WHERE owner_id = ?", ("P2",))
        assert asyncio.run(tick_and_drain(services.scheduler, T)) == []
        assert not services.credentials.any_configured()


class TestFailures:
    def test_failed_run_keeps_last_synced_and_retries(self, configured, budget_service):
        before = configured.credentials.get_record("P1").last_synced
        budget_service.category_status = 500
        later = T + timedelta(minutes=2)

        assert asyncio.run(tick_and_drain(configured.scheduler, later)) == ["P1"]
        assert configured.credentials.get_record("P1").last_synced == before

        status = configured.scheduler.status("P1")
        assert status["state"] == "failed"
        assert status["consecutive_failures"] == 1
        assert "500" in status["last_error"]

        budget_service.category_status = 200
        retry_at = later + timedelta(minutes=1)
        assert asyncio.run(tick_and_drain(configured.scheduler, retry_at)) == ["P1"]
        assert configured.credentials.get_record("P1").last_synced == to_iso(retry_at)
        assert configured.scheduler.status("P1")["consecutive_failures"] == 0

    def test_timeout_marks_failure(self, make_principal, verifier):
        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, json={"data": {"category_groups": []}})

        services = build_services(get_settings(), verifier=verifier, transport=httpx.MockTransport(slow_handler))
        make_principal("P1")
        services.credentials.save_config("P1", "tok", "budget-1", "account-1", 60)
        scheduler = SyncScheduler(
            services.credentials,
            services.mirror,
            services.transactions,
            task_timeout_seconds=0.05,
        )

        asyncio.run(tick_and_drain(scheduler, T))

        status = scheduler.status("P1")
        assert status["state"] == str(PrincipalSyncState.FAILED)
        assert "timed out" in status["last_error"]
        assert services.credentials.get_record("P1").last_synced is None


class TestConcurrency:
    def test_principal_never_has_two_tasks_in_flight(self, make_principal, verifier):
        gate: dict[str, asyncio.Event] = {}

        async def gated_handler(request: httpx.Request) -> httpx.Response:
            await gate["release"].wait()
            return httpx.Response(200, json={"data": {"category_groups": [], "transactions": []}})

        services = build_services(get_settings(), verifier=verifier, transport=httpx.MockTransport(gated_handler))
        make_principal("P1")
        services.credentials.save_config("P1", "tok", "budget-1", "account-1", 60)
        scheduler = services.scheduler

        async def scenario():
            gate["release"] = asyncio.Event()
            first = await scheduler.tick(T)
            second = await scheduler.tick(T)
            in_flight = scheduler.is_running_for("P1")
            gate["release"].set()
            await scheduler.drain()
            return first, second, in_flight

        first, second, in_flight = asyncio.run(scenario())
        assert first == ["P1"]
        assert second == []
        assert in_flight
        assert scheduler.status("P1")["total_runs"] == 1
        assert scheduler.status("P1")["state"] == "succeeded"

    def test_storage_calls_run_off_the_event_loop_thread(self, configured, budget_service, monkeypatch):
        credentials = configured.credentials
        threads: dict[str, int] = {}
        original_records = credentials.complete_records
        original_mark = credentials.mark_synced

        def complete_records():
            threads["complete_records"] = threading.get_ident()
            return original_records()

        def mark_synced(owner_id, at):
            threads["mark_synced"] = threading.get_ident()
            return original_mark(owner_id, at)

        monkeypatch.setattr(credentials, "complete_records", complete_records)
        monkeypatch.setattr(credentials, "mark_synced", mark_synced)

        async def scenario():
            await tick_and_drain(configured.scheduler, T + timedelta(minutes=2))
            return threading.get_ident()

        loop_thread = asyncio.run(scenario())
        assert set(threads) == {"complete_records", "mark_synced"}
        assert loop_thread not in threads.values()


class TestLifecycle:
    def test_start_is_noop_without_credentials(self, services):
        async def scenario():
            started = await services.scheduler.start()
            return started, services.scheduler.running

        assert asyncio.run(scenario()) == (False, False)

    def test_start_and_stop(self, configured):
        scheduler = configured.scheduler

        async def scenario():
            assert await scheduler.start()
            assert await scheduler.ensure_started()
            running = scheduler.running
            await scheduler.stop()
            return running, scheduler.running

        assert asyncio.run(scenario()) == (True, False)

    def test_status_for_unknown_principal(self, services):
        assert services.scheduler.status("nobody")["state"] == "idle"
        assert services.scheduler.status() == {}
