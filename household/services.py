"""
Service container wiring the domain objects together.

Built once per application. The vault key and the identity verifier are the
only process-wide inputs; everything else is derived from them and settings.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import httpx

from household.categories import CategoryRepository
from household.config import Settings
from household.filters import FilterRepository
from household.ledger import LedgerRepository
from household.principals import PrincipalDirectory
from household.remote.client import BudgetServiceClient
from household.remote.credentials import CredentialStore
from household.remote.dispatcher import RemoteDispatcher
from household.remote.mirror import RemoteMirror
from household.remote.transactions import TransactionMirror
from household.reports import ReportService
from household.scheduler import SyncScheduler
from household.security.grants import PermissionStore
from household.security.identity import IdentityResolver, TokenVerifier, build_verifier
from household.security.planner import AccessPlanner
from household.security.vault import CredentialVault, init_vault, reset_vault
from household.timeutil import utcnow

logger = logging.getLogger(__name__)

UNSET = object()


@dataclass
class Services:
    settings: Settings
    directory: PrincipalDirectory
    resolver: IdentityResolver
    permissions: PermissionStore
    planner: AccessPlanner
    ledger: LedgerRepository
    categories: CategoryRepository
    filters: FilterRepository
    reports: ReportService
    vault: CredentialVault | None
    credentials: CredentialStore
    client: BudgetServiceClient
    mirror: RemoteMirror
    transactions: TransactionMirror
    dispatcher: RemoteDispatcher
    scheduler: SyncScheduler


def build_services(
    settings: Settings,
    verifier: TokenVerifier | None | object = UNSET,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    """
    Wire up services for *settings*.

    ``verifier`` defaults to the Firebase verifier built from settings (None
    when no service account is configured); ``transport`` lets tests fake the
    budgeting service.
    """
    if verifier is UNSET:
        verifier = build_verifier(settings)

    vault = init_vault(settings.encryption_key) if settings.encryption_key else None
    if vault is None:
        reset_vault()
        logger.warning("ENCRYPTION_KEY not set; remote credential operations will fail")

    directory = PrincipalDirectory()
    permissions = PermissionStore(directory)
    planner = AccessPlanner(permissions)
    credentials = CredentialStore(vault)
    client = BudgetServiceClient(settings.ynab_api_base, transport=transport)
    mirror = RemoteMirror(credentials, client, clock=clock)
    transactions = TransactionMirror(credentials, client, clock=clock)

    return Services(
        settings=settings,
        directory=directory,
        resolver=IdentityResolver(
            directory,
            verifier,
            dev_shortcut=settings.dev_shortcut_enabled,
            allow_legacy_user_param=settings.allow_legacy_user_param,
        ),
        permissions=permissions,
        planner=planner,
        ledger=LedgerRepository(planner),
        categories=CategoryRepository(planner),
        filters=FilterRepository(planner),
        reports=ReportService(planner),
        vault=vault,
        credentials=credentials,
        client=client,
        mirror=mirror,
        transactions=transactions,
        dispatcher=RemoteDispatcher(credentials, client),
        scheduler=SyncScheduler(
            credentials,
            mirror,
            transactions,
            tick_seconds=settings.sync_tick_seconds,
            task_timeout_seconds=settings.sync_task_timeout_seconds,
            clock=clock,
        ),
    )
