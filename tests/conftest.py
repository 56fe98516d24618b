"""
Test configuration: ensures repo root is in sys.path + isolated storage.

Every test gets its own SQLite file under tmp_path, a fresh settings object
and a fresh vault key. Nothing touches ~/.household or the network: the
budgeting service is faked with httpx.MockTransport.
"""

import sys
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import household.*, api.* and tests.fixtures
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from household import db  # noqa: E402
from household.config import get_settings, reset_settings  # noqa: E402
from household.principals import AuthContext, PrincipalDirectory  # noqa: E402
from household.security.roles import PrincipalStatus, Role  # noqa: E402
from household.security.vault import reset_vault  # noqa: E402
from household.services import build_services  # noqa: E402
from tests.fixtures import FakeBudgetService, FakeVerifier  # noqa: E402

TEST_ENCRYPTION_KEY = "test-encryption-key-0123456789abc"

_ISOLATED_VARS = (
    "DATABASE_URL",
    "DEV_AUTH_BYPASS",
    "ALLOW_LEGACY_USER_PARAM",
    "FIREBASE_SERVICE_ACCOUNT_FILE",
    "FIREBASE_SERVICE_ACCOUNT_JSON",
    "FIREBASE_SERVICE_ACCOUNT_BASE64",
    "FIREBASE_SERVICE_ACCOUNT",
    "FIREBASE_PROJECT_ID",
    "CORS_ALLOWED_ORIGINS",
    "YNAB_API_BASE",
    "SYNC_TICK_SECONDS",
    "SYNC_TASK_TIMEOUT_SECONDS",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def ledger_env(tmp_path, monkeypatch):
    """Point storage at a throwaway database and migrate it."""
    for var in _ISOLATED_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOUSEHOLD_HOME", str(tmp_path))
    monkeypatch.setenv("HOUSEHOLD_DB", str(tmp_path / "ledger.db"))
    monkeypatch.setenv("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.setenv("ENV", "development")
    reset_settings()
    reset_vault()
    db.run_startup_migrations()
    yield tmp_path
    reset_settings()
    reset_vault()


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def directory():
    return PrincipalDirectory()


@pytest.fixture
def make_principal(directory):
    """Factory: create an approved principal and return its AuthContext."""

    def _make(principal_id: str, role: str = "user") -> AuthContext:
        directory.ensure_principal(
            principal_id,
            display_name=principal_id.upper(),
            email=f"{principal_id.lower()}@example.com",
            role=Role.parse(role),
            status=PrincipalStatus.APPROVED,
        )
        return directory.require(principal_id).context()

    return _make


@pytest.fixture
def budget_service():
    return FakeBudgetService()


@pytest.fixture
def services(verifier, budget_service):
    """Service container wired to the fake verifier and fake budgeting service."""
    return build_services(get_settings(), verifier=verifier, transport=budget_service.transport)
