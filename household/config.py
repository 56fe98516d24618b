"""
Centralized configuration for the household ledger service.

All values that vary by deployment belong here and are read from the
environment. ``get_settings()`` caches the parsed result for the process;
tests call ``reset_settings()`` after changing the environment.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from household.errors import InvalidInput

logger = logging.getLogger(__name__)

VALID_ENVIRONMENTS = ("development", "dev", "staging", "production")
DEVELOPMENT_ENVIRONMENTS = ("development", "dev")

DEFAULT_CORS_ORIGINS: list[str] = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]
"""Origins allowed when CORS_ALLOWED_ORIGINS is unset."""

DEFAULT_YNAB_API_BASE = "https://api.ynab.com/v1"

DEFAULT_SYNC_PERIOD_MINUTES = 60
"""Sync period applied when a credential record has none (or a non-positive one)."""

DEFAULT_TICK_SECONDS = 60
DEFAULT_TASK_TIMEOUT_SECONDS = 300

_TRUE_VALUES = ("1", "true", "yes", "on")


def _flag(value: str | None, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidInput(f"{name} must be an integer, got {raw!r}") from e


def parse_origins(raw: str | None) -> list[str]:
    if not raw:
        return list(DEFAULT_CORS_ORIGINS)
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or list(DEFAULT_CORS_ORIGINS)


@dataclass(frozen=True)
class Settings:
    env: str = "development"
    encryption_key: str | None = None
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    database_url: str | None = None
    dev_auth_bypass: bool = True
    allow_legacy_user_param: bool = True
    firebase_service_account_file: str | None = None
    firebase_service_account_json: str | None = None
    firebase_service_account_base64: str | None = None
    firebase_service_account_legacy: str | None = None
    firebase_project_id: str | None = None
    ynab_api_base: str = DEFAULT_YNAB_API_BASE
    sync_tick_seconds: int = DEFAULT_TICK_SECONDS
    sync_task_timeout_seconds: int = DEFAULT_TASK_TIMEOUT_SECONDS
    log_level: str = "INFO"
    log_format: str | None = None

    @property
    def is_development(self) -> bool:
        return self.env in DEVELOPMENT_ENVIRONMENTS

    @property
    def uses_postgres(self) -> bool:
        return bool(self.database_url) and self.database_url.startswith(("postgres://", "postgresql://"))

    @property
    def dev_shortcut_enabled(self) -> bool:
        """The synthesized admin principal is only ever honoured in development."""
        return self.is_development and self.dev_auth_bypass

    @property
    def has_identity_credentials(self) -> bool:
        return any(
            (
                self.firebase_service_account_file,
                self.firebase_service_account_json,
                self.firebase_service_account_base64,
                self.firebase_service_account_legacy,
            )
        )


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Parse settings from *environ* (defaults to ``os.environ``)."""
    environ = os.environ if environ is None else environ

    env = (environ.get("ENV") or "development").strip().lower()
    if env not in VALID_ENVIRONMENTS:
        raise InvalidInput(f"ENV must be one of {', '.join(VALID_ENVIRONMENTS)}, got {env!r}")

    log_format = (environ.get("LOG_FORMAT") or "").strip().lower() or None
    if log_format not in (None, "json", "human"):
        raise InvalidInput(f"LOG_FORMAT must be 'json' or 'human', got {log_format!r}")

    return Settings(
        env=env,
        encryption_key=environ.get("ENCRYPTION_KEY") or None,
        cors_origins=parse_origins(environ.get("CORS_ALLOWED_ORIGINS")),
        database_url=environ.get("DATABASE_URL") or None,
        dev_auth_bypass=_flag(environ.get("DEV_AUTH_BYPASS"), env in DEVELOPMENT_ENVIRONMENTS),
        allow_legacy_user_param=_flag(environ.get("ALLOW_LEGACY_USER_PARAM"), True),
        firebase_service_account_file=environ.get("FIREBASE_SERVICE_ACCOUNT_FILE") or None,
        firebase_service_account_json=environ.get("FIREBASE_SERVICE_ACCOUNT_JSON") or None,
        firebase_service_account_base64=environ.get("FIREBASE_SERVICE_ACCOUNT_BASE64") or None,
        firebase_service_account_legacy=environ.get("FIREBASE_SERVICE_ACCOUNT") or None,
        firebase_project_id=environ.get("FIREBASE_PROJECT_ID") or None,
        ynab_api_base=(environ.get("YNAB_API_BASE") or DEFAULT_YNAB_API_BASE).rstrip("/"),
        sync_tick_seconds=_int(environ, "SYNC_TICK_SECONDS", DEFAULT_TICK_SECONDS),
        sync_task_timeout_seconds=_int(environ, "SYNC_TASK_TIMEOUT_SECONDS", DEFAULT_TASK_TIMEOUT_SECONDS),
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
        log_format=log_format,
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
        logger.debug("Loaded settings for env=%s", _settings.env)
    return _settings


def reset_settings() -> None:
    global _settings  # noqa: PLW0603
    _settings = None
