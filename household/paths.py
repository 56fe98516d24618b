from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "HOUSEHOLD_HOME"
APP_ENV_DB = "HOUSEHOLD_DB"


def app_home() -> Path:
    """
    User-writable home for the ledger service.
    Override with HOUSEHOLD_HOME.
    """
    if os.environ.get(APP_ENV_HOME):
        return Path(os.environ[APP_ENV_HOME]).expanduser().resolve()
    return (Path.home() / ".household").resolve()


def data_dir() -> Path:
    d = app_home() / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


def db_path() -> Path:
    """
    Canonical SQLite path.

    Resolution order:
    1. HOUSEHOLD_DB env var (explicit override)
    2. ~/.household/data/household.db (default)
    """
    if os.environ.get(APP_ENV_DB):
        return Path(os.environ[APP_ENV_DB]).expanduser().resolve()
    return data_dir() / "household.db"
