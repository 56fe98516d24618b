"""
Centralized database access for the household ledger.

Single source of truth for:
- Backend selection (SQLite in development, PostgreSQL when DATABASE_URL is set)
- Connection factory with commit/rollback semantics
- One-time startup migration to the current schema version

Queries throughout the package are written with ``?`` placeholders and always
bind values as parameters. The PostgreSQL adapter rewrites placeholders for
psycopg2.
"""

import logging
import re
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path
from typing import Any

from household import paths, schema
from household.config import get_settings
from household.errors import Conflict, Internal

logger = logging.getLogger(__name__)

sqlite3.register_adapter(Decimal, str)

# ============================================================
# SQL IDENTIFIER VALIDATION
# ============================================================

_SAFE_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)?$")


def validate_identifier(name: str) -> str:
    """Validate that *name* is a safe SQL identifier (optionally ``alias.column``).

    Returns the name unchanged if valid; raises ``ValueError`` otherwise.
    Identifiers are the only thing ever interpolated into SQL text.
    """
    if not _SAFE_IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


# ============================================================
# ADAPTERS
# ============================================================


class DatabaseAdapter(ABC):
    """
    Uniform interface over SQLite and PostgreSQL connections.

    Rows are returned as plain dicts. Integrity violations surface as
    ``Conflict``; other driver errors as ``Internal``.
    """

    dialect = "abstract"

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a statement and return the affected row count."""

    @abstractmethod
    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> dict | None:
        pass

    @abstractmethod
    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class SQLiteAdapter(DatabaseAdapter):
    dialect = "sqlite"

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self.conn = sqlite3.connect(self.db_path, timeout=5.0)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys=ON")

    def _run(self, sql: str, params: Sequence[Any]) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, tuple(params))
        except sqlite3.IntegrityError as e:
            raise Conflict(str(e)) from e
        except sqlite3.Error as e:
            logger.error(f"SQLiteAdapter.execute failed: {e}")
            raise Internal(f"Storage failure: {e}") from e

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        return self._run(sql, params).rowcount

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> dict | None:
        row = self._run(sql, params).fetchone()
        return dict(row) if row is not None else None

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        return [dict(row) for row in self._run(sql, params).fetchall()]

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    def close(self) -> None:
        self.conn.close()


def _to_pyformat(sql: str) -> str:
    return sql.replace("%", "%%").replace("?", "%s")


class PostgreSQLAdapter(DatabaseAdapter):
    """
    PostgreSQL adapter over a pooled psycopg2 connection.

    The connection is returned to the pool on close.
    """

    dialect = "postgresql"

    def __init__(self, pool):
        self.pool = pool
        self.conn = pool.getconn()
        self.conn.autocommit = False

    def _cursor(self, sql: str, params: Sequence[Any]):
        import psycopg2
        import psycopg2.extras

        cursor = self.conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        try:
            cursor.execute(_to_pyformat(sql), tuple(params))
        except psycopg2.IntegrityError as e:
            raise Conflict(str(e)) from e
        except psycopg2.Error as e:
            logger.error(f"PostgreSQLAdapter.execute failed: {e}")
            raise Internal(f"Storage failure: {e}") from e
        return cursor

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self._cursor(sql, params) as cursor:
            return cursor.rowcount

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> dict | None:
        with self._cursor(sql, params) as cursor:
            row = cursor.fetchone()
            return dict(row) if row else None

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        with self._cursor(sql, params) as cursor:
            return [dict(row) for row in cursor.fetchall()]

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    def close(self) -> None:
        self.pool.putconn(self.conn)
        self.conn = None


_pg_pool = None
_pg_pool_lock = threading.Lock()


def _get_pg_pool(database_url: str):
    global _pg_pool  # noqa: PLW0603
    with _pg_pool_lock:
        if _pg_pool is None:
            try:
                from psycopg2.pool import ThreadedConnectionPool
            except ImportError:
                logger.error("psycopg2 not installed. Install with: pip install psycopg2-binary")
                raise
            _pg_pool = ThreadedConnectionPool(minconn=1, maxconn=10, dsn=database_url)
            logger.info("PostgreSQL connection pool established")
        return _pg_pool


# ============================================================
# CONNECTION FACTORY
# ============================================================


def get_db_path() -> Path:
    """SQLite database path (HOUSEHOLD_DB or the default under HOUSEHOLD_HOME)."""
    return paths.db_path()


def open_adapter() -> DatabaseAdapter:
    settings = get_settings()
    if settings.uses_postgres:
        return PostgreSQLAdapter(_get_pg_pool(settings.database_url))
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return SQLiteAdapter(db_path)


@contextmanager
def get_connection() -> Generator[DatabaseAdapter, None, None]:
    """
    Open a unit of work.

    Usage:
        with get_connection() as conn:
            conn.execute("UPDATE ...", (value,))

    Commits on success, rolls back on any exception.
    """
    conn = open_adapter()
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


# ============================================================
# SCHEMA VERSION + STARTUP MIGRATION
# ============================================================


def get_schema_version(conn: DatabaseAdapter) -> int:
    row = conn.fetchone("SELECT value FROM schema_meta WHERE key = 'schema_version'")
    return int(row["value"]) if row else 0


def set_schema_version(conn: DatabaseAdapter, version: int) -> None:
    if not isinstance(version, int) or version < 0:
        raise ValueError(f"Invalid schema version: {version!r}")
    conn.execute(
        "INSERT INTO schema_meta (key, value) VALUES ('schema_version', ?) "
        "ON CONFLICT (key) DO UPDATE SET value = excluded.value",
        (str(version),),
    )


def run_startup_migrations() -> dict:
    """
    Bring the schema to ``schema.SCHEMA_VERSION``. Safe to call repeatedly.

    Each pending migration runs once, in order, and records its version.
    """
    settings = get_settings()
    backend = "postgresql" if settings.uses_postgres else f"sqlite:{get_db_path()}"

    logger.info("Database startup: backend=%s target_version=%s", backend, schema.SCHEMA_VERSION)

    applied: list[int] = []
    with get_connection() as conn:
        conn.execute(schema.SCHEMA_META_DDL)
        version_before = get_schema_version(conn)

        for version, description, statements in schema.MIGRATIONS:
            if version <= version_before:
                continue
            logger.info("Applying migration %s: %s", version, description)
            for statement in statements:
                conn.execute(statement)
            set_schema_version(conn, version)
            applied.append(version)

        version_after = get_schema_version(conn)

    if not applied:
        logger.info("Schema up to date at version %s", version_after)
    return {
        "backend": backend,
        "previous_version": version_before,
        "schema_version": version_after,
        "applied": applied,
    }
