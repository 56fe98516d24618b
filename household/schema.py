"""
Declared schema for the household ledger.

The DDL is portable between SQLite and PostgreSQL: identifiers are TEXT,
timestamps are ISO-8601 TEXT with an explicit UTC offset, and money is
NUMERIC(12, 2). ``MIGRATIONS`` is applied in order by
``household.db.run_startup_migrations``.
"""

SCHEMA_VERSION = 2

SCHEMA_META_DDL = """
CREATE TABLE IF NOT EXISTS schema_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

_BASE_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS principals (
        id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL DEFAULT '',
        email TEXT NOT NULL DEFAULT '',
        role TEXT NOT NULL DEFAULT 'user'
            CHECK (role IN ('user', 'admin', 'super_admin', 'superadmin')),
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'approved', 'rejected')),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS grants (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL REFERENCES principals(id),
        grantee_id TEXT NOT NULL REFERENCES principals(id),
        resource_kind TEXT NOT NULL
            CHECK (resource_kind IN ('transactions', 'categories', 'reports', 'all')),
        action TEXT NOT NULL CHECK (action IN ('read', 'write')),
        created_at TEXT NOT NULL,
        expires_at TEXT,
        UNIQUE (owner_id, grantee_id, resource_kind, action),
        CHECK (owner_id <> grantee_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_grants_grantee ON grants (grantee_id, resource_kind, action)",
    "CREATE INDEX IF NOT EXISTS idx_grants_owner ON grants (owner_id, grantee_id)",
    """
    CREATE TABLE IF NOT EXISTS ledger_entries (
        id TEXT PRIMARY KEY,
        owner_id TEXT REFERENCES principals(id),
        amount NUMERIC(12, 2) NOT NULL,
        ledger_date TEXT NOT NULL,
        effective_date TEXT,
        kind TEXT NOT NULL DEFAULT '',
        counterparty TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        paid BOOLEAN NOT NULL DEFAULT FALSE,
        paid_date TEXT,
        entered_by TEXT NOT NULL DEFAULT '',
        optional BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ledger_entries_owner ON ledger_entries (owner_id)",
    "CREATE INDEX IF NOT EXISTS idx_ledger_entries_date ON ledger_entries (ledger_date)",
    """
    CREATE TABLE IF NOT EXISTS categories (
        id TEXT PRIMARY KEY,
        owner_id TEXT REFERENCES principals(id),
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        color TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (owner_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entry_categories (
        entry_id TEXT NOT NULL REFERENCES ledger_entries(id) ON DELETE CASCADE,
        category_id TEXT NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
        amount NUMERIC(12, 2) NOT NULL,
        PRIMARY KEY (entry_id, category_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS saved_filters (
        id TEXT PRIMARY KEY,
        owner_id TEXT REFERENCES principals(id),
        name TEXT NOT NULL,
        resource_type TEXT NOT NULL DEFAULT 'transactions',
        filter_config TEXT NOT NULL DEFAULT '{}',
        is_default BOOLEAN NOT NULL DEFAULT FALSE,
        is_public BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS custom_reports (
        id TEXT PRIMARY KEY,
        owner_id TEXT REFERENCES principals(id),
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        report_config TEXT NOT NULL DEFAULT '{}',
        is_public BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS credential_records (
        owner_id TEXT PRIMARY KEY REFERENCES principals(id),
        token_ciphertext TEXT NOT NULL DEFAULT '',
        budget_ciphertext TEXT NOT NULL DEFAULT '',
        account_ciphertext TEXT NOT NULL DEFAULT '',
        last_synced TEXT,
        sync_period_minutes INTEGER NOT NULL DEFAULT 60,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mirror_groups (
        external_id TEXT NOT NULL,
        owner_id TEXT NOT NULL REFERENCES principals(id),
        name TEXT NOT NULL,
        last_updated TEXT NOT NULL,
        PRIMARY KEY (external_id, owner_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mirror_categories (
        external_id TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        group_id TEXT NOT NULL,
        name TEXT NOT NULL,
        last_updated TEXT NOT NULL,
        PRIMARY KEY (external_id, owner_id),
        FOREIGN KEY (group_id, owner_id) REFERENCES mirror_groups (external_id, owner_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_mirror_categories_name ON mirror_categories (owner_id, name)",
    """
    CREATE TABLE IF NOT EXISTS mirror_transactions (
        external_id TEXT NOT NULL,
        owner_id TEXT NOT NULL REFERENCES principals(id),
        account_id TEXT NOT NULL,
        transaction_date TEXT,
        amount_milliunits BIGINT NOT NULL DEFAULT 0,
        payee_name TEXT NOT NULL DEFAULT '',
        memo TEXT NOT NULL DEFAULT '',
        category_id TEXT,
        category_name TEXT NOT NULL DEFAULT '',
        cleared TEXT NOT NULL DEFAULT '',
        deleted BOOLEAN NOT NULL DEFAULT FALSE,
        last_updated TEXT NOT NULL,
        PRIMARY KEY (external_id, owner_id)
    )
    """,
]

# Rows written before effective dates existed carry only a ledger date, and
# early deployments spelled the top role without an underscore.
_LEGACY_BACKFILL = [
    "UPDATE ledger_entries SET effective_date = ledger_date WHERE effective_date IS NULL",
    "UPDATE principals SET role = 'super_admin' WHERE role = 'superadmin'",
]

MIGRATIONS: list[tuple[int, str, list[str]]] = [
    (1, "base tables", _BASE_TABLES),
    (2, "legacy backfill", _LEGACY_BACKFILL),
]
