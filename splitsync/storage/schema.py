"""Database schema for splitsync SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)

Every record table carries the same sync envelope columns. ``remote_id`` is
declared without a type so SQLite keeps integer ids as integers and
aggregator string ids as strings.
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 3  # v3: group archives and default splits

RECORD_TABLES = frozenset(
    {
        "users",
        "groups",
        "group_members",
        "group_default_splits",
        "payments",
        "payment_splits",
        "bank_accounts",
        "requisitions",
        "currency_conversions",
        "device_tokens",
        "user_preferences",
        "group_archives",
    }
)

# Allowed table names for SQL queries (security: prevents SQL injection via table names)
ALLOWED_TABLES = RECORD_TABLES | frozenset(
    {
        "schema_version",
        "id_mappings",
        "sync_meta",
        "entity_sync_state",
        "cached_transactions",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Users
CREATE TABLE IF NOT EXISTS users (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    username TEXT NOT NULL DEFAULT '',
    email TEXT,
    default_currency TEXT DEFAULT 'GBP',
    is_provisional INTEGER DEFAULT 0,
    invited_by INTEGER
);
CREATE INDEX IF NOT EXISTS idx_users_remote ON users(remote_id);
CREATE INDEX IF NOT EXISTS idx_users_status ON users(sync_status);

-- Groups
CREATE TABLE IF NOT EXISTS groups (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    name TEXT NOT NULL DEFAULT '',
    description TEXT,
    default_currency TEXT DEFAULT 'GBP',
    invite_link TEXT,
    group_img TEXT
);
CREATE INDEX IF NOT EXISTS idx_groups_remote ON groups(remote_id);
CREATE INDEX IF NOT EXISTS idx_groups_status ON groups(sync_status);

-- Group memberships
CREATE TABLE IF NOT EXISTS group_members (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    group_id INTEGER,
    user_id INTEGER,
    removed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_group_members_remote ON group_members(remote_id);
CREATE INDEX IF NOT EXISTS idx_group_members_status ON group_members(sync_status);
CREATE INDEX IF NOT EXISTS idx_group_members_group ON group_members(group_id);

-- Default splits per group member
CREATE TABLE IF NOT EXISTS group_default_splits (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    group_id INTEGER,
    user_id INTEGER,
    percentage REAL,
    amount REAL
);
CREATE INDEX IF NOT EXISTS idx_group_default_splits_remote ON group_default_splits(remote_id);
CREATE INDEX IF NOT EXISTS idx_group_default_splits_status ON group_default_splits(sync_status);

-- Payments
CREATE TABLE IF NOT EXISTS payments (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    group_id INTEGER,
    paid_by_user_id INTEGER,
    created_by INTEGER,
    updated_by INTEGER,
    amount REAL NOT NULL DEFAULT 0,
    currency TEXT DEFAULT 'GBP',
    description TEXT,
    notes TEXT,
    payment_date TEXT,
    payment_type TEXT DEFAULT 'spent',
    split_mode TEXT DEFAULT 'equally',
    transaction_id TEXT,
    institution_id TEXT
);
CREATE INDEX IF NOT EXISTS idx_payments_remote ON payments(remote_id);
CREATE INDEX IF NOT EXISTS idx_payments_status ON payments(sync_status);
CREATE INDEX IF NOT EXISTS idx_payments_group ON payments(group_id);

-- Payment splits (owned by a payment)
CREATE TABLE IF NOT EXISTS payment_splits (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    payment_id INTEGER,
    user_id INTEGER,
    amount REAL NOT NULL DEFAULT 0,
    currency TEXT DEFAULT 'GBP',
    created_by INTEGER,
    updated_by INTEGER
);
CREATE INDEX IF NOT EXISTS idx_payment_splits_remote ON payment_splits(remote_id);
CREATE INDEX IF NOT EXISTS idx_payment_splits_payment ON payment_splits(payment_id);

-- Bank accounts
CREATE TABLE IF NOT EXISTS bank_accounts (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    account_id TEXT NOT NULL DEFAULT '',
    user_id INTEGER,
    requisition_id TEXT,
    institution_id TEXT,
    iban TEXT,
    currency TEXT,
    owner_name TEXT,
    needs_reauthentication INTEGER DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_bank_accounts_remote ON bank_accounts(remote_id);
CREATE INDEX IF NOT EXISTS idx_bank_accounts_account ON bank_accounts(account_id);

-- Requisitions (server-authoritative)
CREATE TABLE IF NOT EXISTS requisitions (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'SYNCED',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    requisition_id TEXT NOT NULL DEFAULT '',
    user_id,
    institution_id TEXT,
    reference TEXT
);
CREATE INDEX IF NOT EXISTS idx_requisitions_remote ON requisitions(remote_id);

-- Currency conversions
CREATE TABLE IF NOT EXISTS currency_conversions (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    payment_id INTEGER,
    original_currency TEXT NOT NULL DEFAULT '',
    original_amount REAL NOT NULL DEFAULT 0,
    final_currency TEXT NOT NULL DEFAULT '',
    final_amount REAL NOT NULL DEFAULT 0,
    exchange_rate REAL NOT NULL DEFAULT 1,
    source TEXT,
    created_by INTEGER,
    updated_by INTEGER
);
CREATE INDEX IF NOT EXISTS idx_currency_conversions_remote ON currency_conversions(remote_id);
CREATE INDEX IF NOT EXISTS idx_currency_conversions_status ON currency_conversions(sync_status);

-- Device tokens
CREATE TABLE IF NOT EXISTS device_tokens (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    user_id INTEGER,
    fcm_token TEXT NOT NULL DEFAULT '',
    device_type TEXT DEFAULT 'android'
);
CREATE INDEX IF NOT EXISTS idx_device_tokens_status ON device_tokens(sync_status);

-- User preferences
CREATE TABLE IF NOT EXISTS user_preferences (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    user_id INTEGER,
    preference_key TEXT NOT NULL DEFAULT '',
    preference_value TEXT
);
CREATE INDEX IF NOT EXISTS idx_user_preferences_key ON user_preferences(user_id, preference_key);

-- Group archives
CREATE TABLE IF NOT EXISTS group_archives (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_id,
    sync_status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    user_id INTEGER,
    group_id INTEGER,
    archived_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_group_archives_pair ON group_archives(user_id, group_id);

-- Local id -> remote id translation, write-once per key
CREATE TABLE IF NOT EXISTS id_mappings (
    entity_type TEXT NOT NULL,
    local_id INTEGER NOT NULL,
    remote_id NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (entity_type, local_id)
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_id_mappings_remote ON id_mappings(entity_type, remote_id);

-- Sync metadata (key/value)
CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Per-entity-type sync state (pull cursor and last outcome)
CREATE TABLE IF NOT EXISTS entity_sync_state (
    entity_type TEXT PRIMARY KEY,
    last_sync_timestamp INTEGER NOT NULL DEFAULT 0,
    sync_status TEXT,
    last_sync_result TEXT,
    update_count INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL
);

-- Transactions fetched live from the banking aggregator
CREATE TABLE IF NOT EXISTS cached_transactions (
    user_id TEXT NOT NULL,
    transaction_id TEXT NOT NULL,
    account_id TEXT,
    payload TEXT NOT NULL,
    fetched_at TEXT NOT NULL,
    PRIMARY KEY (user_id, transaction_id)
);
"""


def init_db(conn: sqlite3.Connection, db_path=None) -> None:
    """Initialize the database schema.

    Args:
        conn: Database connection.
        db_path: Path to the database file (for permissions).
    """
    conn.executescript(SCHEMA)

    cur = conn.execute("SELECT version FROM schema_version LIMIT 1")
    row = cur.fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        logger.info(f"Upgrading schema version {row[0]} -> {SCHEMA_VERSION}")
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))

    conn.commit()

    if db_path is None:
        return

    # Set secure file permissions (owner read/write only)
    import os

    try:
        os.chmod(db_path, 0o600)
    except OSError as e:
        logger.warning(f"Could not set secure permissions: {e}")
