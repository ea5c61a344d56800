"""Database schema and migrations for memory-vault.

This module contains the database schema definition and all migration functions.
Migrations are versioned and run incrementally when upgrading databases.
"""

import sqlite3

from memory_vault.errors import SchemaVersionError
from memory_vault.logging import get_logger
from memory_vault.models import ArchivableKind

log = get_logger("migrations")

# Current schema version - increment when making breaking changes
SCHEMA_VERSION = 2

# Version 1 layout. Later columns are added by migrations so that databases
# created before them upgrade through the same path as fresh ones.
SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT DEFAULT CURRENT_TIMESTAMP
);

-- Things learned about the codebase
CREATE TABLE IF NOT EXISTS discoveries (
    id INTEGER PRIMARY KEY,
    category TEXT NOT NULL,
    name TEXT NOT NULL,
    location TEXT,
    description TEXT,
    metadata TEXT,
    discovered_at TEXT DEFAULT (datetime('now')),
    confidence REAL DEFAULT 1.0
);

-- Decisions and their rationale
CREATE TABLE IF NOT EXISTS decisions (
    id INTEGER PRIMARY KEY,
    topic TEXT NOT NULL,
    decision TEXT NOT NULL,
    rationale TEXT,
    alternatives TEXT,
    decided_at TEXT DEFAULT (datetime('now')),
    source TEXT
);

-- Key/value preferences
CREATE TABLE IF NOT EXISTS preferences (
    id INTEGER PRIMARY KEY,
    category TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    notes TEXT,
    updated_at TEXT DEFAULT (datetime('now')),
    UNIQUE(category, key)
);

-- Work sessions (ended_at NULL = current)
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY,
    started_at TEXT DEFAULT (datetime('now')),
    ended_at TEXT,
    summary TEXT,
    work_in_progress TEXT,
    next_steps TEXT,
    key_files TEXT,
    tags TEXT
);

-- Domain entities, keyed by name
CREATE TABLE IF NOT EXISTS entities (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    relationships TEXT,
    attributes TEXT,
    location TEXT,
    updated_at TEXT DEFAULT (datetime('now'))
);

-- Open questions
CREATE TABLE IF NOT EXISTS open_questions (
    id INTEGER PRIMARY KEY,
    question TEXT NOT NULL,
    context TEXT,
    status TEXT DEFAULT 'open',
    resolution TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    resolved_at TEXT
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_discoveries_category ON discoveries(category);
CREATE INDEX IF NOT EXISTS idx_discoveries_name ON discoveries(name);
CREATE INDEX IF NOT EXISTS idx_decisions_topic ON decisions(topic);
CREATE INDEX IF NOT EXISTS idx_preferences_category ON preferences(category);
CREATE INDEX IF NOT EXISTS idx_sessions_started_at ON sessions(started_at);
CREATE INDEX IF NOT EXISTS idx_open_questions_status ON open_questions(status);
"""


# ========== Migration Helper Functions ==========


def get_table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    """Get set of column names for a table."""
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def add_column_if_missing(
    conn: sqlite3.Connection, table: str, column: str, definition: str
) -> bool:
    """Add column if it doesn't exist. Returns True if added."""
    columns = get_table_columns(conn, table)
    if column not in columns:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
        log.debug("Added {} column to {} table", column, table)
        return True
    return False


# ========== Individual Migrations ==========


def migrate_v1_to_v2(conn: sqlite3.Connection) -> None:
    """Add archive tracking and enforce a single current session."""
    for kind in ArchivableKind:
        add_column_if_missing(conn, kind.table, "archived_at", "TEXT")
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{kind.table}_archived_at "
            f"ON {kind.table}(archived_at)"
        )

    # Older databases could hold several open sessions; keep the newest one open
    closed = conn.execute(
        """
        UPDATE sessions
        SET ended_at = started_at
        WHERE ended_at IS NULL
          AND id <> (SELECT MAX(id) FROM sessions WHERE ended_at IS NULL)
        """
    ).rowcount
    if closed:
        log.info("Closed {} stale open sessions", closed)
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_single_current "
        "ON sessions((ended_at IS NULL)) WHERE ended_at IS NULL"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_ended_at ON sessions(ended_at)")
    log.info("Added archived_at columns to {}", ", ".join(k.table for k in ArchivableKind))


# ========== Migration Runner ==========


def run_migrations(conn: sqlite3.Connection, from_version: int) -> None:
    """Run schema migrations from from_version to SCHEMA_VERSION."""
    if from_version < 2:
        migrate_v1_to_v2(conn)


def check_schema_version(conn: sqlite3.Connection) -> None:
    """Check schema version compatibility.

    Raises:
        SchemaVersionError: If database schema is newer than supported version.
    """
    # Check if schema_version table exists
    table_exists = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name='schema_version'"
    ).fetchone()

    if not table_exists:
        # New database or pre-versioning database
        decisions_exist = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name='decisions'"
        ).fetchone()
        if decisions_exist:
            log.info("Upgrading pre-versioning database to version {}", SCHEMA_VERSION)
        return

    # Get current version
    current_version = conn.execute(
        "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
    ).fetchone()

    if current_version and current_version[0] > SCHEMA_VERSION:
        raise SchemaVersionError(
            f"Database schema version {current_version[0]} is newer than "
            f"supported version {SCHEMA_VERSION}. Please upgrade memory-vault."
        )


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Read the recorded schema version (0 for unversioned databases)."""
    row = conn.execute(
        "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
    ).fetchone()
    return row[0] if row else 0


def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables and bring the database up to SCHEMA_VERSION. Safe to re-run."""
    check_schema_version(conn)

    # Apply base schema first (uses IF NOT EXISTS, safe to re-run)
    conn.executescript(SCHEMA)

    current_version = get_schema_version(conn)
    run_migrations(conn, current_version)

    if current_version < SCHEMA_VERSION:
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        log.info("Database migrated from v{} to v{}", current_version, SCHEMA_VERSION)

    conn.commit()
    log.debug("Database schema initialized (version={})", SCHEMA_VERSION)
