"""SQLite database management for the Carebook health record store.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- Health metrics (weight, blood pressure, steps, ...)
CREATE TABLE IF NOT EXISTS health_data (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    data_type     TEXT NOT NULL,
    value         TEXT NOT NULL,
    unit          TEXT,
    recorded_at   TEXT NOT NULL,
    source        TEXT NOT NULL DEFAULT 'manual',
    metadata_json TEXT,
    created_at    TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Lab test results; free-text columns hold Fernet tokens when encryption is on
CREATE TABLE IF NOT EXISTS test_results (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    test_name       TEXT NOT NULL,
    test_date       TEXT NOT NULL,
    result          TEXT,
    unit            TEXT,
    reference_range TEXT,
    facility_enc    TEXT,
    notes_enc       TEXT,
    created_at      TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS medications (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    name              TEXT NOT NULL,
    dosage            TEXT,
    frequency         TEXT,
    start_date        TEXT,
    end_date          TEXT,
    prescribed_by_enc TEXT,
    notes_enc         TEXT,
    is_active         INTEGER NOT NULL DEFAULT 1,
    created_at        TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS medical_records (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    record_type   TEXT NOT NULL,
    title         TEXT NOT NULL,
    record_date   TEXT NOT NULL,
    content_enc   TEXT,
    facility_enc  TEXT,
    doctor_enc    TEXT,
    created_at    TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Insert-only; the newest row per user is the current prediction
CREATE TABLE IF NOT EXISTS risk_predictions (
    id                   TEXT PRIMARY KEY,
    user_id              TEXT NOT NULL,
    risk_type            TEXT NOT NULL,
    risk_score           INTEGER,
    timeframe            TEXT,
    factors_json         TEXT,
    recommendations_json TEXT,
    calculated_at        TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS groups (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    description TEXT,
    group_type  TEXT NOT NULL,
    is_public   INTEGER NOT NULL DEFAULT 0,
    max_members INTEGER,
    created_by  TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS group_members (
    group_id  TEXT NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    user_id   TEXT NOT NULL,
    role      TEXT NOT NULL DEFAULT 'member',
    joined_at TEXT NOT NULL,
    PRIMARY KEY (group_id, user_id)
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Indexes for the per-user window queries
CREATE INDEX IF NOT EXISTS idx_health_user_ts   ON health_data(user_id, recorded_at);
CREATE INDEX IF NOT EXISTS idx_tests_user_date  ON test_results(user_id, test_date);
CREATE INDEX IF NOT EXISTS idx_meds_user_active ON medications(user_id, is_active);
CREATE INDEX IF NOT EXISTS idx_records_user     ON medical_records(user_id);
CREATE INDEX IF NOT EXISTS idx_risk_user        ON risk_predictions(user_id, calculated_at);
CREATE INDEX IF NOT EXISTS idx_members_user     ON group_members(user_id);
"""

# ---------------------------------------------------------------------------
# V2: Audit log table
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id            TEXT PRIMARY KEY,
    timestamp     TEXT NOT NULL DEFAULT (datetime('now')),
    user_id       TEXT,
    action        TEXT NOT NULL,
    resource_type TEXT NOT NULL,
    resource_id   TEXT,
    details_json  TEXT,
    success       INTEGER NOT NULL DEFAULT 1,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_user      ON audit_log(user_id);
CREATE INDEX IF NOT EXISTS idx_audit_resource  ON audit_log(resource_type);
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class HealthDatabase:
    """SQLite database manager for the Carebook record store.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        conn = db.connection
        # ... use connection ...
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """Initialize database manager.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
        """
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the database connection and ensure schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.
        """
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            db_file = Path(self._db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_file))
        else:
            self._conn = sqlite3.connect(":memory:")

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Health database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection

        conn.executescript(_SCHEMA_V1)

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        current_version = row[0] if row[0] is not None else 0

        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: audit_log table")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        cursor = self.connection.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def rollback(self) -> None:
        """Discard uncommitted statements on the shared connection."""
        if self._conn is not None:
            self._conn.rollback()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Health database closed")

    def __enter__(self) -> HealthDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
