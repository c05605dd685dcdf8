"""SQLite database for media records, status history, upload sessions and API cache."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from marquee.utils.constants import DEFAULT_DB_FILENAME
from marquee.utils.logger import get_logger

logger = get_logger("db.database")

SCHEMA_VERSION = 1

CREATE_TABLES_SQL = """
-- Media records: one row per finalized upload
CREATE TABLE IF NOT EXISTS media_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    storage_key TEXT NOT NULL UNIQUE,
    original_filename TEXT NOT NULL,
    file_size INTEGER DEFAULT 0,
    content_type TEXT,
    category TEXT,
    parsed_title TEXT,
    parsed_year INTEGER,
    parsed_quality TEXT,
    parsed_source TEXT,
    parsed_codec TEXT,
    parsed_group TEXT,
    external_id INTEGER,
    match_json TEXT,
    confidence INTEGER DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending',
    error_message TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    matched_at TEXT
);

-- Record history: every metadata status transition
CREATE TABLE IF NOT EXISTS record_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id INTEGER NOT NULL,
    action TEXT NOT NULL,
    from_status TEXT,
    to_status TEXT NOT NULL,
    external_id INTEGER,
    confidence INTEGER,
    note TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (record_id) REFERENCES media_records(id)
);

-- Upload sessions: archive of every transfer attempt
CREATE TABLE IF NOT EXISTS upload_sessions (
    session_id TEXT PRIMARY KEY,
    storage_key TEXT NOT NULL,
    filename TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    chunk_size INTEGER NOT NULL,
    chunks_total INTEGER NOT NULL,
    chunks_uploaded INTEGER NOT NULL DEFAULT 0,
    bytes_transferred INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    failure_reason TEXT,
    started_at TEXT NOT NULL,
    finished_at TEXT
);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);

-- API response cache: repeatable catalog answers across re-runs
CREATE TABLE IF NOT EXISTS api_cache (
    cache_key TEXT PRIMARY KEY,
    response_json TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_media_records_status ON media_records(status);
CREATE INDEX IF NOT EXISTS idx_record_history_record ON record_history(record_id);
CREATE INDEX IF NOT EXISTS idx_upload_sessions_key ON upload_sessions(storage_key);
CREATE INDEX IF NOT EXISTS idx_upload_sessions_status ON upload_sessions(status);
CREATE INDEX IF NOT EXISTS idx_api_cache_created ON api_cache(created_at);
"""


class Database:
    """SQLite database manager for Marquee.

    Handles connection management and schema creation.  The
    single connection is shared by the orchestrator's worker threads;
    repositories serialize their statements on ``lock``.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        """Initialize the database.

        Args:
            db_path: Path to the SQLite database file. If None, uses
                the default filename in the current directory.
        """
        self._db_path = Path(db_path) if db_path else Path(DEFAULT_DB_FILENAME)
        self._connection: sqlite3.Connection | None = None
        self.lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._db_path

    def connect(self) -> sqlite3.Connection:
        """Open a connection to the database and ensure schema is created.

        Returns:
            Active SQLite connection.
        """
        if self._connection is not None:
            return self._connection

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Shared across resolution worker threads; writes go through self.lock
        self._connection = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._connection.execute("PRAGMA journal_mode=WAL")
        self._connection.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Database connected: %s", self._db_path)
        return self._connection

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None
            logger.debug("Database connection closed")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active connection, connecting if necessary."""
        if self._connection is None:
            return self.connect()
        return self._connection

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and stamp the schema version."""
        conn = self._connection
        if conn is None:
            return

        conn.executescript(CREATE_TABLES_SQL)

        cursor = conn.execute("SELECT COUNT(*) FROM schema_version")
        count = cursor.fetchone()[0]

        if count == 0:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info("Database schema created (version %d)", SCHEMA_VERSION)
        else:
            cursor = conn.execute("SELECT version FROM schema_version")
            current_version = cursor.fetchone()[0]
            if current_version != SCHEMA_VERSION:
                logger.warning(
                    "Database %s has schema version %d, expected %d",
                    self.path, current_version, SCHEMA_VERSION,
                )

    def __enter__(self) -> Database:
        """Open the database connection for use as a context manager."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the database connection when exiting the context."""
        self.close()
