"""Data access layer -- repository pattern for media records, history, sessions and cache."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Iterable

from marquee.models.catalog_match import CatalogMatch
from marquee.models.media_record import MediaRecord
from marquee.models.metadata_status import MetadataStatus
from marquee.models.parsed_candidate import ParsedCandidate
from marquee.models.upload_session import ChunkStatus, UploadSession
from marquee.utils.logger import get_logger

logger = get_logger("db.repositories")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_text(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MediaRecordRepository:
    """Data access layer for MediaRecord objects in the SQLite database."""

    # Whitelist of allowed column names for SQL construction.
    # Prevents SQL injection if _to_row() ever returns unexpected keys.
    _VALID_COLUMNS: frozenset[str] = frozenset({
        "storage_key", "original_filename", "file_size", "content_type",
        "category", "parsed_title", "parsed_year", "parsed_quality",
        "parsed_source", "parsed_codec", "parsed_group", "external_id",
        "match_json", "confidence", "status", "error_message",
        "created_at", "updated_at", "matched_at",
    })

    def __init__(
        self,
        connection: sqlite3.Connection,
        lock: threading.RLock | None = None,
    ) -> None:
        """Initialize with an active database connection.

        Args:
            connection: SQLite connection (with Row factory enabled).
            lock: Lock shared by every repository on this connection.
        """
        self._conn = connection
        self._lock = lock or threading.RLock()

    # --- Writes ---

    def create(self, record: MediaRecord) -> MediaRecord:
        """Insert a new record and assign its id and timestamps.

        Raises:
            sqlite3.IntegrityError: If a record with the same storage key
                already exists.
        """
        now = _now()
        record.created_at = record.created_at or now
        record.updated_at = now
        data = self._to_row(record)

        columns = ", ".join(data.keys())
        placeholders = ", ".join("?" for _ in data)
        with self._lock:
            cursor = self._conn.execute(
                f"INSERT INTO media_records ({columns}) VALUES ({placeholders})",
                list(data.values()),
            )
            self._conn.commit()
        record.id = cursor.lastrowid
        return record

    def get_or_create(self, record: MediaRecord) -> tuple[MediaRecord, bool]:
        """Return the record stored under ``record.storage_key``, creating it if absent.

        Returns:
            ``(record, created)`` where *created* is False when a record for
            the key already existed (that stored record is returned).
        """
        with self._lock:
            existing = self.get_by_storage_key(record.storage_key)
            if existing is not None:
                return existing, False
            return self.create(record), True

    def update(self, record: MediaRecord) -> None:
        """Overwrite every column of an existing record.

        Raises:
            ValueError: If the record has never been saved.
        """
        if record.id is None:
            raise ValueError("Cannot update a record without an id")
        record.updated_at = _now()
        data = self._to_row(record)
        set_clause = ", ".join(f"{k} = ?" for k in data.keys())
        with self._lock:
            self._conn.execute(
                f"UPDATE media_records SET {set_clause} WHERE id = ?",
                list(data.values()) + [record.id],
            )
            self._conn.commit()

    def update_if_status(
        self,
        record: MediaRecord,
        allowed: Iterable[MetadataStatus],
    ) -> bool:
        """Update a record only if its stored status is still in *allowed*.

        This is the guard that keeps automatic resolution from overwriting a
        manual assignment that landed in the meantime.

        Returns:
            True if the row was written.
        """
        if record.id is None:
            raise ValueError("Cannot update a record without an id")
        statuses = [s.value for s in allowed]
        if not statuses:
            return False

        previous_updated_at = record.updated_at
        record.updated_at = _now()
        data = self._to_row(record)
        set_clause = ", ".join(f"{k} = ?" for k in data.keys())
        placeholders = ", ".join("?" for _ in statuses)
        with self._lock:
            cursor = self._conn.execute(
                f"UPDATE media_records SET {set_clause} "
                f"WHERE id = ? AND status IN ({placeholders})",
                list(data.values()) + [record.id] + statuses,
            )
            self._conn.commit()
        if cursor.rowcount == 0:
            record.updated_at = previous_updated_at
            return False
        return True

    # --- Reads ---

    def get_by_id(self, record_id: int) -> MediaRecord | None:
        """Retrieve a record by its database ID.

        Args:
            record_id: Database ID.

        Returns:
            MediaRecord, or None if not found.
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM media_records WHERE id = ?", (record_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_by_storage_key(self, storage_key: str) -> MediaRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM media_records WHERE storage_key = ?", (storage_key,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_by_status(self, statuses: Iterable[MetadataStatus]) -> list[MediaRecord]:
        """Retrieve records in any of the given statuses, oldest first."""
        values = [s.value for s in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM media_records WHERE status IN ({placeholders}) "
                "ORDER BY created_at, id",
                values,
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_all(self) -> list[MediaRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM media_records ORDER BY created_at, id"
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_stats(self) -> dict[str, int]:
        """Get counts of records by metadata status.

        Returns:
            Dictionary mapping status value to count.
        """
        with self._lock:
            rows = self._conn.execute(
                "SELECT status, COUNT(*) AS count FROM media_records GROUP BY status"
            ).fetchall()
        return {row["status"]: row["count"] for row in rows}

    # --- Mapping ---

    def _to_row(self, record: MediaRecord) -> dict[str, Any]:
        parsed = record.parsed
        match = record.catalog_match
        data = {
            "storage_key": record.storage_key,
            "original_filename": record.original_filename,
            "file_size": record.file_size,
            "content_type": record.content_type,
            "category": record.category,
            "parsed_title": parsed.title,
            "parsed_year": parsed.year,
            "parsed_quality": parsed.quality,
            "parsed_source": parsed.source,
            "parsed_codec": parsed.codec,
            "parsed_group": parsed.group,
            "external_id": match.external_id if match else None,
            "match_json": json.dumps(match.as_dict(), ensure_ascii=False) if match else None,
            "confidence": record.confidence,
            "status": record.status.value,
            "error_message": record.error_message,
            "created_at": _to_text(record.created_at),
            "updated_at": _to_text(record.updated_at),
            "matched_at": _to_text(record.matched_at),
        }
        invalid = set(data.keys()) - self._VALID_COLUMNS
        if invalid:
            raise ValueError(f"Unexpected media record columns: {invalid}")
        return data

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> MediaRecord:
        """Convert a database row to a MediaRecord."""
        match = None
        if row["match_json"]:
            try:
                match = CatalogMatch.from_dict(json.loads(row["match_json"]))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning("Record %s has an unreadable catalog match: %s", row["id"], e)

        return MediaRecord(
            storage_key=row["storage_key"],
            original_filename=row["original_filename"],
            file_size=row["file_size"] or 0,
            content_type=row["content_type"] or "",
            category=row["category"] or "",
            parsed=ParsedCandidate(
                title=row["parsed_title"] or ParsedCandidate().title,
                year=row["parsed_year"],
                quality=row["parsed_quality"],
                source=row["parsed_source"],
                codec=row["parsed_codec"],
                group=row["parsed_group"],
            ),
            catalog_match=match,
            confidence=row["confidence"] or 0,
            status=MetadataStatus(row["status"]),
            error_message=row["error_message"],
            created_at=_from_text(row["created_at"]),
            updated_at=_from_text(row["updated_at"]),
            matched_at=_from_text(row["matched_at"]),
            id=row["id"],
        )


class HistoryRepository:
    """Data access layer for metadata status transitions."""

    def __init__(
        self,
        connection: sqlite3.Connection,
        lock: threading.RLock | None = None,
    ) -> None:
        self._conn = connection
        self._lock = lock or threading.RLock()

    def record_transition(
        self,
        record_id: int,
        action: str,
        from_status: MetadataStatus | None,
        to_status: MetadataStatus,
        external_id: int | None = None,
        confidence: int | None = None,
        note: str | None = None,
    ) -> int:
        """Record a status transition for a media record.

        Args:
            record_id: ID of the record that changed.
            action: What caused it ('created', 'auto_resolve', 'manual_assign').
            from_status: Status before the change (None on creation).
            to_status: Status after the change.
            external_id: Catalog id attached after the change.
            confidence: Score attached after the change.
            note: Free text (error message, reason).

        Returns:
            History entry ID.
        """
        with self._lock:
            cursor = self._conn.execute(
                """INSERT INTO record_history
                   (record_id, action, from_status, to_status, external_id,
                    confidence, note, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record_id,
                    action,
                    from_status.value if from_status else None,
                    to_status.value,
                    external_id,
                    confidence,
                    note,
                    _to_text(_now()),
                ),
            )
            self._conn.commit()
        return cursor.lastrowid

    def get_history_for_record(self, record_id: int) -> list[dict[str, Any]]:
        """All transitions of one record, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM record_history WHERE record_id = ? ORDER BY id",
                (record_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def get_recent_history(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM record_history ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]


class UploadSessionRepository:
    """Archive of upload sessions, written at start and at every terminal state."""

    def __init__(
        self,
        connection: sqlite3.Connection,
        lock: threading.RLock | None = None,
    ) -> None:
        self._conn = connection
        self._lock = lock or threading.RLock()

    def save(self, session: UploadSession) -> None:
        """Insert or replace the archived row for a session."""
        uploaded = sum(1 for c in session.chunks if c.status is ChunkStatus.UPLOADED)
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO upload_sessions
                   (session_id, storage_key, filename, file_size, chunk_size,
                    chunks_total, chunks_uploaded, bytes_transferred, status,
                    failure_reason, started_at, finished_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    session.session_id,
                    session.storage_key,
                    session.filename,
                    session.file_size,
                    session.chunk_size,
                    len(session.chunks),
                    uploaded,
                    session.bytes_transferred,
                    session.status.value,
                    session.failure_reason,
                    _to_text(session.started_at),
                    _to_text(session.finished_at),
                ),
            )
            self._conn.commit()

    def get(self, session_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM upload_sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        return dict(row) if row else None

    def list_recent(self, limit: int = 20) -> list[dict[str, Any]]:
        """Most recently started sessions first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM upload_sessions ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]


class ApiCacheRepository:
    """Key-value store for successful catalog responses.

    Entries are keyed by strings such as ``catalog_search:<hash>`` and hold
    the response body as JSON.  Only successes are cached; a failed lookup
    is always retried against the live service.
    """

    DEFAULT_MAX_AGE_DAYS = 30

    def __init__(
        self,
        connection: sqlite3.Connection,
        lock: threading.RLock | None = None,
    ) -> None:
        self._conn = connection
        self._lock = lock or threading.RLock()

    def get(self, cache_key: str) -> dict | list | None:
        """Return the cached response for *cache_key*, or None on a miss."""
        with self._lock:
            row = self._conn.execute(
                "SELECT response_json FROM api_cache WHERE cache_key = ?",
                (cache_key,),
            ).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["response_json"])
        except (json.JSONDecodeError, TypeError):
            logger.debug("Discarding corrupt cache entry %s", cache_key)
            return None

    def put(self, cache_key: str, data: dict | list) -> None:
        """Store (or refresh) a response; the timestamp restarts on every put."""
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO api_cache (cache_key, response_json, created_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)""",
                (cache_key, json.dumps(data, ensure_ascii=False)),
            )
            self._conn.commit()

    def prune(self, max_age_days: int | None = None) -> int:
        """Delete entries older than *max_age_days* (default 30).

        Returns:
            Number of rows deleted.
        """
        days = max_age_days if max_age_days is not None else self.DEFAULT_MAX_AGE_DAYS
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM api_cache WHERE created_at < datetime('now', ?)",
                (f"-{days} days",),
            )
            self._conn.commit()
        deleted = cursor.rowcount
        if deleted:
            logger.info("Pruned %d expired API cache entries", deleted)
        return deleted

    def clear(self) -> int:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM api_cache")
            self._conn.commit()
        return cursor.rowcount
