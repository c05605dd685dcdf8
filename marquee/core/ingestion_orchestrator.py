"""Ingestion orchestrator -- turns finished uploads into catalogued media records.

Owns the metadata state machine::

    PENDING --auto_resolve--> MATCHED | PENDING | ERROR
    PENDING | ERROR | MATCHED | MANUAL --manual_assign--> MANUAL

Work on one record is serialized through a per-record lock, so a manual
assignment issued while an automatic resolution is in flight always lands
last.  The conditional update in the repository is a second line: automatic
resolution can never overwrite a MANUAL row.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from marquee.core.catalog_client import CatalogError, CatalogUnavailableError
from marquee.core.filename_parser import parse_filename
from marquee.core.metadata_matcher import MetadataMatcher
from marquee.core.upload_coordinator import ProgressCallback, UploadCoordinator
from marquee.db.repositories import HistoryRepository, MediaRecordRepository
from marquee.models.catalog_match import CatalogMatch
from marquee.models.media_record import MediaRecord
from marquee.models.metadata_status import MetadataStatus
from marquee.models.upload_session import (
    SessionStatus,
    UploadCompleted,
    UploadOutcome,
    UploadSession,
)
from marquee.utils.constants import DEFAULT_CATEGORY, DEFAULT_RESOLUTION_WORKERS
from marquee.utils.logger import get_logger
from marquee.utils.rate_limiter import KeyedLocks

logger = get_logger("core.ingestion_orchestrator")

Scheduler = Callable[[Callable[[], object]], object]

# Statuses automatic resolution may write over
_AUTO_WRITABLE = frozenset(s for s in MetadataStatus if s.allows_auto_resolve())


class RecordNotFoundError(LookupError):
    """No media record with the requested id."""


class CatalogMatchNotFoundError(CatalogError):
    """A manual assignment named a catalog id the catalog does not know."""


@dataclass
class IngestResult:
    """Outcome of ``ingest_file``: the upload outcome plus the record, if any."""

    outcome: UploadOutcome
    record: MediaRecord | None = None

    @property
    def succeeded(self) -> bool:
        return self.record is not None


class IngestionOrchestrator:
    """Creates media records for finished uploads and drives their matching.

    Args:
        records: Media record repository.
        matcher: Resolves and scores catalog matches.
        history: Optional repository receiving every status transition.
        coordinator: Upload coordinator, needed only for ``ingest_file``.
        scheduler: Callable that runs a zero-argument job in the background.
            Defaults to a thread pool of ``resolution_workers`` threads;
            tests pass ``lambda job: job()`` to run inline.
        resolution_workers: Size of the default thread pool.
        default_category: Category used when none is given.
    """

    def __init__(
        self,
        records: MediaRecordRepository,
        matcher: MetadataMatcher,
        history: HistoryRepository | None = None,
        coordinator: UploadCoordinator | None = None,
        scheduler: Scheduler | None = None,
        resolution_workers: int = DEFAULT_RESOLUTION_WORKERS,
        default_category: str = DEFAULT_CATEGORY,
    ) -> None:
        self._records = records
        self._matcher = matcher
        self._history = history
        self._coordinator = coordinator
        self._default_category = default_category
        self._locks = KeyedLocks()

        self._executor: ThreadPoolExecutor | None = None
        if scheduler is None:
            self._executor = ThreadPoolExecutor(
                max_workers=max(1, resolution_workers),
                thread_name_prefix="marquee-resolve",
            )
            scheduler = self._executor.submit
        self._schedule = scheduler

    # --- Record creation ---

    def on_upload_completed(
        self,
        session: UploadSession | UploadCompleted,
        category: str | None = None,
    ) -> MediaRecord:
        """Create the PENDING record for a finalized upload and queue resolution.

        Idempotent per storage key: a repeated notification returns the
        existing record and schedules nothing.

        Args:
            session: The completed session (or its UploadCompleted outcome).
            category: Library category; defaults to the configured one.

        Returns:
            The new or existing MediaRecord.

        Raises:
            ValueError: If the session did not complete.
        """
        if isinstance(session, UploadCompleted):
            session = session.session
        if session.status is not SessionStatus.COMPLETED:
            raise ValueError(
                f"Session {session.session_id} is {session.status.value}, not completed"
            )

        candidate = MediaRecord(
            storage_key=session.storage_key,
            original_filename=session.filename,
            file_size=session.file_size,
            content_type=session.content_type,
            category=category or self._default_category,
            parsed=parse_filename(session.filename),
        )
        record, created = self._records.get_or_create(candidate)
        if not created:
            logger.info("Record for %s already exists (id=%s)", record.storage_key, record.id)
            return record

        logger.info(
            "Created record %s for %s, parsed as %s",
            record.id, record.original_filename, record.parsed.display_label,
        )
        self._record_history(record, "created", None)
        self._schedule(lambda rid=record.id: self._resolve_in_background(rid))
        return record

    def ingest_file(
        self,
        path: Path | str,
        category: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> IngestResult:
        """Upload a file and, if it completes, create its record.

        Raises:
            UploadValidationError: If the file cannot be uploaded.
            RuntimeError: If no upload coordinator was configured.
        """
        if self._coordinator is None:
            raise RuntimeError("ingest_file needs an UploadCoordinator")
        outcome = self._coordinator.start_upload(path, progress_callback=progress_callback)
        if not isinstance(outcome, UploadCompleted):
            return IngestResult(outcome)
        return IngestResult(outcome, self.on_upload_completed(outcome, category))

    # --- Resolution ---

    def auto_resolve(self, record_id: int) -> MediaRecord:
        """Resolve a record against the catalog and apply the result.

        MANUAL and MATCHED records are returned unchanged.  Otherwise the
        record becomes MATCHED (score at or above threshold), PENDING with
        the best guess attached, or ERROR when the catalog is unavailable.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        with self._locks.hold(record_id):
            record = self._require(record_id)
            if record.status is MetadataStatus.MANUAL:
                logger.info("Record %s was assigned manually, not auto-resolving", record_id)
                return record
            if record.status is MetadataStatus.MATCHED:
                logger.debug("Record %s already matched", record_id)
                return record

            previous = record.status
            try:
                match = self._matcher.resolve(record.parsed)
            except CatalogUnavailableError as e:
                logger.error("Resolution of record %s failed: %s", record_id, e)
                record.status = MetadataStatus.ERROR
                record.error_message = str(e)
                return self._commit_auto(record, previous, note=str(e))

            score = self._matcher.score(record.parsed, match)
            record.catalog_match = match
            record.confidence = score
            record.error_message = None
            if self._matcher.is_auto_match(match, score):
                record.status = MetadataStatus.MATCHED
                record.matched_at = datetime.now(timezone.utc)
                logger.info(
                    "Record %s matched %s (confidence %d)",
                    record_id, match.display_label, score,
                )
            else:
                record.status = MetadataStatus.PENDING
                logger.info(
                    "Record %s needs review: best guess %s (confidence %d, %s)",
                    record_id,
                    match.display_label if match else "none",
                    score,
                    self._matcher.classify(score),
                )
            return self._commit_auto(record, previous)

    def manual_assign(self, record_id: int, external_id: int | str) -> MediaRecord:
        """Attach a user-chosen catalog entry, overriding any automatic result.

        Raises:
            RecordNotFoundError: If the record does not exist.
            CatalogMatchNotFoundError: If the catalog has no such id.
            CatalogUnavailableError: If the catalog could not be queried
                (the record is left unchanged).
        """
        with self._locks.hold(record_id):
            record = self._require(record_id)
            match = self._matcher.fetch(external_id)
            if match is None:
                raise CatalogMatchNotFoundError(f"No catalog entry with id {external_id}")

            previous = record.status
            self._apply_manual(record, match)
            self._records.update(record)
            self._record_history(record, "manual_assign", previous)
            logger.info(
                "Record %s manually assigned to %s (confidence %d)",
                record_id, match.display_label, record.confidence,
            )
            return record

    def retry_errored(self) -> list[MediaRecord]:
        """Re-run automatic resolution for every record in ERROR."""
        errored = self._records.list_by_status([MetadataStatus.ERROR])
        logger.info("Retrying %d errored records", len(errored))
        return [self.auto_resolve(record.id) for record in errored]

    def review_candidates(
        self,
        record_id: int,
        query: str | None = None,
        year: int | None = None,
    ) -> list[tuple[CatalogMatch, int]]:
        """Scored catalog alternatives for a record (defaults to its parsed title/year)."""
        record = self._require(record_id)
        if query is None:
            query = record.parsed.title
            year = year if year is not None else record.parsed.year
        return self._matcher.search_candidates(query, year)

    # --- Reads ---

    def get_record(self, record_id: int) -> MediaRecord | None:
        return self._records.get_by_id(record_id)

    def list_records(self, status: MetadataStatus | None = None) -> list[MediaRecord]:
        if status is None:
            return self._records.list_all()
        return self._records.list_by_status([status])

    def list_pending_review(self) -> list[MediaRecord]:
        """Records waiting on a person: PENDING and ERROR, oldest first."""
        return self._records.list_by_status(
            [s for s in MetadataStatus if s.needs_user_action()]
        )

    def record_history(self, record_id: int) -> list[dict]:
        if self._history is None:
            return []
        return self._history.get_history_for_record(record_id)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the default resolution pool (no-op with an injected scheduler)."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    # --- Internal ---

    def _resolve_in_background(self, record_id: int) -> MediaRecord:
        try:
            return self.auto_resolve(record_id)
        except Exception:
            logger.exception("Background resolution of record %s crashed", record_id)
            raise

    def _require(self, record_id: int) -> MediaRecord:
        record = self._records.get_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(f"No media record with id {record_id}")
        return record

    def _apply_manual(self, record: MediaRecord, match: CatalogMatch) -> None:
        record.catalog_match = match
        record.confidence = self._matcher.score(record.parsed, match)
        record.status = MetadataStatus.MANUAL
        record.error_message = None
        record.matched_at = datetime.now(timezone.utc)

    def _commit_auto(
        self,
        record: MediaRecord,
        previous: MetadataStatus,
        note: str | None = None,
    ) -> MediaRecord:
        if not self._records.update_if_status(record, _AUTO_WRITABLE):
            current = self._require(record.id)
            logger.info(
                "Record %s changed to %s during resolution, keeping it",
                record.id, current.status.value,
            )
            return current
        self._record_history(record, "auto_resolve", previous, note)
        return record

    def _record_history(
        self,
        record: MediaRecord,
        action: str,
        previous: MetadataStatus | None,
        note: str | None = None,
    ) -> None:
        if self._history is None:
            return
        self._history.record_transition(
            record.id,
            action,
            previous,
            record.status,
            external_id=record.external_id,
            confidence=record.confidence,
            note=note,
        )
