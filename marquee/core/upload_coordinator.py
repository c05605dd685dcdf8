"""Upload coordinator -- chunked, resumable, cancellable transfer of a local file.

A session splits the file into contiguous chunks, asks the object store for
a write target per chunk and pushes each body through the chunk transport.
Transient failures are retried per chunk with bounded linear backoff; a
chunk that exhausts its retries fails the session without touching chunks
that already made it.  Progress is reported after every chunk as a
moving-average rate and an ETA.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from marquee.core.object_store import (
    ChunkBody,
    ChunkOutcome,
    ChunkResult,
    ChunkTransport,
    ObjectStore,
    ObjectStoreError,
)
from marquee.models.config import AppConfig
from marquee.models.upload_session import (
    ChunkDescriptor,
    SessionStatus,
    UploadCancelled,
    UploadCompleted,
    UploadEvent,
    UploadFailed,
    UploadOutcome,
    UploadProgress,
    UploadSession,
)
from marquee.utils.constants import (
    BYTES_PER_MB,
    DEFAULT_CHUNK_MAX_RETRIES,
    DEFAULT_CHUNK_RETRY_BACKOFF_SECONDS,
    DEFAULT_CHUNK_SIZE_MB,
    DEFAULT_CHUNK_TIMEOUT_SECONDS,
    DEFAULT_MAX_FILE_SIZE_MB,
    DEFAULT_UPLOAD_MAX_WORKERS,
    MAX_CHUNK_RETRY_BACKOFF_SECONDS,
    MAX_UPLOAD_WORKERS,
    PROGRESS_RATE_WINDOW,
    STORAGE_KEY_PREFIX,
)
from marquee.utils.file_utils import (
    build_storage_key,
    format_file_size,
    guess_content_type,
    is_supported_video,
)
from marquee.utils.logger import get_logger

logger = get_logger("core.upload_coordinator")

ProgressCallback = Callable[[UploadProgress], None]


class UploadValidationError(ValueError):
    """The file cannot be uploaded as requested; nothing was sent."""


@dataclass(frozen=True)
class _ChunkAttempts:
    """Final result of driving one chunk through its retry loop."""

    chunk: ChunkDescriptor
    result: ChunkResult
    attempts: int


class _RateTracker:
    """Moving-average transfer rate over the last N chunk completions."""

    def __init__(self, window: int, clock: Callable[[], float], start_bytes: int) -> None:
        # One extra slot for the baseline sample
        self._samples: deque[tuple[float, int]] = deque(maxlen=max(1, window) + 1)
        self._clock = clock
        self._samples.append((clock(), start_bytes))

    def record(self, bytes_transferred: int) -> float:
        self._samples.append((self._clock(), bytes_transferred))
        first_t, first_b = self._samples[0]
        last_t, last_b = self._samples[-1]
        elapsed = last_t - first_t
        if elapsed <= 0:
            return 0.0
        return max(0.0, (last_b - first_b) / elapsed)


class UploadCoordinator:
    """Drives upload sessions against an object store and chunk transport.

    Args:
        object_store: Issues write targets and finalizes/aborts uploads.
        transport: Sends chunk bodies to write targets.
        chunk_size: Default bytes per chunk.
        max_file_size: Largest accepted file in bytes.
        max_retries: Retries per chunk after the first attempt.
        retry_backoff: Base backoff seconds, multiplied by the attempt number.
        max_backoff: Upper bound for a single backoff wait.
        chunk_timeout: Read timeout passed to the transport per chunk.
        max_workers: Chunks in flight at once (1 = strictly sequential).
        key_prefix: Prefix for generated storage keys.
        session_repo: Optional ``UploadSessionRepository`` for archiving.
        clock: Monotonic clock used for rate estimates (tests inject one).
    """

    def __init__(
        self,
        object_store: ObjectStore,
        transport: ChunkTransport,
        chunk_size: int = DEFAULT_CHUNK_SIZE_MB * BYTES_PER_MB,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE_MB * BYTES_PER_MB,
        max_retries: int = DEFAULT_CHUNK_MAX_RETRIES,
        retry_backoff: float = DEFAULT_CHUNK_RETRY_BACKOFF_SECONDS,
        max_backoff: float = MAX_CHUNK_RETRY_BACKOFF_SECONDS,
        chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT_SECONDS,
        max_workers: int = DEFAULT_UPLOAD_MAX_WORKERS,
        key_prefix: str = STORAGE_KEY_PREFIX,
        session_repo: object | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = object_store
        self._transport = transport
        self._chunk_size = chunk_size
        self._max_file_size = max_file_size
        self._max_retries = max(0, max_retries)
        self._retry_backoff = max(0.0, retry_backoff)
        self._max_backoff = max_backoff
        self._chunk_timeout = chunk_timeout
        self._max_workers = max(1, min(max_workers, MAX_UPLOAD_WORKERS))
        self._key_prefix = key_prefix
        self._session_repo = session_repo
        self._clock = clock

        self._active: dict[str, UploadSession] = {}
        self._active_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        object_store: ObjectStore,
        transport: ChunkTransport,
        session_repo: object | None = None,
    ) -> UploadCoordinator:
        return cls(
            object_store,
            transport,
            chunk_size=config.chunk_size_bytes,
            max_file_size=config.max_file_size_bytes,
            max_retries=config.chunk_max_retries,
            retry_backoff=config.chunk_retry_backoff_seconds,
            chunk_timeout=config.chunk_timeout_seconds,
            max_workers=config.upload_max_workers,
            key_prefix=config.storage_key_prefix,
            session_repo=session_repo,
        )

    # --- Public API ---

    def create_session(self, path: Path | str, chunk_size: int | None = None) -> UploadSession:
        """Validate a file and plan its upload session.

        Args:
            path: Local file to upload.
            chunk_size: Bytes per chunk (defaults to the configured size).

        Returns:
            A new ACTIVE session with every chunk PENDING.

        Raises:
            UploadValidationError: Missing/empty/oversized file, unsupported
                extension, or a non-positive chunk size.
        """
        path = Path(path)
        size = chunk_size if chunk_size is not None else self._chunk_size
        if size <= 0:
            raise UploadValidationError(f"Chunk size must be positive, got {size}")
        if not path.is_file():
            raise UploadValidationError(f"File not found: {path}")
        if not is_supported_video(path):
            raise UploadValidationError(f"Unsupported file type: {path.suffix or '(none)'}")

        file_size = path.stat().st_size
        if file_size == 0:
            raise UploadValidationError(f"File is empty: {path.name}")
        if file_size > self._max_file_size:
            raise UploadValidationError(
                f"File too large: {format_file_size(file_size)} exceeds "
                f"{format_file_size(self._max_file_size)}"
            )

        session = UploadSession.plan(
            storage_key=build_storage_key(path.name, self._key_prefix),
            filename=path.name,
            file_size=file_size,
            chunk_size=size,
            content_type=guess_content_type(path),
        )
        logger.info(
            "Planned upload of %s (%s) as %s in %d chunks",
            path.name, format_file_size(file_size), session.storage_key, len(session.chunks),
        )
        return session

    def stream_upload(
        self, path: Path | str, chunk_size: int | None = None,
    ) -> Iterator[UploadEvent]:
        """Upload a file, yielding progress events and then the outcome.

        Validation happens immediately, before the iterator is returned.
        Closing the iterator early cancels the session.
        """
        path = Path(path)
        session = self.create_session(path, chunk_size)
        return self._drive(session, path)

    def start_upload(
        self,
        path: Path | str,
        chunk_size: int | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> UploadOutcome:
        """Upload a file and return its terminal outcome.

        Args:
            path: Local file to upload.
            chunk_size: Bytes per chunk (defaults to the configured size).
            progress_callback: Called with each UploadProgress event.

        Returns:
            UploadCompleted, UploadFailed or UploadCancelled.

        Raises:
            UploadValidationError: If the file cannot be uploaded.
        """
        return self._consume(self.stream_upload(path, chunk_size), progress_callback)

    def resume_upload(
        self,
        session: UploadSession,
        path: Path | str,
        progress_callback: ProgressCallback | None = None,
    ) -> UploadOutcome:
        """Re-drive a failed session, sending only chunks not yet uploaded.

        Raises:
            UploadValidationError: If the session cannot be resumed or the
                file no longer matches it.
        """
        path = Path(path)
        if session.status is SessionStatus.COMPLETED:
            raise UploadValidationError(f"Session {session.session_id} already completed")
        if session.status is SessionStatus.CANCELLED:
            raise UploadValidationError(
                f"Session {session.session_id} was cancelled and its upload aborted"
            )
        if not path.is_file() or path.stat().st_size != session.file_size:
            raise UploadValidationError(f"{path} does not match session {session.session_id}")
        with self._active_lock:
            if session.session_id in self._active:
                raise UploadValidationError(f"Session {session.session_id} is already running")

        session.reactivate()
        logger.info(
            "Resuming %s: %d of %d chunks remaining",
            session.storage_key, len(session.remaining_chunks), len(session.chunks),
        )
        return self._consume(self._drive(session, path), progress_callback)

    def cancel(self, session_id: str) -> bool:
        """Request cancellation of a running session.

        Returns:
            True if the session was running, False otherwise.
        """
        with self._active_lock:
            session = self._active.get(session_id)
        if session is None:
            return False
        logger.info("Cancellation requested for %s", session.storage_key)
        session.cancel()
        return True

    def active_sessions(self) -> list[UploadSession]:
        with self._active_lock:
            return list(self._active.values())

    # --- Session driver ---

    @staticmethod
    def _consume(
        events: Iterator[UploadEvent], progress_callback: ProgressCallback | None,
    ) -> UploadOutcome:
        outcome: UploadOutcome | None = None
        for event in events:
            if isinstance(event, UploadProgress):
                if progress_callback:
                    progress_callback(event)
            else:
                outcome = event
        if outcome is None:
            raise RuntimeError("Upload ended without an outcome")
        return outcome

    def _drive(self, session: UploadSession, path: Path) -> Iterator[UploadEvent]:
        with self._active_lock:
            self._active[session.session_id] = session
        self._archive(session)

        tracker = _RateTracker(PROGRESS_RATE_WINDOW, self._clock, session.bytes_transferred)
        last_progress: UploadProgress | None = None
        failure: str | None = None

        pending = iter(session.remaining_chunks)
        in_flight: dict[Future, ChunkDescriptor] = {}
        pool = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="marquee-upload",
        )
        drained = False
        try:
            while True:
                # Top up the window in file order; nothing new starts once
                # cancel or a failure has been seen
                while (
                    failure is None
                    and not session.cancel_requested
                    and len(in_flight) < self._max_workers
                ):
                    chunk = next(pending, None)
                    if chunk is None:
                        break
                    in_flight[pool.submit(self._transfer_chunk, session, chunk, path)] = chunk

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: in_flight[f].index):
                    chunk = in_flight.pop(future)
                    try:
                        attempt = future.result()
                    except Exception as e:
                        logger.error("Chunk %d of %s crashed: %s", chunk.index, session.filename, e)
                        attempt = _ChunkAttempts(
                            chunk, ChunkResult.rejected(f"{type(e).__name__}: {e}"), 0,
                        )

                    outcome = attempt.result.outcome
                    if outcome is ChunkOutcome.OK:
                        if session.mark_chunk_uploaded(chunk.index, attempt.result.etag):
                            rate = tracker.record(session.bytes_transferred)
                            last_progress = self._progress(session, chunk.index, rate)
                            logger.debug(
                                "Chunk %d/%d of %s uploaded (%.1f%%)",
                                chunk.index + 1, len(session.chunks),
                                session.filename, last_progress.percent,
                            )
                            yield last_progress
                    elif outcome is ChunkOutcome.CANCELLED:
                        session.mark_chunk_failed(chunk.index, "cancelled")
                    else:
                        session.mark_chunk_failed(chunk.index, attempt.result.reason)
                        if failure is None:
                            failure = self._describe_failure(attempt)
                            logger.error("Upload of %s failed: %s", session.filename, failure)
                            # Stop the other in-flight chunks at their next read
                            session.cancel_event.set()
            drained = True
        finally:
            if not drained:
                # Consumer closed the iterator early
                session.cancel()
            pool.shutdown(wait=True, cancel_futures=True)
            if not drained:
                self._release(session)
                session.finish(SessionStatus.CANCELLED, "upload abandoned")
                self._abort(session)
                self._archive(session)

        # Still registered while finalizing so cancel() can reach it
        try:
            outcome = self._conclude(session, failure, last_progress)
        finally:
            self._release(session)
        yield outcome

    def _conclude(
        self,
        session: UploadSession,
        failure: str | None,
        last_progress: UploadProgress | None,
    ) -> UploadOutcome:
        if failure is not None:
            return self._fail(session, failure, last_progress)

        if session.cancel_requested or not session.all_uploaded:
            return self._cancelled(session, last_progress)

        try:
            finalized = self._finalize(session)
        except ObjectStoreError as e:
            return self._fail(session, f"Finalize rejected: {e}", last_progress)
        if not finalized:
            return self._cancelled(session, last_progress)

        session.finish(SessionStatus.COMPLETED)
        self._archive(session)
        logger.info("Upload of %s complete: %s", session.filename, session.storage_key)
        return UploadCompleted(session)

    # --- Per-chunk retry loop (worker threads) ---

    def _transfer_chunk(
        self, session: UploadSession, chunk: ChunkDescriptor, path: Path,
    ) -> _ChunkAttempts:
        body = ChunkBody(path, chunk.offset, chunk.length)
        total_attempts = self._max_retries + 1
        result = ChunkResult.cancelled()

        for attempt in range(1, total_attempts + 1):
            if session.cancel_requested:
                return _ChunkAttempts(chunk, ChunkResult.cancelled(), attempt - 1)

            session.record_attempt(chunk.index)
            result = self._send_once(session, chunk, body)

            if result.outcome is not ChunkOutcome.TRANSIENT:
                return _ChunkAttempts(chunk, result, attempt)
            if attempt == total_attempts:
                break

            delay = self._backoff(attempt)
            logger.warning(
                "Chunk %d of %s failed (attempt %d/%d): %s -- retrying in %.1fs",
                chunk.index, session.filename, attempt, total_attempts, result.reason, delay,
            )
            if session.cancel_event.wait(delay):
                return _ChunkAttempts(chunk, ChunkResult.cancelled(), attempt)

        return _ChunkAttempts(chunk, result, total_attempts)

    def _send_once(
        self, session: UploadSession, chunk: ChunkDescriptor, body: ChunkBody,
    ) -> ChunkResult:
        try:
            target = self._store.issue_write_target(
                session.storage_key, session.content_type, chunk.part_number,
            )
        except ObjectStoreError as e:
            if e.retryable:
                return ChunkResult.transient(str(e))
            return ChunkResult.rejected(str(e))

        chunk.target = target
        try:
            return self._transport.send(target, body, session.cancel_event, self._chunk_timeout)
        except OSError as e:
            # Local read failures will not fix themselves on retry
            return ChunkResult.rejected(f"Read error: {e}")

    def _backoff(self, attempt: int) -> float:
        return min(self._retry_backoff * attempt, self._max_backoff)

    # --- Terminal handling ---

    def _finalize(self, session: UploadSession) -> bool:
        """Complete the upload, retrying transient storage errors.

        Returns:
            False if the session was cancelled while waiting to retry.
        """
        parts = session.uploaded_parts
        for attempt in range(1, self._max_retries + 2):
            try:
                self._store.complete_upload(session.storage_key, parts)
                return True
            except ObjectStoreError as e:
                if not e.retryable or attempt > self._max_retries:
                    raise
                delay = self._backoff(attempt)
                logger.warning(
                    "Finalize of %s failed (attempt %d): %s -- retrying in %.1fs",
                    session.storage_key, attempt, e, delay,
                )
                if session.cancel_event.wait(delay):
                    return False
        raise AssertionError("unreachable")

    def _cancelled(
        self, session: UploadSession, last_progress: UploadProgress | None,
    ) -> UploadCancelled:
        session.finish(SessionStatus.CANCELLED, "cancelled")
        logger.info(
            "Upload of %s cancelled after %s",
            session.filename, format_file_size(session.bytes_transferred),
        )
        self._abort(session)
        self._archive(session)
        return UploadCancelled(session, last_progress)

    def _release(self, session: UploadSession) -> None:
        with self._active_lock:
            self._active.pop(session.session_id, None)

    def _fail(
        self, session: UploadSession, reason: str, last_progress: UploadProgress | None,
    ) -> UploadFailed:
        # Multipart state is kept so the session can be resumed
        session.finish(SessionStatus.FAILED, reason)
        self._archive(session)
        return UploadFailed(session, reason, last_progress)

    def _abort(self, session: UploadSession) -> None:
        try:
            self._store.abort_upload(session.storage_key)
        except ObjectStoreError as e:
            logger.warning("Abort of %s failed: %s", session.storage_key, e)

    def _archive(self, session: UploadSession) -> None:
        if self._session_repo is not None:
            self._session_repo.save(session)

    def _progress(self, session: UploadSession, chunk_index: int, rate: float) -> UploadProgress:
        eta = session.bytes_remaining / rate if rate > 0 else None
        return UploadProgress(
            session_id=session.session_id,
            chunk_index=chunk_index,
            bytes_transferred=session.bytes_transferred,
            total_bytes=session.file_size,
            rate_bps=rate,
            eta_seconds=eta,
        )

    @staticmethod
    def _describe_failure(attempt: _ChunkAttempts) -> str:
        result = attempt.result
        if result.outcome is ChunkOutcome.REJECTED:
            return f"Chunk {attempt.chunk.index} rejected: {result.reason}"
        return (
            f"Chunk {attempt.chunk.index} failed after {attempt.attempts} attempts: "
            f"{result.reason}"
        )
