"""Upload session models -- chunk bookkeeping, progress events and outcomes."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ChunkStatus(Enum):
    """Transfer state of a single chunk."""

    PENDING = "pending"
    UPLOADED = "uploaded"
    FAILED = "failed"


class SessionStatus(Enum):
    """Overall state of an upload session."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    def is_terminal(self) -> bool:
        return self is not SessionStatus.ACTIVE


@dataclass
class WriteTarget:
    """Time-limited location a single chunk body is sent to.

    Issued by the object store collaborator; the coordinator treats it as
    opaque apart from handing it to the chunk transport.
    """

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    expires_at: datetime | None = None


@dataclass
class ChunkDescriptor:
    """One contiguous byte range of the source file.

    Attributes:
        index: Zero-based position in the file.
        offset: Byte offset of the first byte.
        length: Number of bytes.
        status: Current transfer state.
        attempts: Send attempts made so far (across resumes).
        etag: Entity tag returned by the store for the uploaded part.
        target: Last write target used for this chunk.
        last_error: Reason of the most recent failed attempt.
    """

    index: int
    offset: int
    length: int
    status: ChunkStatus = ChunkStatus.PENDING
    attempts: int = 0
    etag: str | None = None
    target: WriteTarget | None = field(default=None, repr=False)
    last_error: str | None = None

    @property
    def part_number(self) -> int:
        """One-based part number, as multipart stores count them."""
        return self.index + 1


@dataclass
class UploadSession:
    """One in-flight transfer of a local file to the object store.

    All mutation of chunk state and the byte counter goes through
    ``mark_chunk_uploaded`` so a chunk is counted exactly once even when it
    is retried or the session is resumed.
    """

    storage_key: str
    filename: str
    file_size: int
    chunk_size: int
    content_type: str = ""
    chunks: list[ChunkDescriptor] = field(default_factory=list)
    status: SessionStatus = SessionStatus.ACTIVE
    bytes_transferred: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    failure_reason: str | None = None
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    _cancel_event: threading.Event = field(
        default_factory=threading.Event, repr=False, compare=False,
    )

    @classmethod
    def plan(
        cls,
        storage_key: str,
        filename: str,
        file_size: int,
        chunk_size: int,
        content_type: str = "",
    ) -> UploadSession:
        """Create a session with its chunk layout computed.

        Args:
            storage_key: Destination object key.
            filename: Original filename.
            file_size: Source size in bytes (must be positive).
            chunk_size: Bytes per chunk (must be positive).
            content_type: MIME type for the object.

        Returns:
            A new ACTIVE session with all chunks PENDING.
        """
        if file_size <= 0:
            raise ValueError("file_size must be positive")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        chunks = [
            ChunkDescriptor(index=i, offset=offset, length=min(chunk_size, file_size - offset))
            for i, offset in enumerate(range(0, file_size, chunk_size))
        ]
        return cls(
            storage_key=storage_key,
            filename=filename,
            file_size=file_size,
            chunk_size=chunk_size,
            content_type=content_type,
            chunks=chunks,
        )

    # --- Chunk accounting ---

    def mark_chunk_uploaded(self, index: int, etag: str | None = None) -> bool:
        """Record a chunk as uploaded and add its bytes to the counter.

        Returns:
            True if this call counted the chunk, False if it was already
            counted (duplicate delivery).
        """
        with self._lock:
            chunk = self.chunks[index]
            if chunk.status is ChunkStatus.UPLOADED:
                return False
            chunk.status = ChunkStatus.UPLOADED
            chunk.etag = etag
            chunk.last_error = None
            self.bytes_transferred = min(self.file_size, self.bytes_transferred + chunk.length)
            return True

    def mark_chunk_failed(self, index: int, reason: str) -> None:
        with self._lock:
            chunk = self.chunks[index]
            if chunk.status is not ChunkStatus.UPLOADED:
                chunk.status = ChunkStatus.FAILED
            chunk.last_error = reason

    def record_attempt(self, index: int) -> int:
        """Bump and return the attempt counter for a chunk."""
        with self._lock:
            self.chunks[index].attempts += 1
            return self.chunks[index].attempts

    @property
    def remaining_chunks(self) -> list[ChunkDescriptor]:
        """Chunks not yet uploaded, in file order."""
        with self._lock:
            return [c for c in self.chunks if c.status is not ChunkStatus.UPLOADED]

    @property
    def uploaded_parts(self) -> list[tuple[int, str | None]]:
        """``(part_number, etag)`` pairs for every uploaded chunk, in order."""
        with self._lock:
            return [
                (c.part_number, c.etag)
                for c in self.chunks
                if c.status is ChunkStatus.UPLOADED
            ]

    @property
    def all_uploaded(self) -> bool:
        with self._lock:
            return all(c.status is ChunkStatus.UPLOADED for c in self.chunks)

    @property
    def bytes_remaining(self) -> int:
        return self.file_size - self.bytes_transferred

    # --- Lifecycle ---

    def cancel(self) -> None:
        """Signal cancellation to everything driving this session."""
        self._cancel_event.set()

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def finish(self, status: SessionStatus, reason: str | None = None) -> None:
        """Move the session to a terminal status."""
        if not status.is_terminal():
            raise ValueError(f"{status} is not a terminal status")
        with self._lock:
            self.status = status
            self.failure_reason = reason
            self.finished_at = datetime.now(timezone.utc)

    def reactivate(self) -> None:
        """Return a failed or cancelled session to ACTIVE for a resume."""
        with self._lock:
            if self.status is SessionStatus.COMPLETED:
                raise ValueError("A completed session cannot be resumed")
            self.status = SessionStatus.ACTIVE
            self.failure_reason = None
            self.finished_at = None
            for chunk in self.chunks:
                if chunk.status is ChunkStatus.FAILED:
                    chunk.status = ChunkStatus.PENDING
            self._cancel_event = threading.Event()


# --- Events -------------------------------------------------------------


@dataclass(frozen=True)
class UploadProgress:
    """Emitted after each successfully transmitted chunk.

    Attributes:
        session_id: Session the event belongs to.
        chunk_index: Chunk that just completed.
        bytes_transferred: Cumulative bytes uploaded.
        total_bytes: Source file size.
        rate_bps: Moving-average transfer rate in bytes/second.
        eta_seconds: Estimated seconds remaining, None until a rate exists.
    """

    session_id: str
    chunk_index: int
    bytes_transferred: int
    total_bytes: int
    rate_bps: float
    eta_seconds: float | None

    @property
    def percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return round(self.bytes_transferred * 100.0 / self.total_bytes, 1)


@dataclass(frozen=True)
class UploadCompleted:
    """Terminal outcome: every chunk uploaded and the object finalized."""

    session: UploadSession

    @property
    def storage_key(self) -> str:
        return self.session.storage_key


@dataclass(frozen=True)
class UploadFailed:
    """Terminal outcome: a chunk or the finalize call failed for good."""

    session: UploadSession
    reason: str
    last_progress: UploadProgress | None = None


@dataclass(frozen=True)
class UploadCancelled:
    """Terminal outcome: cancellation was requested before completion."""

    session: UploadSession
    last_progress: UploadProgress | None = None


UploadOutcome = UploadCompleted | UploadFailed | UploadCancelled
UploadEvent = UploadProgress | UploadCompleted | UploadFailed | UploadCancelled
