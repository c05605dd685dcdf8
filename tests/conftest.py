"""Shared fixtures and fake collaborators for the test suite."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable

import pytest

from marquee.core.catalog_client import CatalogUnavailableError
from marquee.core.object_store import ChunkResult, ObjectStoreError
from marquee.db.database import Database
from marquee.db.repositories import (
    HistoryRepository,
    MediaRecordRepository,
    UploadSessionRepository,
)
from marquee.models.catalog_match import CatalogMatch
from marquee.models.upload_session import WriteTarget


class FakeObjectStore:
    """In-memory object store recording every call."""

    def __init__(self) -> None:
        self.issued: list[tuple[str, int]] = []
        self.completed: list[tuple[str, list]] = []
        self.aborted: list[str] = []
        self.reject_parts: set[int] = set()
        self.complete_error: ObjectStoreError | None = None
        self._lock = threading.Lock()

    def issue_write_target(self, storage_key: str, content_type: str, part_number: int) -> WriteTarget:
        with self._lock:
            self.issued.append((storage_key, part_number))
        if part_number in self.reject_parts:
            raise ObjectStoreError("HTTP 403 from storage service", retryable=False)
        return WriteTarget(url=f"https://store.test/{storage_key}?part={part_number}")

    def complete_upload(self, storage_key: str, parts: list) -> None:
        if self.complete_error is not None:
            raise self.complete_error
        self.completed.append((storage_key, list(parts)))

    def abort_upload(self, storage_key: str) -> None:
        self.aborted.append(storage_key)


class ScriptedTransport:
    """Chunk transport that plays back scripted results per chunk index.

    Chunks without a script (or whose script ran out) succeed.  ``on_send``
    runs before the scripted result and may return a result of its own.
    """

    def __init__(
        self,
        script: dict[int, list[ChunkResult]] | None = None,
        on_send: Callable[[int, threading.Event], ChunkResult | None] | None = None,
    ) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.on_send = on_send
        self.calls: list[int] = []
        self._lock = threading.Lock()

    def send(self, target: WriteTarget, body, cancel_event: threading.Event, timeout: float) -> ChunkResult:
        index = int(target.url.rsplit("=", 1)[1]) - 1
        with self._lock:
            self.calls.append(index)
        if self.on_send is not None:
            result = self.on_send(index, cancel_event)
            if result is not None:
                return result
        if cancel_event.is_set():
            return ChunkResult.cancelled()
        with self._lock:
            queue = self.script.get(index)
            if queue:
                return queue.pop(0)
        return ChunkResult.ok(etag=f"etag-{index}")


class FakeCatalog:
    """Catalog double: fixed search results and a details table."""

    def __init__(
        self,
        results: list[CatalogMatch] | None = None,
        details: dict[int, CatalogMatch] | None = None,
    ) -> None:
        self.results = list(results or [])
        self.details = dict(details or {})
        self.error: Exception | None = None
        self.search_calls: list[tuple[str, int | None]] = []
        self.detail_calls: list[int] = []

    def search(self, query: str, year: int | None = None, limit: int = 10) -> list[CatalogMatch]:
        self.search_calls.append((query, year))
        if self.error is not None:
            raise self.error
        return list(self.results)[:limit]

    def get_details(self, external_id) -> CatalogMatch | None:
        self.detail_calls.append(int(external_id))
        if self.error is not None:
            raise self.error
        return self.details.get(int(external_id))

    def go_down(self) -> None:
        self.error = CatalogUnavailableError("Catalog search failed after 3 attempts: HTTP 503")

    def come_back(self) -> None:
        self.error = None


def make_match(
    external_id: int = 603,
    title: str = "The Matrix",
    release_date: str = "1999-03-30",
    popularity: float = 85.0,
    vote_count: int = 24000,
    **kwargs,
) -> CatalogMatch:
    return CatalogMatch(
        external_id=external_id,
        title=title,
        release_date=release_date,
        popularity=popularity,
        vote_count=vote_count,
        **kwargs,
    )


def make_video(directory: Path, name: str, size: int) -> Path:
    """Create a sparse file of *size* bytes (no real data is written)."""
    path = directory / name
    with open(path, "wb") as f:
        f.truncate(size)
    return path


def inline_scheduler(job: Callable[[], object]) -> object:
    return job()


@pytest.fixture
def db(tmp_path: Path):
    database = Database(tmp_path / "marquee.db")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def record_repo(db: Database) -> MediaRecordRepository:
    return MediaRecordRepository(db.connection, db.lock)


@pytest.fixture
def history_repo(db: Database) -> HistoryRepository:
    return HistoryRepository(db.connection, db.lock)


@pytest.fixture
def session_repo(db: Database) -> UploadSessionRepository:
    return UploadSessionRepository(db.connection, db.lock)


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog(results=[make_match()], details={603: make_match(genres=["Action"])})
