"""Tests for the object store collaborators and chunk bodies."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from marquee.core.object_store import (
    ChunkBody,
    ChunkCancelled,
    ChunkOutcome,
    HttpChunkTransport,
    HttpObjectStore,
    ObjectStoreError,
    classify_status,
)
from marquee.models.upload_session import WriteTarget


@pytest.fixture
def data_file(tmp_path: Path) -> Path:
    path = tmp_path / "data.bin"
    path.write_bytes(bytes(range(256)) * 4)  # 1024 bytes
    return path


def _response(status: int = 200, payload: dict | None = None, headers: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    response.headers = headers or {}
    return response


# ------------------------------------------------------------------
# Chunk bodies
# ------------------------------------------------------------------


class TestChunkBody:
    def test_reads_only_its_range(self, data_file: Path):
        body = ChunkBody(data_file, offset=256, length=10)
        assert body.read_all() == bytes(range(10))

    def test_reader_reports_length(self, data_file: Path):
        with ChunkBody(data_file, 0, 300).open() as reader:
            assert len(reader) == 300
            reader.read(100)
            assert len(reader) == 200

    def test_reader_iterates_in_blocks(self, data_file: Path):
        from marquee.core.object_store import CancellableReader

        reader = CancellableReader(ChunkBody(data_file, 0, 1000), block_size=300)
        try:
            blocks = list(reader)
        finally:
            reader.close()
        assert [len(b) for b in blocks] == [300, 300, 300, 100]

    def test_reader_stops_when_cancelled(self, data_file: Path):
        event = threading.Event()
        with ChunkBody(data_file, 0, 1000).open(event) as reader:
            reader.read(10)
            event.set()
            with pytest.raises(ChunkCancelled):
                reader.read(10)


def test_classify_status():
    assert classify_status(200) is ChunkOutcome.OK
    assert classify_status(204) is ChunkOutcome.OK
    assert classify_status(503) is ChunkOutcome.TRANSIENT
    assert classify_status(429) is ChunkOutcome.TRANSIENT
    assert classify_status(403) is ChunkOutcome.REJECTED
    assert classify_status(400) is ChunkOutcome.REJECTED


# ------------------------------------------------------------------
# Storage service
# ------------------------------------------------------------------


class TestHttpObjectStore:
    def _store(self, session) -> HttpObjectStore:
        session.headers = {}
        return HttpObjectStore("https://storage.test/api/", token="s3cret", session=session)

    def test_requires_base_url(self):
        with pytest.raises(ValueError):
            HttpObjectStore("")

    def test_bearer_token(self):
        session = MagicMock()
        self._store(session)
        assert session.headers["Authorization"] == "Bearer s3cret"

    def test_issue_write_target(self):
        session = MagicMock()
        session.post.return_value = _response(200, {
            "url": "https://bucket.test/part1",
            "headers": {"x-amz-acl": "private"},
            "expiresAt": "2030-01-01T00:00:00Z",
        })
        target = self._store(session).issue_write_target("uploads/movies/a.mkv", "video/x-matroska", 1)

        assert target.url == "https://bucket.test/part1"
        assert target.headers == {"x-amz-acl": "private"}
        assert target.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
        args, kwargs = session.post.call_args
        assert args[0] == "https://storage.test/api/uploads/targets"
        assert kwargs["json"] == {
            "key": "uploads/movies/a.mkv",
            "contentType": "video/x-matroska",
            "partNumber": 1,
        }

    def test_missing_url_is_an_error(self):
        session = MagicMock()
        session.post.return_value = _response(200, {})
        with pytest.raises(ObjectStoreError):
            self._store(session).issue_write_target("k", "video/mp4", 1)

    def test_complete_sends_parts(self):
        session = MagicMock()
        session.post.return_value = _response(200)
        self._store(session).complete_upload("k", [(1, "e1"), (2, "e2")])
        _, kwargs = session.post.call_args
        assert kwargs["json"]["parts"] == [
            {"partNumber": 1, "etag": "e1"},
            {"partNumber": 2, "etag": "e2"},
        ]

    def test_outage_is_retryable(self):
        session = MagicMock()
        session.post.return_value = _response(503)
        with pytest.raises(ObjectStoreError) as exc_info:
            self._store(session).abort_upload("k")
        assert exc_info.value.retryable

    def test_refusal_is_not_retryable(self):
        session = MagicMock()
        session.post.return_value = _response(403)
        with pytest.raises(ObjectStoreError) as exc_info:
            self._store(session).complete_upload("k", [])
        assert not exc_info.value.retryable

    def test_connection_error_is_retryable(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("down")
        with pytest.raises(ObjectStoreError) as exc_info:
            self._store(session).issue_write_target("k", "video/mp4", 1)
        assert exc_info.value.retryable


# ------------------------------------------------------------------
# Chunk transport
# ------------------------------------------------------------------


class TestHttpChunkTransport:
    def _transport(self, session) -> HttpChunkTransport:
        session.headers = {}
        return HttpChunkTransport(session=session)

    def test_ok_carries_etag(self, data_file: Path):
        session = MagicMock()
        session.put.return_value = _response(200, headers={"ETag": '"abc"'})
        result = self._transport(session).send(
            WriteTarget(url="https://bucket.test/p1", headers={"x-test": "1"}),
            ChunkBody(data_file, 0, 100),
            threading.Event(),
            30,
        )
        assert result.succeeded
        assert result.etag == '"abc"'
        _, kwargs = session.put.call_args
        assert kwargs["headers"]["Content-Length"] == "100"
        assert kwargs["headers"]["x-test"] == "1"
        assert kwargs["timeout"] == (10, 30)

    def test_server_error_is_transient(self, data_file: Path):
        session = MagicMock()
        session.put.return_value = _response(503)
        result = self._transport(session).send(
            WriteTarget(url="u"), ChunkBody(data_file, 0, 10), threading.Event(), 30,
        )
        assert result.outcome is ChunkOutcome.TRANSIENT
        assert result.status_code == 503

    def test_forbidden_is_rejected(self, data_file: Path):
        session = MagicMock()
        session.put.return_value = _response(403)
        result = self._transport(session).send(
            WriteTarget(url="u"), ChunkBody(data_file, 0, 10), threading.Event(), 30,
        )
        assert result.outcome is ChunkOutcome.REJECTED

    def test_timeout_is_transient(self, data_file: Path):
        session = MagicMock()
        session.put.side_effect = requests.Timeout("slow")
        result = self._transport(session).send(
            WriteTarget(url="u"), ChunkBody(data_file, 0, 10), threading.Event(), 30,
        )
        assert result.outcome is ChunkOutcome.TRANSIENT

    def test_cancel_before_send(self, data_file: Path):
        session = MagicMock()
        event = threading.Event()
        event.set()
        result = self._transport(session).send(
            WriteTarget(url="u"), ChunkBody(data_file, 0, 10), event, 30,
        )
        assert result.outcome is ChunkOutcome.CANCELLED
        session.put.assert_not_called()

    def test_cancel_during_body_read(self, data_file: Path):
        session = MagicMock()
        session.put.side_effect = ChunkCancelled("stop")
        result = self._transport(session).send(
            WriteTarget(url="u"), ChunkBody(data_file, 0, 10), threading.Event(), 30,
        )
        assert result.outcome is ChunkOutcome.CANCELLED

    def test_expired_target_is_transient(self, data_file: Path):
        session = MagicMock()
        expired = WriteTarget(url="u", expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        result = self._transport(session).send(
            expired, ChunkBody(data_file, 0, 10), threading.Event(), 30,
        )
        assert result.outcome is ChunkOutcome.TRANSIENT
        session.put.assert_not_called()
