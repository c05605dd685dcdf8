"""Object store collaborators -- write-target issuance, finalize/abort, chunk transport.

The upload coordinator only talks to the two protocols below.  The HTTP
implementations target a small storage service that hands out presigned
part URLs (``POST /uploads/targets``) and finalizes or aborts multipart
uploads; chunk bodies are PUT straight to the presigned URL.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterator, Protocol

import requests

from marquee.models.upload_session import WriteTarget
from marquee.utils.constants import (
    APP_NAME,
    APP_VERSION,
    DEFAULT_CHUNK_TIMEOUT_SECONDS,
    RETRYABLE_HTTP_STATUSES,
    STORAGE_TIMEOUT_SECONDS,
    UPLOAD_READ_BLOCK_SIZE,
)
from marquee.utils.logger import get_logger

logger = get_logger("core.object_store")

_CONNECT_TIMEOUT_SECONDS = 10


class ObjectStoreError(Exception):
    """A storage service call failed.

    Attributes:
        retryable: True for outages and timeouts, False when the service
            refused the request (bad credentials, unknown key, ...).
    """

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ChunkCancelled(Exception):
    """Raised from a chunk body read once cancellation has been requested."""


# --- Chunk bodies -------------------------------------------------------


@dataclass(frozen=True)
class ChunkBody:
    """A byte range of a local file, read lazily by the transport."""

    path: Path
    offset: int
    length: int

    def open(self, cancel_event: threading.Event | None = None) -> CancellableReader:
        return CancellableReader(self, cancel_event)

    def read_all(self) -> bytes:
        """Read the whole range at once (small chunks and tests)."""
        with open(self.path, "rb") as f:
            f.seek(self.offset)
            return f.read(self.length)


class CancellableReader:
    """File-like view over a ChunkBody that stops as soon as cancel is set.

    Exposes ``__len__`` so HTTP clients send a Content-Length instead of
    chunked transfer encoding; presigned part URLs reject the latter.
    """

    def __init__(
        self,
        body: ChunkBody,
        cancel_event: threading.Event | None = None,
        block_size: int = UPLOAD_READ_BLOCK_SIZE,
    ) -> None:
        self._body = body
        self._cancel_event = cancel_event
        self._block_size = block_size
        self._remaining = body.length
        self._file = open(body.path, "rb")
        self._file.seek(body.offset)

    def __len__(self) -> int:
        return self._remaining

    def read(self, size: int = -1) -> bytes:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise ChunkCancelled(f"Read of {self._body.path.name} cancelled")
        if self._remaining <= 0:
            return b""
        if size is None or size < 0:
            size = self._remaining
        data = self._file.read(min(size, self._remaining))
        self._remaining -= len(data)
        return data

    def __iter__(self) -> Iterator[bytes]:
        while True:
            block = self.read(self._block_size)
            if not block:
                return
            yield block

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> CancellableReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# --- Transport results --------------------------------------------------


class ChunkOutcome(Enum):
    OK = "ok"
    TRANSIENT = "transient"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ChunkResult:
    """Result of one chunk transmission attempt."""

    outcome: ChunkOutcome
    etag: str | None = None
    status_code: int | None = None
    reason: str = ""

    @classmethod
    def ok(cls, etag: str | None = None, status_code: int | None = None) -> ChunkResult:
        return cls(ChunkOutcome.OK, etag=etag, status_code=status_code)

    @classmethod
    def transient(cls, reason: str, status_code: int | None = None) -> ChunkResult:
        return cls(ChunkOutcome.TRANSIENT, status_code=status_code, reason=reason)

    @classmethod
    def rejected(cls, reason: str, status_code: int | None = None) -> ChunkResult:
        return cls(ChunkOutcome.REJECTED, status_code=status_code, reason=reason)

    @classmethod
    def cancelled(cls) -> ChunkResult:
        return cls(ChunkOutcome.CANCELLED, reason="cancelled")

    @property
    def succeeded(self) -> bool:
        return self.outcome is ChunkOutcome.OK


def classify_status(status_code: int) -> ChunkOutcome:
    """Map an HTTP status from a write target to a chunk outcome."""
    if 200 <= status_code < 300:
        return ChunkOutcome.OK
    if status_code in RETRYABLE_HTTP_STATUSES:
        return ChunkOutcome.TRANSIENT
    return ChunkOutcome.REJECTED


# --- Protocols ----------------------------------------------------------


class ObjectStore(Protocol):
    def issue_write_target(
        self, storage_key: str, content_type: str, part_number: int,
    ) -> WriteTarget:
        ...

    def complete_upload(
        self, storage_key: str, parts: list[tuple[int, str | None]],
    ) -> None:
        ...

    def abort_upload(self, storage_key: str) -> None:
        ...


class ChunkTransport(Protocol):
    def send(
        self,
        target: WriteTarget,
        body: ChunkBody,
        cancel_event: threading.Event,
        timeout: float,
    ) -> ChunkResult:
        ...


# --- HTTP implementations -----------------------------------------------


def _session_with_agent(session: requests.Session | None) -> requests.Session:
    session = session or requests.Session()
    session.headers.update({"User-Agent": f"{APP_NAME}/{APP_VERSION}"})
    return session


class HttpObjectStore:
    """Storage service client issuing presigned part URLs.

    Endpoints (relative to ``base_url``):
        POST uploads/targets   {key, contentType, partNumber} -> {url, headers, expiresAt}
        POST uploads/complete  {key, parts: [{partNumber, etag}]}
        POST uploads/abort     {key}
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = STORAGE_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("storage_api_url is not configured")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = _session_with_agent(session)
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def issue_write_target(
        self, storage_key: str, content_type: str, part_number: int,
    ) -> WriteTarget:
        data = self._post("uploads/targets", {
            "key": storage_key,
            "contentType": content_type,
            "partNumber": part_number,
        }, f"write target for {storage_key} part {part_number}")

        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise ObjectStoreError(f"Storage service returned no URL for {storage_key}")
        return WriteTarget(
            url=url,
            headers=dict(data.get("headers") or {}),
            expires_at=_parse_timestamp(data.get("expiresAt")),
        )

    def complete_upload(
        self, storage_key: str, parts: list[tuple[int, str | None]],
    ) -> None:
        self._post("uploads/complete", {
            "key": storage_key,
            "parts": [{"partNumber": n, "etag": etag} for n, etag in parts],
        }, f"finalize of {storage_key}")
        logger.info("Finalized %s (%d parts)", storage_key, len(parts))

    def abort_upload(self, storage_key: str) -> None:
        self._post("uploads/abort", {"key": storage_key}, f"abort of {storage_key}")
        logger.info("Aborted multipart state for %s", storage_key)

    def close(self) -> None:
        self._session.close()

    def _post(self, path: str, payload: dict, what: str) -> dict:
        url = f"{self._base_url}/{path}"
        try:
            response = self._session.post(url, json=payload, timeout=self._timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ObjectStoreError(f"Storage service unreachable for {what}: {e}", retryable=True) from e
        except requests.RequestException as e:
            raise ObjectStoreError(f"Storage request for {what} failed: {e}") from e

        status = response.status_code
        if status >= 400:
            retryable = status in RETRYABLE_HTTP_STATUSES
            raise ObjectStoreError(
                f"Storage service rejected {what}: HTTP {status}", retryable=retryable,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ObjectStoreError(f"Invalid response for {what}: {e}", retryable=True) from e


class HttpChunkTransport:
    """PUTs chunk bodies to presigned write targets."""

    def __init__(
        self,
        session: requests.Session | None = None,
        connect_timeout: float = _CONNECT_TIMEOUT_SECONDS,
    ) -> None:
        self._session = _session_with_agent(session)
        self._connect_timeout = connect_timeout

    def send(
        self,
        target: WriteTarget,
        body: ChunkBody,
        cancel_event: threading.Event,
        timeout: float = DEFAULT_CHUNK_TIMEOUT_SECONDS,
    ) -> ChunkResult:
        if cancel_event.is_set():
            return ChunkResult.cancelled()
        if target.expires_at is not None and target.expires_at <= datetime.now(timezone.utc):
            # Caller asks for a fresh target on the next attempt
            return ChunkResult.transient("write target expired before send")

        headers = dict(target.headers)
        headers["Content-Length"] = str(body.length)

        with body.open(cancel_event) as reader:
            try:
                response = self._session.put(
                    target.url,
                    data=reader,
                    headers=headers,
                    timeout=(self._connect_timeout, timeout),
                )
            except ChunkCancelled:
                return ChunkResult.cancelled()
            except (requests.ConnectionError, requests.Timeout) as e:
                if cancel_event.is_set():
                    return ChunkResult.cancelled()
                return ChunkResult.transient(f"{type(e).__name__}: {e}")
            except requests.RequestException as e:
                return ChunkResult.rejected(f"{type(e).__name__}: {e}")

        status = response.status_code
        outcome = classify_status(status)
        if outcome is ChunkOutcome.OK:
            return ChunkResult.ok(etag=response.headers.get("ETag"), status_code=status)
        reason = f"HTTP {status}"
        if outcome is ChunkOutcome.TRANSIENT:
            return ChunkResult.transient(reason, status_code=status)
        return ChunkResult.rejected(reason, status_code=status)

    def close(self) -> None:
        self._session.close()


def _parse_timestamp(value: object) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable expiresAt %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
