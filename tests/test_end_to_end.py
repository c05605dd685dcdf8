"""End-to-end: upload a file in chunks, survive transient failures, match it."""

from __future__ import annotations

from pathlib import Path

from conftest import FakeCatalog, ScriptedTransport, inline_scheduler, make_match, make_video
from marquee.core.ingestion_orchestrator import IngestionOrchestrator
from marquee.core.metadata_matcher import MetadataMatcher
from marquee.core.object_store import ChunkResult
from marquee.core.upload_coordinator import UploadCoordinator
from marquee.models.metadata_status import MetadataStatus
from marquee.models.upload_session import SessionStatus, UploadCompleted
from marquee.utils.constants import BYTES_PER_MB


def test_chunked_upload_then_automatic_match(
    tmp_path: Path, store, record_repo, history_repo, session_repo,
):
    path = make_video(tmp_path, "The.Matrix.1999.1080p.BluRay.x264-GROUP.mkv", 150 * BYTES_PER_MB)
    transport = ScriptedTransport({
        1: [ChunkResult.transient("HTTP 503", 503), ChunkResult.transient("timeout")],
    })
    coordinator = UploadCoordinator(
        store,
        transport,
        chunk_size=50 * BYTES_PER_MB,
        max_retries=3,
        retry_backoff=0,
        session_repo=session_repo,
    )
    catalog = FakeCatalog(results=[make_match()], details={603: make_match(genres=["Action"])})
    orchestrator = IngestionOrchestrator(
        record_repo,
        MetadataMatcher(catalog, fetch_details=True),
        history=history_repo,
        coordinator=coordinator,
        scheduler=inline_scheduler,
    )
    progress = []

    result = orchestrator.ingest_file(path, progress_callback=progress.append)

    # Upload
    assert isinstance(result.outcome, UploadCompleted)
    session = result.outcome.session
    assert session.status is SessionStatus.COMPLETED
    assert len(session.chunks) == 3
    assert session.bytes_transferred == 150 * BYTES_PER_MB
    assert transport.calls.count(1) == 3
    assert [p.bytes_transferred for p in progress] == [
        50 * BYTES_PER_MB, 100 * BYTES_PER_MB, 150 * BYTES_PER_MB,
    ]
    assert store.completed[0][0] == session.storage_key
    assert session_repo.get(session.session_id)["status"] == "completed"

    # Metadata
    record = orchestrator.get_record(result.record.id)
    assert record.storage_key == session.storage_key
    assert record.parsed.title == "The Matrix"
    assert record.parsed.year == 1999
    assert record.status is MetadataStatus.MATCHED
    assert record.confidence >= 60
    assert record.confidence == 90
    assert record.catalog_match.genres == ["Action"]
    assert catalog.search_calls == [("The Matrix", 1999)]
    assert orchestrator.list_pending_review() == []
