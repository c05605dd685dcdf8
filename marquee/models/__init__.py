"""Data models for Marquee."""

from marquee.models.catalog_match import CatalogMatch
from marquee.models.config import AppConfig
from marquee.models.media_record import MediaRecord
from marquee.models.metadata_status import MetadataStatus
from marquee.models.parsed_candidate import ParsedCandidate
from marquee.models.upload_session import (
    ChunkDescriptor,
    ChunkStatus,
    SessionStatus,
    UploadCancelled,
    UploadCompleted,
    UploadFailed,
    UploadProgress,
    UploadSession,
    WriteTarget,
)

__all__ = [
    "AppConfig",
    "CatalogMatch",
    "ChunkDescriptor",
    "ChunkStatus",
    "MediaRecord",
    "MetadataStatus",
    "ParsedCandidate",
    "SessionStatus",
    "UploadCancelled",
    "UploadCompleted",
    "UploadFailed",
    "UploadProgress",
    "UploadSession",
    "WriteTarget",
]
