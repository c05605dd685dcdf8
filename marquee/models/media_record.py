"""Media record model -- one ingested file and its resolved metadata."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from marquee.models.catalog_match import CatalogMatch
from marquee.models.metadata_status import MetadataStatus
from marquee.models.parsed_candidate import ParsedCandidate


@dataclass
class MediaRecord:
    """The durable, queryable representation of one uploaded file.

    Attributes:
        storage_key: Object key of the finalized upload.
        original_filename: Filename as supplied by the user.
        file_size: Size in bytes.
        content_type: MIME type declared at upload.
        category: Library category (e.g. 'movies').
        parsed: Attributes guessed from the filename.
        catalog_match: Best catalog entry (auto guess or manual pick).
        confidence: Score (0-100) of ``parsed`` against ``catalog_match``.
        status: Current metadata lifecycle status.
        error_message: Last resolution error (ERROR status only).
        created_at: When the record was created.
        updated_at: When the record last changed.
        matched_at: When the record last became MATCHED or MANUAL.
    """

    # --- Required ---
    storage_key: str
    original_filename: str

    # --- File Info ---
    file_size: int = 0
    content_type: str = ""
    category: str = ""

    # --- Metadata ---
    parsed: ParsedCandidate = field(default_factory=ParsedCandidate)
    catalog_match: CatalogMatch | None = None
    confidence: int = 0

    # --- Lifecycle ---
    status: MetadataStatus = MetadataStatus.PENDING
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    matched_at: datetime | None = None

    # --- Database ---
    id: int | None = None

    @property
    def display_title(self) -> str:
        """Catalog title when known, else the parsed title."""
        if self.catalog_match is not None and self.catalog_match.title:
            return self.catalog_match.title
        return self.parsed.title

    @property
    def external_id(self) -> int | None:
        return self.catalog_match.external_id if self.catalog_match else None

    @property
    def has_match(self) -> bool:
        return self.catalog_match is not None
