"""Typed configuration model for Marquee.

All configuration values have explicit types, defaults, and documentation.
Thresholds and retry counts are configuration, not hardcoded law.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from marquee.utils.constants import (
    BYTES_PER_MB,
    CATALOG_BASE_URL,
    CATALOG_LANGUAGE,
    CATALOG_MAX_RETRIES,
    CATALOG_RATE_LIMIT,
    CATALOG_TIMEOUT_SECONDS,
    DEFAULT_CATEGORY,
    DEFAULT_CHUNK_MAX_RETRIES,
    DEFAULT_CHUNK_RETRY_BACKOFF_SECONDS,
    DEFAULT_CHUNK_SIZE_MB,
    DEFAULT_CHUNK_TIMEOUT_SECONDS,
    DEFAULT_DB_FILENAME,
    DEFAULT_MATCH_THRESHOLD,
    DEFAULT_MAX_FILE_SIZE_MB,
    DEFAULT_RESOLUTION_WORKERS,
    DEFAULT_REVIEW_THRESHOLD,
    DEFAULT_UPLOAD_MAX_WORKERS,
    SIMILARITY_JACCARD,
    STORAGE_KEY_PREFIX,
    STORAGE_TIMEOUT_SECONDS,
)


@dataclass
class AppConfig:
    """Strongly-typed configuration for the Marquee ingestion core.

    Attributes:
        storage_api_url: Base URL of the service that issues write targets
            and finalizes uploads.
        storage_api_token: Bearer token for the storage service (optional).
        storage_key_prefix: Prefix for new object keys.
        storage_timeout_seconds: Timeout for issue/complete/abort calls.
        chunk_size_mb: Size of each upload chunk in MiB.
        max_file_size_mb: Largest accepted upload in MiB.
        chunk_max_retries: Retries per chunk after the first attempt.
        chunk_retry_backoff_seconds: Base backoff, multiplied by attempt.
        chunk_timeout_seconds: Read timeout for a single chunk transmission.
        upload_max_workers: Chunks in flight at once (1 = sequential).
        default_category: Category recorded when none is given.
        catalog_api_key: TMDB API key (falls back to ``TMDB_API_KEY``).
        catalog_base_url: TMDB API base URL.
        catalog_language: Language passed to the catalog.
        catalog_rate_limit: Seconds between catalog requests.
        catalog_max_retries: Attempts per catalog request.
        catalog_timeout_seconds: Timeout for a single catalog request.
        catalog_cache_enabled: Cache successful catalog responses in SQLite.
        catalog_fetch_details: Replace the top search result with its full
            details record (genres, runtime, credits).
        match_threshold: Score (0-100) at or above which a match is
            committed automatically.
        review_threshold: Score below which a guess is treated as no match
            when classifying for review.
        title_similarity: ``"jaccard"`` (character sets) or ``"token_sort"``.
        resolution_workers: Background threads resolving new records.
        db_path: SQLite database path.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_file: Path to log file (None = console only).
    """

    # --- Object Store ---
    storage_api_url: str = ""
    storage_api_token: str = ""
    storage_key_prefix: str = STORAGE_KEY_PREFIX
    storage_timeout_seconds: float = STORAGE_TIMEOUT_SECONDS

    # --- Upload ---
    chunk_size_mb: int = DEFAULT_CHUNK_SIZE_MB
    max_file_size_mb: int = DEFAULT_MAX_FILE_SIZE_MB
    chunk_max_retries: int = DEFAULT_CHUNK_MAX_RETRIES
    chunk_retry_backoff_seconds: float = DEFAULT_CHUNK_RETRY_BACKOFF_SECONDS
    chunk_timeout_seconds: float = DEFAULT_CHUNK_TIMEOUT_SECONDS
    upload_max_workers: int = DEFAULT_UPLOAD_MAX_WORKERS
    default_category: str = DEFAULT_CATEGORY

    # --- Catalog ---
    catalog_api_key: str = ""
    catalog_base_url: str = CATALOG_BASE_URL
    catalog_language: str = CATALOG_LANGUAGE
    catalog_rate_limit: float = CATALOG_RATE_LIMIT
    catalog_max_retries: int = CATALOG_MAX_RETRIES
    catalog_timeout_seconds: float = CATALOG_TIMEOUT_SECONDS
    catalog_cache_enabled: bool = True
    catalog_fetch_details: bool = True

    # --- Confidence ---
    match_threshold: int = DEFAULT_MATCH_THRESHOLD
    review_threshold: int = DEFAULT_REVIEW_THRESHOLD
    title_similarity: str = SIMILARITY_JACCARD

    # --- Processing ---
    resolution_workers: int = DEFAULT_RESOLUTION_WORKERS

    # --- Database ---
    db_path: str = DEFAULT_DB_FILENAME

    # --- Logging ---
    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> AppConfig:
        """Create an AppConfig from a raw dictionary (e.g., from YAML).

        Unknown keys are silently ignored so YAML files with extra comments
        or future keys don't break older code.

        Args:
            data: Dictionary of configuration values.

        Returns:
            Populated AppConfig instance.
        """
        known_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known_fields and v is not None}
        return cls(**filtered)

    def to_dict(self) -> dict:
        """Serialize the config to a dictionary.

        Returns:
            Dictionary of all configuration values.
        """
        from dataclasses import asdict
        return asdict(self)

    @property
    def chunk_size_bytes(self) -> int:
        return int(self.chunk_size_mb * BYTES_PER_MB)

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * BYTES_PER_MB)

    @property
    def db_path_resolved(self) -> Path:
        """Return the db_path as a resolved Path."""
        return Path(self.db_path).expanduser().resolve()
