"""Marquee -- Entry point: configuration, wiring and the command-line interface."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import yaml

from marquee.utils.constants import (
    APP_NAME,
    APP_VERSION,
    BYTES_PER_MB,
    CATALOG_API_KEY_ENV,
    CATALOG_SEARCH_LIMIT,
    DEFAULT_CHUNK_MAX_RETRIES,
    DEFAULT_CHUNK_SIZE_MB,
    DEFAULT_CONFIG_FILENAME,
    DEFAULT_MATCH_THRESHOLD,
    DEFAULT_RESOLUTION_WORKERS,
    DEFAULT_REVIEW_THRESHOLD,
    DEFAULT_UPLOAD_MAX_WORKERS,
    MAX_UPLOAD_WORKERS,
    SIMILARITY_JACCARD,
    SIMILARITY_STRATEGIES,
)
from marquee.utils.file_utils import format_duration, format_file_size
from marquee.utils.logger import get_logger, setup_logger

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def _check_threshold(config: dict, key: str, default: int, warnings: list[str]) -> None:
    value = config.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not (0 <= value <= 100):
        warnings.append(f"{key} must be 0-100, got {value!r}. Using default ({default}).")
        config[key] = default


def _check_int(
    config: dict,
    key: str,
    default: int,
    warnings: list[str],
    minimum: int = 1,
    maximum: int | None = None,
) -> None:
    value = config.get(key, default)
    valid = isinstance(value, int) and not isinstance(value, bool) and value >= minimum
    if valid and maximum is not None and value > maximum:
        valid = False
    if not valid:
        bounds = f">= {minimum}" if maximum is None else f"{minimum}-{maximum}"
        warnings.append(f"{key} must be an integer {bounds}, got {value!r}. Using default ({default}).")
        config[key] = default


def validate_config(config: dict) -> list[str]:
    """Validate configuration values and return a list of warnings.

    Checks:
    - Thresholds are within 0-100 and match >= review
    - Chunk size, retry counts and worker counts are sane integers
    - The title similarity strategy is known
    - The storage service URL is set (warning only; uploads need it)

    Invalid values are replaced by their defaults in *config*.

    Args:
        config: Configuration dictionary.

    Returns:
        List of human-readable warning strings. Empty if all checks pass.
    """
    warnings: list[str] = []

    _check_threshold(config, "match_threshold", DEFAULT_MATCH_THRESHOLD, warnings)
    _check_threshold(config, "review_threshold", DEFAULT_REVIEW_THRESHOLD, warnings)

    match_threshold = config.get("match_threshold", DEFAULT_MATCH_THRESHOLD)
    review_threshold = config.get("review_threshold", DEFAULT_REVIEW_THRESHOLD)
    if match_threshold < review_threshold:
        warnings.append(
            f"match_threshold ({match_threshold}) must be >= review_threshold "
            f"({review_threshold}). Swapping them."
        )
        config["match_threshold"] = review_threshold
        config["review_threshold"] = match_threshold

    _check_int(config, "chunk_size_mb", DEFAULT_CHUNK_SIZE_MB, warnings)
    _check_int(config, "chunk_max_retries", DEFAULT_CHUNK_MAX_RETRIES, warnings, minimum=0)
    _check_int(
        config, "upload_max_workers", DEFAULT_UPLOAD_MAX_WORKERS, warnings,
        maximum=MAX_UPLOAD_WORKERS,
    )
    _check_int(config, "resolution_workers", DEFAULT_RESOLUTION_WORKERS, warnings)

    similarity = config.get("title_similarity", SIMILARITY_JACCARD)
    if similarity not in SIMILARITY_STRATEGIES:
        warnings.append(
            f"title_similarity must be one of {sorted(SIMILARITY_STRATEGIES)}, "
            f"got {similarity!r}. Using default ({SIMILARITY_JACCARD})."
        )
        config["title_similarity"] = SIMILARITY_JACCARD

    if not config.get("storage_api_url"):
        warnings.append("storage_api_url is not set. Uploads will not be possible.")

    return warnings


def default_config_path() -> Path:
    return Path(__file__).resolve().parent.parent / "config" / DEFAULT_CONFIG_FILENAME


def load_config(path: Path | str | None = None) -> dict:
    """Load configuration from config.yaml.

    The catalog API key falls back to the ``TMDB_API_KEY`` environment
    variable when the file does not set one.

    Args:
        path: Explicit config file; defaults to ``config/config.yaml``.

    Returns:
        Configuration dictionary (suitable for ``AppConfig.from_dict()``).
    """
    config: dict = {}

    config_path = Path(path) if path else default_config_path()
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    if not config.get("catalog_api_key"):
        env_key = os.environ.get(CATALOG_API_KEY_ENV, "")
        if env_key:
            config["catalog_api_key"] = env_key

    return config


@dataclass
class Services:
    """Everything the CLI commands need, wired from one AppConfig."""

    db: object
    records: object
    history: object
    sessions: object
    catalog: object
    matcher: object
    orchestrator: object
    coordinator: object | None = None

    def close(self) -> None:
        self.orchestrator.shutdown(wait=True)
        self.catalog.close()
        self.db.close()


def build_services(config, with_uploads: bool = False) -> Services:
    """Construct the database, catalog, matcher, coordinator and orchestrator."""
    from marquee.core.catalog_client import CatalogClient
    from marquee.core.ingestion_orchestrator import IngestionOrchestrator
    from marquee.core.metadata_matcher import MetadataMatcher
    from marquee.core.object_store import HttpChunkTransport, HttpObjectStore
    from marquee.core.upload_coordinator import UploadCoordinator
    from marquee.db.database import Database
    from marquee.db.repositories import (
        ApiCacheRepository,
        HistoryRepository,
        MediaRecordRepository,
        UploadSessionRepository,
    )

    db = Database(config.db_path_resolved)
    db.connect()
    records = MediaRecordRepository(db.connection, db.lock)
    history = HistoryRepository(db.connection, db.lock)
    sessions = UploadSessionRepository(db.connection, db.lock)

    api_cache = None
    if config.catalog_cache_enabled:
        api_cache = ApiCacheRepository(db.connection, db.lock)
        api_cache.prune()  # Clean up expired cache entries on startup

    catalog = CatalogClient(
        api_key=config.catalog_api_key,
        base_url=config.catalog_base_url,
        language=config.catalog_language,
        timeout=config.catalog_timeout_seconds,
        max_retries=config.catalog_max_retries,
        rate_limit=config.catalog_rate_limit,
        api_cache=api_cache,
    )
    matcher = MetadataMatcher.from_config(config, catalog)

    coordinator = None
    if with_uploads:
        try:
            store = HttpObjectStore(
                config.storage_api_url,
                token=config.storage_api_token,
                timeout=config.storage_timeout_seconds,
            )
        except ValueError:
            catalog.close()
            db.close()
            raise
        coordinator = UploadCoordinator.from_config(
            config, store, HttpChunkTransport(), session_repo=sessions,
        )

    orchestrator = IngestionOrchestrator(
        records,
        matcher,
        history=history,
        coordinator=coordinator,
        resolution_workers=config.resolution_workers,
        default_category=config.default_category,
    )
    return Services(db, records, history, sessions, catalog, matcher, orchestrator, coordinator)


# --- Output ---


def format_record(record) -> str:
    """One-line summary of a media record for listings."""
    match = record.catalog_match
    guess = match.display_label if match else "-"
    return (
        f"#{record.id:<5} {record.status.value:<8} {record.confidence:>3}  "
        f"{record.original_filename}  ->  {guess}"
    )


def print_record_details(record, history: list[dict]) -> None:
    print(f"Record #{record.id}")
    print(f"  file        : {record.original_filename} ({format_file_size(record.file_size)})")
    print(f"  storage key : {record.storage_key}")
    print(f"  category    : {record.category}")
    print(f"  parsed      : {record.parsed.display_label}")
    print(f"  status      : {record.status.value}")
    print(f"  confidence  : {record.confidence}")
    if record.catalog_match:
        m = record.catalog_match
        print(f"  match       : {m.display_label} [id {m.external_id}]")
        if m.genres:
            print(f"  genres      : {', '.join(m.genres)}")
    if record.error_message:
        print(f"  error       : {record.error_message}")
    if history:
        print("  history:")
        for entry in history:
            print(
                f"    {entry['created_at']}  {entry['action']:<14} "
                f"{entry['from_status'] or '-'} -> {entry['to_status']}"
                + (f"  ({entry['note']})" if entry.get("note") else "")
            )


def _print_progress(event) -> None:
    rate = format_file_size(event.rate_bps) + "/s" if event.rate_bps else "--"
    sys.stderr.write(
        f"\r  {event.percent:5.1f}%  {format_file_size(event.bytes_transferred)}"
        f" / {format_file_size(event.total_bytes)}  {rate}  ETA {format_duration(event.eta_seconds)}   "
    )
    sys.stderr.flush()


# --- Commands ---


def cmd_upload(args, services: Services) -> int:
    from marquee.models.upload_session import UploadCancelled, UploadFailed

    orchestrator = services.orchestrator
    result = orchestrator.ingest_file(
        args.path, category=args.category, progress_callback=_print_progress,
    )
    sys.stderr.write("\n")
    if isinstance(result.outcome, UploadFailed):
        print(f"Upload failed: {result.outcome.reason}")
        return EXIT_FAILURE
    if isinstance(result.outcome, UploadCancelled):
        print("Upload cancelled")
        return EXIT_FAILURE

    # Wait for the background resolution so the printed status is final
    orchestrator.shutdown(wait=True)
    record = orchestrator.get_record(result.record.id)
    print(format_record(record))
    return EXIT_OK


def cmd_resolve(args, services: Services) -> int:
    record = services.orchestrator.auto_resolve(args.record_id)
    print(format_record(record))
    return EXIT_FAILURE if record.error_message else EXIT_OK


def cmd_assign(args, services: Services) -> int:
    record = services.orchestrator.manual_assign(args.record_id, args.external_id)
    print(format_record(record))
    return EXIT_OK


def cmd_show(args, services: Services) -> int:
    orchestrator = services.orchestrator
    record = orchestrator.get_record(args.record_id)
    if record is None:
        print(f"No record with id {args.record_id}")
        return EXIT_FAILURE
    history = orchestrator.record_history(record.id) if args.history else []
    print_record_details(record, history)
    if args.candidates:
        _print_candidates(orchestrator.review_candidates(record.id))
    return EXIT_OK


def cmd_pending(args, services: Services) -> int:
    records = services.orchestrator.list_pending_review()
    if not records:
        print("Nothing waiting for review.")
        return EXIT_OK
    for record in records:
        print(format_record(record))
    print(f"{len(records)} record(s) waiting for review.")
    return EXIT_OK


def cmd_search(args, services: Services) -> int:
    _print_candidates(services.matcher.search_candidates(args.query, args.year, args.limit))
    return EXIT_OK


def cmd_retry_errors(args, services: Services) -> int:
    records = services.orchestrator.retry_errored()
    for record in records:
        print(format_record(record))
    still_failing = sum(1 for r in records if r.error_message)
    print(f"Retried {len(records)} record(s); {still_failing} still in error.")
    return EXIT_FAILURE if still_failing else EXIT_OK


def _print_candidates(candidates) -> None:
    if not candidates:
        print("No catalog results.")
        return
    for match, score in candidates:
        print(f"  [{match.external_id:>8}] {score:>3}  {match.display_label}")


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="marquee",
        description="Upload video files in resumable chunks and match them to catalog metadata.",
    )
    p.add_argument(
        "--config",
        default=None,
        help=f"Path to config YAML (default: config/{DEFAULT_CONFIG_FILENAME}).",
    )
    p.add_argument("--log-level", default=None, help="Override the configured log level.")
    p.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")

    sub = p.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upload", help="Upload a video file and catalogue it.")
    up.add_argument("path", help="Local video file.")
    up.add_argument("--category", default=None, help="Library category (default from config).")
    up.add_argument(
        "--chunk-size-mb", type=int, default=None,
        help="Override the configured chunk size (MiB).",
    )
    up.set_defaults(func=cmd_upload, with_uploads=True)

    res = sub.add_parser("resolve", help="Re-run automatic matching for a record.")
    res.add_argument("record_id", type=int)
    res.set_defaults(func=cmd_resolve)

    assign = sub.add_parser("assign", help="Manually assign a catalog id to a record.")
    assign.add_argument("record_id", type=int)
    assign.add_argument("external_id", type=int)
    assign.set_defaults(func=cmd_assign)

    show = sub.add_parser("show", help="Show one record.")
    show.add_argument("record_id", type=int)
    show.add_argument("--history", action="store_true", help="Include status history.")
    show.add_argument(
        "--candidates", action="store_true", help="Search the catalog for alternatives.",
    )
    show.set_defaults(func=cmd_show)

    pending = sub.add_parser("pending", help="List records waiting for review.")
    pending.set_defaults(func=cmd_pending)

    search = sub.add_parser("search", help="Search the catalog and score the results.")
    search.add_argument("query")
    search.add_argument("--year", type=int, default=None)
    search.add_argument("--limit", type=int, default=CATALOG_SEARCH_LIMIT)
    search.set_defaults(func=cmd_search)

    retry = sub.add_parser("retry-errors", help="Retry matching for every errored record.")
    retry.set_defaults(func=cmd_retry_errors)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point. Loads config, sets up logging, and runs a command."""
    from marquee.core.catalog_client import CatalogError
    from marquee.core.ingestion_orchestrator import RecordNotFoundError
    from marquee.core.upload_coordinator import UploadValidationError
    from marquee.models.config import AppConfig

    args = build_arg_parser().parse_args(argv)

    raw_config = load_config(args.config)

    # Validate the raw dict first (mutates to fix invalid values)
    config_warnings = validate_config(raw_config)
    if args.log_level:
        raw_config["log_level"] = args.log_level
    if getattr(args, "chunk_size_mb", None):
        raw_config["chunk_size_mb"] = args.chunk_size_mb

    config = AppConfig.from_dict(raw_config)

    setup_logger(log_level=config.log_level, log_file=config.log_file)
    logger = get_logger("main")
    logger.debug("%s v%s starting", APP_NAME, APP_VERSION)

    for warning in config_warnings:
        logger.warning("Config: %s", warning)

    if not config.catalog_api_key:
        logger.warning(
            "Catalog API key not configured. Matching will fail. "
            "Set catalog_api_key in config/config.yaml or %s.", CATALOG_API_KEY_ENV,
        )

    try:
        services = build_services(config, with_uploads=getattr(args, "with_uploads", False))
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    logger.debug(
        "Chunk size %s, %d retries per chunk",
        format_file_size(config.chunk_size_mb * BYTES_PER_MB), config.chunk_max_retries,
    )

    try:
        return args.func(args, services)
    except UploadValidationError as e:
        print(f"Cannot upload: {e}", file=sys.stderr)
        return EXIT_USAGE
    except RecordNotFoundError as e:
        print(str(e), file=sys.stderr)
        return EXIT_FAILURE
    except CatalogError as e:
        print(f"Catalog error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        if services.coordinator is not None:
            for session in services.coordinator.active_sessions():
                services.coordinator.cancel(session.session_id)
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
