"""Path helpers for uploads: validation, content types, storage keys, formatting."""

from __future__ import annotations

import re
import time
from pathlib import Path

from marquee.utils.constants import (
    CONTENT_TYPES,
    DEFAULT_CONTENT_TYPE,
    STORAGE_KEY_PREFIX,
    SUPPORTED_EXTENSIONS,
)


# Characters that are unsafe or awkward in object store keys
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._()\[\]-]+")

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def is_supported_video(filename: str | Path) -> bool:
    """Check whether a filename has a supported video extension.

    Args:
        filename: File name or path.

    Returns:
        True if the (case-insensitive) suffix is in ``SUPPORTED_EXTENSIONS``.
    """
    return Path(filename).suffix.lower() in SUPPORTED_EXTENSIONS


def guess_content_type(filename: str | Path) -> str:
    """Return the MIME type to declare to the object store for *filename*."""
    return CONTENT_TYPES.get(Path(filename).suffix.lower(), DEFAULT_CONTENT_TYPE)


def sanitize_key_component(name: str) -> str:
    """Make a filename safe for use inside an object key.

    Runs of unsafe characters (spaces, slashes, quotes, ...) collapse to a
    single underscore; leading/trailing underscores are trimmed.

    Args:
        name: Raw filename.

    Returns:
        Sanitized name, or ``"file"`` if nothing usable is left.
    """
    cleaned = _UNSAFE_KEY_CHARS.sub("_", name).strip("_")
    return cleaned or "file"


def build_storage_key(
    filename: str,
    prefix: str = STORAGE_KEY_PREFIX,
    timestamp_ms: int | None = None,
) -> str:
    """Build the object key for a new upload.

    Format: ``<prefix>/<epoch-millis>-<sanitized filename>``.

    Args:
        filename: Original filename (directory parts are dropped).
        prefix: Key prefix inside the bucket.
        timestamp_ms: Override for the timestamp (tests).

    Returns:
        Object key string.
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    base = sanitize_key_component(Path(filename).name)
    prefix = prefix.strip("/")
    key = f"{timestamp_ms}-{base}"
    return f"{prefix}/{key}" if prefix else key


def format_file_size(num_bytes: int | float) -> str:
    """Format a byte count for humans (``1536`` -> ``"1.5 KB"``)."""
    if num_bytes <= 0:
        return "0 Bytes"
    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(_SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{int(size)} Bytes"
    return f"{round(size, 2):g} {_SIZE_UNITS[unit]}"


def format_duration(seconds: float | None) -> str:
    """Format a duration in seconds as ``1h 02m 03s`` / ``4m 05s`` / ``6s``.

    Returns ``"--"`` for unknown (None or negative) durations, which is what
    the progress display shows before a rate estimate exists.
    """
    if seconds is None or seconds < 0:
        return "--"
    total = int(round(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"
