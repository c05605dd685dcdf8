"""Parsed filename model -- attributes guessed from a raw filename."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from marquee.utils.constants import UNKNOWN_TITLE


@dataclass(frozen=True)
class ParsedCandidate:
    """Structured attributes derived purely from a filename string.

    Attributes:
        title: Clean, whitespace-normalized title. Never empty.
        year: Four-digit release year, if one was found.
        quality: Resolution tag (e.g. '1080p', '4K').
        source: Release source tag (e.g. 'BluRay', 'WEB-DL').
        codec: Video codec tag (e.g. 'x264').
        group: Release group tag (e.g. 'YTS').
    """

    title: str = UNKNOWN_TITLE
    year: int | None = None
    quality: str | None = None
    source: str | None = None
    codec: str | None = None
    group: str | None = None

    @property
    def display_label(self) -> str:
        """Human-readable label, e.g. ``Inception (2010) [1080p]``."""
        label = self.title
        if self.year:
            label += f" ({self.year})"
        tags = [t for t in (self.quality, self.source, self.codec) if t]
        if tags:
            label += " [" + " ".join(tags) + "]"
        return label

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> ParsedCandidate:
        """Rebuild a candidate from ``as_dict()`` output (unknown keys ignored)."""
        known = {f for f in cls.__dataclass_fields__}
        filtered = {k: v for k, v in data.items() if k in known}
        if not filtered.get("title"):
            filtered["title"] = UNKNOWN_TITLE
        return cls(**filtered)
