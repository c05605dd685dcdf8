"""Catalog match model -- one result from the external movie catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class CatalogMatch:
    """A single catalog entry returned by a search or details lookup.

    Attributes:
        external_id: Catalog identifier (TMDB movie id).
        title: Canonical title.
        release_date: ISO date string (``YYYY-MM-DD``), may be empty.
        popularity: Catalog popularity metric.
        vote_count: Number of user votes.
        original_title: Title in the original language.
        overview: Plot summary.
        vote_average: Mean user rating (0-10).
        poster_path: Relative poster image path.
        backdrop_path: Relative backdrop image path.
        genres: Genre names (details lookups only).
        runtime: Runtime in minutes (details lookups only).
        raw: Full payload as returned by the catalog, for display.
    """

    external_id: int
    title: str = ""
    release_date: str = ""
    popularity: float = 0.0
    vote_count: int = 0

    original_title: str = ""
    overview: str = ""
    vote_average: float = 0.0
    poster_path: str | None = None
    backdrop_path: str | None = None
    genres: list[str] = field(default_factory=list)
    runtime: int | None = None

    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def release_year(self) -> int | None:
        """Year part of ``release_date``, or None when absent or malformed."""
        date_str = (self.release_date or "").strip()
        if len(date_str) >= 4 and date_str[:4].isdigit():
            return int(date_str[:4])
        return None

    @property
    def display_label(self) -> str:
        """Human-readable label for review listings."""
        year = self.release_year
        return f"{self.title} ({year})" if year else self.title or "(Untitled)"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> CatalogMatch:
        """Build a match from a TMDB search result or movie details payload.

        Search results carry ``genre_ids``; details carry ``genres`` objects.
        Only the latter are turned into names.

        Raises:
            ValueError: If the payload has no usable ``id``.
        """
        try:
            external_id = int(data["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Catalog payload has no valid id: {data!r:.200}") from e

        genres = [
            g.get("name", "")
            for g in data.get("genres") or []
            if isinstance(g, dict) and g.get("name")
        ]

        runtime = data.get("runtime")
        try:
            runtime = int(runtime) if runtime else None
        except (TypeError, ValueError):
            runtime = None

        return cls(
            external_id=external_id,
            title=data.get("title") or data.get("name") or "",
            release_date=data.get("release_date") or "",
            popularity=_as_float(data.get("popularity")),
            vote_count=_as_int(data.get("vote_count")),
            original_title=data.get("original_title") or "",
            overview=data.get("overview") or "",
            vote_average=_as_float(data.get("vote_average")),
            poster_path=data.get("poster_path"),
            backdrop_path=data.get("backdrop_path"),
            genres=genres,
            runtime=runtime,
            raw=dict(data),
        )

    def as_dict(self) -> dict[str, Any]:
        """Serialize for database storage.

        The raw payload is stored as-is when present so a record keeps
        everything the catalog sent; the typed fields are stored alongside
        so records survive a payload without them.
        """
        return {
            "external_id": self.external_id,
            "title": self.title,
            "release_date": self.release_date,
            "popularity": self.popularity,
            "vote_count": self.vote_count,
            "original_title": self.original_title,
            "overview": self.overview,
            "vote_average": self.vote_average,
            "poster_path": self.poster_path,
            "backdrop_path": self.backdrop_path,
            "genres": list(self.genres),
            "runtime": self.runtime,
            "raw": self.raw,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CatalogMatch:
        """Rebuild a match from ``as_dict()`` output."""
        return cls(
            external_id=int(data["external_id"]),
            title=data.get("title", ""),
            release_date=data.get("release_date", ""),
            popularity=_as_float(data.get("popularity")),
            vote_count=_as_int(data.get("vote_count")),
            original_title=data.get("original_title", ""),
            overview=data.get("overview", ""),
            vote_average=_as_float(data.get("vote_average")),
            poster_path=data.get("poster_path"),
            backdrop_path=data.get("backdrop_path"),
            genres=list(data.get("genres") or []),
            runtime=data.get("runtime"),
            raw=dict(data.get("raw") or {}),
        )


def _as_float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any) -> int:
    try:
        return int(value) if value is not None else 0
    except (TypeError, ValueError):
        return 0
