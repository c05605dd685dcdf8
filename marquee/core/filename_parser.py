"""Filename parser -- guesses title, year and release tags from a raw filename.

Pure functions only: no I/O, no state.  Absence of structure is a normal
outcome, so ``parse_filename`` never raises and always returns a non-empty
title.
"""

from __future__ import annotations

import re

from marquee.models.parsed_candidate import ParsedCandidate
from marquee.utils.constants import SUPPORTED_EXTENSIONS, UNKNOWN_TITLE
from marquee.utils.logger import get_logger

logger = get_logger("core.filename_parser")

# --- Vocabularies (lowercase key -> canonical spelling) ---

QUALITY_TAGS = {
    "2160p": "2160p",
    "1080p": "1080p",
    "720p": "720p",
    "480p": "480p",
    "4k": "4K",
}

SOURCE_TAGS = {
    "bluray": "BluRay",
    "blu-ray": "BluRay",
    "brrip": "BRRip",
    "web-dl": "WEB-DL",
    "webdl": "WEB-DL",
    "webrip": "WEBRip",
    "dvdrip": "DVDRip",
    "dvd": "DVD",
    "hdtv": "HDTV",
}

CODEC_TAGS = {
    "x264": "x264",
    "x265": "x265",
    "h264": "H264",
    "h.264": "H264",
    "h265": "H265",
    "h.265": "H265",
    "hevc": "HEVC",
    "xvid": "XviD",
    "av1": "AV1",
}

# Extensions stripped before parsing.  Anything else after the last dot is
# kept as part of the name ("Part.II" must not lose "II").
_STRIPPABLE_EXTENSIONS = SUPPORTED_EXTENSIONS | frozenset({
    ".mpg", ".mpeg", ".m2ts", ".vob", ".ogv", ".3gp", ".divx", ".rmvb",
    ".srt", ".sub", ".nfo", ".txt",
})


def _alternation(vocab: dict[str, str]) -> str:
    # Longest first so "WEB-DL" wins over a shorter prefix
    return "|".join(re.escape(k) for k in sorted(vocab, key=len, reverse=True))


_Q = _alternation(QUALITY_TAGS)
_S = _alternation(SOURCE_TAGS)
_C = _alternation(CODEC_TAGS)
_SEP = r"[._]"
_END = r"(?=$|[._\s\-\[\]()])"

# 1. Title.Year.Quality.Source[.Codec][-Group]
_FULL_DOTTED = re.compile(
    rf"^(?P<title>.+?){_SEP}(?P<year>\d{{4}}){_SEP}(?P<quality>{_Q}){_SEP}"
    rf"(?P<source>{_S})(?:{_SEP}(?P<codec>{_C}))?(?:-(?P<group>[A-Za-z0-9]+))?$",
    re.IGNORECASE,
)

# 2. Title (Year) [Quality] [Source] [Codec]
_BRACKETED = re.compile(
    r"^(?P<title>.+?)\s*\((?P<year>\d{4})\)(?P<rest>.*)$",
    re.IGNORECASE,
)
_BRACKET_TOKEN = re.compile(r"\[([^\]]+)\]")

# 3. Title.Year.Quality[.Source]
_LOOSE_DOTTED = re.compile(
    rf"^(?P<title>.+?){_SEP}(?P<year>\d{{4}}){_SEP}(?P<quality>{_Q}){_END}"
    rf"(?:{_SEP}(?P<source>{_S}){_END})?",
    re.IGNORECASE,
)

# 4. Title.Year
_TITLE_YEAR = re.compile(
    rf"^(?P<title>.+?){_SEP}(?P<year>\d{{4}})(?![0-9A-Za-z])",
    re.IGNORECASE,
)

# 5. First standalone 4-digit run anywhere ("1080p" and "12345" never count)
_ANY_YEAR = re.compile(r"(?<![0-9A-Za-z])(\d{4})(?![0-9A-Za-z])")

_WHITESPACE = re.compile(r"\s+")


def normalize_title(text: str) -> str:
    """Turn a raw title fragment into display form.

    Dots and underscores become spaces, whitespace runs collapse, and
    dangling separators left over from the pattern split are trimmed.

    Args:
        text: Raw fragment (e.g. ``"The.Matrix."``).

    Returns:
        Normalized title, possibly empty.
    """
    cleaned = text.replace(".", " ").replace("_", " ")
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned.lstrip(" -").rstrip(" -([{").strip()


def strip_extension(filename: str) -> str:
    """Remove a known media/sidecar extension, leaving other names intact."""
    dot = filename.rfind(".")
    if dot <= 0:
        return filename
    if filename[dot:].lower() in _STRIPPABLE_EXTENSIONS:
        return filename[:dot]
    return filename


def _canonical(value: str | None, vocab: dict[str, str]) -> str | None:
    if not value:
        return None
    return vocab.get(value.strip().lower())


def _classify_tokens(tokens: list[str]) -> dict[str, str]:
    """Sort free-form tags into quality/source/codec; unknown tags are dropped."""
    found: dict[str, str] = {}
    for token in tokens:
        for word in re.split(r"[\s,]+", token.strip()):
            if not word:
                continue
            for field_name, vocab in (
                ("quality", QUALITY_TAGS),
                ("source", SOURCE_TAGS),
                ("codec", CODEC_TAGS),
            ):
                canonical = _canonical(word, vocab)
                if canonical and field_name not in found:
                    found[field_name] = canonical
                    break
    return found


def _build(title: str, year: str | None = None, **tags: str | None) -> ParsedCandidate | None:
    clean = normalize_title(title)
    if not clean:
        return None
    return ParsedCandidate(
        title=clean,
        year=int(year) if year else None,
        quality=_canonical(tags.get("quality"), QUALITY_TAGS),
        source=_canonical(tags.get("source"), SOURCE_TAGS),
        codec=_canonical(tags.get("codec"), CODEC_TAGS),
        group=tags.get("group") or None,
    )


def parse_filename(filename: str | None) -> ParsedCandidate:
    """Parse a raw filename into a ParsedCandidate.

    Patterns are tried most specific first; the first one that yields a
    non-empty title wins:

    1. ``Title.Year.Quality.Source[.Codec][-Group]``
    2. ``Title (Year) [Quality] [Source] [Codec]``
    3. ``Title.Year.Quality[.Source]``
    4. ``Title.Year``
    5. First standalone 4-digit run is the year, the text before it the title.

    Args:
        filename: Raw filename (a path is fine; only the last component is used).

    Returns:
        ParsedCandidate. Empty input yields ``"Unknown Title"`` with all
        other fields unset.
    """
    if not filename or not filename.strip():
        return ParsedCandidate(title=UNKNOWN_TITLE)

    base = re.split(r"[\\/]", filename.strip())[-1]
    name = strip_extension(base).strip()

    m = _FULL_DOTTED.match(name)
    if m:
        parsed = _build(
            m.group("title"), m.group("year"),
            quality=m.group("quality"), source=m.group("source"),
            codec=m.group("codec"), group=m.group("group"),
        )
        if parsed:
            logger.debug("Parsed '%s' with full dotted pattern", filename)
            return parsed

    m = _BRACKETED.match(name)
    if m:
        tags = _classify_tokens(_BRACKET_TOKEN.findall(m.group("rest")))
        parsed = _build(m.group("title"), m.group("year"), **tags)
        if parsed:
            logger.debug("Parsed '%s' with bracketed pattern", filename)
            return parsed

    m = _LOOSE_DOTTED.match(name)
    if m:
        parsed = _build(
            m.group("title"), m.group("year"),
            quality=m.group("quality"), source=m.group("source"),
        )
        if parsed:
            logger.debug("Parsed '%s' with loose dotted pattern", filename)
            return parsed

    m = _TITLE_YEAR.match(name)
    if m:
        parsed = _build(m.group("title"), m.group("year"))
        if parsed:
            logger.debug("Parsed '%s' with title.year pattern", filename)
            return parsed

    m = _ANY_YEAR.search(name)
    if m:
        parsed = _build(name[: m.start()], m.group(1))
        if parsed:
            logger.debug("Parsed '%s' with year fallback", filename)
            return parsed

    # No structure (or a name that is only a year, like "2012"): whole name
    title = normalize_title(name) or UNKNOWN_TITLE
    return ParsedCandidate(title=title)
