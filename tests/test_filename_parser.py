"""Tests for the filename parser -- pattern precedence, normalization and fallbacks."""

from __future__ import annotations

import pytest

from marquee.core.filename_parser import normalize_title, parse_filename, strip_extension
from marquee.utils.constants import UNKNOWN_TITLE


# ------------------------------------------------------------------
# Structured patterns
# ------------------------------------------------------------------


class TestFullDottedPattern:
    def test_shawshank(self):
        parsed = parse_filename("The.Shawshank.Redemption.1994.1080p.BluRay.mp4")
        assert parsed.title == "The Shawshank Redemption"
        assert parsed.year == 1994
        assert parsed.quality == "1080p"
        assert parsed.source == "BluRay"

    def test_codec_and_group(self):
        parsed = parse_filename("The.Matrix.1999.1080p.BluRay.x264-GROUP.mkv")
        assert parsed.title == "The Matrix"
        assert parsed.year == 1999
        assert parsed.codec == "x264"
        assert parsed.group == "GROUP"

    def test_tags_are_canonicalized(self):
        parsed = parse_filename("avatar.2009.4k.web-dl.hevc.mkv")
        assert parsed.title == "avatar"
        assert parsed.quality == "4K"
        assert parsed.source == "WEB-DL"
        assert parsed.codec == "HEVC"

    def test_underscores_as_separators(self):
        parsed = parse_filename("Blade_Runner_1982_720p_DVDRip.avi")
        assert parsed.title == "Blade Runner"
        assert parsed.year == 1982
        assert parsed.quality == "720p"
        assert parsed.source == "DVDRip"


class TestBracketedPattern:
    def test_inception(self):
        parsed = parse_filename("Inception (2010) [1080p].mp4")
        assert parsed.title == "Inception"
        assert parsed.year == 2010
        assert parsed.quality == "1080p"

    def test_multiple_bracket_tags(self):
        parsed = parse_filename("Inception (2010) [1080p] [BluRay] [x265].mkv")
        assert parsed.quality == "1080p"
        assert parsed.source == "BluRay"
        assert parsed.codec == "x265"

    def test_unknown_bracket_tags_are_dropped(self):
        parsed = parse_filename("Up (2009) [Director's Cut] [720p].mp4")
        assert parsed.title == "Up"
        assert parsed.quality == "720p"
        assert parsed.source is None
        assert parsed.codec is None


class TestLooserPatterns:
    def test_title_year_quality(self):
        parsed = parse_filename("Dune.2021.2160p.mkv")
        assert parsed.title == "Dune"
        assert parsed.year == 2021
        assert parsed.quality == "2160p"
        assert parsed.source is None

    def test_title_year(self):
        parsed = parse_filename("Amelie.2001.avi")
        assert parsed.title == "Amelie"
        assert parsed.year == 2001
        assert parsed.quality is None

    def test_year_anywhere_fallback(self):
        parsed = parse_filename("Heat 1995 remastered.mkv")
        assert parsed.title == "Heat"
        assert parsed.year == 1995

    def test_no_structure_uses_whole_name(self):
        parsed = parse_filename("Some_Movie_Name.mp4")
        assert parsed.title == "Some Movie Name"
        assert parsed.year is None
        assert parsed.quality is None


# ------------------------------------------------------------------
# Edge cases
# ------------------------------------------------------------------


class TestEdgeCases:
    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_empty_yields_unknown_title(self, name):
        parsed = parse_filename(name)
        assert parsed.title == UNKNOWN_TITLE
        assert parsed.year is None
        assert parsed.quality is None
        assert parsed.source is None

    def test_five_digit_run_is_not_a_year(self):
        assert parse_filename("12345.mkv").year is None
        assert parse_filename("Movie.19999.1080p.mkv").year is None

    def test_name_that_is_only_a_year(self):
        parsed = parse_filename("2012.mkv")
        assert parsed.title == "2012"
        assert parsed.year is None

    def test_no_extension(self):
        parsed = parse_filename("The.Matrix.1999")
        assert parsed.title == "The Matrix"
        assert parsed.year == 1999

    def test_unknown_suffix_is_kept(self):
        assert parse_filename("Rocky.Part.II").title == "Rocky Part II"

    def test_directory_components_are_ignored(self):
        parsed = parse_filename("/media/incoming/The.Matrix.1999.mkv")
        assert parsed.title == "The Matrix"

    @pytest.mark.parametrize("name", [
        "....mkv",
        "-",
        "[1080p]",
        "(2010)",
        "___",
        ".hidden",
        "a" * 500,
        "Film.2010.2011.2012",
        "Ünïcödé.Fïlm.2019.mkv",
    ])
    def test_never_raises_and_title_is_non_empty(self, name):
        parsed = parse_filename(name)
        assert parsed.title
        assert parsed.title.strip() == parsed.title


class TestHelpers:
    def test_normalize_title(self):
        assert normalize_title("The.Matrix__Reloaded.  ") == "The Matrix Reloaded"

    def test_normalize_title_trims_dangling_separators(self):
        assert normalize_title("Heat - ") == "Heat"

    def test_strip_known_extension_only(self):
        assert strip_extension("movie.MKV") == "movie"
        assert strip_extension("movie.srt") == "movie"
        assert strip_extension("Part.II") == "Part.II"
        assert strip_extension(".hidden") == ".hidden"
